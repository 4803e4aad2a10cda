"""
Pytest configuration and shared fixtures for the positioning simulation tests.

Provides node factories at known geodetic positions, zero-noise and default
configurations, and seeded random generators.
"""

import sys
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import numpy as np
import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from proximum_core.localization.geodesy import geodetic_to_ecef
from proximum_core.localization.state import STATE_SIZE, StateAndCovariance
from proximum_core.simulation import Node, SimulationConfig


# =============================================================================
# Geometry
# =============================================================================


# Counterparts spread over one hemisphere, all within ~4000 km of (0, 0)
SPREAD_LAT_LON: List[Tuple[float, float]] = [
    (0.0, 0.0),
    (10.0, 5.0),
    (-8.0, 12.0),
    (15.0, -10.0),
    (-20.0, -6.0),
    (5.0, 25.0),
    (25.0, 20.0),
    (-12.0, -22.0),
]


def make_node(
    node_id: int,
    lat: float,
    lon: float,
    beta: float = 0.5,
    tau: float = 0.015,
    asserted_lat_lon: Optional[Tuple[float, float]] = None,
    kf_beta: Optional[float] = None,
    kf_tau: Optional[float] = None,
) -> Node:
    """
    Build a node at a known surface position without touching the H3 grid.
    
    Both estimates start at the asserted position (default: the true one).
    """
    true_position = geodetic_to_ecef(lat, lon, 0.0)
    if asserted_lat_lon is None:
        asserted_position = true_position.copy()
    else:
        asserted_position = geodetic_to_ecef(*asserted_lat_lon, 0.0)
    
    kf_state = StateAndCovariance.from_real_units(
        np.array([
            *asserted_position,
            beta if kf_beta is None else kf_beta,
            tau if kf_tau is None else kf_tau,
        ]),
        np.eye(STATE_SIZE),
    )
    
    return Node(
        id=node_id,
        true_cell=f"test-{node_id}",
        true_position=true_position,
        true_beta=beta,
        true_tau=tau,
        asserted_cell=f"test-{node_id}",
        asserted_position=asserted_position,
        ls_estimated_position=asserted_position.copy(),
        kf_state_and_covariance=kf_state,
    )


@pytest.fixture
def node_factory() -> Callable[..., Node]:
    """Factory for nodes at known geodetic positions."""
    return make_node


@pytest.fixture
def spread_nodes() -> List[Node]:
    """Nodes at SPREAD_LAT_LON with beta=0.5, tau=15 ms, asserted == true."""
    return [make_node(i, lat, lon) for i, (lat, lon) in enumerate(SPREAD_LAT_LON)]


# =============================================================================
# Configuration
# =============================================================================


@pytest.fixture
def zero_noise_config() -> SimulationConfig:
    """
    Zero parameter noise; model beta/tau equal to the true values of spread_nodes.
    """
    return SimulationConfig(
        n_nodes=len(SPREAD_LAT_LON),
        n_epochs=5,
        n_measurements=6,
        h3_resolution=10,
        asserted_position_variance=0.0,
        beta_min=0.5,
        beta_max=0.5,
        beta_variance=0.0,
        tau_min=0.015,
        tau_max=0.015,
        tau_variance=0.0,
        message_distance_max=20_000_000.0,
        ls_model_beta=0.5,
        ls_model_tau=0.015,
        ls_tolerance=1.0,
        ls_iterations=10,
        kf_model_beta=0.5,
        kf_model_tau=0.015,
        seed=7,
    )


@pytest.fixture
def default_config() -> SimulationConfig:
    """Default (noisy) configuration."""
    return SimulationConfig()


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator."""
    return np.random.default_rng(12345)
