"""
Physics / noise model and measurement sampler.

A ping-pong exchange between nodes A and B takes

    t = d / (c * beta_A) + tau_A  +  d / (c * beta_B) + tau_B

with per-ping beta drawn from Normal(true_beta, sqrt(beta_variance)) and tau
from LogNormal(ln(true_tau), ln(sqrt(tau_variance))), both clamped to their
configured ranges. The full round trip is returned (no halving); estimators
apply their own factor-of-two convention.
"""

import logging
import math
from typing import Sequence
import numpy as np

from proximum_core.errors import InsufficientCounterpartsError
from proximum_core.localization.state import SPEED_OF_LIGHT
from proximum_core.proto.measurement import MeasurementSet
from .config import SimulationConfig

logger = logging.getLogger(__name__)


def sample_beta(true_beta: float, config: SimulationConfig, rng: np.random.Generator) -> float:
    """Effective message speed for one ping."""
    if config.beta_variance == 0.0:
        beta = true_beta
    else:
        beta = rng.normal(true_beta, math.sqrt(config.beta_variance))
    return float(np.clip(beta, config.beta_min, config.beta_max))


def sample_tau(true_tau: float, config: SimulationConfig, rng: np.random.Generator) -> float:
    """
    Effective processing latency for one ping.
    
    The log-space sigma is ln(sqrt(tau_variance)); its magnitude is used
    since the scale of a normal cannot be negative.
    """
    if config.tau_variance == 0.0 or true_tau <= 0.0:
        tau = true_tau
    else:
        sigma = abs(math.log(math.sqrt(config.tau_variance)))
        tau = rng.lognormal(math.log(true_tau), sigma)
    return float(np.clip(tau, config.tau_min, config.tau_max))


def simulate_round_trip_time(
    true_position_a: np.ndarray,
    true_beta_a: float,
    true_tau_a: float,
    node_b,
    config: SimulationConfig,
    rng: np.random.Generator,
) -> float:
    """
    Simulate one round-trip ToF between A and node_b.
    
    Args:
        true_position_a: True ECEF position of A (m)
        true_beta_a: True message speed of A
        true_tau_a: True latency of A (s)
        node_b: Counterpart node (true_position, true_beta, true_tau)
        config: Simulation config (noise variances and clamp ranges)
        rng: Run-scoped random generator
        
    Returns:
        Round-trip time (s)
    """
    true_distance = float(np.linalg.norm(np.asarray(true_position_a) - node_b.true_position))
    
    beta_a = sample_beta(true_beta_a, config, rng)
    beta_b = sample_beta(node_b.true_beta, config, rng)
    tau_a = sample_tau(true_tau_a, config, rng)
    tau_b = sample_tau(node_b.true_tau, config, rng)
    
    ping_time = true_distance / (SPEED_OF_LIGHT * beta_a) + tau_a
    pong_time = true_distance / (SPEED_OF_LIGHT * beta_b) + tau_b
    
    return ping_time + pong_time


def generate_measurements(
    my_index: int,
    true_position: np.ndarray,
    true_beta: float,
    true_tau: float,
    nodes: Sequence,
    config: SimulationConfig,
    rng: np.random.Generator,
) -> MeasurementSet:
    """
    Sample n_measurements distinct in-range counterparts and ping each once.
    
    Args:
        my_index: Index of the measuring node (excluded from counterparts)
        true_position: True ECEF position of the measuring node (m)
        true_beta: True message speed of the measuring node
        true_tau: True latency of the measuring node (s)
        nodes: Node collection
        config: Simulation config
        rng: Run-scoped random generator
        
    Returns:
        MeasurementSet of length n_measurements
        
    Raises:
        InsufficientCounterpartsError: Fewer eligible counterparts than n_measurements
    """
    true_position = np.asarray(true_position, dtype=float)
    
    eligible = [
        i for i, node in enumerate(nodes)
        if i != my_index
        and np.linalg.norm(true_position - node.true_position) <= config.message_distance_max
    ]
    
    if len(eligible) < config.n_measurements:
        raise InsufficientCounterpartsError(
            f"Not enough eligible nodes. Found {len(eligible)} but need {config.n_measurements}",
            node_id=my_index,
        )
    
    selected = rng.choice(eligible, size=config.n_measurements, replace=False)
    indices = [int(i) for i in selected]
    
    times = np.array([
        simulate_round_trip_time(true_position, true_beta, true_tau, nodes[i], config, rng)
        for i in indices
    ])
    
    logger.debug(f"node {my_index}: measured {len(indices)} counterparts {indices}")
    
    return MeasurementSet(indices=indices, times=times)
