"""
Simulation Module: config, nodes, physics/noise model, stats, epoch driver.
"""

from .config import SimulationConfig
from .node import Node
from .physics import (
    generate_measurements,
    simulate_round_trip_time,
    sample_beta,
    sample_tau,
)
from .stats import PositionType, Stats, calculate_rms_error
from .driver import Simulation, SimulationState

__all__ = [
    'SimulationConfig',
    'Node',
    'generate_measurements',
    'simulate_round_trip_time',
    'sample_beta',
    'sample_tau',
    'PositionType',
    'Stats',
    'calculate_rms_error',
    'Simulation',
    'SimulationState',
]
