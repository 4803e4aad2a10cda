"""
Proximum Core Package.

Trustless positioning simulation: nodes estimate their own positions from
noisy round-trip time-of-flight pings, with per-node unknown message speed
(beta) and processing latency (tau).

Package structure:
- proto: Snapshot schemas exposed to the serialization boundary
- localization: Geodesy, EKF observation/state models, least-squares solver
- simulation: Config, nodes, physics/noise model, epoch driver, stats
- metrics: Counters and histograms for per-node-epoch outcomes
"""

__version__ = "0.1.0"
__author__ = "Proximum Team"

from .simulation import Simulation, SimulationConfig

__all__ = ['Simulation', 'SimulationConfig']
