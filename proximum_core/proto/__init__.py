"""
Protocol Module: measurement sets and snapshot schemas.
"""

from .measurement import MeasurementSet
from .snapshot import (
    ErrorEllipse,
    PositionFrames,
    NodeSnapshot,
    StatsSnapshot,
    SimulationSnapshot,
)

__all__ = [
    'MeasurementSet',
    'ErrorEllipse',
    'PositionFrames',
    'NodeSnapshot',
    'StatsSnapshot',
    'SimulationSnapshot',
]
