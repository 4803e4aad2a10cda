"""
Per-epoch RMS position error statistics.

Three parallel sequences (EKF estimate, LS estimate, static assertion), each
grown by exactly one entry per record() call and never rewritten.
"""

import logging
from enum import Enum
from typing import List, Sequence
import numpy as np

from proximum_core.proto.snapshot import StatsSnapshot

logger = logging.getLogger(__name__)


class PositionType(Enum):
    """Which position a node's error is measured for."""
    
    KF_ESTIMATED = "kf_estimated"
    LS_ESTIMATED = "ls_estimated"
    ASSERTED = "asserted"


def _position_of(node, position_type: PositionType) -> np.ndarray:
    if position_type == PositionType.KF_ESTIMATED:
        return node.kf_estimated_position
    if position_type == PositionType.LS_ESTIMATED:
        return node.ls_estimated_position
    return node.asserted_position


def calculate_rms_error(nodes: Sequence, position_type: PositionType) -> float:
    """
    RMS distance (m) between true positions and the chosen position over all nodes.
    
    Args:
        nodes: Node collection
        position_type: Which position to compare against true_position
        
    Returns:
        RMS error in meters (0.0 for an empty collection)
    """
    if len(nodes) == 0:
        return 0.0
    
    squared = [
        float(np.sum((node.true_position - _position_of(node, position_type)) ** 2))
        for node in nodes
    ]
    return float(np.sqrt(np.mean(squared)))


class Stats:
    """
    RMS error history for one run.
    
    Usage:
        stats = Stats()
        stats.record(nodes)      # initial entry
        ...                      # run an epoch
        stats.record(nodes)      # one more entry per epoch
    """
    
    def __init__(self):
        self.kf_estimation_rms_error: List[float] = []
        self.ls_estimation_rms_error: List[float] = []
        self.assertion_rms_error: List[float] = []
    
    def __len__(self) -> int:
        return len(self.kf_estimation_rms_error)
    
    def record(self, nodes: Sequence):
        """Append one entry to each sequence."""
        kf = calculate_rms_error(nodes, PositionType.KF_ESTIMATED)
        ls = calculate_rms_error(nodes, PositionType.LS_ESTIMATED)
        asserted = calculate_rms_error(nodes, PositionType.ASSERTED)
        
        self.kf_estimation_rms_error.append(kf)
        self.ls_estimation_rms_error.append(ls)
        self.assertion_rms_error.append(asserted)
        
        logger.debug(f"RMS error: kf={kf:.1f} m, ls={ls:.1f} m, asserted={asserted:.1f} m")
    
    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            kf_estimation_rms_error=tuple(self.kf_estimation_rms_error),
            ls_estimation_rms_error=tuple(self.ls_estimation_rms_error),
            assertion_rms_error=tuple(self.assertion_rms_error),
        )
