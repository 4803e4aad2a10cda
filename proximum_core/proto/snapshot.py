"""
Snapshot schemas exposed at the serialization boundary.

Immutable views of node and estimator state taken on demand (after an epoch
or at run end). The wire format is the caller's concern; to_dict() gives a
JSON-ready representation.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

Vec3 = Tuple[float, float, float]


@dataclass(frozen=True)
class ErrorEllipse:
    """
    EKF position uncertainty projected onto the local East-North plane.
    
    Attributes:
        semimajor_axis: (E, N) direction of the semimajor axis (unnormalized projection)
        semimajor_axis_length: 1-sigma semimajor length (m)
        semiminor_axis_length: 1-sigma semiminor length (m)
    """
    
    semimajor_axis: Tuple[float, float] = (0.0, 0.0)
    semimajor_axis_length: float = 0.0
    semiminor_axis_length: float = 0.0
    
    def to_dict(self) -> dict:
        return {
            'semimajor_axis': list(self.semimajor_axis),
            'semimajor_axis_length': self.semimajor_axis_length,
            'semiminor_axis_length': self.semiminor_axis_length,
        }


@dataclass(frozen=True)
class PositionFrames:
    """
    One position expressed in each reference frame.
    
    Attributes:
        ecef: ECEF position (m)
        wgs84: (lat, lon, alt) in degrees/degrees/m, None if degenerate
        cell: H3 cell index, None if degenerate
    """
    
    ecef: Vec3
    wgs84: Optional[Vec3]
    cell: Optional[str]
    
    def to_dict(self) -> dict:
        return {
            'ecef': list(self.ecef),
            'wgs84': list(self.wgs84) if self.wgs84 is not None else None,
            'cell': self.cell,
        }


@dataclass(frozen=True)
class NodeSnapshot:
    """
    Immutable view of one node.
    
    Attributes:
        id: Node id (index in the node collection)
        true: True position
        true_beta: True message speed (fraction of c)
        true_tau: True processing latency (s)
        asserted: Asserted position
        ls_estimated: Least-squares estimate
        kf_estimated: EKF estimate
        kf_estimated_beta: EKF beta estimate
        kf_estimated_tau: EKF tau estimate (s)
        kf_error_ellipse: EN-plane error ellipse from the EKF covariance
    """
    
    id: int
    true: PositionFrames
    true_beta: float
    true_tau: float
    asserted: PositionFrames
    ls_estimated: PositionFrames
    kf_estimated: PositionFrames
    kf_estimated_beta: float
    kf_estimated_tau: float
    kf_error_ellipse: ErrorEllipse
    
    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'true': self.true.to_dict(),
            'true_beta': self.true_beta,
            'true_tau': self.true_tau,
            'asserted': self.asserted.to_dict(),
            'ls_estimated': self.ls_estimated.to_dict(),
            'kf_estimated': self.kf_estimated.to_dict(),
            'kf_estimated_beta': self.kf_estimated_beta,
            'kf_estimated_tau': self.kf_estimated_tau,
            'kf_error_ellipse': self.kf_error_ellipse.to_dict(),
        }


@dataclass(frozen=True)
class StatsSnapshot:
    """RMS position error sequences (m), one entry initially plus one per epoch."""
    
    kf_estimation_rms_error: Tuple[float, ...]
    ls_estimation_rms_error: Tuple[float, ...]
    assertion_rms_error: Tuple[float, ...]
    
    def to_dict(self) -> dict:
        return {
            'kf_estimation_rms_error': list(self.kf_estimation_rms_error),
            'ls_estimation_rms_error': list(self.ls_estimation_rms_error),
            'assertion_rms_error': list(self.assertion_rms_error),
        }


@dataclass(frozen=True)
class SimulationSnapshot:
    """
    Immutable view of a whole simulation.
    
    Attributes:
        epoch: Number of epochs completed
        state: Run state name (CREATED, RUNNING, COMPLETED)
        config: Flat config record
        nodes: Per-node snapshots ordered by id
        stats: RMS error sequences
    """
    
    epoch: int
    state: str
    config: Dict[str, Any]
    nodes: Tuple[NodeSnapshot, ...]
    stats: StatsSnapshot
    
    def to_dict(self) -> dict:
        return {
            'epoch': self.epoch,
            'state': self.state,
            'config': dict(self.config),
            'nodes': [node.to_dict() for node in self.nodes],
            'stats': self.stats.to_dict(),
        }
