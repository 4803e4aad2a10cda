"""
Simulated network node.

True and asserted values are fixed at creation (their arrays are made
read-only). Only the two estimates mutate, each by its own estimator:
- ls_estimated_position: 3D least-squares estimate
- kf_state_and_covariance: 5D EKF state (internal units)

After each update the node refreshes the derived display fields (WGS84
coordinates, H3 cell, EN error ellipse).
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
import numpy as np

from proximum_core.localization import geodesy
from proximum_core.localization.error_ellipse import en_error_ellipse
from proximum_core.localization.state import (
    STATE_SIZE,
    StateAndCovariance,
    apply_spring_correction,
)
from proximum_core.proto.snapshot import ErrorEllipse, NodeSnapshot, PositionFrames

logger = logging.getLogger(__name__)


def _frozen(position: np.ndarray) -> np.ndarray:
    array = np.array(position, dtype=float)
    array.setflags(write=False)
    return array


@dataclass
class Node:
    """
    One node in the network.
    
    Attributes:
        id: Index in the node collection (never changes)
        true_cell: H3 cell of the true position
        true_position: True ECEF position (m), read-only
        true_beta: True message speed (fraction of c)
        true_tau: True processing latency (s)
        asserted_cell: H3 cell of the asserted position
        asserted_position: Asserted ECEF position (m), read-only
        ls_estimated_position: Least-squares ECEF estimate (m)
        kf_state_and_covariance: EKF state and covariance (internal units)
    """
    
    id: int
    true_cell: str
    true_position: np.ndarray
    true_beta: float
    true_tau: float
    asserted_cell: str
    asserted_position: np.ndarray
    ls_estimated_position: np.ndarray
    kf_state_and_covariance: StateAndCovariance
    
    # Derived display fields
    ls_estimated_cell: Optional[str] = None
    kf_estimated_cell: Optional[str] = None
    kf_error_ellipse: ErrorEllipse = field(default_factory=ErrorEllipse)
    
    def __post_init__(self):
        self.true_position = _frozen(self.true_position)
        self.asserted_position = _frozen(self.asserted_position)
    
    @classmethod
    def create(
        cls,
        id: int,
        true_cell: str,
        asserted_cell: str,
        true_beta: float,
        true_tau: float,
        kf_model_beta: float,
        kf_model_tau: float,
    ) -> 'Node':
        """
        Create a node with both estimates starting at the asserted position.
        
        The EKF starts from generic model beta/tau and an identity covariance
        in internal units.
        """
        true_position = geodesy.cell_to_cartesian(true_cell)
        asserted_position = geodesy.cell_to_cartesian(asserted_cell)
        
        kf_state = StateAndCovariance.from_real_units(
            np.array([*asserted_position, kf_model_beta, kf_model_tau]),
            np.eye(STATE_SIZE),
        )
        
        node = cls(
            id=id,
            true_cell=true_cell,
            true_position=true_position,
            true_beta=true_beta,
            true_tau=true_tau,
            asserted_cell=asserted_cell,
            asserted_position=asserted_position,
            ls_estimated_position=asserted_position.copy(),
            kf_state_and_covariance=kf_state,
        )
        node.log_kf_estimated_positions()
        node.log_ls_estimated_positions()
        return node
    
    @property
    def kf_estimated_position(self) -> np.ndarray:
        return self.kf_state_and_covariance.position
    
    @property
    def kf_estimated_beta(self) -> float:
        return self.kf_state_and_covariance.beta
    
    @property
    def kf_estimated_tau(self) -> float:
        return self.kf_state_and_covariance.tau
    
    def apply_kf_posterior(self, posterior: StateAndCovariance):
        """
        Accept an EKF posterior, applying the spring correction to its position.
        
        The corrected position is written back into the filter state so the
        reported estimate and the filter agree.
        """
        real_state = posterior.real_state
        real_state[:3] = apply_spring_correction(real_state[:3], self.asserted_position)
        
        self.kf_state_and_covariance = StateAndCovariance.from_real_units(
            real_state, posterior.covariance
        )
        self.log_kf_estimated_positions()
    
    def apply_ls_estimate(self, position: np.ndarray):
        """Accept a (spring-corrected) least-squares position."""
        self.ls_estimated_position = np.array(position, dtype=float)
        self.log_ls_estimated_positions()
    
    def log_ls_estimated_positions(self):
        """Refresh LS display cell."""
        self.ls_estimated_cell = geodesy.safe_surface_cell(self.ls_estimated_position)
    
    def log_kf_estimated_positions(self):
        """Refresh EKF display cell and EN error ellipse."""
        position = self.kf_estimated_position
        self.kf_estimated_cell = geodesy.safe_surface_cell(position)
        
        coord = geodesy.surface_coordinate(position)
        if coord is None:
            self.kf_error_ellipse = ErrorEllipse()
            return
        
        self.kf_error_ellipse = en_error_ellipse(
            self.kf_state_and_covariance.position_covariance, coord.lat, coord.lon
        )
    
    def snapshot(self) -> NodeSnapshot:
        """Immutable view of this node."""
        return NodeSnapshot(
            id=self.id,
            true=_frames(self.true_position, self.true_cell),
            true_beta=float(self.true_beta),
            true_tau=float(self.true_tau),
            asserted=_frames(self.asserted_position, self.asserted_cell),
            ls_estimated=_frames(self.ls_estimated_position, self.ls_estimated_cell),
            kf_estimated=_frames(self.kf_estimated_position, self.kf_estimated_cell),
            kf_estimated_beta=self.kf_estimated_beta,
            kf_estimated_tau=self.kf_estimated_tau,
            kf_error_ellipse=self.kf_error_ellipse,
        )


def _frames(position: np.ndarray, cell: Optional[str]) -> PositionFrames:
    coord = geodesy.surface_coordinate(position)
    return PositionFrames(
        ecef=(float(position[0]), float(position[1]), float(position[2])),
        wgs84=(coord.lat, coord.lon, coord.alt) if coord is not None else None,
        cell=cell,
    )
