"""
Stationary state transition model for the per-node EKF.

Nodes do not move: F = I, no control input. Process noise Q is diagonal
with one variance shared by X/Y/Z, one for beta and one for tau, given in
real units and converted to internal units.
"""

import numpy as np

from .state import STATE_SIZE, StateAndCovariance, normalize_variances


class StationaryStateModel:
    """
    Identity transition with tunable process noise.
    
    Usage:
        model = StationaryStateModel(
            position_variance=1e8,   # m^2
            beta_variance=1e-6,
            tau_variance=1e-10,      # s^2
        )
        predicted = model.predict(prior)
    """
    
    def __init__(self, position_variance: float, beta_variance: float, tau_variance: float):
        """
        Initialize state model.
        
        Args:
            position_variance: Process noise per position axis (m^2)
            beta_variance: Process noise on beta (fraction of c, squared)
            tau_variance: Process noise on tau (s^2)
        """
        real_variances = np.array([
            position_variance,
            position_variance,
            position_variance,
            beta_variance,
            tau_variance,
        ])
        
        self.F = np.eye(STATE_SIZE)
        self.FT = self.F.T
        self.Q = np.diag(normalize_variances(real_variances))
    
    @classmethod
    def from_config(cls, config) -> 'StationaryStateModel':
        """Build from a SimulationConfig's KF model variances."""
        return cls(
            position_variance=config.kf_model_position_variance,
            beta_variance=config.kf_model_beta_variance,
            tau_variance=config.kf_model_tau_variance,
        )
    
    def predict(self, prior: StateAndCovariance) -> StateAndCovariance:
        """Propagate mean and covariance one step: x' = F x, P' = F P F^T + Q."""
        state = self.F @ prior.state
        covariance = self.F @ prior.covariance @ self.FT + self.Q
        return StateAndCovariance(state, covariance)
