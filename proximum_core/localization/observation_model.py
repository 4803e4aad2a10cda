"""
Nonlinear ToF observation model for the per-node EKF.

For node "mine" and counterpart i, the predicted round-trip time is

    t_i = d_i / (c * beta_mine) + tau_mine + d_i / (c * beta_i) + tau_i

where d_i is the Euclidean distance between the two positions. Only the
updating node's state is estimated; counterpart states are held fixed at
their current estimates while linearizing.

The Jacobian is taken with respect to the internal (normalized) state, so
each column carries the matching STATE_FACTOR (chain rule).
"""

from dataclasses import dataclass
from typing import Callable
import numpy as np

from proximum_core.errors import CovarianceNotPositiveSemiDefiniteError
from .state import (
    SPEED_OF_LIGHT,
    STATE_FACTOR,
    STATE_SIZE,
    POSITION_SLICE,
    BETA_INDEX,
    TAU_INDEX,
    denormalize_state,
)

# Below this separation (m) a measurement carries no direction information
MINIMUM_DISTANCE = 100.0


def predict_round_trip_times(real_state: np.ndarray, counterpart_real_states: np.ndarray) -> np.ndarray:
    """
    Predicted round-trip ToF to each counterpart, all in real units.
    
    Args:
        real_state: [X, Y, Z, beta, tau] of the updating node
        counterpart_real_states: (N, 5) array of counterpart states
        
    Returns:
        (N,) predicted round-trip times (s)
    """
    delta = counterpart_real_states[:, POSITION_SLICE] - real_state[POSITION_SLICE]
    distances = np.linalg.norm(delta, axis=1)
    
    ping = distances / (SPEED_OF_LIGHT * real_state[BETA_INDEX]) + real_state[TAU_INDEX]
    pong = (
        distances / (SPEED_OF_LIGHT * counterpart_real_states[:, BETA_INDEX])
        + counterpart_real_states[:, TAU_INDEX]
    )
    return ping + pong


@dataclass
class LinearizedObservationModel:
    """
    Observation model linearized at one state for a fixed counterpart set.
    
    Attributes:
        predict_fn: Maps an internal-unit state to predicted ToFs (s)
        H: (N, 5) Jacobian of predict_fn w.r.t. the internal state
        HT: Transpose of H
        R: (N, N) diagonal observation noise covariance (s^2)
    """
    
    predict_fn: Callable[[np.ndarray], np.ndarray]
    H: np.ndarray
    HT: np.ndarray
    R: np.ndarray
    
    def predict_observation(self, state: np.ndarray) -> np.ndarray:
        return self.predict_fn(state)


class NonlinearObservationModel:
    """
    Generator of linearized ToF observation models.
    
    Usage:
        generator = NonlinearObservationModel()
        model = generator.linearize_at(prior.state, counterpart_states, 1e-6)
        innovation = times - model.predict_observation(prior.state)
    """
    
    def __init__(self, minimum_distance: float = MINIMUM_DISTANCE):
        """
        Args:
            minimum_distance: Separation (m) below which position columns stay zero
        """
        self.minimum_distance = minimum_distance
    
    def linearize_at(
        self,
        state: np.ndarray,
        counterpart_states: np.ndarray,
        observation_variance: float,
    ) -> LinearizedObservationModel:
        """
        Linearize the ToF model at state.
        
        Args:
            state: Internal-unit 5-vector of the updating node
            counterpart_states: (N, 5) internal-unit counterpart states
            observation_variance: ToF measurement variance (s^2)
            
        Returns:
            LinearizedObservationModel with predict_fn, H, HT, R
            
        Raises:
            CovarianceNotPositiveSemiDefiniteError: If any beta estimate
                (own or counterpart) is not positive

        Notes:
            - Rows for counterparts closer than minimum_distance keep zero
              position columns; beta/tau columns are still filled so the
              measurement still informs speed and latency
        """
        counterpart_real = denormalize_state(np.atleast_2d(counterpart_states)).copy()
        n_measurements = counterpart_real.shape[0]
        
        def predict_fn(x: np.ndarray) -> np.ndarray:
            return predict_round_trip_times(denormalize_state(x), counterpart_real)
        
        real_state = denormalize_state(state)
        beta_mine = real_state[BETA_INDEX]
        if beta_mine <= 0.0 or np.any(counterpart_real[:, BETA_INDEX] <= 0.0):
            raise CovarianceNotPositiveSemiDefiniteError(
                f"Non-positive beta estimate: own {beta_mine:.3g}, "
                f"counterparts {counterpart_real[:, BETA_INDEX]}"
            )
        
        delta = counterpart_real[:, POSITION_SLICE] - real_state[POSITION_SLICE]
        distances = np.linalg.norm(delta, axis=1)
        
        H = np.zeros((n_measurements, STATE_SIZE))
        for i in range(n_measurements):
            distance = distances[i]
            
            if distance > self.minimum_distance:
                # d(distance)/d(my position) = -delta / distance, shared by ping and pong
                inverse_speeds = (
                    1.0 / (SPEED_OF_LIGHT * beta_mine)
                    + 1.0 / (SPEED_OF_LIGHT * counterpart_real[i, BETA_INDEX])
                )
                H[i, POSITION_SLICE] = (
                    -(delta[i] / distance) * inverse_speeds * STATE_FACTOR[POSITION_SLICE]
                )
            
            H[i, BETA_INDEX] = -distance / (SPEED_OF_LIGHT * beta_mine ** 2) * STATE_FACTOR[BETA_INDEX]
            H[i, TAU_INDEX] = STATE_FACTOR[TAU_INDEX]
        
        R = np.eye(n_measurements) * observation_variance
        
        return LinearizedObservationModel(
            predict_fn=predict_fn,
            H=H,
            HT=H.T.copy(),
            R=R,
        )
