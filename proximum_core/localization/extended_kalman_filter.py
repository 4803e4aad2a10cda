"""
Extended Kalman Filter step for one node.

One predict + update recursion over the 5D state [X, Y, Z, beta, tau]
(internal units), using a fresh set of round-trip ToF measurements against
counterpart nodes whose states are held fixed at their current estimates.

Covariance update uses the Joseph form

    P+ = (I - K H) P (I - K H)^T + K R K^T

which keeps P symmetric PSD under rounding, unlike (I - K H) P.
"""

import logging
from typing import Sequence, Tuple
import numpy as np

from proximum_core.errors import CovarianceNotPositiveSemiDefiniteError
from proximum_core.proto.measurement import MeasurementSet
from .observation_model import LinearizedObservationModel, NonlinearObservationModel
from .state import StateAndCovariance
from .state_model import StationaryStateModel

logger = logging.getLogger(__name__)


def ekf_update(
    observation_model: LinearizedObservationModel,
    prior: StateAndCovariance,
    observation: np.ndarray,
) -> Tuple[StateAndCovariance, np.ndarray]:
    """
    Measurement update with Joseph-form covariance.
    
    Args:
        observation_model: Model linearized at prior.state
        prior: Predicted state and covariance
        observation: Measured round-trip times (s)
        
    Returns:
        Tuple of (posterior, innovation)
        
    Raises:
        CovarianceNotPositiveSemiDefiniteError: If S = H P H^T + R has no
            Cholesky factorization, or the posterior is not finite
    """
    H = observation_model.H
    HT = observation_model.HT
    R = observation_model.R
    P = prior.covariance
    
    S = H @ P @ HT + R
    
    try:
        L = np.linalg.cholesky(S)
    except np.linalg.LinAlgError as e:
        raise CovarianceNotPositiveSemiDefiniteError(
            f"Innovation covariance not positive definite: {e}"
        ) from e
    
    L_inv = np.linalg.inv(L)
    S_inv = L_inv.T @ L_inv
    
    K = P @ HT @ S_inv
    
    predicted = observation_model.predict_observation(prior.state)
    innovation = np.asarray(observation, dtype=float) - predicted
    
    state = prior.state + K @ innovation
    
    one_minus_kh = np.eye(P.shape[0]) - K @ H
    covariance = one_minus_kh @ P @ one_minus_kh.T + K @ R @ K.T
    
    posterior = StateAndCovariance(state, covariance)
    if not posterior.is_finite():
        raise CovarianceNotPositiveSemiDefiniteError("Non-finite posterior state or covariance")
    
    return posterior, innovation


def kf_step(
    node_index: int,
    measurements: MeasurementSet,
    nodes: Sequence,
    observation_model_generator: NonlinearObservationModel,
    state_model: StationaryStateModel,
    observation_variance: float,
) -> StateAndCovariance:
    """
    Run one EKF predict + update for nodes[node_index].
    
    Args:
        node_index: Index of the node being updated
        measurements: Counterpart indices and measured round-trip times
        nodes: Node collection; each node exposes kf_state_and_covariance
        observation_model_generator: Linearizes the ToF model
        state_model: Stationary transition model (F, Q)
        observation_variance: ToF measurement variance (s^2)
        
    Returns:
        Posterior StateAndCovariance (internal units)
        
    Raises:
        CovarianceNotPositiveSemiDefiniteError: If the update is ill-conditioned
            or any beta estimate (prior, counterpart or posterior) is not positive
    """
    prior = nodes[node_index].kf_state_and_covariance
    predicted = state_model.predict(prior)
    
    counterpart_states = np.array([
        nodes[j].kf_state_and_covariance.state for j in measurements.indices
    ])
    
    model = observation_model_generator.linearize_at(
        predicted.state, counterpart_states, observation_variance
    )
    
    posterior, innovation = ekf_update(model, predicted, measurements.times)
    if posterior.beta <= 0.0:
        raise CovarianceNotPositiveSemiDefiniteError(
            f"Update drove beta to {posterior.beta:.3g}; keeping the prior"
        )

    logger.debug(
        f"node {node_index}: EKF innovation norm {np.linalg.norm(innovation):.3e} s, "
        f"state {posterior.real_state}"
    )
    
    return posterior
