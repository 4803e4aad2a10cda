"""
Localization Module: geodesy, EKF models, least-squares multilateration.

Key pieces:
- geodesy: WGS84 <-> ECEF <-> H3 cell conversions
- StateAndCovariance / STATE_FACTOR: normalized 5D EKF state
- NonlinearObservationModel: ToF prediction and Jacobian
- StationaryStateModel: identity transition with process noise
- kf_step: one EKF predict + Joseph-form update for a node
- MultilaterationSolver: Levenberg-Marquardt position solver
- en_error_ellipse: EN-plane covariance summary
"""

from .state import (
    SPEED_OF_LIGHT,
    EARTH_RADIUS,
    STATE_FACTOR,
    STATE_SIZE,
    SPRING_FRACTION,
    StateAndCovariance,
    normalize_state,
    denormalize_state,
    apply_spring_correction,
)
from .state_model import StationaryStateModel
from .observation_model import (
    MINIMUM_DISTANCE,
    LinearizedObservationModel,
    NonlinearObservationModel,
    predict_round_trip_times,
)
from .extended_kalman_filter import ekf_update, kf_step
from .least_squares import (
    MultilaterationSolver,
    MultilaterationSolverConfig,
    MultilaterationResult,
    ls_estimate_position,
    solve_against_nodes,
)
from .error_ellipse import en_error_ellipse

__all__ = [
    # State
    'SPEED_OF_LIGHT',
    'EARTH_RADIUS',
    'STATE_FACTOR',
    'STATE_SIZE',
    'SPRING_FRACTION',
    'StateAndCovariance',
    'normalize_state',
    'denormalize_state',
    'apply_spring_correction',
    # EKF
    'StationaryStateModel',
    'MINIMUM_DISTANCE',
    'LinearizedObservationModel',
    'NonlinearObservationModel',
    'predict_round_trip_times',
    'ekf_update',
    'kf_step',
    # Least squares
    'MultilaterationSolver',
    'MultilaterationSolverConfig',
    'MultilaterationResult',
    'ls_estimate_position',
    'solve_against_nodes',
    # Display
    'en_error_ellipse',
]
