"""
EKF state vector, normalization, and shared physical constants.

State vector (5D, per node):
    x = [X, Y, Z, beta, tau]^T
    
    X, Y, Z: ECEF position (m)
    beta:    message propagation speed as a fraction of c
    tau:     processing latency (s)

The filter stores the state divided component-wise by STATE_FACTOR so every
internal component is of order 1:

    internal = real / STATE_FACTOR

Any physical computation (distances, geodesy, ToF prediction) must
denormalize first.
"""

from dataclasses import dataclass
import numpy as np

# Speed of light (m/s), exact
SPEED_OF_LIGHT = 299_792_458.0

# Mean Earth radius (m), used to condition the least-squares solver
EARTH_RADIUS = 6_371_000.0

STATE_SIZE = 5
POSITION_SLICE = slice(0, 3)
BETA_INDEX = 3
TAU_INDEX = 4

# Per-dimension scale: ~1000 km for position, 1 for beta, 10 ms for tau
STATE_FACTOR = np.array([1e6, 1e6, 1e6, 1.0, 1e-2])
STATE_FACTOR.setflags(write=False)

# Fraction of the gap to the asserted position closed after every update
SPRING_FRACTION = 1.0 / 500.0


def normalize_state(state: np.ndarray) -> np.ndarray:
    """Convert a real-unit state into internal (order-1) units."""
    return np.asarray(state, dtype=float) / STATE_FACTOR


def denormalize_state(state: np.ndarray) -> np.ndarray:
    """Convert an internal-unit state back into real units."""
    return np.asarray(state, dtype=float) * STATE_FACTOR


def normalize_variances(variances: np.ndarray) -> np.ndarray:
    """Convert real-unit variances (diagonal) into internal units."""
    return np.asarray(variances, dtype=float) / STATE_FACTOR ** 2


def apply_spring_correction(position: np.ndarray, asserted_position: np.ndarray) -> np.ndarray:
    """
    Pull an estimated position a small fraction toward the asserted position.
    
    Args:
        position: Estimated ECEF position (m)
        asserted_position: Node's asserted ECEF position (m)
        
    Returns:
        Corrected ECEF position (m)
    """
    return position + (asserted_position - position) * SPRING_FRACTION


@dataclass
class StateAndCovariance:
    """
    EKF mean and covariance, both in internal (normalized) units.
    
    Attributes:
        state: 5-vector
        covariance: 5x5 symmetric PSD matrix
    """
    
    state: np.ndarray
    covariance: np.ndarray
    
    def __post_init__(self):
        self.state = np.asarray(self.state, dtype=float)
        self.covariance = np.asarray(self.covariance, dtype=float)
        
        n = self.state.shape[0]
        if self.state.shape != (n,):
            raise ValueError(f"State must be 1D: {self.state.shape}")
        if self.covariance.shape != (n, n):
            raise ValueError(
                f"Covariance shape {self.covariance.shape} does not match state size {n}"
            )
    
    @classmethod
    def from_real_units(cls, real_state: np.ndarray, covariance: np.ndarray) -> 'StateAndCovariance':
        """Build from a real-unit state and an internal-unit covariance."""
        return cls(state=normalize_state(real_state), covariance=covariance)
    
    @property
    def real_state(self) -> np.ndarray:
        """State in real units."""
        return denormalize_state(self.state)
    
    @property
    def position(self) -> np.ndarray:
        """ECEF position (m)."""
        return self.real_state[POSITION_SLICE]
    
    @property
    def beta(self) -> float:
        return float(self.real_state[BETA_INDEX])
    
    @property
    def tau(self) -> float:
        return float(self.real_state[TAU_INDEX])
    
    @property
    def position_covariance(self) -> np.ndarray:
        """3x3 position covariance in real units (m^2)."""
        scale = STATE_FACTOR[POSITION_SLICE]
        return self.covariance[POSITION_SLICE, POSITION_SLICE] * np.outer(scale, scale)
    
    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.state)) and np.all(np.isfinite(self.covariance)))
