"""
Simulation configuration.

Immutable run parameters in SI units (m, s, fraction of c, variances).
Created once at run start; invalid values are fatal at construction time.
"""

from dataclasses import dataclass, fields, asdict
from typing import Any, Dict, Mapping, Optional

from proximum_core.errors import ConfigurationError
from proximum_core.localization.geodesy import validate_resolution


@dataclass(frozen=True)
class SimulationConfig:
    """
    Configuration for one simulation run.
    
    Attributes:
        n_nodes: Number of nodes
        n_epochs: Number of epochs
        n_measurements: Measurements per node update
        h3_resolution: Grid resolution for placing nodes (0-15)
        asserted_position_variance: Per-axis EN variance of asserted positions (m^2)
        beta_min, beta_max: Range of true/sampled message speed (fraction of c)
        beta_variance: Per-ping message speed variance
        tau_min, tau_max: Range of true/sampled latency (s)
        tau_variance: Per-ping latency variance parameter (s^2)
        message_distance_max: Maximum ping distance (m)
        ls_model_beta, ls_model_tau: Fixed speed/latency assumed by least squares
        ls_tolerance: LS convergence threshold on step length (m)
        ls_iterations: Maximum LS iterations per update
        kf_model_position_variance: EKF process noise per position axis (m^2)
        kf_model_beta: Initial EKF beta
        kf_model_beta_variance: EKF process noise on beta
        kf_model_tau: Initial EKF tau (s)
        kf_model_tau_variance: EKF process noise on tau (s^2)
        kf_model_tof_observation_variance: EKF ToF measurement variance (s^2)
        seed: Seed for the run's random generator (None = fresh entropy)
    """
    
    n_nodes: int = 100
    n_epochs: int = 100
    n_measurements: int = 10
    h3_resolution: int = 7
    # physical parameters
    asserted_position_variance: float = 1_000_000.0 ** 2   # 1000 km std
    beta_min: float = 0.2
    beta_max: float = 0.8
    beta_variance: float = 0.001 ** 2
    tau_min: float = 0.002
    tau_max: float = 0.030
    tau_variance: float = 0.001 ** 2                       # 1 ms std
    message_distance_max: float = 13_000_000.0             # 13000 km
    # least squares model parameters
    ls_model_beta: float = 0.5
    ls_model_tau: float = 0.015
    ls_tolerance: float = 1.0
    ls_iterations: int = 1
    # kalman filter model parameters
    kf_model_position_variance: float = 10_000.0 ** 2      # 10 km std
    kf_model_beta: float = 0.5
    kf_model_beta_variance: float = 0.001 ** 2
    kf_model_tau: float = 0.015
    kf_model_tau_variance: float = 0.00001 ** 2            # 0.01 ms std
    kf_model_tof_observation_variance: float = 0.001 ** 2  # 1 ms std
    seed: Optional[int] = None
    
    def __post_init__(self):
        """Validate configuration."""
        if self.n_nodes < 1:
            raise ConfigurationError(f"n_nodes must be positive: {self.n_nodes}")
        if self.n_epochs < 0:
            raise ConfigurationError(f"n_epochs cannot be negative: {self.n_epochs}")
        if self.n_measurements < 1:
            raise ConfigurationError(f"n_measurements must be positive: {self.n_measurements}")
        validate_resolution(self.h3_resolution)
        
        self._check_range('beta', self.beta_min, self.beta_max)
        self._check_range('tau', self.tau_min, self.tau_max)
        if self.beta_min <= 0:
            raise ConfigurationError(f"beta_min must be positive: {self.beta_min}")
        if self.tau_min < 0:
            raise ConfigurationError(f"tau_min cannot be negative: {self.tau_min}")
        
        for name in (
            'asserted_position_variance',
            'beta_variance',
            'tau_variance',
            'kf_model_position_variance',
            'kf_model_beta_variance',
            'kf_model_tau_variance',
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} cannot be negative: {getattr(self, name)}")
        
        if self.kf_model_tof_observation_variance <= 0:
            raise ConfigurationError(
                f"kf_model_tof_observation_variance must be positive: "
                f"{self.kf_model_tof_observation_variance}"
            )
        if self.message_distance_max <= 0:
            raise ConfigurationError(
                f"message_distance_max must be positive: {self.message_distance_max}"
            )
        if self.ls_model_beta <= 0 or self.kf_model_beta <= 0:
            raise ConfigurationError("Model beta values must be positive")
        if self.ls_model_tau < 0 or self.kf_model_tau < 0:
            raise ConfigurationError("Model tau values cannot be negative")
        if self.ls_tolerance < 0:
            raise ConfigurationError(f"ls_tolerance cannot be negative: {self.ls_tolerance}")
        if self.ls_iterations < 1:
            raise ConfigurationError(f"ls_iterations must be positive: {self.ls_iterations}")
    
    @staticmethod
    def _check_range(name: str, low: float, high: float):
        if low > high:
            raise ConfigurationError(f"{name}_min ({low}) must not exceed {name}_max ({high})")
    
    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> 'SimulationConfig':
        """
        Build a config from a flat record.
        
        Args:
            record: Mapping of field name to value; missing fields use defaults
            
        Raises:
            ConfigurationError: Unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(record) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")
        return cls(**dict(record))
    
    def to_dict(self) -> Dict[str, Any]:
        """Flat record of all fields."""
        return asdict(self)
