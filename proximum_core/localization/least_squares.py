"""
Least-Squares Multilateration Solver (Levenberg-Marquardt).

Estimates a node's 3D ECEF position from round-trip ToF measurements,
independently of the EKF. Speed and latency are fixed model constants
(ls_model_beta, ls_model_tau), not per-node estimates:

    t_i = 2 * (r_i / (beta * c) + tau)

Positions are divided by EARTH_RADIUS for conditioning. Each iteration:
1. Residuals z_i = measured_i - predicted_i
2. Jacobian rows = unit vector from counterpart to estimate, scaled by
   EARTH_RADIUS / (beta * c)
3. Solve (H^T H + lambda I) dx = H^T z
4. Rescale onto the unit sphere if |x + dx| leaves [0.99, 1.01]
5. Apply half the constrained step (trust region)
6. lambda *= 10 if the constrained step is shorter than dx, else lambda /= 10
   (floored at min_damping)
7. Stop once the step is below tolerance

The result is pulled 1/500 of the way toward the asserted position.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import numpy as np

from proximum_core.errors import InsufficientMeasurementsError, SingularNormalEquationsError
from proximum_core.proto.measurement import MeasurementSet
from .state import EARTH_RADIUS, SPEED_OF_LIGHT, apply_spring_correction

logger = logging.getLogger(__name__)

MIN_MEASUREMENTS = 4


@dataclass
class MultilaterationSolverConfig:
    """
    Configuration for the least-squares multilateration solver.
    
    Attributes:
        model_beta: Assumed message speed (fraction of c)
        model_tau: Assumed processing latency (s)
        tolerance_m: Convergence threshold on the step length (m)
        max_iterations: Maximum LM iterations
        initial_damping: Starting lambda
        min_damping: Floor for lambda when it is decreased
        surface_band: Allowed relative deviation of |x| from 1 (Earth radii)
    """
    
    model_beta: float = 0.5
    model_tau: float = 0.015
    tolerance_m: float = 1.0
    max_iterations: int = 10
    initial_damping: float = 1.0
    min_damping: float = 1e-7
    surface_band: float = 0.01
    
    @classmethod
    def from_simulation_config(cls, config) -> 'MultilaterationSolverConfig':
        """Build from a SimulationConfig's least-squares fields."""
        return cls(
            model_beta=config.ls_model_beta,
            model_tau=config.ls_model_tau,
            tolerance_m=config.ls_tolerance,
            max_iterations=config.ls_iterations,
        )


@dataclass
class MultilaterationResult:
    """
    Output of one multilateration solve.
    
    Attributes:
        position: Spring-corrected ECEF position (m)
        unconstrained_position: Solver position before the spring correction (m)
        iterations: Iterations run
        converged: True if the step fell below tolerance
        damping: Final lambda
        damping_history: lambda after each iteration (adapted or not)
        residual_rms_s: RMS ToF residual at unconstrained_position (s)
    """
    
    position: np.ndarray
    unconstrained_position: np.ndarray
    iterations: int
    converged: bool
    damping: float
    damping_history: List[float] = field(default_factory=list)
    residual_rms_s: float = 0.0


class MultilaterationSolver:
    """
    Levenberg-Marquardt multilateration over 3D position.
    
    Usage:
        solver = MultilaterationSolver(MultilaterationSolverConfig(model_beta=0.5))
        result = solver.solve(initial, asserted, measurements, counterpart_positions)
        node.ls_estimated_position = result.position
    """
    
    def __init__(self, config: Optional[MultilaterationSolverConfig] = None):
        self.config = config or MultilaterationSolverConfig()
    
    def solve(
        self,
        initial_estimate: np.ndarray,
        asserted_position: np.ndarray,
        measurements: MeasurementSet,
        counterpart_positions: np.ndarray,
    ) -> MultilaterationResult:
        """
        Solve for position.
        
        Args:
            initial_estimate: Starting ECEF position (m)
            asserted_position: Spring anchor ECEF position (m)
            measurements: Indices and measured round-trip times (s)
            counterpart_positions: (N, 3) ECEF positions aligned with measurements
            
        Returns:
            MultilaterationResult
            
        Raises:
            InsufficientMeasurementsError: Fewer than 4 measurements
            SingularNormalEquationsError: Normal equations not solvable
        """
        times = np.asarray(measurements.times, dtype=float)
        n = len(times)
        if n < MIN_MEASUREMENTS:
            raise InsufficientMeasurementsError(
                f"At least {MIN_MEASUREMENTS} measurements are required "
                f"for 3D position estimation, got {n}"
            )
        
        cfg = self.config
        speed = cfg.model_beta * SPEED_OF_LIGHT
        time_scale = EARTH_RADIUS / speed
        
        x = np.asarray(initial_estimate, dtype=float) / EARTH_RADIUS
        scaled_nodes = np.asarray(counterpart_positions, dtype=float) / EARTH_RADIUS
        tolerance = cfg.tolerance_m / EARTH_RADIUS
        
        damping = cfg.initial_damping
        damping_history: List[float] = []
        converged = False
        iteration = 0
        
        for iteration in range(1, cfg.max_iterations + 1):
            z, H = self._linearize(x, scaled_nodes, times, speed)
            scaled_H = H * time_scale
            
            A = scaled_H.T @ scaled_H + damping * np.eye(3)
            b = scaled_H.T @ z
            try:
                delta_x = np.linalg.solve(A, b)
            except np.linalg.LinAlgError as e:
                raise SingularNormalEquationsError(f"Matrix inversion failed: {e}") from e
            
            if not np.all(np.isfinite(delta_x)):
                raise SingularNormalEquationsError(f"Non-finite update: {delta_x}")
            
            # Keep the estimate near the Earth's surface
            new_x = x + delta_x
            new_x_norm = np.linalg.norm(new_x)
            if new_x_norm > 1.0 + cfg.surface_band or new_x_norm < 1.0 - cfg.surface_band:
                new_x = new_x / new_x_norm
            
            # Trust region: half the constrained step
            constrained_delta_x = (new_x - x) / 2.0
            x = x + constrained_delta_x
            
            step_norm = np.linalg.norm(constrained_delta_x)
            raw_norm = np.linalg.norm(delta_x)
            
            logger.debug(
                f"LS iteration {iteration}: |x|={np.linalg.norm(x):.6f}, "
                f"|dx|={raw_norm * EARTH_RADIUS:.3f} m, "
                f"|step|={step_norm * EARTH_RADIUS:.3f} m, lambda={damping:.1e}"
            )
            
            if step_norm < tolerance:
                converged = True
                damping_history.append(damping)
                break
            
            if step_norm < raw_norm:
                damping *= 10.0
            else:
                damping = max(damping / 10.0, cfg.min_damping)
            damping_history.append(damping)
            
            if raw_norm < tolerance:
                converged = True
                break
        
        unconstrained = x * EARTH_RADIUS
        z_final, _ = self._linearize(x, scaled_nodes, times, speed)
        residual_rms = float(np.sqrt(np.mean(z_final ** 2)))
        
        return MultilaterationResult(
            position=apply_spring_correction(unconstrained, np.asarray(asserted_position, dtype=float)),
            unconstrained_position=unconstrained,
            iterations=iteration,
            converged=converged,
            damping=damping,
            damping_history=damping_history,
            residual_rms_s=residual_rms,
        )
    
    def _linearize(self, x: np.ndarray, scaled_nodes: np.ndarray, times: np.ndarray, speed: float):
        """
        Residuals (s) and unscaled range Jacobian at x (Earth-radius units).
        
        Returns:
            Tuple of (z, H), H rows are unit vectors (zero if coincident)
        """
        dx = x - scaled_nodes
        norms = np.linalg.norm(dx, axis=1)
        ranges = norms * EARTH_RADIUS
        
        predicted = 2.0 * (ranges / speed + self.config.model_tau)
        z = times - predicted
        
        H = np.zeros_like(dx)
        nonzero = norms > 0.0
        H[nonzero] = dx[nonzero] / norms[nonzero, None]
        
        return z, H


def solve_against_nodes(
    solver: MultilaterationSolver,
    initial_estimate: np.ndarray,
    asserted_position: np.ndarray,
    measurements: MeasurementSet,
    nodes: Sequence,
) -> MultilaterationResult:
    """
    Run solver with counterpart positions taken from the nodes' LS estimates.
    
    Args:
        solver: Configured multilateration solver
        initial_estimate: Starting ECEF position (m)
        asserted_position: Spring anchor ECEF position (m)
        measurements: Indices and measured round-trip times
        nodes: Node collection; each node exposes ls_estimated_position
    """
    counterpart_positions = np.array([nodes[j].ls_estimated_position for j in measurements.indices])
    return solver.solve(initial_estimate, asserted_position, measurements, counterpart_positions)


def ls_estimate_position(
    initial_estimate: np.ndarray,
    asserted_position: np.ndarray,
    measurements: MeasurementSet,
    nodes: Sequence,
    config,
) -> np.ndarray:
    """
    Least-squares position estimate against the counterparts' LS estimates.
    
    Args:
        initial_estimate: Starting ECEF position (m)
        asserted_position: Spring anchor ECEF position (m)
        measurements: Indices and measured round-trip times
        nodes: Node collection; each node exposes ls_estimated_position
        config: SimulationConfig
        
    Returns:
        Spring-corrected ECEF position (m)
    """
    solver = MultilaterationSolver(MultilaterationSolverConfig.from_simulation_config(config))
    return solve_against_nodes(solver, initial_estimate, asserted_position, measurements, nodes).position
