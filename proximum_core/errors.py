"""
Error taxonomy for the positioning simulation.

Fatal errors (bad configuration) stop a run before it starts. Recoverable
errors are scoped to one node in one epoch: the driver logs them, counts
them as metrics drops, and moves on.
"""

from typing import Optional


class ProximumError(Exception):
    """Base class for all simulation errors."""


class ConfigurationError(ProximumError, ValueError):
    """Invalid simulation configuration (fatal at construction time)."""


class RecoverableUpdateError(ProximumError):
    """
    Failure of a single node update in a single epoch.
    
    Attributes:
        node_id: Node being updated (None if unknown at raise site)
        epoch: Epoch of the update (None if unknown at raise site)
    """
    
    drop_reason = 'update_failed'
    
    def __init__(self, message: str, node_id: Optional[int] = None, epoch: Optional[int] = None):
        super().__init__(message)
        self.node_id = node_id
        self.epoch = epoch
    
    def with_context(self, node_id: int, epoch: int) -> 'RecoverableUpdateError':
        """Attach node/epoch context and return self (for re-raise)."""
        self.node_id = node_id
        self.epoch = epoch
        return self
    
    def __str__(self) -> str:
        message = super().__str__()
        if self.node_id is None:
            return message
        return f"node {self.node_id}, epoch {self.epoch}: {message}"


class InsufficientCounterpartsError(RecoverableUpdateError):
    """Too few in-range counterpart nodes to sample a measurement set."""
    
    drop_reason = 'insufficient_counterparts'


class CovarianceNotPositiveSemiDefiniteError(RecoverableUpdateError):
    """Innovation covariance has no Cholesky factorization (EKF update)."""
    
    drop_reason = 'kf_update_failed'


class SingularNormalEquationsError(RecoverableUpdateError):
    """Damped normal equations could not be solved (least-squares update)."""
    
    drop_reason = 'ls_update_failed'


class InsufficientMeasurementsError(RecoverableUpdateError):
    """Fewer than 4 measurements handed to the least-squares solver."""
    
    drop_reason = 'ls_update_failed'
