"""
Measurement set: counterpart indices paired with measured round-trip times.

Generated fresh for every node update and never persisted.
"""

from typing import List, NamedTuple
import numpy as np


class MeasurementSet(NamedTuple):
    """
    One node's ToF measurements for a single update.
    
    Unpacks as (indices, times), so callers may write
        indices, times = generate_measurements(...)
    
    Attributes:
        indices: Counterpart node indices (distinct, never the measuring node)
        times: Measured round-trip times (s), aligned with indices
    """
    
    indices: List[int]
    times: np.ndarray
    
    @property
    def size(self) -> int:
        """Number of measurements."""
        return len(self.indices)
