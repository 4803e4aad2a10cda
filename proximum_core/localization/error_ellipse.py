"""
East-North error ellipse from the EKF position covariance.

The 3x3 ECEF position covariance is eigen-decomposed, the eigenvectors are
rotated into the local ENU frame at the estimate, and the two largest axes
are projected onto the east-north plane.
"""

from typing import Tuple
import numpy as np

from proximum_core.proto.snapshot import ErrorEllipse
from .geodesy import ecef_to_enu_matrix


def en_error_ellipse(position_covariance: np.ndarray, lat_deg: float, lon_deg: float) -> ErrorEllipse:
    """
    Project a 3x3 ECEF position covariance onto the local EN plane.
    
    Args:
        position_covariance: 3x3 covariance (m^2)
        lat_deg: Latitude of the estimate (degrees)
        lon_deg: Longitude of the estimate (degrees)
        
    Returns:
        ErrorEllipse with semimajor axis direction (E, N) and semi-axis lengths (m)
    """
    symmetric = 0.5 * (position_covariance + position_covariance.T)
    eigenvalues, eigenvectors = np.linalg.eigh(symmetric)
    
    # eigh returns ascending order
    order = np.argsort(eigenvalues)[::-1]
    eigenvalues = np.clip(eigenvalues[order], 0.0, None)
    eigenvectors = eigenvectors[:, order]
    
    enu_eigenvectors = ecef_to_enu_matrix(lat_deg, lon_deg) @ eigenvectors
    
    semimajor_en = enu_eigenvectors[:2, 0]
    semiminor_en = enu_eigenvectors[:2, 1]
    
    semimajor_length = float(np.linalg.norm(semimajor_en) * np.sqrt(eigenvalues[0]))
    semiminor_length = float(np.linalg.norm(semiminor_en) * np.sqrt(eigenvalues[1]))
    
    return ErrorEllipse(
        semimajor_axis=_as_pair(semimajor_en),
        semimajor_axis_length=semimajor_length,
        semiminor_axis_length=semiminor_length,
    )


def _as_pair(vector: np.ndarray) -> Tuple[float, float]:
    return (float(vector[0]), float(vector[1]))
