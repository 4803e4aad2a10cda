"""
Geodesy adapter: WGS84 geodetic <-> ECEF <-> H3 grid cell.

Node positions live in Earth-centred Earth-fixed (ECEF) Cartesian
coordinates. Grid cells (H3 indices) are only used to place true/asserted
nodes on the surface and to re-project estimates onto a display grid.

Conventions:
- Latitude/longitude in degrees at the public API, radians internally
- ECEF positions are numpy arrays of shape (3,) in meters
- "Surface" means zero ellipsoidal height
"""

import math
import logging
from dataclasses import dataclass
from typing import Optional

import h3
import numpy as np

from proximum_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# WGS84 ellipsoid parameters
WGS84_A = 6378137.0                       # semi-major axis (m)
WGS84_F = 1.0 / 298.257223563             # flattening
WGS84_B = WGS84_A * (1 - WGS84_F)         # semi-minor axis (m)
WGS84_E2 = 2 * WGS84_F - WGS84_F ** 2     # first eccentricity squared

MIN_RESOLUTION = 0
MAX_RESOLUTION = 15

# Resolution used to re-project estimates onto the display grid
DISPLAY_RESOLUTION = 10


@dataclass(frozen=True)
class WGS84Coordinate:
    """Geodetic coordinate (degrees, degrees, meters)."""
    
    lat: float
    lon: float
    alt: float = 0.0
    
    def to_dict(self) -> dict:
        return {'lat': self.lat, 'lon': self.lon, 'alt': self.alt}


def validate_resolution(resolution: int) -> int:
    """Return resolution if it is a valid H3 resolution, else raise."""
    if not MIN_RESOLUTION <= int(resolution) <= MAX_RESOLUTION:
        raise ConfigurationError(
            f"H3 resolution must be in [{MIN_RESOLUTION}, {MAX_RESOLUTION}]: {resolution}"
        )
    return int(resolution)


def geodetic_to_ecef(lat_deg: float, lon_deg: float, alt: float = 0.0) -> np.ndarray:
    """
    Convert WGS84 geodetic coordinates to ECEF.
    
    Args:
        lat_deg: Latitude (degrees)
        lon_deg: Longitude (degrees)
        alt: Ellipsoidal height (m)
        
    Returns:
        ECEF position [x, y, z] in meters
    """
    lat = math.radians(lat_deg)
    lon = math.radians(lon_deg)
    
    sin_lat = math.sin(lat)
    # Prime vertical radius of curvature
    N = WGS84_A / math.sqrt(1 - WGS84_E2 * sin_lat ** 2)
    
    x = (N + alt) * math.cos(lat) * math.cos(lon)
    y = (N + alt) * math.cos(lat) * math.sin(lon)
    z = (N * (1 - WGS84_E2) + alt) * sin_lat
    return np.array([x, y, z])


def ecef_to_geodetic(position: np.ndarray, iterations: int = 6) -> WGS84Coordinate:
    """
    Convert an ECEF position to WGS84 geodetic coordinates.
    
    Fixed-point iteration on latitude; converges to sub-millimeter height
    within a handful of iterations for points near the surface.
    
    Args:
        position: ECEF [x, y, z] in meters
        iterations: Number of latitude refinement iterations
        
    Returns:
        WGS84Coordinate
        
    Raises:
        ValueError: If position is the Earth's centre or not finite
    """
    x, y, z = (float(v) for v in position)
    if not all(math.isfinite(v) for v in (x, y, z)):
        raise ValueError(f"Non-finite ECEF position: {position}")
    
    p = math.hypot(x, y)
    if p == 0.0 and z == 0.0:
        raise ValueError("ECEF origin has no geodetic coordinate")
    
    lon = math.atan2(y, x)
    lat = math.atan2(z, p * (1 - WGS84_E2))
    alt = 0.0
    for _ in range(iterations):
        sin_lat = math.sin(lat)
        N = WGS84_A / math.sqrt(1 - WGS84_E2 * sin_lat ** 2)
        if p > 1e-9:
            alt = p / math.cos(lat) - N
        else:
            # On the polar axis
            alt = abs(z) - WGS84_B
        lat = math.atan2(z, p * (1 - WGS84_E2 * N / (N + alt)))
    
    return WGS84Coordinate(lat=math.degrees(lat), lon=math.degrees(lon), alt=alt)


def ecef_to_enu_matrix(lat_deg: float, lon_deg: float) -> np.ndarray:
    """
    Rotation matrix taking ECEF vectors into the local East-North-Up frame.
    
    Rows are the E, N, U unit vectors expressed in ECEF.
    """
    lat = math.radians(lat_deg)
    lon = math.radians(lon_deg)
    sin_lat, cos_lat = math.sin(lat), math.cos(lat)
    sin_lon, cos_lon = math.sin(lon), math.cos(lon)
    
    return np.array([
        [-sin_lon, cos_lon, 0.0],
        [-sin_lat * cos_lon, -sin_lat * sin_lon, cos_lat],
        [cos_lat * cos_lon, cos_lat * sin_lon, sin_lat],
    ])


def clamp_to_ellipsoid(position: np.ndarray) -> np.ndarray:
    """Project an ECEF position onto the WGS84 surface (zero height)."""
    coord = ecef_to_geodetic(position)
    return geodetic_to_ecef(coord.lat, coord.lon, 0.0)


def cartesian_to_surface_cell(position: np.ndarray, resolution: int) -> str:
    """
    Map an ECEF position to the H3 cell containing its surface footprint.
    
    Height is ignored; only latitude/longitude select the cell.
    """
    coord = ecef_to_geodetic(position)
    return h3.latlng_to_cell(coord.lat, coord.lon, resolution)


def cell_to_cartesian(cell_id: str) -> np.ndarray:
    """ECEF position of an H3 cell centre on the ellipsoid surface."""
    lat, lon = h3.cell_to_latlng(cell_id)
    return geodetic_to_ecef(lat, lon, 0.0)


def random_surface_point(resolution: int, rng: np.random.Generator) -> str:
    """
    Draw an H3 cell uniformly over the sphere.
    
    Uses the area-preserving map lat = asin(2v - 1), lon = 2*pi*u.
    """
    u = rng.uniform(0.0, 1.0)
    v = rng.uniform(0.0, 1.0)
    
    lat = math.degrees(math.asin(2.0 * v - 1.0))
    lon = math.degrees(2.0 * math.pi * u)
    # Wrap into [-180, 180)
    lon = (lon + 180.0) % 360.0 - 180.0
    
    return h3.latlng_to_cell(lat, lon, resolution)


def gaussian_perturbed_neighbor(
    cell_id: str,
    variance: float,
    resolution: int,
    rng: np.random.Generator,
) -> str:
    """
    Draw a cell near cell_id from an isotropic 2D Gaussian in the local EN plane.
    
    Args:
        cell_id: Mean cell
        variance: Variance of each of the east/north offsets (m^2)
        resolution: Resolution of the returned cell
        rng: Random generator
        
    Returns:
        H3 cell containing the perturbed point
    """
    mean_ecef = cell_to_cartesian(cell_id)
    if variance <= 0.0:
        return cartesian_to_surface_cell(mean_ecef, resolution)
    
    sigma = math.sqrt(variance)
    offset_enu = np.array([rng.normal(0.0, sigma), rng.normal(0.0, sigma), 0.0])
    
    lat, lon = h3.cell_to_latlng(cell_id)
    # Transpose of ECEF->ENU rotation takes ENU vectors back into ECEF
    offset_ecef = ecef_to_enu_matrix(lat, lon).T @ offset_enu
    
    return cartesian_to_surface_cell(mean_ecef + offset_ecef, resolution)


def safe_surface_cell(position: np.ndarray, resolution: int = DISPLAY_RESOLUTION) -> Optional[str]:
    """
    Display cell for an estimate, or None if the estimate is degenerate.
    
    Estimates can wander to non-finite values or the Earth's centre after a
    pathological update; display bookkeeping must not abort the run.
    """
    try:
        return cartesian_to_surface_cell(position, resolution)
    except ValueError as e:
        logger.warning(f"Cannot project estimate {position} onto grid: {e}")
        return None


def surface_coordinate(position: np.ndarray) -> Optional[WGS84Coordinate]:
    """Geodetic coordinate of an estimate, or None if degenerate."""
    try:
        return ecef_to_geodetic(position)
    except ValueError as e:
        logger.warning(f"Cannot convert estimate {position} to WGS84: {e}")
        return None
