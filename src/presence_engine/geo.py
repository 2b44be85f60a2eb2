"""Great-circle distance helpers.

Works on plain floats and on numpy arrays alike, so the matcher can compare
one record against a whole window of neighbours in one call.
"""

import numpy as np

from .models import LatLng

EARTH_RADIUS_M = 6_371_000.0


def haversine_m(lat1, lon1, lat2, lon2):
    """Haversine distance in meters.

    Args:
        lat1: Latitude(s) of the first point(s), degrees.
        lon1: Longitude(s) of the first point(s), degrees.
        lat2: Latitude(s) of the second point(s), degrees.
        lon2: Longitude(s) of the second point(s), degrees.

    Returns:
        Distance as float, or an array broadcast from the inputs.
    """
    phi1 = np.radians(lat1)
    phi2 = np.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = np.radians(np.subtract(lon2, lon1))

    a = np.sin(d_phi / 2.0) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(d_lambda / 2.0) ** 2
    # Rounding can push a a hair above 1 for antipodal points.
    a = np.clip(a, 0.0, 1.0)
    distance = 2.0 * EARTH_RADIUS_M * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))
    if np.ndim(distance) == 0:
        return float(distance)
    return distance


def midpoint(a: LatLng, b: LatLng) -> LatLng:
    """Arithmetic mean of two coordinates (not the geodesic midpoint)."""
    return (a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0

