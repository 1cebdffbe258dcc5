"""
Location models and great-circle distance.
"""

import math
from dataclasses import dataclass

EARTH_RADIUS_KM = 6371.0


def distance_km(lat_a: float, lng_a: float, lat_b: float, lng_b: float) -> float:
    """
    Haversine distance between two points in kilometers.

    Args:
        lat_a, lng_a: First point in degrees
        lat_b, lng_b: Second point in degrees

    Returns:
        Distance in kilometers on a sphere of radius 6371 km
    """
    phi_a = math.radians(lat_a)
    phi_b = math.radians(lat_b)
    delta_phi = math.radians(lat_b - lat_a)
    delta_lambda = math.radians(lng_b - lng_a)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi_a) * math.cos(phi_b) *
         math.sin(delta_lambda / 2) ** 2)
    # Rounding can push a just outside [0, 1] near antipodes
    a = min(1.0, max(0.0, a))

    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def format_distance(km: float) -> str:
    """Human readable proximity, e.g. '350 m away' or '1.2 km away'"""
    if km < 1:
        return f"{km * 1000:.0f} m away"
    return f"{km:.1f} km away"


def validate_coordinates(latitude: float, longitude: float) -> None:
    """Raise ValueError unless latitude/longitude are finite and in range"""
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise ValueError(f"Coordinates must be finite: ({latitude}, {longitude})")
    if not -90.0 <= latitude <= 90.0:
        raise ValueError(f"Latitude out of range: {latitude}")
    if not -180.0 <= longitude <= 180.0:
        raise ValueError(f"Longitude out of range: {longitude}")


@dataclass(frozen=True)
class Coordinates:
    """Geographic position in decimal degrees"""
    latitude: float
    longitude: float

    def distance_to(self, other: 'Coordinates') -> float:
        """Distance to another position in kilometers"""
        return distance_km(self.latitude, self.longitude, other.latitude, other.longitude)
