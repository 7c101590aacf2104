from math import cos, radians

from geopy.distance import great_circle

EARTH_RADIUS_KM = 6371.0

# Distances are reported at 100 m resolution.
DISTANCE_PRECISION = 1

# Slack on the radius comparison for points that sit on the circle up to
# float and sphere-model error (0.09 degrees at the equator is 10.0075 km).
RADIUS_TOLERANCE_KM = 0.01

_KM_PER_DEGREE_LAT = 111.0


def calculate_distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km on a sphere of radius 6371 km."""
    return great_circle((lat1, lng1), (lat2, lng2), radius=EARTH_RADIUS_KM).km


def round_distance(distance_km: float) -> float:
    return round(distance_km, DISTANCE_PRECISION)


def within_radius(distance_km: float, radius_km: float) -> bool:
    """Boundary inclusive: a point on the circle, within 10 m, is inside."""
    return distance_km <= radius_km + RADIUS_TOLERANCE_KM


def bounding_box(lat: float, lng: float, radius_km: float) -> tuple[float, float, float, float]:
    """Coarse (min_lat, max_lat, min_lng, max_lng) box enclosing the search circle.

    Longitude bounds may fall outside [-180, 180] when the circle crosses the
    antimeridian; callers split the range in that case. Near the poles the
    box widens to the full longitude range.
    """
    # Pad by the tolerance plus 1% so the pre-filter never drops a
    # mechanic the exact check would keep.
    padded = radius_km * 1.01 + 0.1
    lat_delta = padded / _KM_PER_DEGREE_LAT
    min_lat = max(-90.0, lat - lat_delta)
    max_lat = min(90.0, lat + lat_delta)
    if min_lat <= -89.0 or max_lat >= 89.0:
        return min_lat, max_lat, -180.0, 180.0
    lng_delta = padded / (_KM_PER_DEGREE_LAT * max(cos(radians(max(abs(min_lat), abs(max_lat)))), 0.01))
    if lng_delta >= 180.0:
        return min_lat, max_lat, -180.0, 180.0
    return min_lat, max_lat, lng - lng_delta, lng + lng_delta
