import math

EARTH_RADIUS_KM = 6371


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points given in degrees.
    Returns kilometers. NaN inputs propagate to the result.
    """
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def calculate_delivery_fee(distance_km: float, subtotal: float) -> int:
    """Tiered fee by distance. Free delivery for orders of 199 and above."""
    if subtotal >= 199:
        return 0
    if distance_km <= 2:
        return 19
    if distance_km <= 5:
        return 29
    if distance_km <= 10:
        return 49
    return 69
