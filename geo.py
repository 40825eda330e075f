import math
from typing import Any, Dict, List

EARTH_RADIUS_KM = 6371.0


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km (Haversine), rounded to one decimal."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 1)


def filter_by_radius(products: List[Dict[str, Any]], producers: Dict[str, Dict[str, Any]], lat: float, lng: float, radius_km: float) -> List[Dict[str, Any]]:
    """Keep products whose producer lies within radius_km, nearest first.

    ``producers`` maps producer id -> {"latitude", "longitude", "name"}.
    Products from unknown producers or producers without coordinates are dropped.
    """
    nearby = []
    for product in products:
        producer = producers.get(str(product.get("producer_id")))
        if not producer or producer.get("latitude") is None or producer.get("longitude") is None:
            continue
        dist = distance_km(lat, lng, producer["latitude"], producer["longitude"])
        if dist <= radius_km:
            nearby.append({**product, "distance_km": dist, "producer_name": producer.get("name")})
    nearby.sort(key=lambda p: p["distance_km"])
    return nearby
