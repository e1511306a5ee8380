import math
from typing import Iterable, List, Tuple

EARTH_RADIUS_M = 6_371_000.0

# Ho Chi Minh City center, used when nobody shared a location.
DEFAULT_CENTER: Tuple[float, float] = (10.762622, 106.660172)


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
  """Great-circle distance in meters between two lat/lng points."""
  phi1 = math.radians(lat1)
  phi2 = math.radians(lat2)
  d_phi = math.radians(lat2 - lat1)
  d_lambda = math.radians(lng2 - lng1)
  a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
  return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def average_distance_km(lat: float, lng: float, points: Iterable[Tuple[float, float]]) -> float:
  points = list(points)
  if not points:
    return 0.0
  total = sum(haversine_distance(lat, lng, p_lat, p_lng) for p_lat, p_lng in points)
  return total / len(points) / 1000.0


def centroid(points: List[Tuple[float, float]]) -> Tuple[float, float]:
  if not points:
    return DEFAULT_CENTER
  return (
    sum(lat for lat, _ in points) / len(points),
    sum(lng for _, lng in points) / len(points),
  )
