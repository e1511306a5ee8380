import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from outing_service.models import Venue

logger = logging.getLogger("outing_service")

_OFFSET_RE = re.compile(r"^UTC([+-])(\d{1,2}):?(\d{2})?$", re.IGNORECASE)

# Static fallback when the catalog has no timezone for a venue.
CITY_OFFSETS: List[Tuple[Tuple[str, ...], str]] = [
  (("ho chi minh", "hồ chí minh", "saigon"), "UTC+07:00"),
  (("hanoi", "hà nội"), "UTC+07:00"),
  (("da nang", "đà nẵng"), "UTC+07:00"),
  (("bangkok",), "UTC+07:00"),
  (("singapore",), "UTC+08:00"),
  (("tokyo",), "UTC+09:00"),
  (("london",), "UTC+00:00"),
  (("new york",), "UTC-05:00"),
]


def parse_utc_offset(label: Optional[str]) -> Optional[timedelta]:
  """Parse labels like ``UTC+07:00`` or ``UTC-5``; ``UTC`` alone is zero."""
  if not label:
    return None
  text = label.strip()
  if text.upper() == "UTC":
    return timedelta(0)
  match = _OFFSET_RE.match(text)
  if not match:
    return None
  sign, hours, minutes = match.groups()
  delta = timedelta(hours=int(hours), minutes=int(minutes or 0))
  return -delta if sign == "-" else delta


def to_utc(local: datetime, tz_label: Optional[str], default_label: str = "UTC+07:00") -> datetime:
  """Interpret a wall-clock time in the organizer's offset and convert it to UTC."""
  if local.tzinfo is not None:
    return local.astimezone(timezone.utc)
  offset = parse_utc_offset(tz_label)
  if offset is None:
    logger.warning("Could not parse timezone %r, using %s", tz_label, default_label)
    offset = parse_utc_offset(default_label) or timedelta(0)
  return (local - offset).replace(tzinfo=timezone.utc)


def offset_for_city(city: Optional[str]) -> Optional[str]:
  if not city:
    return None
  name = city.lower()
  for needles, label in CITY_OFFSETS:
    if any(needle in name for needle in needles):
      return label
  return None


def derive_timezone(venue: Optional[Venue], fallback: str) -> str:
  """Display timezone for a confirmed event: venue, then city table, then organizer."""
  if venue is None:
    return fallback
  if venue.timezone and parse_utc_offset(venue.timezone) is not None:
    return venue.timezone
  city_label = offset_for_city(venue.city)
  if city_label:
    return city_label
  logger.warning("Could not determine timezone for venue %s (city=%s), keeping %s", venue.id, venue.city, fallback)
  return fallback
