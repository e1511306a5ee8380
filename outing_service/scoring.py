"""Deterministic venue scoring.

A venue earns up to 100 points from six components:

  cuisine match      25
  budget match       20
  capacity match     20
  location           15
  rating & reviews   15
  additional factors  5

Reasoning, pros and cons are rendered from the same thresholds, so two runs
over the same inputs always produce the same text.
"""

from datetime import time
from typing import List, Optional, Sequence, Tuple

from outing_service.geo import average_distance_km
from outing_service.models import AggregatedPreferences, Event, ScoredVenue, VerificationStatus, Venue
from outing_service.timezones import parse_utc_offset

MAX_SCORE = 100.0

Point = Tuple[float, float]


def _matches_cuisine(venue: Venue, prefs: AggregatedPreferences) -> bool:
  return bool(venue.category) and venue.category in prefs.cuisine_types


def _preference_share(venue: Venue, prefs: AggregatedPreferences) -> float:
  frequency = prefs.preference_weights.get(venue.category or "", 0)
  return frequency / max(len(prefs.participant_ids), 1)


def cuisine_component(venue: Venue, prefs: AggregatedPreferences) -> float:
  if _matches_cuisine(venue, prefs):
    # half the group asking for it is enough for full marks
    return 25 * min(_preference_share(venue, prefs) * 2, 1.0)
  if venue.category:
    return 5.0
  return 0.0


def budget_component(venue: Venue, prefs: AggregatedPreferences) -> float:
  if venue.price_level is None:
    return 5.0
  diff = abs(venue.price_level - prefs.average_budget)
  return 20 * (1 - min(diff / 20.0, 1.0))


def capacity_component(venue: Venue, expected_attendees: int) -> float:
  capacity = venue.capacity
  if capacity is None or capacity <= 0:
    return 5.0
  expected = max(expected_attendees, 1)
  if capacity >= expected:
    ideal = expected * 1.2
    if capacity <= ideal:
      return 20.0
    return 20 * (0.7 + 0.3 * min(ideal / capacity, 1.0))
  return 20 * max(capacity / expected - 0.3, 0.0)


def location_component(venue: Venue, prefs: AggregatedPreferences, participant_locations: Sequence[Point]) -> float:
  if not participant_locations:
    return 7.5
  if prefs.max_radius_km <= 0:
    return 0.0
  avg_km = average_distance_km(venue.latitude, venue.longitude, participant_locations)
  if avg_km > prefs.max_radius_km:
    return 0.0
  ratio = avg_km / prefs.max_radius_km
  return 15 * (1 - ratio) ** 1.5


def review_bonus(review_count: int) -> float:
  if review_count >= 100:
    return 5.0
  if review_count >= 50:
    return 4.0
  if review_count >= 20:
    return 3.0
  if review_count >= 10:
    return 2.0
  if review_count >= 5:
    return 1.0
  return 0.0


def rating_component(venue: Venue) -> float:
  if venue.average_rating <= 0:
    return 2.0
  return 10 * (venue.average_rating / 5.0) + review_bonus(venue.review_count)


def additional_component(venue: Venue) -> float:
  points = 0.0
  if venue.active_tags:
    points += 2
  if venue.like_count > 20:
    points += 2
  elif venue.like_count > 0:
    points += 1
  if venue.verification_status == VerificationStatus.APPROVED:
    points += 1
  return points


def calculate_score(
  venue: Venue,
  prefs: AggregatedPreferences,
  event: Event,
  participant_locations: Sequence[Point] = (),
) -> float:
  total = (
    cuisine_component(venue, prefs)
    + budget_component(venue, prefs)
    + capacity_component(venue, event.expected_attendees)
    + location_component(venue, prefs, participant_locations)
    + rating_component(venue)
    + additional_component(venue)
  )
  return max(0.0, min(total, MAX_SCORE))


def _event_local_time(event: Event) -> time:
  offset = parse_utc_offset(event.timezone)
  start = event.scheduled_at + offset if offset is not None else event.scheduled_at
  return start.time().replace(tzinfo=None)


def _hours(venue: Venue) -> Optional[Tuple[time, time]]:
  if venue.open_time is None or venue.close_time is None:
    return None
  return venue.open_time, venue.close_time


def generate_reasoning(venue: Venue, prefs: AggregatedPreferences, event: Event) -> str:
  reasons: List[str] = []
  if _matches_cuisine(venue, prefs):
    reasons.append(f"{_preference_share(venue, prefs) * 100:.0f}% of team members prefer {venue.category} cuisine")
  if venue.price_level is not None and abs(venue.price_level - prefs.average_budget) < 10:
    reasons.append(f"Price range matches team budget (around {prefs.average_budget:,.2f} USD/person)")
  if venue.capacity is not None and venue.capacity >= event.expected_attendees:
    reasons.append(f"Can accommodate your group of {event.expected_attendees} people comfortably")
  if venue.average_rating >= 4.0:
    reasons.append(f"Excellent rating ({venue.average_rating:.1f}/5 from {venue.review_count} reviews)")
  return ", ".join(reasons) if reasons else "Good match for your event"


def generate_pros(venue: Venue, prefs: AggregatedPreferences, event: Event) -> List[str]:
  pros: List[str] = []
  rating = venue.average_rating
  reviews = venue.review_count

  if _matches_cuisine(venue, prefs):
    pros.append(f"Popular cuisine choice: {_preference_share(venue, prefs) * 100:.0f}% of team prefers {venue.category}")

  if rating >= 4.5:
    pros.append(f"Excellent rating ({rating:.1f}/5 from {reviews} reviews)")
  elif rating >= 4.0:
    pros.append(f"High rating ({rating:.1f}/5 from {reviews} reviews)")
  elif rating >= 3.5 and reviews > 20:
    pros.append(f"Good rating ({rating:.1f}/5) with {reviews} reviews")

  if reviews > 100:
    pros.append(f"Highly reviewed with {reviews} reviews from colleagues")
  elif reviews > 50:
    pros.append(f"Well-reviewed with {reviews} reviews")
  elif reviews > 20:
    pros.append(f"Good number of reviews ({reviews} reviews)")

  if venue.capacity is not None:
    if venue.capacity >= event.expected_attendees * 1.2:
      pros.append(
        f"Spacious venue: can comfortably accommodate {event.expected_attendees} people (capacity: {venue.capacity})"
      )
    elif venue.capacity >= event.expected_attendees:
      pros.append(f"Perfect capacity for {event.expected_attendees} people")

  if venue.price_level is not None:
    diff = abs(venue.price_level - prefs.average_budget)
    if diff <= 5:
      pros.append(f"Budget-friendly: matches team budget (${venue.price_level:.2f}/person)")
    elif diff <= 10:
      pros.append(f"Reasonable pricing: close to team budget (${venue.price_level:.2f}/person)")

  tags = venue.active_tags[:3]
  if tags:
    pros.append(f"Features: {', '.join(tags)}")

  if venue.like_count > 50:
    pros.append(f"Popular choice: {venue.like_count} colleagues have liked this place")
  elif venue.like_count > 20:
    pros.append(f"Well-liked by {venue.like_count} colleagues")

  if venue.best_time_to_visit:
    pros.append(f"Best time to visit: {venue.best_time_to_visit}")

  description = venue.description or ""
  if len(description) > 20:
    short = description[:100] + "..." if len(description) > 100 else description
    if len(short.split(" ")) > 5:
      pros.append(f"Description: {short}")

  hours = _hours(venue)
  if hours:
    opens, closes = hours
    if opens <= _event_local_time(event) <= closes:
      pros.append(f"Open during event time ({opens:%H:%M} - {closes:%H:%M})")

  return pros


def generate_cons(venue: Venue, prefs: AggregatedPreferences, event: Event) -> List[str]:
  cons: List[str] = []
  rating = venue.average_rating
  reviews = venue.review_count

  if venue.capacity is not None:
    if venue.capacity < event.expected_attendees:
      cons.append(
        f"May be too small: capacity is {venue.capacity} but event has {event.expected_attendees} attendees"
      )
    elif venue.capacity < event.expected_attendees * 1.1:
      cons.append(
        f"Tight capacity: venue fits {venue.capacity} people, event has {event.expected_attendees} attendees"
      )

  if venue.price_level is not None:
    over = venue.price_level - prefs.average_budget
    if over > 20:
      cons.append(
        f"Price above budget: ${venue.price_level:.2f}/person vs team budget ${prefs.average_budget:.2f}/person"
      )
    elif over > 10:
      cons.append(
        f"Slightly above budget: ${venue.price_level:.2f}/person (budget: ${prefs.average_budget:.2f}/person)"
      )

  if 0 < rating < 3.0:
    cons.append(f"Low rating: {rating:.1f}/5 may not meet expectations")
  elif 3.0 <= rating < 3.5:
    cons.append(f"Moderate rating: {rating:.1f}/5 - consider other options")

  if reviews == 0:
    cons.append("No reviews available yet - venue is new or unrated")
  elif reviews < 5:
    cons.append(f"Very few reviews ({reviews}) - limited feedback from colleagues")
  elif reviews < 10:
    cons.append(f"Limited reviews available ({reviews} reviews)")

  hours = _hours(venue)
  if hours:
    opens, closes = hours
    local = _event_local_time(event)
    if local < opens or local > closes:
      cons.append(f"May be closed during event time (hours: {opens:%H:%M} - {closes:%H:%M})")

  if venue.busy_time:
    cons.append(f"Note: Busy during {venue.busy_time} - may be crowded")

  if not venue.active_tags:
    cons.append("Limited feature information available")

  if venue.like_count == 0 and reviews < 5:
    cons.append("New or less popular venue - few colleagues have tried it")

  missing: List[str] = []
  if not venue.description or len(venue.description) < 20:
    missing.append("description")
  if venue.price_level is None:
    missing.append("pricing")
  if venue.capacity is None:
    missing.append("capacity")
  if len(missing) >= 2:
    cons.append(f"Missing key information: {', '.join(missing)}")

  return cons


def score_venue(
  venue: Venue,
  prefs: AggregatedPreferences,
  event: Event,
  participant_locations: Sequence[Point] = (),
) -> ScoredVenue:
  return ScoredVenue(
    venue=venue,
    score=calculate_score(venue, prefs, event, participant_locations),
    reasoning=generate_reasoning(venue, prefs, event),
    pros=generate_pros(venue, prefs, event),
    cons=generate_cons(venue, prefs, event),
  )
