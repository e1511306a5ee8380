"""Business rules shared by the lifecycle, the acceptance tracker and the sweeps.

Each check raises ``BusinessRuleViolation`` with its rule code so clients can
branch on the code rather than the message.
"""

import math
from datetime import datetime, timedelta
from typing import List, Optional

from outing_service.errors import BusinessRuleViolation
from outing_service.models import Event, EventStatus, utcnow

MIN_BUDGET_PER_PERSON = 5.0
DEFAULT_DURATION_MINUTES = 120
INVITABLE_STATUSES = (
  EventStatus.DRAFT,
  EventStatus.PLANNING,
  EventStatus.INVITING,
  EventStatus.GATHERING_PREFERENCES,
)
CANCEL_REASON_MIN = 10
CANCEL_REASON_MAX = 500


def validate_advance_scheduling(scheduled_at: datetime, min_days: int = 3, now: Optional[datetime] = None) -> None:
  now = now or utcnow()
  if scheduled_at <= now + timedelta(days=min_days):
    raise BusinessRuleViolation(
      f"Event must be scheduled at least {min_days} days in advance to allow for proper planning and invitations.",
      "BR_EVENT_01",
    )


def validate_minimum_participants(expected_attendees: int) -> None:
  if expected_attendees < 2:
    raise BusinessRuleViolation(
      "Event requires at least 2 participants. Use personal itinerary for solo activities.",
      "BR_EVENT_02",
    )


def validate_budget(event: Event) -> None:
  too_low = False
  if event.budget_total is not None:
    too_low = event.budget_total < event.expected_attendees * MIN_BUDGET_PER_PERSON
  if event.budget_per_person is not None:
    too_low = too_low or event.budget_per_person < MIN_BUDGET_PER_PERSON
  if too_low:
    raise BusinessRuleViolation(
      f"Budget too low. Minimum {MIN_BUDGET_PER_PERSON:,.2f} USD per person required.",
      "BR_EVENT_03",
    )


def event_end(event: Event) -> datetime:
  return event.scheduled_at + timedelta(minutes=event.estimated_duration_minutes or DEFAULT_DURATION_MINUTES)


def validate_no_overlap(overlapping: List[Event]) -> None:
  if not overlapping:
    return
  other = overlapping[0]
  raise BusinessRuleViolation(
    f"Cannot create event because it overlaps with existing event '{other.title}' "
    f"(Time: {other.scheduled_at:%H:%M} - {event_end(other):%H:%M} UTC). "
    "Please choose a different time or cancel the existing event first.",
    "BR_EVENT_07",
  )


def validate_invitation_deadline(event: Event, now: Optional[datetime] = None) -> None:
  now = now or utcnow()
  if event.rsvp_deadline is not None and now > event.rsvp_deadline:
    raise BusinessRuleViolation("The invitation deadline for this event has passed.", "BR_EVENT_08")


def validate_status_for_invitations(event: Event) -> None:
  if event.status not in INVITABLE_STATUSES:
    raise BusinessRuleViolation(
      f"Cannot send invitations when event is in {event.status.value} status.",
      "BR_EVENT_09",
    )


def validate_cancel_reason(reason: Optional[str]) -> str:
  text = (reason or "").strip()
  if not text:
    raise BusinessRuleViolation("Cancellation reason is required", "BR_CANCEL_REASON")
  if not CANCEL_REASON_MIN <= len(text) <= CANCEL_REASON_MAX:
    raise BusinessRuleViolation(
      f"Cancellation reason must be between {CANCEL_REASON_MIN} and {CANCEL_REASON_MAX} characters",
      "BR_CANCEL_REASON",
    )
  return text


def minimum_required_attendance(expected_attendees: int) -> int:
  return max(2, int(expected_attendees * 0.5))


def should_auto_cancel(event: Event, accepted: int, now: Optional[datetime] = None) -> bool:
  """Past the RSVP deadline with fewer than half the expected group (and never fewer than 2)."""
  if event.rsvp_deadline is None:
    return False
  now = now or utcnow()
  return now > event.rsvp_deadline and accepted < minimum_required_attendance(event.expected_attendees)


def should_auto_finalize(event: Event, now: Optional[datetime] = None) -> bool:
  now = now or utcnow()
  return event.voting_deadline is not None and now >= event.voting_deadline


def required_acceptances(expected: int, threshold: float) -> int:
  # rounding first keeps 10 * 0.7 at 7 rather than 7.000000000000001
  return math.ceil(round(expected * threshold, 9))
