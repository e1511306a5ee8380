"""Event lifecycle state machine.

Statuses move along an explicit transition table keyed by (status, trigger).
A pair missing from the table is an invalid state change; a pair that is
present but whose guard rejects the current state is a business rule failure.

``auto_advance`` re-checks the automatic triggers after every read or action
and walks forward as far as the guards allow. It runs without any locking:
two concurrent writers on the same event may interleave.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel

from outing_service.acceptance import meets_threshold
from outing_service.collaborators import SideEffects
from outing_service.config import Settings
from outing_service.errors import BusinessRuleViolation, InvalidStateError, NotFoundError, UnauthorizedError
from outing_service.models import (
  AnalysisProgress,
  CreateEventRequest,
  Event,
  EventDetails,
  EventStatus,
  InvitationStatus,
  OptionOrigin,
  Participant,
  SearchArea,
  UpdateEventRequest,
  Venue,
  VenueOption,
  VerificationStatus,
  utcnow,
)
from outing_service.recommendations import RecommendationPipeline, RecommendationReport
from outing_service.repositories import EventRepository, OptionRepository, ParticipantRepository, VenueCatalog
from outing_service.rules import (
  CANCEL_REASON_MAX,
  CANCEL_REASON_MIN,
  event_end,
  validate_advance_scheduling,
  validate_budget,
  validate_cancel_reason,
  validate_invitation_deadline,
  validate_minimum_participants,
  validate_no_overlap,
)
from outing_service.timezones import derive_timezone, to_utc
from outing_service.voting import VoteTally

logger = logging.getLogger("outing_service")


class Trigger(str, Enum):
  PLAN = "plan"
  OPEN_INVITATIONS = "open_invitations"
  THRESHOLD_MET = "threshold_met"
  START_RECOMMENDING = "start_recommending"
  OPEN_VOTING = "open_voting"
  FINALIZE = "finalize"
  COMPLETE = "complete"
  CANCEL = "cancel"


class GuardContext(BaseModel):
  event: Event
  accepted: int = 0
  invitations: int = 0
  options: int = 0
  reason: Optional[str] = None


Guard = Callable[[GuardContext], bool]


class Transition(NamedTuple):
  guard: Guard
  target: EventStatus
  rule_code: str
  message: str


def _always(ctx: GuardContext) -> bool:
  return True


def _has_invitations(ctx: GuardContext) -> bool:
  return ctx.invitations > 0


def _threshold_met(ctx: GuardContext) -> bool:
  return meets_threshold(ctx.accepted, ctx.event.expected_attendees, ctx.event.acceptance_threshold)


def _threshold_met_without_venue(ctx: GuardContext) -> bool:
  return _threshold_met(ctx) and not ctx.event.venue_chosen_at_creation


def _threshold_met_with_venue(ctx: GuardContext) -> bool:
  return _threshold_met(ctx) and ctx.event.venue_chosen_at_creation


def _has_options(ctx: GuardContext) -> bool:
  return ctx.options > 0


def _has_final_venue(ctx: GuardContext) -> bool:
  return bool(ctx.event.final_venue_id)


def _valid_reason(ctx: GuardContext) -> bool:
  return CANCEL_REASON_MIN <= len((ctx.reason or "").strip()) <= CANCEL_REASON_MAX


_THRESHOLD_MESSAGE = "Acceptance threshold has not been met yet"

TRANSITIONS: Dict[Tuple[EventStatus, Trigger], List[Transition]] = {
  (EventStatus.DRAFT, Trigger.PLAN): [
    Transition(_always, EventStatus.PLANNING, "", ""),
  ],
  (EventStatus.PLANNING, Trigger.OPEN_INVITATIONS): [
    Transition(_has_invitations, EventStatus.INVITING, "BR_EVENT_12", "At least one invitation is required"),
  ],
  (EventStatus.INVITING, Trigger.THRESHOLD_MET): [
    Transition(_threshold_met_without_venue, EventStatus.GATHERING_PREFERENCES, "BR_EVENT_04", _THRESHOLD_MESSAGE),
    Transition(_threshold_met_with_venue, EventStatus.CONFIRMED, "BR_EVENT_04", _THRESHOLD_MESSAGE),
  ],
  (EventStatus.GATHERING_PREFERENCES, Trigger.START_RECOMMENDING): [
    Transition(_always, EventStatus.AI_RECOMMENDING, "", ""),
  ],
  (EventStatus.AI_RECOMMENDING, Trigger.OPEN_VOTING): [
    Transition(_has_options, EventStatus.VOTING, "BR_VOTE_NO_OPTIONS", "Voting needs at least one venue option"),
  ],
  (EventStatus.GATHERING_PREFERENCES, Trigger.FINALIZE): [
    Transition(_has_final_venue, EventStatus.CONFIRMED, "BR_FINALIZE_VENUE", "A winning venue must be chosen"),
  ],
  (EventStatus.VOTING, Trigger.FINALIZE): [
    Transition(_has_final_venue, EventStatus.CONFIRMED, "BR_FINALIZE_VENUE", "A winning venue must be chosen"),
  ],
  (EventStatus.CONFIRMED, Trigger.COMPLETE): [
    Transition(_always, EventStatus.COMPLETED, "", ""),
  ],
}

for _status in EventStatus:
  if not _status.is_terminal:
    TRANSITIONS[(_status, Trigger.CANCEL)] = [
      Transition(
        _valid_reason,
        EventStatus.CANCELLED,
        "BR_CANCEL_REASON",
        f"Cancellation reason must be between {CANCEL_REASON_MIN} and {CANCEL_REASON_MAX} characters",
      )
    ]

# Triggers that fire on their own once their guard holds.
AUTOMATIC: Dict[EventStatus, Trigger] = {
  EventStatus.PLANNING: Trigger.OPEN_INVITATIONS,
  EventStatus.INVITING: Trigger.THRESHOLD_MET,
}


def next_status(status: EventStatus, trigger: Trigger, ctx: GuardContext) -> EventStatus:
  rows = TRANSITIONS.get((status, trigger))
  if rows is None:
    raise InvalidStateError(f"Cannot {trigger.value.replace('_', ' ')} an event in {status.value} status")
  for row in rows:
    if row.guard(ctx):
      return row.target
  raise BusinessRuleViolation(rows[0].message, rows[0].rule_code)


def can_trigger(status: EventStatus, trigger: Trigger) -> bool:
  return (status, trigger) in TRANSITIONS


class EventLifecycle:
  def __init__(
    self,
    events: EventRepository,
    participants: ParticipantRepository,
    options: OptionRepository,
    catalog: VenueCatalog,
    effects: SideEffects,
    tally: VoteTally,
    pipeline: RecommendationPipeline,
    settings: Settings,
  ) -> None:
    self.events = events
    self.participants = participants
    self.options = options
    self.catalog = catalog
    self.effects = effects
    self.tally = tally
    self.pipeline = pipeline
    self.settings = settings

  async def load(self, event_id: str) -> Event:
    event = await self.events.get(event_id)
    if event is None:
      raise NotFoundError(f"Event {event_id} not found")
    return event

  @staticmethod
  def require_organizer(event: Event, actor: str) -> None:
    if event.organizer_id != actor:
      raise UnauthorizedError("Only the event organizer can perform this action")

  @staticmethod
  def require_active(event: Event, action: str) -> None:
    if event.status.is_terminal:
      raise InvalidStateError(f"Cannot {action} a {event.status.value} event")

  async def available_venue(self, venue_id: str) -> Venue:
    venue = await self.catalog.get(venue_id)
    if venue is None or venue.is_deleted:
      raise NotFoundError(f"Venue {venue_id} not found")
    if not venue.is_selectable:
      raise BusinessRuleViolation("The selected venue is not approved for events", "BR_EVENT_VENUE")
    return venue

  async def _context(self, event: Event, reason: Optional[str] = None) -> GuardContext:
    participants = await self.participants.list_for_event(event.id)
    options = await self.options.list_for_event(event.id)
    return GuardContext(
      event=event,
      accepted=sum(1 for p in participants if p.invitation_status == InvitationStatus.ACCEPTED),
      invitations=sum(1 for p in participants if p.user_id != event.organizer_id),
      options=len(options),
      reason=reason,
    )

  async def transition(
    self,
    event: Event,
    trigger: Trigger,
    reason: Optional[str] = None,
    ctx: Optional[GuardContext] = None,
  ) -> Event:
    """Apply one trigger, write the event and fire the entry side effects."""
    ctx = ctx or await self._context(event, reason)
    target = next_status(event.status, trigger, ctx)
    previous = event.status
    now = utcnow()

    event.status = target
    event.updated_at = now
    if target == EventStatus.AI_RECOMMENDING:
      event.analysis_started_at = now
    elif target == EventStatus.VOTING:
      event.voting_deadline = now + timedelta(days=self.settings.voting_window_days)
    elif target == EventStatus.CONFIRMED:
      await self._enter_confirmed(event, now)
    elif target == EventStatus.COMPLETED:
      event.completed_at = now
    elif target == EventStatus.CANCELLED:
      event.cancelled_at = now
      event.cancellation_reason = (reason or "").strip()

    await self.events.update(event)
    logger.info("Event %s moved %s -> %s on %s", event.id, previous.value, target.value, trigger.value)
    await self._after_entry(event)
    return event

  async def _enter_confirmed(self, event: Event, now: datetime) -> None:
    event.confirmed_at = now
    event.options_locked = True
    venue = await self.catalog.get(event.final_venue_id) if event.final_venue_id else None
    event.timezone = derive_timezone(venue, event.timezone)

  async def _after_entry(self, event: Event) -> None:
    if event.status == EventStatus.INVITING:
      await self.sync_conversation(event)
    elif event.status == EventStatus.CANCELLED:
      await self._announce_cancellation(event)
    elif event.status == EventStatus.CONFIRMED:
      await self._announce_confirmation(event)

  async def sync_conversation(self, event: Event) -> None:
    """Make sure the group chat holds the organizer plus accepted and pending participants."""
    participants = await self.participants.list_for_event(event.id)
    members = [
      p.user_id
      for p in participants
      if p.invitation_status in (InvitationStatus.ACCEPTED, InvitationStatus.PENDING)
    ]
    if event.organizer_id not in members:
      members.insert(0, event.organizer_id)
    self.effects.ensure_conversation(event.id, members)

  async def _announce_cancellation(self, event: Event) -> None:
    reason = event.cancellation_reason or ""
    for p in await self.participants.list_for_event(event.id):
      if p.user_id == event.organizer_id:
        continue
      self.effects.notify_user(
        p.user_id,
        {
          "type": "event_cancelled",
          "title": f"Event cancelled: {event.title}",
          "message": reason,
          "event_id": event.id,
        },
      )
      self.effects.send_email("cancellation", p.user_id, self.effects.email.send_cancellation(p.user_id, event, reason))

  async def _announce_confirmation(self, event: Event) -> None:
    for p in await self.participants.list_for_event(event.id):
      if p.invitation_status != InvitationStatus.ACCEPTED or p.user_id == event.organizer_id:
        continue
      self.effects.notify_user(
        p.user_id,
        {"type": "event_confirmed", "title": f"Event confirmed: {event.title}", "event_id": event.id},
      )

  async def auto_advance(self, event_id: str) -> Optional[Event]:
    """Walk the automatic triggers as far as their guards allow; never raises."""
    try:
      event = await self.events.get(event_id)
      while event is not None and event.status in AUTOMATIC:
        trigger = AUTOMATIC[event.status]
        ctx = await self._context(event)
        try:
          next_status(event.status, trigger, ctx)
        except BusinessRuleViolation:
          break
        await self.transition(event, trigger, ctx=ctx)
        event = await self.events.get(event_id)
      return event
    except Exception:
      logger.exception("Auto-advance failed for event %s", event_id)
      return None

  async def create_event(self, organizer_id: str, request: CreateEventRequest) -> Event:
    tz_label = request.timezone or self.settings.default_timezone
    scheduled_at = to_utc(request.local_start, tz_label, self.settings.default_timezone)
    validate_advance_scheduling(scheduled_at, self.settings.min_advance_days)
    validate_minimum_participants(request.expected_attendees)

    if request.rsvp_deadline is not None:
      rsvp_deadline = to_utc(request.rsvp_deadline, tz_label, self.settings.default_timezone)
    else:
      rsvp_deadline = scheduled_at - timedelta(hours=24)

    event = Event(
      organizer_id=organizer_id,
      title=request.title,
      description=request.description,
      event_type=request.event_type,
      scheduled_at=scheduled_at,
      timezone=tz_label,
      estimated_duration_minutes=request.estimated_duration_minutes,
      expected_attendees=request.expected_attendees,
      max_attendees=request.max_attendees,
      acceptance_threshold=request.acceptance_threshold or self.settings.default_acceptance_threshold,
      rsvp_deadline=rsvp_deadline,
      budget_total=request.budget_total,
      budget_per_person=request.budget_per_person,
    )
    validate_budget(event)
    validate_no_overlap(await self.events.overlapping(organizer_id, event.scheduled_at, event_end(event)))
    validate_invitation_deadline(event)

    venue = await self.available_venue(request.venue_id) if request.venue_id else None
    if venue is not None:
      event.final_venue_id = venue.id
      event.venue_chosen_at_creation = True

    await self.events.create(event)
    now = utcnow()
    await self.participants.create(
      Participant(
        event_id=event.id,
        user_id=organizer_id,
        invitation_status=InvitationStatus.ACCEPTED,
        invited_at=now,
        invited_by=organizer_id,
        rsvp_at=now,
      )
    )
    if venue is not None:
      await self.options.create(
        VenueOption(
          event_id=event.id,
          venue_id=venue.id,
          origin=OptionOrigin.ORGANIZER,
          estimated_cost_per_person=venue.price_level,
        )
      )
    logger.info("Event %s created by %s for %s", event.id, organizer_id, event.scheduled_at.isoformat())
    return event

  async def update_event(self, event_id: str, actor: str, changes: UpdateEventRequest) -> Event:
    event = await self.load(event_id)
    self.require_organizer(event, actor)
    self.require_active(event, "update")

    nullable = {"description", "max_attendees", "budget_total", "budget_per_person", "estimated_duration_minutes"}
    data = {k: v for k, v in changes.model_dump(exclude_unset=True).items() if v is not None or k in nullable}
    local_start = data.pop("local_start", None)
    for key, value in data.items():
      setattr(event, key, value)

    if local_start is not None:
      event.scheduled_at = to_utc(local_start, event.timezone, self.settings.default_timezone)
      validate_advance_scheduling(event.scheduled_at, self.settings.min_advance_days)
    if local_start is not None or "estimated_duration_minutes" in data:
      validate_no_overlap(
        await self.events.overlapping(event.organizer_id, event.scheduled_at, event_end(event), exclude_id=event.id)
      )
    validate_minimum_participants(event.expected_attendees)
    validate_budget(event)

    event.updated_at = utcnow()
    await self.events.update(event)
    if event.status == EventStatus.DRAFT:
      await self.transition(event, Trigger.PLAN)
    await self.auto_advance(event_id)
    return await self.load(event_id)

  async def get_event(self, event_id: str) -> EventDetails:
    await self.auto_advance(event_id)
    details = await self.events.get_with_details(event_id)
    if details is None:
      raise NotFoundError(f"Event {event_id} not found")
    return details

  async def cancel_event(self, event_id: str, actor: Optional[str], reason: Optional[str]) -> Event:
    """Cancel the event; ``actor=None`` is a system cancellation."""
    text = validate_cancel_reason(reason)
    event = await self.load(event_id)
    if actor is not None:
      self.require_organizer(event, actor)
    if event.status == EventStatus.CANCELLED:
      logger.info("Event %s is already cancelled", event_id)
      return event
    if event.status == EventStatus.COMPLETED:
      raise InvalidStateError("Completed events cannot be cancelled")
    return await self.transition(event, Trigger.CANCEL, reason=text)

  async def plan(self, event: Event) -> Event:
    if event.status == EventStatus.DRAFT:
      return await self.transition(event, Trigger.PLAN)
    return event

  async def start_recommendations(
    self, event_id: str, actor: str, search: Optional[SearchArea] = None
  ) -> RecommendationReport:
    await self.auto_advance(event_id)
    event = await self.load(event_id)
    self.require_organizer(event, actor)
    # a run that found nothing leaves the event in ai_recommending, so allow retries
    if event.status != EventStatus.AI_RECOMMENDING:
      event = await self.transition(event, Trigger.START_RECOMMENDING)

    participants = await self.participants.list_for_event(event_id)
    accepted = [p.user_id for p in participants if p.invitation_status == InvitationStatus.ACCEPTED]
    report = await self.pipeline.run(event, accepted, self.record_progress, search)

    event = await self.load(event_id)
    if event.status == EventStatus.AI_RECOMMENDING and await self.options.list_for_event(event_id):
      await self.transition(event, Trigger.OPEN_VOTING)
    return report

  async def record_progress(self, event_id: str, progress: AnalysisProgress) -> None:
    try:
      event = await self.events.get(event_id)
      if event is None:
        logger.warning("Cannot record progress for missing event %s", event_id)
        return
      event.analysis_progress = progress
      event.updated_at = utcnow()
      await self.events.update(event)
    except Exception as exc:
      logger.warning("Could not record analysis progress for event %s: %s", event_id, exc)

  async def add_option(self, event_id: str, actor: str, venue_id: str) -> VenueOption:
    event = await self.load(event_id)
    if event.status not in (EventStatus.AI_RECOMMENDING, EventStatus.VOTING) or event.options_locked:
      raise InvalidStateError(f"Venue options cannot be added while the event is {event.status.value}")

    if actor != event.organizer_id:
      participant = await self.participants.get(event_id, actor)
      if participant is None or participant.invitation_status != InvitationStatus.ACCEPTED:
        raise UnauthorizedError("Only the organizer or accepted participants can suggest venues")

    venue = await self.catalog.get(venue_id)
    if venue is None or venue.is_deleted:
      raise NotFoundError(f"Venue {venue_id} not found")
    if venue.verification_status == VerificationStatus.REJECTED:
      raise BusinessRuleViolation("This venue has been rejected and cannot be suggested", "BR_OPTION_VENUE")
    if any(o.venue_id == venue_id for o in await self.options.list_for_event(event_id)):
      raise BusinessRuleViolation("This venue is already an option for the event", "BR_OPTION_DUPLICATE")

    option = VenueOption(
      event_id=event_id,
      venue_id=venue.id,
      origin=OptionOrigin.ORGANIZER if actor == event.organizer_id else OptionOrigin.USER,
      estimated_cost_per_person=venue.price_level,
    )
    return await self.options.create(option)

  async def finalize(
    self,
    event_id: str,
    actor: Optional[str] = None,
    option_id: Optional[str] = None,
    venue_id: Optional[str] = None,
  ) -> Event:
    """Confirm the event on a venue picked directly, by option, or by the vote tally."""
    event = await self.load(event_id)
    if actor is not None:
      self.require_organizer(event, actor)
    if not can_trigger(event.status, Trigger.FINALIZE):
      raise InvalidStateError(f"Cannot finalize an event in {event.status.value} status")

    if option_id:
      option = await self.options.get(option_id)
      if option is None or option.event_id != event_id:
        raise NotFoundError(f"Venue option {option_id} not found")
    elif venue_id:
      option = await self._organizer_option(event, venue_id)
    else:
      option = await self.tally.winning_option(event_id)
      if option is None:
        raise BusinessRuleViolation("No winning venue could be determined", "BR_VOTE_NO_WINNER")

    if not option.venue_id:
      raise BusinessRuleViolation("Only catalog venues can be finalized", "BR_FINALIZE_VENUE")
    venue = await self.available_venue(option.venue_id)
    event.final_venue_id = venue.id
    return await self.transition(event, Trigger.FINALIZE)

  async def _organizer_option(self, event: Event, venue_id: str) -> VenueOption:
    for option in await self.options.list_for_event(event.id):
      if option.venue_id == venue_id:
        return option
    venue = await self.available_venue(venue_id)
    return await self.options.create(
      VenueOption(
        event_id=event.id,
        venue_id=venue.id,
        origin=OptionOrigin.ORGANIZER,
        estimated_cost_per_person=venue.price_level,
      )
    )

  async def complete_event(self, event_id: str, actor: Optional[str] = None) -> Event:
    event = await self.load(event_id)
    if actor is not None:
      self.require_organizer(event, actor)
    return await self.transition(event, Trigger.COMPLETE)

  async def reschedule_event(self, event_id: str, actor: str, new_local_start: datetime, reason: str) -> Event:
    event = await self.load(event_id)
    self.require_organizer(event, actor)
    self.require_active(event, "reschedule")
    text = (reason or "").strip()
    if not text or len(text) > 500:
      raise BusinessRuleViolation("Reschedule reason must be between 1 and 500 characters", "BR_RESCHEDULE_REASON")

    new_start = to_utc(new_local_start, event.timezone, self.settings.default_timezone)
    validate_advance_scheduling(new_start, self.settings.min_advance_days)
    shift = new_start - event.scheduled_at
    now = utcnow()

    event.previous_scheduled_at = event.scheduled_at
    event.scheduled_at = new_start
    validate_no_overlap(
      await self.events.overlapping(event.organizer_id, new_start, event_end(event), exclude_id=event.id)
    )
    if event.rsvp_deadline is not None:
      event.rsvp_deadline = event.rsvp_deadline + shift
    event.reschedule_count += 1
    event.reschedule_reason = text
    event.last_rescheduled_at = now
    event.updated_at = now
    await self.events.update(event)
    logger.info("Event %s rescheduled to %s", event.id, new_start.isoformat())

    for p in await self.participants.list_for_event(event_id):
      if p.user_id == event.organizer_id:
        continue
      if p.invitation_status not in (InvitationStatus.ACCEPTED, InvitationStatus.PENDING):
        continue
      self.effects.notify_user(
        p.user_id,
        {"type": "event_rescheduled", "title": f"Event rescheduled: {event.title}", "message": text, "event_id": event.id},
      )
      self.effects.send_email("reschedule", p.user_id, self.effects.email.send_reschedule(p.user_id, event, text))
    return event
