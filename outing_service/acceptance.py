import logging
from typing import TYPE_CHECKING, List

from pydantic import BaseModel

from outing_service.errors import BusinessRuleViolation, InvalidStateError, NotFoundError
from outing_service.models import EventStatus, InvitationStatus, Participant, utcnow
from outing_service.rules import (
  required_acceptances,
  validate_invitation_deadline,
  validate_status_for_invitations,
)

if TYPE_CHECKING:
  from outing_service.lifecycle import EventLifecycle

logger = logging.getLogger("outing_service")


def meets_threshold(accepted: int, expected: int, threshold: float) -> bool:
  """True once ``accepted`` reaches ``ceil(expected * threshold)``."""
  return accepted >= required_acceptances(expected, threshold)


class InviteResult(BaseModel):
  invited: List[str] = []
  reopened: List[str] = []
  unchanged: List[str] = []


class ParticipantTracker:
  """Invitations, RSVPs and removals for one event at a time."""

  def __init__(self, lifecycle: "EventLifecycle") -> None:
    self.lifecycle = lifecycle
    self.participants = lifecycle.participants
    self.effects = lifecycle.effects

  async def invite(self, event_id: str, inviter: str, user_ids: List[str]) -> InviteResult:
    event = await self.lifecycle.load(event_id)
    self.lifecycle.require_organizer(event, inviter)
    if event.status.is_terminal:
      raise InvalidStateError(f"Cannot invite participants to a {event.status.value} event")
    validate_status_for_invitations(event)
    validate_invitation_deadline(event)

    if not user_ids:
      raise BusinessRuleViolation("At least one user must be selected to invite", "BR_EVENT_12")
    incoming = [uid for uid in dict.fromkeys(user_ids) if uid and uid != event.organizer_id]
    if not incoming:
      raise BusinessRuleViolation("Cannot invite only yourself. Organizer is already a participant.", "BR_EVENT_13")

    current = await self.participants.list_for_event(event_id)
    if event.max_attendees is not None:
      taken = sum(
        1 for p in current if p.invitation_status in (InvitationStatus.ACCEPTED, InvitationStatus.PENDING)
      )
      if taken + len(incoming) > event.max_attendees:
        available = max(event.max_attendees - taken, 0)
        raise BusinessRuleViolation(
          f"Event has reached maximum capacity. Only {available} slot(s) available.",
          "BR_EVENT_14",
        )

    result = InviteResult()
    now = utcnow()
    for user_id in incoming:
      existing = await self.participants.get(event_id, user_id)
      if existing is None:
        await self.participants.create(
          Participant(event_id=event_id, user_id=user_id, invited_at=now, invited_by=inviter)
        )
        result.invited.append(user_id)
      elif existing.invitation_status == InvitationStatus.DECLINED:
        existing.invitation_status = InvitationStatus.PENDING
        existing.rsvp_at = None
        existing.invited_at = now
        existing.invited_by = inviter
        await self.participants.update(existing)
        result.reopened.append(user_id)
      else:
        result.unchanged.append(user_id)
        continue

      self.effects.notify_user(
        user_id,
        {"type": "event_invitation", "title": f"You're invited: {event.title}", "event_id": event_id},
      )
      self.effects.send_email("invitation", user_id, self.effects.email.send_invitation(user_id, event, inviter))

    logger.info(
      "Event %s invitations: %d new, %d reopened, %d unchanged",
      event_id,
      len(result.invited),
      len(result.reopened),
      len(result.unchanged),
    )

    was_inviting = event.status in (EventStatus.INVITING, EventStatus.GATHERING_PREFERENCES)
    await self.lifecycle.plan(event)
    await self.lifecycle.auto_advance(event_id)
    # entering inviting syncs the conversation already
    if was_inviting and (result.invited or result.reopened):
      await self.lifecycle.sync_conversation(event)
    return result

  async def _invitation(self, event_id: str, user_id: str) -> Participant:
    participant = await self.participants.get(event_id, user_id)
    if participant is None:
      raise NotFoundError("Invitation not found")
    return participant

  async def accept(self, event_id: str, user_id: str) -> Participant:
    event = await self.lifecycle.load(event_id)
    self.lifecycle.require_active(event, "respond to")
    participant = await self._invitation(event_id, user_id)
    validate_invitation_deadline(event)
    if participant.invitation_status == InvitationStatus.ACCEPTED:
      return participant

    participant.invitation_status = InvitationStatus.ACCEPTED
    participant.rsvp_at = utcnow()
    await self.participants.update(participant)
    logger.info("User %s accepted event %s", user_id, event_id)

    self.effects.add_to_conversation(event_id, [user_id])
    self.effects.notify_user(
      event.organizer_id,
      {"type": "invitation_accepted", "title": f"{user_id} accepted {event.title}", "event_id": event_id},
    )
    await self.lifecycle.auto_advance(event_id)
    return participant

  async def decline(self, event_id: str, user_id: str) -> Participant:
    event = await self.lifecycle.load(event_id)
    self.lifecycle.require_active(event, "respond to")
    participant = await self._invitation(event_id, user_id)
    validate_invitation_deadline(event)
    if user_id == event.organizer_id:
      raise BusinessRuleViolation("The organizer cannot decline their own event", "BR_PARTICIPANT_ORGANIZER")
    if participant.invitation_status == InvitationStatus.DECLINED:
      return participant

    was_accepted = participant.invitation_status == InvitationStatus.ACCEPTED
    participant.invitation_status = InvitationStatus.DECLINED
    participant.rsvp_at = utcnow()
    await self.participants.update(participant)
    logger.info("User %s declined event %s", user_id, event_id)

    if was_accepted:
      self.effects.remove_from_conversation(event_id, user_id)
    self.effects.notify_user(
      event.organizer_id,
      {"type": "invitation_declined", "title": f"{user_id} declined {event.title}", "event_id": event_id},
    )
    return participant

  async def remove(self, event_id: str, actor: str, user_id: str) -> None:
    event = await self.lifecycle.load(event_id)
    self.lifecycle.require_organizer(event, actor)
    self.lifecycle.require_active(event, "remove participants from")
    if user_id == event.organizer_id:
      raise BusinessRuleViolation("The organizer cannot remove themselves from the event", "BR_PARTICIPANT_SELF")
    participant = await self._invitation(event_id, user_id)

    await self.participants.delete(event_id, user_id)
    if participant.invitation_status == InvitationStatus.ACCEPTED:
      self.effects.remove_from_conversation(event_id, user_id)
    logger.info("User %s removed from event %s", user_id, event_id)
