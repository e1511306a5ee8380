import asyncio
from datetime import timedelta
from typing import Any, Dict

import pytest

from conftest import ORGANIZER, event_request
from outing_service.acceptance import meets_threshold
from outing_service.collaborators import BackgroundDispatcher, Notifier
from outing_service.errors import BusinessRuleViolation, InvalidStateError, NotFoundError, UnauthorizedError
from outing_service.models import EventStatus, InvitationStatus, utcnow


def test_meets_threshold_is_pure_and_rounds_up():
  assert meets_threshold(7, 10, 0.7)
  assert not meets_threshold(6, 10, 0.7)
  assert meets_threshold(3, 4, 0.7)
  assert not meets_threshold(2, 4, 0.7)
  assert meets_threshold(7, 10, 0.7) == meets_threshold(7, 10, 0.7)
  assert meets_threshold(1, 1, 1.0)


def test_invite_moves_draft_event_to_inviting_and_opens_conversation(services, notifier, email):
  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request())
    result = await services.tracker.invite(event.id, ORGANIZER, ["u1", "u2", "u1", ORGANIZER])
    await services.dispatcher.drain()
    return event, result, await services.lifecycle.load(event.id)

  event, result, stored = asyncio.run(scenario())
  assert result.invited == ["u1", "u2"]
  assert stored.status == EventStatus.INVITING
  assert len(notifier.for_user("u1", "event_invitation")) == 1
  assert ("invitation", "u2") in email.sent

  chat = services.effects.chat
  conversation = chat.conversations[event.id]
  assert chat.members[conversation] == {ORGANIZER, "u1", "u2"}


def test_invite_rejects_empty_and_self_only_batches(services):
  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request())
    with pytest.raises(BusinessRuleViolation) as empty:
      await services.tracker.invite(event.id, ORGANIZER, [])
    with pytest.raises(BusinessRuleViolation) as self_only:
      await services.tracker.invite(event.id, ORGANIZER, [ORGANIZER])
    with pytest.raises(UnauthorizedError):
      await services.tracker.invite(event.id, "u1", ["u2"])
    return empty.value.code, self_only.value.code

  assert asyncio.run(scenario()) == ("BR_EVENT_12", "BR_EVENT_13")


def test_invite_capacity_message_names_available_slots(services):
  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request(expected_attendees=3, max_attendees=3))
    await services.tracker.invite(event.id, ORGANIZER, ["u1"])
    with pytest.raises(BusinessRuleViolation) as exc:
      await services.tracker.invite(event.id, ORGANIZER, ["u2", "u3"])
    return exc.value

  error = asyncio.run(scenario())
  assert error.code == "BR_EVENT_14"
  assert "Only 1 slot(s) available" in error.message


def test_reinvite_after_decline_sends_exactly_one_new_notification(services, notifier):
  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request())
    await services.tracker.invite(event.id, ORGANIZER, ["u1"])
    await services.tracker.decline(event.id, "u1")
    await services.dispatcher.drain()
    before = len(notifier.for_user("u1", "event_invitation"))
    result = await services.tracker.invite(event.id, ORGANIZER, ["u1"])
    await services.dispatcher.drain()
    after = len(notifier.for_user("u1", "event_invitation"))
    again = await services.tracker.invite(event.id, ORGANIZER, ["u1"])
    await services.dispatcher.drain()
    last = len(notifier.for_user("u1", "event_invitation"))
    participant = await services.store.participant_repo.get(event.id, "u1")
    return before, after, last, result, again, participant

  before, after, last, result, again, participant = asyncio.run(scenario())
  assert (before, after, last) == (1, 2, 2)
  assert result.reopened == ["u1"]
  assert again.unchanged == ["u1"]
  assert participant.invitation_status == InvitationStatus.PENDING
  assert participant.rsvp_at is None


def test_seventh_acceptance_moves_event_to_gathering_preferences(services):
  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request(expected_attendees=10))
    invitees = [f"u{i}" for i in range(1, 10)]
    await services.tracker.invite(event.id, ORGANIZER, invitees)
    statuses = []
    # the organizer is the first acceptance
    for user_id in invitees[:6]:
      await services.tracker.accept(event.id, user_id)
      statuses.append((await services.lifecycle.load(event.id)).status)
    return statuses

  statuses = asyncio.run(scenario())
  assert statuses[:5] == [EventStatus.INVITING] * 5
  assert statuses[5] == EventStatus.GATHERING_PREFERENCES


def test_accept_after_deadline_is_rejected(services):
  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request())
    await services.tracker.invite(event.id, ORGANIZER, ["u1"])
    services.store.events[event.id].rsvp_deadline = utcnow() - timedelta(minutes=1)
    with pytest.raises(BusinessRuleViolation) as exc:
      await services.tracker.accept(event.id, "u1")
    with pytest.raises(NotFoundError):
      await services.tracker.accept(event.id, "stranger")
    return exc.value.code

  assert asyncio.run(scenario()) == "BR_EVENT_08"


def test_remove_participant_rules(services):
  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request())
    await services.tracker.invite(event.id, ORGANIZER, ["u1", "u2"])
    await services.tracker.accept(event.id, "u1")
    await services.dispatcher.drain()

    with pytest.raises(BusinessRuleViolation):
      await services.tracker.remove(event.id, ORGANIZER, ORGANIZER)
    with pytest.raises(UnauthorizedError):
      await services.tracker.remove(event.id, "u1", "u2")

    await services.tracker.remove(event.id, ORGANIZER, "u1")
    await services.tracker.remove(event.id, ORGANIZER, "u2")
    await services.dispatcher.drain()
    remaining = await services.store.participant_repo.list_for_event(event.id)
    return event, [p.user_id for p in remaining]

  event, remaining = asyncio.run(scenario())
  assert remaining == [ORGANIZER]
  chat = services.effects.chat
  assert "u1" not in chat.members[chat.conversations[event.id]]


def test_participants_of_cancelled_event_cannot_be_removed(services):
  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request())
    await services.tracker.invite(event.id, ORGANIZER, ["u1"])
    await services.tracker.accept(event.id, "u1")
    await services.lifecycle.cancel_event(event.id, ORGANIZER, "Venue closed for renovation")
    await services.dispatcher.drain()
    chat = services.effects.chat
    members_before = set(chat.members[chat.conversations[event.id]])
    with pytest.raises(InvalidStateError):
      await services.tracker.remove(event.id, ORGANIZER, "u1")
    await services.dispatcher.drain()
    remaining = await services.store.participant_repo.list_for_event(event.id)
    return members_before, set(chat.members[chat.conversations[event.id]]), [p.user_id for p in remaining]

  members_before, members_after, remaining = asyncio.run(scenario())
  assert remaining == [ORGANIZER, "u1"]
  assert members_after == members_before


class BrokenNotifier(Notifier):
  async def notify_user(self, user_id: str, payload: Dict[str, Any]) -> None:
    raise ConnectionError("push gateway down")


def test_failed_notifications_do_not_break_invites(make_services):
  services = make_services()
  services.effects.notifier = BrokenNotifier()

  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request())
    result = await services.tracker.invite(event.id, ORGANIZER, ["u1"])
    await services.dispatcher.drain()
    return result

  result = asyncio.run(scenario())
  assert result.invited == ["u1"]
  assert list(services.dispatcher.failures) == ["notify:u1"]
  assert services.dispatcher.pending == 0


def test_dispatcher_keeps_only_recent_failures():
  async def failing():
    raise RuntimeError("smtp down")

  async def scenario():
    dispatcher = BackgroundDispatcher(max_failures=2)
    for idx in range(3):
      dispatcher.spawn(f"email:{idx}", failing())
    await dispatcher.drain()
    return dispatcher

  dispatcher = asyncio.run(scenario())
  assert list(dispatcher.failures) == ["email:1", "email:2"]
