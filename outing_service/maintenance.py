"""Periodic sweeps that move events forward without a user action."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from outing_service.errors import OutingServiceError
from outing_service.lifecycle import EventLifecycle
from outing_service.models import Event, EventStatus, InvitationStatus, utcnow
from outing_service.rules import event_end, should_auto_cancel, should_auto_finalize

logger = logging.getLogger("outing_service")

AUTO_CANCEL_REASON = "Automatically cancelled: not enough participants accepted before the RSVP deadline."


async def auto_finalize_due_events(lifecycle: EventLifecycle, now: Optional[datetime] = None) -> List[str]:
  finalized: List[str] = []
  for event in await lifecycle.events.list_by_status(EventStatus.VOTING):
    if not should_auto_finalize(event, now):
      continue
    try:
      await lifecycle.finalize(event.id)
      finalized.append(event.id)
    except OutingServiceError as exc:
      logger.warning("Auto-finalize skipped for event %s: %s", event.id, exc)
  return finalized


async def auto_cancel_unfilled_events(lifecycle: EventLifecycle, now: Optional[datetime] = None) -> List[str]:
  cancelled: List[str] = []
  for event in await lifecycle.events.list_by_status(EventStatus.PLANNING, EventStatus.INVITING):
    accepted = await lifecycle.events.accepted_count(event.id)
    if not should_auto_cancel(event, accepted, now):
      continue
    try:
      await lifecycle.cancel_event(event.id, None, AUTO_CANCEL_REASON)
      cancelled.append(event.id)
    except OutingServiceError as exc:
      logger.warning("Auto-cancel skipped for event %s: %s", event.id, exc)
  return cancelled


async def complete_past_events(lifecycle: EventLifecycle, now: Optional[datetime] = None) -> List[str]:
  now = now or utcnow()
  completed: List[str] = []
  for event in await lifecycle.events.list_by_status(EventStatus.CONFIRMED):
    if event_end(event) > now:
      continue
    try:
      await lifecycle.complete_event(event.id)
      completed.append(event.id)
    except OutingServiceError as exc:
      logger.warning("Auto-complete skipped for event %s: %s", event.id, exc)
  return completed


REMINDER_TITLES = {
  "24h": "Event Reminder - 24 Hours",
  "1h": "Event Reminder - 1 Hour",
  "voting_deadline": "Voting Deadline Reminder",
  "rsvp_deadline": "RSVP Deadline Reminder",
}


def _within(moment: Optional[datetime], now: datetime, lower: timedelta, upper: timedelta) -> bool:
  return moment is not None and now + lower < moment <= now + upper


def due_reminders(event: Event, now: datetime) -> List[str]:
  """Reminder kinds whose window is open for ``event`` at ``now``."""
  day, hour = timedelta(hours=24), timedelta(hours=1)
  kinds: List[str] = []
  if event.status in (EventStatus.VOTING, EventStatus.CONFIRMED) and _within(event.scheduled_at, now, hour, day):
    kinds.append("24h")
  if event.status == EventStatus.CONFIRMED and _within(event.scheduled_at, now, timedelta(0), hour):
    kinds.append("1h")
  if event.status == EventStatus.VOTING and _within(event.voting_deadline, now, timedelta(0), day):
    kinds.append("voting_deadline")
  if event.status in (EventStatus.PLANNING, EventStatus.INVITING) and _within(event.rsvp_deadline, now, timedelta(0), day):
    kinds.append("rsvp_deadline")
  return kinds


async def send_due_reminders(lifecycle: EventLifecycle, now: Optional[datetime] = None) -> List[str]:
  """Send each open reminder once per participant; the send time is kept on the participant."""
  now = now or utcnow()
  reminded: List[str] = []
  statuses = (EventStatus.PLANNING, EventStatus.INVITING, EventStatus.VOTING, EventStatus.CONFIRMED)
  for event in await lifecycle.events.list_by_status(*statuses):
    sent = 0
    for kind in due_reminders(event, now):
      # the RSVP reminder chases people who have not answered yet
      audience = InvitationStatus.PENDING if kind == "rsvp_deadline" else InvitationStatus.ACCEPTED
      for p in await lifecycle.participants.list_for_event(event.id):
        if p.invitation_status != audience or kind in p.reminders_sent:
          continue
        lifecycle.effects.notify_user(
          p.user_id,
          {
            "type": "event_reminder",
            "kind": kind,
            "title": f"{REMINDER_TITLES[kind]}: {event.title}",
            "event_id": event.id,
          },
        )
        lifecycle.effects.send_email(
          f"reminder.{kind}", p.user_id, lifecycle.effects.email.send_reminder(p.user_id, event, kind)
        )
        p.reminders_sent[kind] = now
        await lifecycle.participants.update(p)
        sent += 1
    if sent:
      logger.info("Sent %d reminders for event %s", sent, event.id)
      reminded.append(event.id)
  return reminded


SWEEPS = [auto_cancel_unfilled_events, auto_finalize_due_events, complete_past_events, send_due_reminders]


async def run_sweeps(lifecycle: EventLifecycle) -> None:
  for sweep in SWEEPS:
    try:
      changed = await sweep(lifecycle)
      if changed:
        logger.info("%s touched %d events", sweep.__name__, len(changed))
    except Exception:
      logger.exception("Maintenance sweep %s failed", sweep.__name__)


async def run_periodically(lifecycle: EventLifecycle, interval_seconds: float, stop: Optional[asyncio.Event] = None) -> None:
  stop = stop or asyncio.Event()
  while not stop.is_set():
    await run_sweeps(lifecycle)
    try:
      await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
    except asyncio.TimeoutError:
      pass
