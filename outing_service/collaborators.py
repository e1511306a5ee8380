import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Awaitable, Deque, Dict, List, Optional, Set

from outing_service.models import Event

logger = logging.getLogger("outing_service")


class Notifier(ABC):
  """In-app notification dispatch (fire-and-forget from the planner's view)."""

  @abstractmethod
  async def notify_user(self, user_id: str, payload: Dict[str, Any]) -> None:
    raise NotImplementedError


class EmailSender(ABC):
  """Typed email templates; each returns whether delivery was accepted."""

  @abstractmethod
  async def send_invitation(self, user_id: str, event: Event, organizer_id: str) -> bool:
    raise NotImplementedError

  @abstractmethod
  async def send_cancellation(self, user_id: str, event: Event, reason: str) -> bool:
    raise NotImplementedError

  @abstractmethod
  async def send_reschedule(self, user_id: str, event: Event, reason: str) -> bool:
    raise NotImplementedError

  @abstractmethod
  async def send_reminder(self, user_id: str, event: Event, kind: str) -> bool:
    """``kind`` is one of ``24h``, ``1h``, ``voting_deadline`` or ``rsvp_deadline``."""
    raise NotImplementedError


class ChatService(ABC):
  @abstractmethod
  async def ensure_conversation(self, event_id: str, participant_ids: List[str]) -> str:
    """Return the conversation id for the event, creating it when missing."""
    raise NotImplementedError

  @abstractmethod
  async def conversation_for(self, event_id: str) -> Optional[str]:
    raise NotImplementedError

  @abstractmethod
  async def add_participants(self, conversation_id: str, user_ids: List[str]) -> None:
    raise NotImplementedError

  @abstractmethod
  async def remove_participant(self, conversation_id: str, user_id: str) -> None:
    raise NotImplementedError


class LoggingNotifier(Notifier):
  async def notify_user(self, user_id: str, payload: Dict[str, Any]) -> None:
    logger.info("notify user=%s title=%s", user_id, payload.get("title"))


class LoggingEmailSender(EmailSender):
  async def send_invitation(self, user_id: str, event: Event, organizer_id: str) -> bool:
    logger.info("email invitation user=%s event=%s", user_id, event.id)
    return True

  async def send_cancellation(self, user_id: str, event: Event, reason: str) -> bool:
    logger.info("email cancellation user=%s event=%s", user_id, event.id)
    return True

  async def send_reschedule(self, user_id: str, event: Event, reason: str) -> bool:
    logger.info("email reschedule user=%s event=%s", user_id, event.id)
    return True

  async def send_reminder(self, user_id: str, event: Event, kind: str) -> bool:
    logger.info("email reminder kind=%s user=%s event=%s", kind, user_id, event.id)
    return True


class InMemoryChatService(ChatService):
  def __init__(self) -> None:
    self.conversations: Dict[str, str] = {}
    self.members: Dict[str, Set[str]] = {}

  async def ensure_conversation(self, event_id: str, participant_ids: List[str]) -> str:
    conversation_id = self.conversations.get(event_id)
    if conversation_id is None:
      conversation_id = f"conv-{event_id}"
      self.conversations[event_id] = conversation_id
      self.members[conversation_id] = set(participant_ids)
    return conversation_id

  async def conversation_for(self, event_id: str) -> Optional[str]:
    return self.conversations.get(event_id)

  async def add_participants(self, conversation_id: str, user_ids: List[str]) -> None:
    self.members.setdefault(conversation_id, set()).update(user_ids)

  async def remove_participant(self, conversation_id: str, user_id: str) -> None:
    self.members.get(conversation_id, set()).discard(user_id)


class BackgroundDispatcher:
  """Runs side effects as supervised tasks; failures land in one error sink.

  Holding the task references keeps them alive until they finish, and
  ``drain`` lets shutdown hooks and tests wait for outstanding work.
  """

  def __init__(self, max_failures: int = 100) -> None:
    self._tasks: Set[asyncio.Task] = set()
    # names of the most recent failed side effects
    self.failures: Deque[str] = deque(maxlen=max_failures)

  def spawn(self, name: str, work: Awaitable[Any]) -> asyncio.Task:
    task = asyncio.ensure_future(work)
    self._tasks.add(task)
    task.add_done_callback(lambda t: self._finished(name, t))
    return task

  def _finished(self, name: str, task: asyncio.Task) -> None:
    self._tasks.discard(task)
    if task.cancelled():
      logger.warning("Side effect %s was cancelled", name)
      return
    exc = task.exception()
    if exc is not None:
      self.failures.append(name)
      logger.warning("Side effect %s failed: %s", name, exc)

  @property
  def pending(self) -> int:
    return len(self._tasks)

  async def drain(self) -> None:
    while self._tasks:
      await asyncio.gather(*list(self._tasks), return_exceptions=True)


class SideEffects:
  """Notification, email and chat calls routed through the background dispatcher."""

  def __init__(
    self,
    notifier: Notifier,
    email: EmailSender,
    chat: ChatService,
    dispatcher: BackgroundDispatcher,
  ) -> None:
    self.notifier = notifier
    self.email = email
    self.chat = chat
    self.dispatcher = dispatcher

  def notify_user(self, user_id: str, payload: Dict[str, Any]) -> None:
    self.dispatcher.spawn(f"notify:{user_id}", self.notifier.notify_user(user_id, payload))

  def send_email(self, kind: str, user_id: str, send: Awaitable[bool]) -> None:
    self.dispatcher.spawn(f"email.{kind}:{user_id}", self._deliver(kind, user_id, send))

  async def _deliver(self, kind: str, user_id: str, send: Awaitable[bool]) -> None:
    if not await send:
      logger.warning("Email %s to %s was not accepted", kind, user_id)

  def add_to_conversation(self, event_id: str, user_ids: List[str]) -> None:
    self.dispatcher.spawn(f"chat.add:{event_id}", self._add_to_conversation(event_id, user_ids))

  async def _add_to_conversation(self, event_id: str, user_ids: List[str]) -> None:
    conversation_id = await self.chat.conversation_for(event_id)
    if conversation_id is not None:
      await self.chat.add_participants(conversation_id, user_ids)

  def remove_from_conversation(self, event_id: str, user_id: str) -> None:
    self.dispatcher.spawn(f"chat.remove:{event_id}", self._remove_from_conversation(event_id, user_id))

  async def _remove_from_conversation(self, event_id: str, user_id: str) -> None:
    conversation_id = await self.chat.conversation_for(event_id)
    if conversation_id is not None:
      await self.chat.remove_participant(conversation_id, user_id)

  def ensure_conversation(self, event_id: str, member_ids: List[str]) -> None:
    self.dispatcher.spawn(f"chat.ensure:{event_id}", self._ensure_conversation(event_id, member_ids))

  async def _ensure_conversation(self, event_id: str, member_ids: List[str]) -> None:
    conversation_id = await self.chat.ensure_conversation(event_id, member_ids)
    await self.chat.add_participants(conversation_id, member_ids)
