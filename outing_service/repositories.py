"""Persistence contracts used by the planner, plus an in-memory implementation.

Each repository call is atomic on its own; sequences of calls are not
transactional. The in-memory store hands out deep copies so that callers
always work on a snapshot and must write back through ``update``.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from outing_service.geo import haversine_distance
from outing_service.models import (
  Coordinates,
  Event,
  EventDetails,
  EventStatus,
  InvitationStatus,
  Participant,
  Venue,
  VenueOption,
  Vote,
)

logger = logging.getLogger("outing_service")


class VenueQuery(BaseModel):
  """Catalog filter. Tag and category filters are OR-ed when both are given."""

  tags: List[str] = []
  categories: List[str] = []
  ignore_category_case: bool = False
  center: Optional[Tuple[float, float]] = None
  radius_m: Optional[float] = None
  order_by_reviews: bool = True
  limit: int = 20


class EventRepository(ABC):
  @abstractmethod
  async def get(self, event_id: str) -> Optional[Event]:
    raise NotImplementedError

  @abstractmethod
  async def get_with_details(self, event_id: str) -> Optional[EventDetails]:
    raise NotImplementedError

  @abstractmethod
  async def create(self, event: Event) -> Event:
    raise NotImplementedError

  @abstractmethod
  async def update(self, event: Event) -> Event:
    raise NotImplementedError

  @abstractmethod
  async def delete(self, event_id: str) -> None:
    raise NotImplementedError

  @abstractmethod
  async def accepted_count(self, event_id: str) -> int:
    raise NotImplementedError

  @abstractmethod
  async def overlapping(
    self, organizer_id: str, start: datetime, end: datetime, exclude_id: Optional[str] = None
  ) -> List[Event]:
    raise NotImplementedError

  @abstractmethod
  async def list_by_status(self, *statuses: EventStatus) -> List[Event]:
    raise NotImplementedError


class ParticipantRepository(ABC):
  @abstractmethod
  async def get(self, event_id: str, user_id: str) -> Optional[Participant]:
    raise NotImplementedError

  @abstractmethod
  async def list_for_event(self, event_id: str) -> List[Participant]:
    raise NotImplementedError

  @abstractmethod
  async def create(self, participant: Participant) -> Participant:
    raise NotImplementedError

  @abstractmethod
  async def update(self, participant: Participant) -> Participant:
    raise NotImplementedError

  @abstractmethod
  async def delete(self, event_id: str, user_id: str) -> None:
    raise NotImplementedError


class OptionRepository(ABC):
  @abstractmethod
  async def get(self, option_id: str) -> Optional[VenueOption]:
    raise NotImplementedError

  @abstractmethod
  async def list_for_event(self, event_id: str) -> List[VenueOption]:
    """Options in creation order."""
    raise NotImplementedError

  @abstractmethod
  async def create(self, option: VenueOption) -> VenueOption:
    raise NotImplementedError

  @abstractmethod
  async def update(self, option: VenueOption) -> VenueOption:
    raise NotImplementedError


class VoteRepository(ABC):
  @abstractmethod
  async def get(self, event_id: str, option_id: str, voter_id: str) -> Optional[Vote]:
    raise NotImplementedError

  @abstractmethod
  async def list_for_event(self, event_id: str) -> List[Vote]:
    raise NotImplementedError

  @abstractmethod
  async def create(self, vote: Vote) -> Vote:
    raise NotImplementedError

  @abstractmethod
  async def update(self, vote: Vote) -> Vote:
    raise NotImplementedError


class VenueCatalog(ABC):
  """Read-only view of the external venue catalog."""

  @abstractmethod
  async def get(self, venue_id: str) -> Optional[Venue]:
    raise NotImplementedError

  @abstractmethod
  async def search(self, query: VenueQuery) -> List[Venue]:
    """Approved, non-deleted venues matching ``query``, rating desc."""
    raise NotImplementedError


class LocationDirectory(ABC):
  @abstractmethod
  async def locations_for(self, user_ids: List[str]) -> List[Coordinates]:
    raise NotImplementedError


class InMemoryStore:
  """Dict-backed store for local runs and tests; one instance serves every contract."""

  def __init__(self) -> None:
    self.events: Dict[str, Event] = {}
    self.participants: Dict[Tuple[str, str], Participant] = {}
    self.options: Dict[str, VenueOption] = {}
    self.votes: Dict[Tuple[str, str, str], Vote] = {}
    self._option_seq = 0

  def next_option_sequence(self) -> int:
    self._option_seq += 1
    return self._option_seq

  # Each contract shares method names (get/create/update), so the store exposes
  # one adapter object per contract instead of implementing them directly.
  @property
  def event_repo(self) -> "EventRepository":
    return _EventAdapter(self)

  @property
  def participant_repo(self) -> "ParticipantRepository":
    return _ParticipantAdapter(self)

  @property
  def option_repo(self) -> "OptionRepository":
    return _OptionAdapter(self)

  @property
  def vote_repo(self) -> "VoteRepository":
    return _VoteAdapter(self)


class _EventAdapter(EventRepository):
  def __init__(self, store: "InMemoryStore") -> None:
    self.store = store

  async def get(self, event_id: str) -> Optional[Event]:
    event = self.store.events.get(event_id)
    return event.model_copy(deep=True) if event else None

  async def get_with_details(self, event_id: str) -> Optional[EventDetails]:
    event = await self.get(event_id)
    if event is None:
      return None
    participants = [
      p.model_copy(deep=True) for (eid, _), p in self.store.participants.items() if eid == event_id
    ]
    options = sorted(
      (o.model_copy(deep=True) for o in self.store.options.values() if o.event_id == event_id),
      key=lambda o: o.sequence,
    )
    return EventDetails(event=event, participants=participants, options=options)

  async def create(self, event: Event) -> Event:
    self.store.events[event.id] = event.model_copy(deep=True)
    return event

  async def update(self, event: Event) -> Event:
    if event.id not in self.store.events:
      raise KeyError(event.id)
    self.store.events[event.id] = event.model_copy(deep=True)
    return event

  async def delete(self, event_id: str) -> None:
    self.store.events.pop(event_id, None)

  async def accepted_count(self, event_id: str) -> int:
    return sum(
      1
      for (eid, _), p in self.store.participants.items()
      if eid == event_id and p.invitation_status == InvitationStatus.ACCEPTED
    )

  async def overlapping(
    self, organizer_id: str, start: datetime, end: datetime, exclude_id: Optional[str] = None
  ) -> List[Event]:
    found: List[Event] = []
    for event in self.store.events.values():
      if event.organizer_id != organizer_id or event.id == exclude_id:
        continue
      if event.status.is_terminal:
        continue
      other_end = event.scheduled_at + timedelta(minutes=event.estimated_duration_minutes or 120)
      if event.scheduled_at < end and start < other_end:
        found.append(event.model_copy(deep=True))
    return found

  async def list_by_status(self, *statuses: EventStatus) -> List[Event]:
    return [e.model_copy(deep=True) for e in self.store.events.values() if e.status in statuses]


class _ParticipantAdapter(ParticipantRepository):
  def __init__(self, store: "InMemoryStore") -> None:
    self.store = store

  async def get(self, event_id: str, user_id: str) -> Optional[Participant]:
    row = self.store.participants.get((event_id, user_id))
    return row.model_copy(deep=True) if row else None

  async def list_for_event(self, event_id: str) -> List[Participant]:
    return [p.model_copy(deep=True) for (eid, _), p in self.store.participants.items() if eid == event_id]

  async def create(self, participant: Participant) -> Participant:
    key = (participant.event_id, participant.user_id)
    if key in self.store.participants:
      raise ValueError(f"participant {key} already exists")
    self.store.participants[key] = participant.model_copy(deep=True)
    return participant

  async def update(self, participant: Participant) -> Participant:
    self.store.participants[(participant.event_id, participant.user_id)] = participant.model_copy(deep=True)
    return participant

  async def delete(self, event_id: str, user_id: str) -> None:
    self.store.participants.pop((event_id, user_id), None)


class _OptionAdapter(OptionRepository):
  def __init__(self, store: "InMemoryStore") -> None:
    self.store = store

  async def get(self, option_id: str) -> Optional[VenueOption]:
    option = self.store.options.get(option_id)
    return option.model_copy(deep=True) if option else None

  async def list_for_event(self, event_id: str) -> List[VenueOption]:
    rows = [o.model_copy(deep=True) for o in self.store.options.values() if o.event_id == event_id]
    return sorted(rows, key=lambda o: o.sequence)

  async def create(self, option: VenueOption) -> VenueOption:
    option.sequence = self.store.next_option_sequence()
    self.store.options[option.id] = option.model_copy(deep=True)
    return option

  async def update(self, option: VenueOption) -> VenueOption:
    self.store.options[option.id] = option.model_copy(deep=True)
    return option


class _VoteAdapter(VoteRepository):
  def __init__(self, store: "InMemoryStore") -> None:
    self.store = store

  async def get(self, event_id: str, option_id: str, voter_id: str) -> Optional[Vote]:
    vote = self.store.votes.get((event_id, option_id, voter_id))
    return vote.model_copy(deep=True) if vote else None

  async def list_for_event(self, event_id: str) -> List[Vote]:
    return [v.model_copy(deep=True) for (eid, _, _), v in self.store.votes.items() if eid == event_id]

  async def create(self, vote: Vote) -> Vote:
    key = (vote.event_id, vote.option_id, vote.voter_id)
    if key in self.store.votes:
      raise ValueError(f"vote {key} already exists")
    self.store.votes[key] = vote.model_copy(deep=True)
    return vote

  async def update(self, vote: Vote) -> Vote:
    self.store.votes[(vote.event_id, vote.option_id, vote.voter_id)] = vote.model_copy(deep=True)
    return vote


class InMemoryVenueCatalog(VenueCatalog):
  def __init__(self, venues: Optional[List[Venue]] = None) -> None:
    self._venues: Dict[str, Venue] = {}
    for venue in venues or []:
      self.add(venue)

  def add(self, venue: Venue) -> None:
    self._venues[venue.id] = venue

  async def get(self, venue_id: str) -> Optional[Venue]:
    venue = self._venues.get(venue_id)
    return venue.model_copy(deep=True) if venue else None

  async def search(self, query: VenueQuery) -> List[Venue]:
    tags = {t.strip().lower() for t in query.tags if t and t.strip()}
    if query.ignore_category_case:
      categories = {c.strip().lower() for c in query.categories if c}
    else:
      categories = {c.strip() for c in query.categories if c}

    def matches(venue: Venue) -> bool:
      if not tags and not categories:
        return True
      if tags and any(name.lower() in tags for name in venue.active_tags):
        return True
      if categories and venue.category:
        name = venue.category.strip()
        return (name.lower() if query.ignore_category_case else name) in categories
      return False

    def in_radius(venue: Venue) -> bool:
      if query.center is None or not query.radius_m:
        return True
      lat, lng = query.center
      return haversine_distance(lat, lng, venue.latitude, venue.longitude) <= query.radius_m

    rows = [v for v in self._venues.values() if v.is_selectable and matches(v) and in_radius(v)]
    if query.order_by_reviews:
      rows.sort(key=lambda v: (v.average_rating, v.review_count), reverse=True)
    else:
      rows.sort(key=lambda v: v.average_rating, reverse=True)
    return [v.model_copy(deep=True) for v in rows[: query.limit]]


class InMemoryLocationDirectory(LocationDirectory):
  def __init__(self) -> None:
    self._locations: Dict[str, Coordinates] = {}

  def put(self, user_id: str, latitude: float, longitude: float) -> None:
    self._locations[user_id] = Coordinates(latitude=latitude, longitude=longitude)

  async def locations_for(self, user_ids: List[str]) -> List[Coordinates]:
    return [self._locations[uid] for uid in user_ids if uid in self._locations]


def load_catalog(path: str) -> InMemoryVenueCatalog:
  """Read a ``{"venues": [...]}`` JSON file into an in-memory catalog."""
  with open(path, "r", encoding="utf-8") as f:
    data = json.load(f)
  venues = [Venue(**item) for item in data.get("venues", [])]
  logger.info("Loaded %s venues from %s", len(venues), path)
  return InMemoryVenueCatalog(venues)
