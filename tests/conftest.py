import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from outing_service.collaborators import EmailSender, Notifier
from outing_service.config import Settings
from outing_service.llm import VenueAnalyzer
from outing_service.models import (
  AggregatedPreferences,
  Coordinates,
  CreateEventRequest,
  Event,
  ScoredVenue,
  UserPreference,
  Venue,
  VenueAnalysisResult,
  VenueTag,
)
from outing_service.preferences import InMemoryPreferenceStore
from outing_service.repositories import InMemoryLocationDirectory, InMemoryVenueCatalog
from outing_service.wiring import Services, build_services

ORGANIZER = "org"
HCMC = (10.7769, 106.7009)


class RecordingNotifier(Notifier):
  def __init__(self) -> None:
    self.sent: List[Tuple[str, Dict[str, Any]]] = []

  async def notify_user(self, user_id: str, payload: Dict[str, Any]) -> None:
    self.sent.append((user_id, payload))

  def for_user(self, user_id: str, kind: Optional[str] = None) -> List[Dict[str, Any]]:
    return [p for uid, p in self.sent if uid == user_id and (kind is None or p.get("type") == kind)]


class RecordingEmailSender(EmailSender):
  def __init__(self, accept: bool = True) -> None:
    self.sent: List[Tuple[str, str]] = []
    self.accept = accept

  async def send_invitation(self, user_id: str, event: Event, organizer_id: str) -> bool:
    self.sent.append(("invitation", user_id))
    return self.accept

  async def send_cancellation(self, user_id: str, event: Event, reason: str) -> bool:
    self.sent.append(("cancellation", user_id))
    return self.accept

  async def send_reschedule(self, user_id: str, event: Event, reason: str) -> bool:
    self.sent.append(("reschedule", user_id))
    return self.accept

  async def send_reminder(self, user_id: str, event: Event, kind: str) -> bool:
    self.sent.append((f"reminder.{kind}", user_id))
    return self.accept


class FixedAnalyzer(VenueAnalyzer):
  def __init__(self, result: VenueAnalysisResult, delay: float = 0.0) -> None:
    self.result = result
    self.delay = delay
    self.calls = 0

  async def analyze_venues(
    self,
    candidates: Sequence[ScoredVenue],
    prefs: AggregatedPreferences,
    event: Event,
    participant_locations: Sequence[Coordinates],
  ) -> VenueAnalysisResult:
    self.calls += 1
    if self.delay:
      await asyncio.sleep(self.delay)
    return self.result


class FailingAnalyzer(VenueAnalyzer):
  async def analyze_venues(
    self,
    candidates: Sequence[ScoredVenue],
    prefs: AggregatedPreferences,
    event: Event,
    participant_locations: Sequence[Coordinates],
  ) -> VenueAnalysisResult:
    raise RuntimeError("model unavailable")


def venue(venue_id: str, **overrides: Any) -> Venue:
  data: Dict[str, Any] = {
    "id": venue_id,
    "name": f"Venue {venue_id}",
    "category": "vietnamese",
    "tags": [VenueTag(name="vietnamese")],
    "latitude": HCMC[0],
    "longitude": HCMC[1],
    "average_rating": 4.2,
    "review_count": 30,
    "like_count": 5,
    "price_level": 25.0,
    "capacity": 12,
    "city": "Ho Chi Minh City",
  }
  data.update(overrides)
  return Venue(**data)


def event_request(**overrides: Any) -> CreateEventRequest:
  data: Dict[str, Any] = {
    "title": "Team dinner",
    "local_start": datetime.now().replace(microsecond=0) + timedelta(days=10),
    "timezone": "UTC+07:00",
    "expected_attendees": 10,
    "estimated_duration_minutes": 120,
  }
  data.update(overrides)
  return CreateEventRequest(**data)


@pytest.fixture
def settings() -> Settings:
  return Settings(ai_backend="none", maintenance_interval_seconds=0, enrichment_timeout_seconds=1.0)


@pytest.fixture
def notifier() -> RecordingNotifier:
  return RecordingNotifier()


@pytest.fixture
def email() -> RecordingEmailSender:
  return RecordingEmailSender()


@pytest.fixture
def catalog() -> InMemoryVenueCatalog:
  return InMemoryVenueCatalog(
    [
      venue("v1", average_rating=4.8, review_count=120, like_count=40),
      venue("v2", category="japanese", tags=[VenueTag(name="sushi")], average_rating=4.5),
      venue("v3", average_rating=3.9, price_level=60.0),
    ]
  )


@pytest.fixture
def preferences() -> InMemoryPreferenceStore:
  store = InMemoryPreferenceStore()
  store.put(UserPreference(user_id=ORGANIZER, cuisines=["vietnamese"], budget=25, distance_radius_km=5))
  for idx in range(1, 10):
    store.put(UserPreference(user_id=f"u{idx}", cuisines=["vietnamese, japanese"], budget=30))
  return store


@pytest.fixture
def locations() -> InMemoryLocationDirectory:
  directory = InMemoryLocationDirectory()
  directory.put(ORGANIZER, HCMC[0], HCMC[1])
  directory.put("u1", HCMC[0] + 0.01, HCMC[1])
  return directory


@pytest.fixture
def make_services(settings, catalog, preferences, locations, notifier, email):
  def factory(analyzer: Optional[VenueAnalyzer] = None, **overrides: Any) -> Services:
    return build_services(
      settings.model_copy(update=overrides),
      catalog=catalog,
      preferences=preferences,
      locations=locations,
      notifier=notifier,
      email=email,
      analyzer=analyzer,
    )

  return factory


@pytest.fixture
def services(make_services) -> Services:
  return make_services()


async def invite_and_accept(services: Services, event_id: str, invitees: List[str], accepting: List[str]) -> None:
  await services.tracker.invite(event_id, ORGANIZER, invitees)
  for user_id in accepting:
    await services.tracker.accept(event_id, user_id)
