from typing import Optional

from outing_service.acceptance import ParticipantTracker
from outing_service.collaborators import (
  BackgroundDispatcher,
  ChatService,
  EmailSender,
  InMemoryChatService,
  LoggingEmailSender,
  LoggingNotifier,
  Notifier,
  SideEffects,
)
from outing_service.config import Settings
from outing_service.enrichment import EnrichmentOrchestrator
from outing_service.lifecycle import EventLifecycle
from outing_service.llm import VenueAnalyzer, get_venue_analyzer
from outing_service.preferences import InMemoryPreferenceStore, PreferenceAggregator
from outing_service.recommendations import RecommendationPipeline
from outing_service.repositories import (
  InMemoryLocationDirectory,
  InMemoryStore,
  InMemoryVenueCatalog,
  LocationDirectory,
  VenueCatalog,
  load_catalog,
)
from outing_service.selection import CandidateSelector
from outing_service.voting import VoteTally


class Services:
  """Everything the HTTP layer and the sweeps need, built once per process."""

  def __init__(
    self,
    settings: Settings,
    store: InMemoryStore,
    catalog: VenueCatalog,
    preferences: PreferenceAggregator,
    locations: LocationDirectory,
    effects: SideEffects,
    analyzer: Optional[VenueAnalyzer],
  ) -> None:
    self.settings = settings
    self.store = store
    self.catalog = catalog
    self.preferences = preferences
    self.locations = locations
    self.effects = effects
    self.dispatcher = effects.dispatcher

    self.tally = VoteTally(store.event_repo, store.participant_repo, store.option_repo, store.vote_repo)
    self.enrichment = EnrichmentOrchestrator(analyzer, settings.enrichment_timeout_seconds)
    self.pipeline = RecommendationPipeline(
      preferences,
      locations,
      CandidateSelector(catalog, limit=settings.candidate_limit),
      self.enrichment,
      store.option_repo,
      top_n=settings.enrichment_top_n,
      min_score=settings.min_recommendation_score,
    )
    self.lifecycle = EventLifecycle(
      store.event_repo,
      store.participant_repo,
      store.option_repo,
      catalog,
      effects,
      self.tally,
      self.pipeline,
      settings,
    )
    self.tracker = ParticipantTracker(self.lifecycle)


def build_services(
  settings: Settings,
  catalog: Optional[VenueCatalog] = None,
  preferences: Optional[PreferenceAggregator] = None,
  locations: Optional[LocationDirectory] = None,
  notifier: Optional[Notifier] = None,
  email: Optional[EmailSender] = None,
  chat: Optional[ChatService] = None,
  analyzer: Optional[VenueAnalyzer] = None,
) -> Services:
  if catalog is None:
    catalog = load_catalog(settings.venue_catalog_path) if settings.venue_catalog_path else InMemoryVenueCatalog()
  if analyzer is None:
    analyzer = get_venue_analyzer(settings.ai_backend)
  effects = SideEffects(
    notifier or LoggingNotifier(),
    email or LoggingEmailSender(),
    chat or InMemoryChatService(),
    BackgroundDispatcher(),
  )
  return Services(
    settings,
    InMemoryStore(),
    catalog,
    preferences or InMemoryPreferenceStore(),
    locations or InMemoryLocationDirectory(),
    effects,
    analyzer,
  )
