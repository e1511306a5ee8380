"""Recommendation run for one event.

The run walks six named steps and reports an ``AnalysisProgress`` snapshot
after each one. Progress is reported through a sink supplied by the
lifecycle, which stores it on the event record.
"""

import logging
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel

from outing_service.enrichment import EnrichmentOrchestrator
from outing_service.errors import BusinessRuleViolation
from outing_service.geo import centroid
from outing_service.models import (
  AnalysisProgress,
  Event,
  OptionOrigin,
  ScoredVenue,
  SearchArea,
  VenueOption,
  utcnow,
)
from outing_service.preferences import PreferenceAggregator
from outing_service.repositories import LocationDirectory, OptionRepository
from outing_service.scoring import score_venue
from outing_service.selection import CandidateSelector, context_from_search

logger = logging.getLogger("outing_service")

STEPS = [
  (1, "Collecting team preferences", 0.0),
  (2, "Analyzing preferences and requirements", 20.0),
  (3, "Searching for suitable venues", 40.0),
  (4, "Evaluating and scoring venues", 60.0),
  (5, "Building recommendation list", 80.0),
  (6, "Completed", 100.0),
]

ProgressSink = Callable[[str, AnalysisProgress], Awaitable[None]]


class RecommendationReport(BaseModel):
  tier: Optional[str] = None
  enrichment_status: str = "skipped"
  options: List[VenueOption] = []
  overall_insight: Optional[str] = None


def select_top(ranked: List[ScoredVenue], top_n: int, min_score: float) -> List[ScoredVenue]:
  """Prefer venues above ``min_score``; pad with the best of the rest up to ``top_n``."""
  preferred = [s for s in ranked if s.score > min_score][:top_n]
  if len(preferred) < top_n:
    rest = [s for s in ranked if s.score <= min_score]
    preferred.extend(rest[: top_n - len(preferred)])
  return preferred


class RecommendationPipeline:
  def __init__(
    self,
    preferences: PreferenceAggregator,
    locations: LocationDirectory,
    selector: CandidateSelector,
    enrichment: EnrichmentOrchestrator,
    options: OptionRepository,
    top_n: int = 5,
    min_score: float = 40.0,
  ) -> None:
    self.preferences = preferences
    self.locations = locations
    self.selector = selector
    self.enrichment = enrichment
    self.options = options
    self.top_n = top_n
    self.min_score = min_score

  async def _step(self, sink: ProgressSink, event_id: str, progress: AnalysisProgress, index: int) -> None:
    number, name, percentage = STEPS[index]
    progress.current_step = number
    progress.current_step_name = name
    progress.percentage = percentage
    progress.updated_at = utcnow()
    await sink(event_id, progress.model_copy(deep=True))

  async def run(
    self,
    event: Event,
    participant_ids: List[str],
    sink: ProgressSink,
    search: Optional[SearchArea] = None,
  ) -> RecommendationReport:
    previous = event.analysis_progress
    progress = AnalysisProgress()
    await self._step(sink, event.id, progress, 0)

    prefs = await self.preferences.aggregate(event.id, participant_ids)
    coords = await self.locations.locations_for(participant_ids)
    points = [(c.latitude, c.longitude) for c in coords]
    progress.total_participants = len(participant_ids)
    await self._step(sink, event.id, progress, 1)

    ctx = context_from_search(
      prefs,
      search,
      centroid(points),
      suggested_category=previous.suggested_category if previous else None,
      suggested_tags=previous.suggested_tags if previous else None,
    )
    progress.cuisine_types_identified = len(prefs.cuisine_types)
    progress.average_budget = prefs.average_budget
    progress.search_radius_km = ctx.radius_km
    await self._step(sink, event.id, progress, 2)

    selection = await self.selector.select(ctx)
    progress.selection_tier = selection.tier
    progress.venues_found = len(selection.venues)
    if not selection.venues:
      await sink(event.id, progress.model_copy(deep=True))
      raise BusinessRuleViolation("No suitable venues found for this event", "BR_RECOMMEND_NO_VENUES")
    await self._step(sink, event.id, progress, 3)

    ranked = sorted(
      (score_venue(v, prefs, event, points) for v in selection.venues),
      key=lambda s: s.score,
      reverse=True,
    )
    for scored in ranked:
      logger.info("Venue %s (%s) scored %.1f for event %s", scored.venue.id, scored.venue.name, scored.score, event.id)
    top = select_top(ranked, self.top_n, self.min_score)
    progress.venues_scored = len(ranked)
    progress.venues_passed_threshold = sum(1 for s in ranked if s.score > self.min_score)
    progress.venues_sent_for_enrichment = len(top)
    await self._step(sink, event.id, progress, 4)

    outcome = await self.enrichment.enrich(top, prefs, event, coords)
    progress.enrichment_status = outcome.status
    progress.suggested_category = outcome.suggested_category
    progress.suggested_tags = list(outcome.suggested_tags)
    final = sorted(outcome.results, key=lambda s: s.score, reverse=True)

    existing = {o.venue_id for o in await self.options.list_for_event(event.id)}
    created: List[VenueOption] = []
    for scored in final:
      if scored.venue.id in existing:
        continue
      option = VenueOption(
        event_id=event.id,
        venue_id=scored.venue.id,
        origin=OptionOrigin.AI,
        score=scored.score,
        reasoning=scored.reasoning,
        pros=list(scored.pros),
        cons=list(scored.cons),
        estimated_cost_per_person=scored.venue.price_level,
      )
      created.append(await self.options.create(option))

    progress.final_recommendations = len(created)
    await self._step(sink, event.id, progress, 5)
    logger.info(
      "Recommendations for event %s: tier=%s enrichment=%s options=%d",
      event.id,
      selection.tier,
      outcome.status,
      len(created),
    )
    return RecommendationReport(
      tier=selection.tier,
      enrichment_status=outcome.status,
      options=created,
      overall_insight=outcome.overall_insight,
    )
