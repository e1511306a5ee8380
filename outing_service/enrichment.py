import asyncio
import logging
from typing import Dict, List, Literal, Optional, Sequence, Set

from pydantic import BaseModel

from outing_service.llm import VenueAnalyzer
from outing_service.models import (
  AggregatedPreferences,
  Coordinates,
  Event,
  ScoredVenue,
  VenueAnalysis,
  VenueAnalysisResult,
)

logger = logging.getLogger("outing_service")

EnrichmentStatus = Literal["completed", "timed_out", "errored", "skipped"]


class EnrichmentOutcome(BaseModel):
  status: EnrichmentStatus
  results: List[ScoredVenue]
  overall_insight: Optional[str] = None
  suggested_category: Optional[str] = None
  suggested_tags: List[str] = []


def merge_analysis(candidates: Sequence[ScoredVenue], analysis: VenueAnalysisResult) -> List[ScoredVenue]:
  """Overlay the AI fields that are present; everything else keeps the traditional value."""
  by_venue: Dict[str, VenueAnalysis] = {a.venue_id: a for a in analysis.venue_analyses}
  merged: List[ScoredVenue] = []
  for candidate in candidates:
    found = by_venue.get(candidate.venue.id)
    if found is None:
      merged.append(candidate)
      continue
    score = candidate.score
    if found.adjusted_score is not None:
      score = max(0.0, min(float(found.adjusted_score), 100.0))
    merged.append(
      ScoredVenue(
        venue=candidate.venue,
        score=score,
        reasoning=found.reasoning or candidate.reasoning,
        pros=found.pros if found.pros is not None else candidate.pros,
        cons=found.cons if found.cons is not None else candidate.cons,
      )
    )
  return merged


class EnrichmentOrchestrator:
  """Best-effort AI pass over the top candidates, bounded by a timeout.

  A call that loses the race is not cancelled. It keeps running, is tracked
  in ``abandoned`` and its late outcome is logged when it finishes.
  """

  def __init__(self, analyzer: Optional[VenueAnalyzer], timeout_seconds: float = 30.0) -> None:
    self.analyzer = analyzer
    self.timeout_seconds = timeout_seconds
    self.abandoned: Set[asyncio.Task] = set()

  async def enrich(
    self,
    candidates: Sequence[ScoredVenue],
    prefs: AggregatedPreferences,
    event: Event,
    participant_locations: Sequence[Coordinates] = (),
  ) -> EnrichmentOutcome:
    traditional = list(candidates)
    if self.analyzer is None or not traditional:
      return EnrichmentOutcome(status="skipped", results=traditional)

    try:
      task = asyncio.ensure_future(
        self.analyzer.analyze_venues(traditional, prefs, event, participant_locations)
      )
      done, _ = await asyncio.wait({task}, timeout=self.timeout_seconds)
    except Exception as exc:
      logger.warning("AI enrichment for event %s could not start: %s", event.id, exc)
      return EnrichmentOutcome(status="errored", results=traditional)

    if task not in done:
      self._abandon(task, event.id)
      logger.warning(
        "AI enrichment for event %s timed out after %ss; using traditional scores",
        event.id,
        self.timeout_seconds,
      )
      return EnrichmentOutcome(status="timed_out", results=traditional)

    exc = task.exception()
    if exc is not None:
      logger.warning("AI enrichment for event %s failed: %s", event.id, exc)
      return EnrichmentOutcome(status="errored", results=traditional)

    analysis: VenueAnalysisResult = task.result()
    logger.info(
      "AI enrichment for event %s completed with %d venue analyses",
      event.id,
      len(analysis.venue_analyses),
    )
    return EnrichmentOutcome(
      status="completed",
      results=merge_analysis(traditional, analysis),
      overall_insight=analysis.overall_insight,
      suggested_category=analysis.suggested_category,
      suggested_tags=analysis.suggested_tags,
    )

  def _abandon(self, task: asyncio.Task, event_id: str) -> None:
    self.abandoned.add(task)
    logger.info("Abandoned AI enrichment task for event %s; it keeps running in the background", event_id)

    def _finished(t: asyncio.Task) -> None:
      self.abandoned.discard(t)
      if t.cancelled():
        logger.info("Abandoned AI enrichment for event %s was cancelled", event_id)
      elif t.exception() is not None:
        logger.info("Abandoned AI enrichment for event %s failed late: %s", event_id, t.exception())
      else:
        logger.info("Abandoned AI enrichment for event %s finished late; result discarded", event_id)

    task.add_done_callback(_finished)
