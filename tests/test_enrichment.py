import asyncio
from datetime import datetime, timezone

from conftest import FailingAnalyzer, FixedAnalyzer, venue
from outing_service.enrichment import EnrichmentOrchestrator, merge_analysis
from outing_service.models import (
  AggregatedPreferences,
  Event,
  ScoredVenue,
  VenueAnalysis,
  VenueAnalysisResult,
)

PREFS = AggregatedPreferences(cuisine_types=["vietnamese"], participant_ids=["a"])
EVENT = Event(
  organizer_id="a",
  title="Dinner",
  scheduled_at=datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc),
  expected_attendees=4,
)


def candidates():
  return [
    ScoredVenue(venue=venue("v1"), score=70.0, reasoning="traditional one", pros=["p1"], cons=["c1"]),
    ScoredVenue(venue=venue("v2"), score=55.0, reasoning="traditional two", pros=["p2"], cons=[]),
  ]


def test_merge_only_overrides_fields_present():
  analysis = VenueAnalysisResult(
    venue_analyses=[VenueAnalysis(venue_id="v1", adjusted_score=140.0, pros=["ai pro"])]
  )
  merged = merge_analysis(candidates(), analysis)
  assert merged[0].score == 100.0
  assert merged[0].pros == ["ai pro"]
  assert merged[0].reasoning == "traditional one"
  assert merged[0].cons == ["c1"]
  assert merged[1] == candidates()[1]


def test_completed_enrichment_applies_adjustments():
  analyzer = FixedAnalyzer(
    VenueAnalysisResult(
      venue_analyses=[VenueAnalysis(venue_id="v2", adjusted_score=90.0, reasoning="great fit")],
      suggested_category="cafe",
    )
  )
  outcome = asyncio.run(EnrichmentOrchestrator(analyzer, 1.0).enrich(candidates(), PREFS, EVENT))
  assert outcome.status == "completed"
  assert outcome.results[1].score == 90.0
  assert outcome.results[1].reasoning == "great fit"
  assert outcome.suggested_category == "cafe"


def test_timeout_keeps_traditional_scores_and_tracks_abandoned_task():
  analyzer = FixedAnalyzer(
    VenueAnalysisResult(venue_analyses=[VenueAnalysis(venue_id="v1", adjusted_score=1.0)]),
    delay=0.5,
  )
  orchestrator = EnrichmentOrchestrator(analyzer, timeout_seconds=0.05)

  async def scenario():
    outcome = await orchestrator.enrich(candidates(), PREFS, EVENT)
    abandoned_after_timeout = len(orchestrator.abandoned)
    await asyncio.sleep(0.6)
    return outcome, abandoned_after_timeout

  outcome, abandoned = asyncio.run(scenario())
  assert outcome.status == "timed_out"
  assert [r.score for r in outcome.results] == [70.0, 55.0]
  assert outcome.results == candidates()
  assert abandoned == 1
  # the late task finished on its own and was released
  assert orchestrator.abandoned == set()


def test_errors_fall_back_to_traditional_scores():
  outcome = asyncio.run(EnrichmentOrchestrator(FailingAnalyzer(), 1.0).enrich(candidates(), PREFS, EVENT))
  assert outcome.status == "errored"
  assert outcome.results == candidates()


def test_no_analyzer_is_skipped():
  outcome = asyncio.run(EnrichmentOrchestrator(None).enrich(candidates(), PREFS, EVENT))
  assert outcome.status == "skipped"
  assert outcome.results == candidates()
