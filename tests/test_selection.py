import asyncio

from conftest import HCMC, venue
from outing_service.models import AggregatedPreferences, SearchArea, VenueTag, VerificationStatus
from outing_service.repositories import InMemoryVenueCatalog
from outing_service.selection import CandidateSelector, SelectionContext, context_from_search


def prefs(*cuisines: str) -> AggregatedPreferences:
  return AggregatedPreferences(
    cuisine_types=list(cuisines),
    preference_weights={c: 1 for c in cuisines},
    max_radius_km=5.0,
    participant_ids=["a"],
  )


def select(catalog: InMemoryVenueCatalog, ctx: SelectionContext):
  return asyncio.run(CandidateSelector(catalog).select(ctx))


def test_tag_match_within_radius_orders_by_rating_then_reviews():
  catalog = InMemoryVenueCatalog(
    [
      venue("near-a", tags=[VenueTag(name="Pho")], average_rating=4.5, review_count=10),
      venue("near-b", tags=[VenueTag(name="pho")], average_rating=4.5, review_count=50),
      venue("far", tags=[VenueTag(name="pho")], latitude=HCMC[0] + 1, average_rating=5.0),
    ]
  )
  result = select(catalog, SelectionContext(prefs=prefs("pho"), center=HCMC, radius_km=5))
  assert result.tier == "tag_match_in_radius"
  assert [v.id for v in result.venues] == ["near-b", "near-a"]


def test_falls_back_to_tag_match_without_radius():
  catalog = InMemoryVenueCatalog([venue("far", tags=[VenueTag(name="pho")], latitude=HCMC[0] + 1)])
  result = select(catalog, SelectionContext(prefs=prefs("pho"), center=HCMC, radius_km=5))
  assert result.tier == "tag_match"
  assert [v.id for v in result.venues] == ["far"]


def test_inactive_tags_do_not_match():
  catalog = InMemoryVenueCatalog([venue("x", category="bbq", tags=[VenueTag(name="bbq", active=False)])])
  result = select(catalog, SelectionContext(prefs=prefs("bbq")))
  assert result.tier == "category_match"


def test_ai_suggestions_tier_uses_category_then_tags():
  catalog = InMemoryVenueCatalog(
    [
      venue("cafe", category="Cafe", tags=[VenueTag(name="quiet")], average_rating=4.0),
      venue("bar", category="bar", tags=[VenueTag(name="rooftop")], average_rating=4.9),
    ]
  )
  by_category = select(catalog, SelectionContext(prefs=prefs("sushi"), suggested_category="cafe"))
  assert by_category.tier == "ai_suggestions"
  assert [v.id for v in by_category.venues] == ["cafe"]

  by_tags = select(catalog, SelectionContext(prefs=prefs("sushi"), suggested_category="museum", suggested_tags=["rooftop"]))
  assert [v.id for v in by_tags.venues] == ["bar"]


def test_top_rated_is_last_resort_and_skips_unavailable_venues():
  catalog = InMemoryVenueCatalog(
    [
      venue("ok", category="bar", tags=[], average_rating=3.0),
      venue("best", category="bar", tags=[], average_rating=4.0),
      venue("gone", average_rating=5.0, is_deleted=True),
      venue("unverified", average_rating=5.0, verification_status=VerificationStatus.PENDING),
    ]
  )
  result = select(catalog, SelectionContext(prefs=prefs()))
  assert result.tier == "top_rated"
  assert [v.id for v in result.venues] == ["best", "ok"]


def test_empty_catalog_returns_no_tier():
  result = select(InMemoryVenueCatalog(), SelectionContext(prefs=prefs("pho")))
  assert result.tier is None
  assert result.venues == []


def test_results_are_capped():
  catalog = InMemoryVenueCatalog([venue(f"v{i}") for i in range(30)])
  result = asyncio.run(CandidateSelector(catalog, limit=20).select(SelectionContext(prefs=prefs("vietnamese"))))
  assert len(result.venues) == 20


def test_explicit_search_area_wins_over_derived_center():
  ctx = context_from_search(prefs("pho"), SearchArea(latitude=1.0, longitude=2.0, radius_km=3.0), HCMC)
  assert ctx.center == (1.0, 2.0)
  assert ctx.radius_km == 3.0
  derived = context_from_search(prefs("pho"), None, HCMC)
  assert derived.center == HCMC
  assert derived.radius_km == 5.0
