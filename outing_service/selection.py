import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from pydantic import BaseModel

from outing_service.models import AggregatedPreferences, SearchArea, Venue
from outing_service.repositories import VenueCatalog, VenueQuery

logger = logging.getLogger("outing_service")


class SelectionContext(BaseModel):
  prefs: AggregatedPreferences
  center: Optional[Tuple[float, float]] = None
  radius_km: Optional[float] = None
  suggested_category: Optional[str] = None
  suggested_tags: List[str] = []


class SelectionResult(BaseModel):
  tier: Optional[str]
  venues: List[Venue]


Strategy = Callable[[VenueCatalog, SelectionContext, int], Awaitable[List[Venue]]]


async def tag_match_in_radius(catalog: VenueCatalog, ctx: SelectionContext, limit: int) -> List[Venue]:
  if not ctx.prefs.cuisine_types or ctx.center is None or not ctx.radius_km:
    return []
  return await catalog.search(
    VenueQuery(tags=ctx.prefs.cuisine_types, center=ctx.center, radius_m=ctx.radius_km * 1000, limit=limit)
  )


async def tag_match(catalog: VenueCatalog, ctx: SelectionContext, limit: int) -> List[Venue]:
  if not ctx.prefs.cuisine_types:
    return []
  return await catalog.search(VenueQuery(tags=ctx.prefs.cuisine_types, limit=limit))


async def category_match(catalog: VenueCatalog, ctx: SelectionContext, limit: int) -> List[Venue]:
  if not ctx.prefs.cuisine_types:
    return []
  return await catalog.search(VenueQuery(categories=ctx.prefs.cuisine_types, limit=limit))


async def ai_suggestions(catalog: VenueCatalog, ctx: SelectionContext, limit: int) -> List[Venue]:
  category = (ctx.suggested_category or "").strip()
  tags = [t.strip() for t in ctx.suggested_tags if t and t.strip()]
  if not category and not tags:
    return []

  attempts: List[VenueQuery] = []
  if category:
    attempts.append(VenueQuery(categories=[category], ignore_category_case=True, order_by_reviews=False, limit=limit))
  if tags:
    attempts.append(VenueQuery(tags=tags, order_by_reviews=False, limit=limit))
  if category and tags:
    attempts.append(
      VenueQuery(categories=[category], tags=tags, ignore_category_case=True, order_by_reviews=False, limit=limit)
    )

  for query in attempts:
    venues = await catalog.search(query)
    if venues:
      return venues
  return []


async def cuisine_fallback(catalog: VenueCatalog, ctx: SelectionContext, limit: int) -> List[Venue]:
  if not ctx.prefs.cuisine_types:
    return []
  return await catalog.search(VenueQuery(categories=ctx.prefs.cuisine_types, order_by_reviews=False, limit=limit))


async def top_rated(catalog: VenueCatalog, ctx: SelectionContext, limit: int) -> List[Venue]:
  return await catalog.search(VenueQuery(order_by_reviews=False, limit=limit))


DEFAULT_STRATEGIES: List[Tuple[str, Strategy]] = [
  ("tag_match_in_radius", tag_match_in_radius),
  ("tag_match", tag_match),
  ("category_match", category_match),
  ("ai_suggestions", ai_suggestions),
  ("cuisine_fallback", cuisine_fallback),
  ("top_rated", top_rated),
]


class CandidateSelector:
  """Runs the candidate strategies in order and keeps the first non-empty result."""

  def __init__(
    self,
    catalog: VenueCatalog,
    limit: int = 20,
    strategies: Optional[List[Tuple[str, Strategy]]] = None,
  ) -> None:
    self.catalog = catalog
    self.limit = limit
    self.strategies = strategies if strategies is not None else DEFAULT_STRATEGIES

  async def select(self, ctx: SelectionContext) -> SelectionResult:
    for name, strategy in self.strategies:
      venues = await strategy(self.catalog, ctx, self.limit)
      if venues:
        logger.info("Candidate tier %s produced %d venues", name, len(venues))
        return SelectionResult(tier=name, venues=venues[: self.limit])
      logger.debug("Candidate tier %s produced nothing", name)
    logger.warning("No candidate venues found in any tier")
    return SelectionResult(tier=None, venues=[])


def context_from_search(
  prefs: AggregatedPreferences,
  search: Optional[SearchArea],
  center: Tuple[float, float],
  suggested_category: Optional[str] = None,
  suggested_tags: Optional[List[str]] = None,
) -> SelectionContext:
  """Pick the search point and radius: explicit values win over derived ones."""
  if search is not None and search.latitude is not None and search.longitude is not None:
    center = (search.latitude, search.longitude)
  radius = search.radius_km if search is not None and search.radius_km else prefs.max_radius_km
  return SelectionContext(
    prefs=prefs,
    center=center,
    radius_km=radius,
    suggested_category=suggested_category,
    suggested_tags=list(suggested_tags or []),
  )
