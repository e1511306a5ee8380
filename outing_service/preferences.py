from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, List, Sequence

from outing_service.models import AggregatedPreferences, UserPreference

DEFAULT_BUDGET = 30.0
DEFAULT_RADIUS_KM = 10.0


def aggregate_preferences(participant_ids: Sequence[str], prefs: Sequence[UserPreference]) -> AggregatedPreferences:
  """Fold individual profiles into the group view consumed by selection and scoring."""
  cuisines: List[str] = []
  for pref in prefs:
    for raw in pref.cuisines:
      for item in raw.split(","):
        item = item.strip()
        if item:
          cuisines.append(item)

  counts = Counter(cuisines)
  # most_common keeps first-seen order among equal counts
  ordered = [name for name, _ in counts.most_common()]

  budgets = [p.budget for p in prefs if p.budget is not None]
  radii = [p.distance_radius_km for p in prefs if p.distance_radius_km]

  return AggregatedPreferences(
    cuisine_types=ordered,
    preference_weights=dict(counts),
    average_budget=float(int(sum(budgets) / len(budgets))) if budgets else DEFAULT_BUDGET,
    max_radius_km=max(radii) if radii else DEFAULT_RADIUS_KM,
    participant_ids=list(participant_ids),
  )


class PreferenceAggregator(ABC):
  """Produces the group preference view for a set of accepted participants."""

  @abstractmethod
  async def aggregate(self, event_id: str, participant_ids: List[str]) -> AggregatedPreferences:
    raise NotImplementedError


class InMemoryPreferenceStore(PreferenceAggregator):
  def __init__(self) -> None:
    self._prefs: Dict[str, UserPreference] = {}

  def put(self, pref: UserPreference) -> None:
    self._prefs[pref.user_id] = pref

  async def aggregate(self, event_id: str, participant_ids: List[str]) -> AggregatedPreferences:
    prefs = [self._prefs[uid] for uid in participant_ids if uid in self._prefs]
    return aggregate_preferences(participant_ids, prefs)
