from datetime import datetime, time, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def new_id() -> str:
  return uuid4().hex


class EventStatus(str, Enum):
  DRAFT = "draft"
  PLANNING = "planning"
  INVITING = "inviting"
  GATHERING_PREFERENCES = "gathering_preferences"
  AI_RECOMMENDING = "ai_recommending"
  VOTING = "voting"
  CONFIRMED = "confirmed"
  COMPLETED = "completed"
  CANCELLED = "cancelled"

  @property
  def is_terminal(self) -> bool:
    return self in (EventStatus.COMPLETED, EventStatus.CANCELLED)


class InvitationStatus(str, Enum):
  PENDING = "pending"
  ACCEPTED = "accepted"
  DECLINED = "declined"


class OptionOrigin(str, Enum):
  AI = "ai"
  ORGANIZER = "organizer"
  USER = "user"


class VerificationStatus(str, Enum):
  APPROVED = "approved"
  PENDING = "pending"
  REJECTED = "rejected"


class Coordinates(BaseModel):
  latitude: float
  longitude: float


class VenueTag(BaseModel):
  name: str
  active: bool = True


class Venue(BaseModel):
  """Catalog venue as seen by the planner. Read-only to this service."""

  id: str
  name: str
  category: Optional[str] = None
  tags: List[VenueTag] = []
  latitude: float = 0.0
  longitude: float = 0.0
  average_rating: float = 0.0
  review_count: int = 0
  like_count: int = 0
  price_level: Optional[float] = None
  capacity: Optional[int] = None
  open_time: Optional[time] = None
  close_time: Optional[time] = None
  verification_status: VerificationStatus = VerificationStatus.APPROVED
  is_deleted: bool = False
  city: Optional[str] = None
  timezone: Optional[str] = None
  description: Optional[str] = None
  best_time_to_visit: Optional[str] = None
  busy_time: Optional[str] = None

  @property
  def active_tags(self) -> List[str]:
    return [tag.name for tag in self.tags if tag.active and tag.name]

  @property
  def is_selectable(self) -> bool:
    return not self.is_deleted and self.verification_status == VerificationStatus.APPROVED


class ExternalVenueRef(BaseModel):
  source: Optional[str] = None
  sourceId: Optional[str] = None
  name: Optional[str] = None
  url: Optional[str] = None


class AnalysisProgress(BaseModel):
  """Progress of the recommendation run, stored on the event record."""

  current_step: int = 1
  current_step_name: str = "Collecting team preferences"
  percentage: float = 0.0
  total_participants: Optional[int] = None
  cuisine_types_identified: Optional[int] = None
  average_budget: Optional[float] = None
  search_radius_km: Optional[float] = None
  selection_tier: Optional[str] = None
  venues_found: Optional[int] = None
  venues_scored: Optional[int] = None
  venues_passed_threshold: Optional[int] = None
  venues_sent_for_enrichment: Optional[int] = None
  enrichment_status: Literal["pending", "completed", "timed_out", "errored", "skipped"] = "pending"
  suggested_category: Optional[str] = None
  suggested_tags: List[str] = []
  final_recommendations: Optional[int] = None
  updated_at: datetime = Field(default_factory=utcnow)


class Event(BaseModel):
  id: str = Field(default_factory=new_id)
  organizer_id: str
  title: str
  description: Optional[str] = None
  event_type: str = "meal"
  status: EventStatus = EventStatus.DRAFT
  scheduled_at: datetime
  timezone: str = "UTC+00:00"
  estimated_duration_minutes: Optional[int] = None
  expected_attendees: int
  max_attendees: Optional[int] = None
  acceptance_threshold: float = 0.7
  final_venue_id: Optional[str] = None
  venue_chosen_at_creation: bool = False
  rsvp_deadline: Optional[datetime] = None
  voting_deadline: Optional[datetime] = None
  budget_total: Optional[float] = None
  budget_per_person: Optional[float] = None
  previous_scheduled_at: Optional[datetime] = None
  reschedule_count: int = 0
  reschedule_reason: Optional[str] = None
  last_rescheduled_at: Optional[datetime] = None
  cancellation_reason: Optional[str] = None
  options_locked: bool = False
  analysis_progress: Optional[AnalysisProgress] = None
  created_at: datetime = Field(default_factory=utcnow)
  updated_at: datetime = Field(default_factory=utcnow)
  confirmed_at: Optional[datetime] = None
  cancelled_at: Optional[datetime] = None
  completed_at: Optional[datetime] = None
  analysis_started_at: Optional[datetime] = None


class Participant(BaseModel):
  event_id: str
  user_id: str
  invitation_status: InvitationStatus = InvitationStatus.PENDING
  invited_at: datetime = Field(default_factory=utcnow)
  invited_by: Optional[str] = None
  rsvp_at: Optional[datetime] = None
  # reminder kind -> when it went out
  reminders_sent: Dict[str, datetime] = {}


class VenueOption(BaseModel):
  id: str = Field(default_factory=new_id)
  event_id: str
  venue_id: Optional[str] = None
  external: Optional[ExternalVenueRef] = None
  origin: OptionOrigin = OptionOrigin.AI
  score: Optional[float] = None
  reasoning: Optional[str] = None
  pros: List[str] = []
  cons: List[str] = []
  estimated_cost_per_person: Optional[float] = None
  created_at: datetime = Field(default_factory=utcnow)
  sequence: int = 0


class Vote(BaseModel):
  event_id: str
  option_id: str
  voter_id: str
  value: int = 1
  comment: Optional[str] = None
  voted_at: datetime = Field(default_factory=utcnow)


class EventDetails(BaseModel):
  event: Event
  participants: List[Participant] = []
  options: List[VenueOption] = []


class UserPreference(BaseModel):
  """Preference profile of a single participant, as supplied by the profile store."""

  user_id: str
  cuisines: List[str] = []
  budget: Optional[float] = None
  distance_radius_km: Optional[float] = None


class AggregatedPreferences(BaseModel):
  cuisine_types: List[str] = []
  preference_weights: Dict[str, int] = {}
  average_budget: float = 30.0
  max_radius_km: float = 10.0
  participant_ids: List[str] = []


class ScoredVenue(BaseModel):
  venue: Venue
  score: float
  reasoning: str
  pros: List[str] = []
  cons: List[str] = []


class VenueAnalysis(BaseModel):
  """Per-venue adjustment returned by the external AI scorer."""

  venue_id: str
  adjusted_score: Optional[float] = None
  reasoning: Optional[str] = None
  pros: Optional[List[str]] = None
  cons: Optional[List[str]] = None


class VenueAnalysisResult(BaseModel):
  venue_analyses: List[VenueAnalysis] = []
  overall_insight: Optional[str] = None
  suggested_category: Optional[str] = None
  suggested_tags: List[str] = []


class SearchArea(BaseModel):
  latitude: Optional[float] = None
  longitude: Optional[float] = None
  radius_km: Optional[float] = Field(default=None, gt=0)


# Request payloads shared between the HTTP layer and the planner.


class CreateEventRequest(BaseModel):
  title: str = Field(..., min_length=2, max_length=200)
  description: Optional[str] = None
  event_type: str = Field("meal", min_length=2, max_length=50)
  local_start: datetime
  timezone: Optional[str] = None
  estimated_duration_minutes: Optional[int] = Field(default=None, gt=0)
  expected_attendees: int = Field(..., ge=1)
  max_attendees: Optional[int] = Field(default=None, ge=1)
  acceptance_threshold: Optional[float] = Field(default=None, gt=0, le=1)
  venue_id: Optional[str] = None
  rsvp_deadline: Optional[datetime] = None
  budget_total: Optional[float] = Field(default=None, ge=0)
  budget_per_person: Optional[float] = Field(default=None, ge=0)


class UpdateEventRequest(BaseModel):
  title: Optional[str] = Field(default=None, min_length=2, max_length=200)
  description: Optional[str] = None
  event_type: Optional[str] = None
  local_start: Optional[datetime] = None
  estimated_duration_minutes: Optional[int] = Field(default=None, gt=0)
  expected_attendees: Optional[int] = Field(default=None, ge=1)
  max_attendees: Optional[int] = Field(default=None, ge=1)
  acceptance_threshold: Optional[float] = Field(default=None, gt=0, le=1)
  budget_total: Optional[float] = Field(default=None, ge=0)
  budget_per_person: Optional[float] = Field(default=None, ge=0)


class InviteRequest(BaseModel):
  user_ids: List[str] = []


class CancelRequest(BaseModel):
  reason: str = ""


class RescheduleRequest(BaseModel):
  local_start: datetime
  reason: str = Field(..., min_length=1, max_length=500)


class AddOptionRequest(BaseModel):
  venue_id: str


class VoteRequest(BaseModel):
  option_id: str
  value: int = 1
  comment: Optional[str] = Field(default=None, max_length=500)


class FinalizeRequest(BaseModel):
  option_id: Optional[str] = None
  venue_id: Optional[str] = None
