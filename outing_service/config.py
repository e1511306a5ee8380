import os
from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
  """Runtime knobs read from the environment (and .env when running locally)."""

  default_acceptance_threshold: float = Field(0.7, gt=0, le=1)
  enrichment_timeout_seconds: float = Field(30.0, gt=0)
  enrichment_top_n: int = Field(5, ge=1)
  min_recommendation_score: float = 40.0
  candidate_limit: int = Field(20, ge=1)
  default_timezone: str = "UTC+07:00"
  voting_window_days: int = Field(3, ge=0)
  min_advance_days: int = Field(3, ge=0)
  ai_backend: str = "none"
  venue_catalog_path: Optional[str] = None
  maintenance_interval_seconds: float = Field(300.0, ge=0)


def load_settings() -> Settings:
  return Settings(
    default_acceptance_threshold=float(os.getenv("DEFAULT_ACCEPTANCE_THRESHOLD", "0.7")),
    enrichment_timeout_seconds=float(os.getenv("ENRICHMENT_TIMEOUT_SECONDS", "30")),
    enrichment_top_n=int(os.getenv("ENRICHMENT_TOP_N", "5")),
    min_recommendation_score=float(os.getenv("MIN_RECOMMENDATION_SCORE", "40")),
    candidate_limit=int(os.getenv("CANDIDATE_LIMIT", "20")),
    default_timezone=os.getenv("DEFAULT_TIMEZONE", "UTC+07:00"),
    voting_window_days=int(os.getenv("VOTING_WINDOW_DAYS", "3")),
    min_advance_days=int(os.getenv("MIN_ADVANCE_DAYS", "3")),
    ai_backend=os.getenv("AI_BACKEND", "none").lower(),
    venue_catalog_path=os.getenv("VENUE_CATALOG_PATH") or None,
    maintenance_interval_seconds=float(os.getenv("MAINTENANCE_INTERVAL_SECONDS", "300")),
  )
