import json
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx

from outing_service.models import (
  AggregatedPreferences,
  Coordinates,
  Event,
  ScoredVenue,
  VenueAnalysis,
  VenueAnalysisResult,
)


def _build_prompt(
  candidates: Sequence[ScoredVenue],
  prefs: AggregatedPreferences,
  event: Event,
  participant_locations: Sequence[Coordinates],
) -> str:
  candidates_json = [
    {
      "id": c.venue.id,
      "name": c.venue.name,
      "category": c.venue.category,
      "tags": c.venue.active_tags,
      "price_per_person": c.venue.price_level,
      "capacity": c.venue.capacity,
      "rating": c.venue.average_rating,
      "reviews": c.venue.review_count,
      "traditional_score": round(c.score, 1),
      "description": c.venue.description,
    }
    for c in candidates
  ]
  locations_json = [{"lat": p.latitude, "lng": p.longitude} for p in participant_locations]

  return f"""
You are helping a team pick a venue for a group outing. Re-score the supplied candidates and respond with JSON only.
Event:
- title: {event.title}
- type: {event.event_type}
- expected attendees: {event.expected_attendees}
- budget per person: {event.budget_per_person if event.budget_per_person is not None else 'unknown'}
Team preferences:
- cuisines (most popular first): {', '.join(prefs.cuisine_types) or 'none given'}
- average budget per person (USD): {prefs.average_budget}
- max travel radius (km): {prefs.max_radius_km}
- participant locations: {json.dumps(locations_json)}

Candidate venues (JSON):
{json.dumps(candidates_json, ensure_ascii=False)}

Return a JSON object with these keys:
- venue_analyses: a list with one entry per candidate, each with id, adjusted_score (0-100), reasoning, pros (list), cons (list)
- overall_insight
- suggested_category: the venue category that would suit this team best
- suggested_tags: a short list of venue tags worth searching for
Respond with valid JSON only and nothing else.
""".strip()


def _parse_result(text: str) -> VenueAnalysisResult:
  """Turn the model's JSON text into a result; raises when the text is not JSON."""
  cleaned = text.strip()
  if cleaned.startswith("```"):
    cleaned = cleaned.strip("`")
    if cleaned.lower().startswith("json"):
      cleaned = cleaned[4:]
  parsed: Dict[str, Any] = json.loads(cleaned or "{}")
  analyses = [
    VenueAnalysis(
      venue_id=str(item.get("id") or item.get("venue_id")),
      adjusted_score=item.get("adjusted_score"),
      reasoning=item.get("reasoning"),
      pros=item.get("pros"),
      cons=item.get("cons"),
    )
    for item in parsed.get("venue_analyses", [])
    if item.get("id") or item.get("venue_id")
  ]
  return VenueAnalysisResult(
    venue_analyses=analyses,
    overall_insight=parsed.get("overall_insight"),
    suggested_category=parsed.get("suggested_category"),
    suggested_tags=parsed.get("suggested_tags") or [],
  )


class VenueAnalyzer(ABC):
  """External AI scorer. Implementations raise on any transport or parse failure."""

  @abstractmethod
  async def analyze_venues(
    self,
    candidates: Sequence[ScoredVenue],
    prefs: AggregatedPreferences,
    event: Event,
    participant_locations: Sequence[Coordinates],
  ) -> VenueAnalysisResult:
    raise NotImplementedError


class OllamaVenueAnalyzer(VenueAnalyzer):
  def __init__(self, base_url: str = "http://localhost:11434", model: str = "llama3") -> None:
    self.base_url = base_url.rstrip("/")
    self.model = model

  async def analyze_venues(
    self,
    candidates: Sequence[ScoredVenue],
    prefs: AggregatedPreferences,
    event: Event,
    participant_locations: Sequence[Coordinates],
  ) -> VenueAnalysisResult:
    if not candidates:
      return VenueAnalysisResult()
    prompt = _build_prompt(candidates, prefs, event, participant_locations)
    payload = {"model": self.model, "prompt": prompt, "stream": False, "format": "json"}
    async with httpx.AsyncClient(timeout=60.0) as client:
      resp = await client.post(f"{self.base_url}/api/generate", json=payload)
      resp.raise_for_status()
      data = resp.json()
    return _parse_result(data.get("response") or "")


class HuggingFaceVenueAnalyzer(VenueAnalyzer):
  def __init__(self, api_token: str, model: str = "tiiuae/falcon-7b-instruct") -> None:
    self.api_token = api_token
    self.model = model
    self.api_url = f"https://api-inference.huggingface.co/models/{model}"

  async def analyze_venues(
    self,
    candidates: Sequence[ScoredVenue],
    prefs: AggregatedPreferences,
    event: Event,
    participant_locations: Sequence[Coordinates],
  ) -> VenueAnalysisResult:
    if not candidates:
      return VenueAnalysisResult()
    prompt = _build_prompt(candidates, prefs, event, participant_locations)
    headers = {"Authorization": f"Bearer {self.api_token}"}
    payload = {
      "inputs": prompt,
      "parameters": {"max_new_tokens": 800, "temperature": 0.2, "return_full_text": False},
    }
    async with httpx.AsyncClient(timeout=60.0, headers=headers) as client:
      resp = await client.post(self.api_url, json=payload)
      resp.raise_for_status()
      data = resp.json()
    if isinstance(data, list) and data and "generated_text" in data[0]:
      text = data[0]["generated_text"]
    else:
      text = json.dumps(data)
    return _parse_result(text)


class GeminiVenueAnalyzer(VenueAnalyzer):
  def __init__(self, api_key: str, model: str = "gemini-1.5-flash") -> None:
    self.api_key = api_key
    self.model = model

  async def analyze_venues(
    self,
    candidates: Sequence[ScoredVenue],
    prefs: AggregatedPreferences,
    event: Event,
    participant_locations: Sequence[Coordinates],
  ) -> VenueAnalysisResult:
    if not candidates:
      return VenueAnalysisResult()
    prompt = _build_prompt(candidates, prefs, event, participant_locations)
    url = f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent?key={self.api_key}"
    payload = {
      "contents": [{"parts": [{"text": prompt}]}],
      "generationConfig": {"temperature": 0.2, "maxOutputTokens": 1200, "responseMimeType": "application/json"},
    }
    async with httpx.AsyncClient(timeout=60.0) as client:
      resp = await client.post(url, json=payload)
      resp.raise_for_status()
      data = resp.json()
    parts = (
      data.get("candidates", [{}])[0]
      .get("content", {})
      .get("parts", [])
    )
    text = ""
    for part in parts:
      if isinstance(part, dict) and "text" in part:
        text += part["text"]
    return _parse_result(text)


def get_venue_analyzer(backend: Optional[str] = None) -> Optional[VenueAnalyzer]:
  """Build the configured AI scorer; ``none`` disables enrichment."""
  backend = (backend or os.getenv("AI_BACKEND", "none")).lower()
  if backend in ("", "none", "off"):
    return None
  if backend in ("gemini", "google"):
    token = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_GEMINI_API_KEY")
    model = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
    if not token:
      raise RuntimeError("GEMINI_API_KEY is required for Gemini backend")
    return GeminiVenueAnalyzer(api_key=token, model=model)
  if backend == "huggingface":
    token = os.getenv("HUGGINGFACE_API_TOKEN")
    model = os.getenv("HUGGINGFACE_MODEL", "tiiuae/falcon-7b-instruct")
    if not token:
      raise RuntimeError("HUGGINGFACE_API_TOKEN is required for Hugging Face backend")
    return HuggingFaceVenueAnalyzer(api_token=token, model=model)
  if backend == "ollama":
    model = os.getenv("OLLAMA_MODEL", "llama3")
    host = os.getenv("OLLAMA_HOST", "http://localhost:11434")
    return OllamaVenueAnalyzer(base_url=host, model=model)
  raise RuntimeError(f"Unknown AI_BACKEND: {backend}")
