from outing_service.llm.client import (
  VenueAnalyzer,
  OllamaVenueAnalyzer,
  HuggingFaceVenueAnalyzer,
  GeminiVenueAnalyzer,
  get_venue_analyzer,
)

__all__ = [
  "VenueAnalyzer",
  "OllamaVenueAnalyzer",
  "HuggingFaceVenueAnalyzer",
  "GeminiVenueAnalyzer",
  "get_venue_analyzer",
]
