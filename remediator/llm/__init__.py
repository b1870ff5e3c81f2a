"""External model service used for analysis and fix generation."""

from .base import (
    ModelPrompt,
    ModelResult,
    ModelService,
    TokenUsageInfo,
    parse_json_response,
    validate_response,
)
from .claude import ClaudeModelService
from .schemas import AnalysisResponse, FixResponse, RecommendationResponse

__all__ = [
    "ModelService",
    "ModelPrompt",
    "ModelResult",
    "TokenUsageInfo",
    "parse_json_response",
    "validate_response",
    "ClaudeModelService",
    "AnalysisResponse",
    "FixResponse",
    "RecommendationResponse",
]
