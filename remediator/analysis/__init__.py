"""Problem analysis: pattern matching plus model judgment."""

from .analyzer import ProblemAnalyzer, can_auto_fix
from .cache import AnalysisCache, CacheStats, InMemoryAnalysisCache, cache_key, normalize_message
from .prompts import build_analysis_prompt, build_fix_prompt

__all__ = [
    "ProblemAnalyzer",
    "can_auto_fix",
    "AnalysisCache",
    "InMemoryAnalysisCache",
    "CacheStats",
    "cache_key",
    "normalize_message",
    "build_analysis_prompt",
    "build_fix_prompt",
]
