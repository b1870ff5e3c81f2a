"""Cache of analysis results keyed by error class."""

import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional, Protocol

from ..models import Analysis, ErrorRecord

_UUID = re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}", re.IGNORECASE)
_HEX_ID = re.compile(r"\b(0x)?[a-f0-9]{12,}\b", re.IGNORECASE)
_DIGITS = re.compile(r"\d+")
_SPACE = re.compile(r"\s+")


def normalize_message(message: str) -> str:
    """Reduce a message to its error class.

    Lowercases, replaces ids with ``<id>`` and numbers with ``#`` and
    collapses whitespace, so "row 12 failed" and "row 13 failed" compare
    equal.
    """
    text = message.lower()
    text = _UUID.sub("<id>", text)
    text = _HEX_ID.sub("<id>", text)
    text = _DIGITS.sub("#", text)
    return _SPACE.sub(" ", text).strip()


CacheKey = tuple[str, str, str]


def cache_key(record: ErrorRecord) -> CacheKey:
    return (record.type.value, normalize_message(record.message), record.source_ref.node_id or "")


class AnalysisCache(Protocol):
    def get(self, key: CacheKey) -> Optional[Analysis]:
        ...

    def set(self, key: CacheKey, analysis: Analysis) -> None:
        ...

    def clear(self) -> None:
        ...


@dataclass
class CacheStats:
    """Statistics for the analysis cache."""

    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict:
        return {"hits": self.hits, "misses": self.misses, "hit_rate": self.hit_rate}


class InMemoryAnalysisCache:
    """LRU cache of analyses, bounded to ``max_entries``."""

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self._entries: OrderedDict[CacheKey, Analysis] = OrderedDict()
        self.stats = CacheStats()

    def get(self, key: CacheKey) -> Optional[Analysis]:
        analysis = self._entries.get(key)
        if analysis is None:
            self.stats.misses += 1
            return None
        self._entries.move_to_end(key)
        self.stats.hits += 1
        return analysis

    def set(self, key: CacheKey, analysis: Analysis) -> None:
        self._entries[key] = analysis
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
