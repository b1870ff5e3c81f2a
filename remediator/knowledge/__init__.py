"""Knowledge store for error signatures, fix templates and outcomes.

Key Components:
- KnowledgeStore: Pattern/template lookup and outcome learning
- DEFAULT_PATTERNS / DEFAULT_TEMPLATES: Seed knowledge for a fresh store

Usage:
    from remediator.knowledge import KnowledgeStore

    store = KnowledgeStore(project_dir / ".remediator" / "knowledge")
    templates = store.find_templates(record.type, record.source_ref.node_type)
"""

from .seeds import DEFAULT_PATTERNS, DEFAULT_TEMPLATES
from .store import KnowledgeStore, extract_message_pattern

__all__ = [
    "KnowledgeStore",
    "extract_message_pattern",
    "DEFAULT_PATTERNS",
    "DEFAULT_TEMPLATES",
]
