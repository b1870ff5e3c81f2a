"""Fix selection and application.

Key Components:
- CodeFixer: Picks a recommendation, template or generated fix and writes it
- customize_template: Fills template placeholders for a specific error

Usage:
    from remediator.fixing import CodeFixer

    fixer = CodeFixer(knowledge, definitions, model_service)
    outcome = await fixer.apply_fix(record, analysis)
"""

from .fixer import (
    FIX_METADATA_KEY,
    MAX_ATTEMPTS_REASON,
    NO_FIX_REASON,
    CodeFixer,
    customize_template,
)

__all__ = [
    "CodeFixer",
    "customize_template",
    "FIX_METADATA_KEY",
    "MAX_ATTEMPTS_REASON",
    "NO_FIX_REASON",
]
