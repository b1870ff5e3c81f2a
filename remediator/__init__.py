"""Workflow failure remediation.

Detects failing nodes in n8n-style workflows, diagnoses them, applies and
verifies fixes in a bounded loop, and learns from every outcome.
"""

from .service import RemediationService

__version__ = "0.1.0"

__all__ = ["RemediationService", "__version__"]
