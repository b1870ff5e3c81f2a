"""Utility modules."""

from .logging import SecretsRedactor, setup_logging

__all__ = ["SecretsRedactor", "setup_logging"]
