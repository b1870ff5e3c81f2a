"""Configuration package for remediation settings."""

from .settings import (
    CONFIG_FILE_NAME,
    DEFAULT_CONFIG,
    DetectionSettings,
    FixerSettings,
    IterationSettings,
    KnowledgeSettings,
    ModelSettings,
    PathSettings,
    RemediationConfig,
    load_config,
)

__all__ = [
    "RemediationConfig",
    "IterationSettings",
    "FixerSettings",
    "DetectionSettings",
    "KnowledgeSettings",
    "ModelSettings",
    "PathSettings",
    "DEFAULT_CONFIG",
    "CONFIG_FILE_NAME",
    "load_config",
]
