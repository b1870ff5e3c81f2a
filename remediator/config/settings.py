"""Remediation settings and loading from .remediator.json.

Settings are grouped into small dataclasses. ``load_config`` starts from
the defaults, merges the project's ``.remediator.json`` (if any) and then
applies ``REMEDIATOR_*`` environment overrides.
"""

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".remediator.json"
ENV_PREFIX = "REMEDIATOR_"


@dataclass
class IterationSettings:
    """Bounds for a single remediation loop."""
    max_iterations: int = 10
    iteration_timeout_ms: int = 300_000
    inter_attempt_delay_ms: int = 2_000  # after a failed test
    error_retry_delay_ms: int = 3_000  # after an unexpected exception

    @property
    def iteration_timeout(self) -> float:
        return self.iteration_timeout_ms / 1000.0

    @property
    def inter_attempt_delay(self) -> float:
        return self.inter_attempt_delay_ms / 1000.0

    @property
    def error_retry_delay(self) -> float:
        return self.error_retry_delay_ms / 1000.0


@dataclass
class FixerSettings:
    """Settings for fix selection and application."""
    max_fix_attempts: int = 5
    default_code_field: str = "jsCode"


@dataclass
class DetectionSettings:
    """Settings for the detector and the source watcher."""
    dedup_bucket_seconds: int = 60
    seen_capacity: int = 10_000
    poll_interval: float = 2.0
    log_extensions: list[str] = field(default_factory=lambda: [".log", ".jsonl", ".txt"])


@dataclass
class KnowledgeSettings:
    """Learning policy for the knowledge store."""
    recent_success_cap: int = 1_000
    promotion_min_code_length: int = 100
    promotion_confidence: float = 0.6
    pattern_confidence_step: float = 0.05
    learned_pattern_confidence: float = 0.6


@dataclass
class ModelSettings:
    """Settings for the external model service."""
    model: str = "claude-sonnet-4-20250514"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    max_tokens: int = 4096
    temperature: float = 0.0
    timeout_seconds: int = 120
    max_retries: int = 3
    retry_delay_base: float = 1.0
    retry_delay_max: float = 30.0


@dataclass
class PathSettings:
    """Filesystem locations, relative to the project directory."""
    workflows_dir: str = "workflows"
    logs_dir: str = "logs"
    state_dir: str = ".remediator"

    def resolve(self, project_dir: Path) -> dict[str, Path]:
        return {
            "workflows_dir": project_dir / self.workflows_dir,
            "logs_dir": project_dir / self.logs_dir,
            "state_dir": project_dir / self.state_dir,
            "knowledge_dir": project_dir / self.state_dir / "knowledge",
            "log_dir": project_dir / self.state_dir / "logs",
        }


@dataclass
class RemediationConfig:
    """Complete remediation configuration."""
    project_dir: Path = field(default_factory=Path.cwd)
    iteration: IterationSettings = field(default_factory=IterationSettings)
    fixer: FixerSettings = field(default_factory=FixerSettings)
    detection: DetectionSettings = field(default_factory=DetectionSettings)
    knowledge: KnowledgeSettings = field(default_factory=KnowledgeSettings)
    model: ModelSettings = field(default_factory=ModelSettings)
    paths: PathSettings = field(default_factory=PathSettings)

    @property
    def workflows_dir(self) -> Path:
        return self.paths.resolve(self.project_dir)["workflows_dir"]

    @property
    def logs_dir(self) -> Path:
        return self.paths.resolve(self.project_dir)["logs_dir"]

    @property
    def knowledge_dir(self) -> Path:
        return self.paths.resolve(self.project_dir)["knowledge_dir"]

    @property
    def log_dir(self) -> Path:
        return self.paths.resolve(self.project_dir)["log_dir"]

    def to_dict(self) -> dict:
        """Convert to dictionary for display. The API key is never included."""
        return {
            "project_dir": str(self.project_dir),
            "iteration": {
                "max_iterations": self.iteration.max_iterations,
                "iteration_timeout_ms": self.iteration.iteration_timeout_ms,
                "inter_attempt_delay_ms": self.iteration.inter_attempt_delay_ms,
                "error_retry_delay_ms": self.iteration.error_retry_delay_ms,
            },
            "fixer": {
                "max_fix_attempts": self.fixer.max_fix_attempts,
                "default_code_field": self.fixer.default_code_field,
            },
            "detection": {
                "dedup_bucket_seconds": self.detection.dedup_bucket_seconds,
                "seen_capacity": self.detection.seen_capacity,
                "poll_interval": self.detection.poll_interval,
                "log_extensions": list(self.detection.log_extensions),
            },
            "knowledge": {
                "recent_success_cap": self.knowledge.recent_success_cap,
                "promotion_min_code_length": self.knowledge.promotion_min_code_length,
                "promotion_confidence": self.knowledge.promotion_confidence,
                "pattern_confidence_step": self.knowledge.pattern_confidence_step,
                "learned_pattern_confidence": self.knowledge.learned_pattern_confidence,
            },
            "model": {
                "model": self.model.model,
                "base_url": self.model.base_url,
                "max_tokens": self.model.max_tokens,
                "temperature": self.model.temperature,
                "timeout_seconds": self.model.timeout_seconds,
                "max_retries": self.model.max_retries,
            },
            "paths": {
                "workflows_dir": self.paths.workflows_dir,
                "logs_dir": self.paths.logs_dir,
                "state_dir": self.paths.state_dir,
            },
        }


DEFAULT_CONFIG = RemediationConfig()

# Top-level camelCase option names accepted in .remediator.json
_FLAT_ALIASES: dict[str, tuple[str, str]] = {
    "maxIterations": ("iteration", "max_iterations"),
    "iterationTimeoutMs": ("iteration", "iteration_timeout_ms"),
    "interAttemptDelayMs": ("iteration", "inter_attempt_delay_ms"),
    "errorRetryDelayMs": ("iteration", "error_retry_delay_ms"),
    "maxFixAttempts": ("fixer", "max_fix_attempts"),
}

# Environment overrides: variable suffix -> (section, attribute)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "MAX_ITERATIONS": ("iteration", "max_iterations"),
    "ITERATION_TIMEOUT_MS": ("iteration", "iteration_timeout_ms"),
    "INTER_ATTEMPT_DELAY_MS": ("iteration", "inter_attempt_delay_ms"),
    "ERROR_RETRY_DELAY_MS": ("iteration", "error_retry_delay_ms"),
    "MAX_FIX_ATTEMPTS": ("fixer", "max_fix_attempts"),
    "DEDUP_BUCKET_SECONDS": ("detection", "dedup_bucket_seconds"),
    "POLL_INTERVAL": ("detection", "poll_interval"),
    "MODEL": ("model", "model"),
    "MODEL_BASE_URL": ("model", "base_url"),
}


def load_config(
    project_dir: str | Path,
    overrides: Optional[dict] = None,
    environ: Optional[dict[str, str]] = None,
) -> RemediationConfig:
    """Load remediation configuration for a project.

    Args:
        project_dir: Path to the project directory
        overrides: Extra settings merged last (same shape as the file)
        environ: Environment mapping, defaults to ``os.environ``

    Returns:
        RemediationConfig with merged settings

    Raises:
        ConfigurationError: If a value has the wrong type or is out of range
    """
    project_dir = Path(project_dir)
    config = copy.deepcopy(DEFAULT_CONFIG)
    config.project_dir = project_dir

    config_file = project_dir / CONFIG_FILE_NAME
    if config_file.exists():
        try:
            custom = json.loads(config_file.read_text())
            config = _merge_config(config, custom)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse {config_file}: {e}")

    _apply_env(config, os.environ if environ is None else environ)

    if overrides:
        config = _merge_config(config, overrides)

    _validate(config)
    return config


def _coerce(section: str, name: str, current: Any, value: Any) -> Any:
    caster: Callable[[Any], Any]
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        caster = bool
    elif isinstance(current, int):
        caster = int
    elif isinstance(current, float):
        caster = float
    elif isinstance(current, list):
        caster = list
    else:
        caster = str
    try:
        return caster(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {section}.{name}: {value!r} ({e})") from e


def _set(config: RemediationConfig, section: str, name: str, value: Any) -> None:
    target = getattr(config, section)
    if not hasattr(target, name):
        logger.warning(f"Unknown setting ignored: {section}.{name}")
        return
    current = getattr(target, name)
    if current is None:
        setattr(target, name, value)
    else:
        setattr(target, name, _coerce(section, name, current, value))


def _merge_config(base: RemediationConfig, custom: dict) -> RemediationConfig:
    """Merge custom settings into a base config.

    Args:
        base: Base RemediationConfig
        custom: Custom config dictionary, either sectioned
            (``{"iteration": {"max_iterations": 3}}``) or using the flat
            camelCase aliases (``{"maxIterations": 3}``)

    Returns:
        Merged RemediationConfig
    """
    for key, value in custom.items():
        if key in _FLAT_ALIASES:
            section, name = _FLAT_ALIASES[key]
            _set(base, section, name, value)
        elif key in ("iteration", "fixer", "detection", "knowledge", "model", "paths"):
            if not isinstance(value, dict):
                raise ConfigurationError(f"Section '{key}' must be an object")
            for name, item in value.items():
                _set(base, key, name, item)
        else:
            logger.warning(f"Unknown config key ignored: {key}")
    return base


def _apply_env(config: RemediationConfig, environ: dict[str, str]) -> None:
    for suffix, (section, name) in _ENV_OVERRIDES.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is not None and value != "":
            _set(config, section, name, value)


def _validate(config: RemediationConfig) -> None:
    if config.iteration.max_iterations < 1:
        raise ConfigurationError("max_iterations must be at least 1")
    if config.iteration.iteration_timeout_ms <= 0:
        raise ConfigurationError("iteration_timeout_ms must be positive")
    if config.iteration.inter_attempt_delay_ms < 0 or config.iteration.error_retry_delay_ms < 0:
        raise ConfigurationError("attempt delays must not be negative")
    if config.fixer.max_fix_attempts < 1:
        raise ConfigurationError("max_fix_attempts must be at least 1")
    if config.detection.dedup_bucket_seconds < 1:
        raise ConfigurationError("dedup_bucket_seconds must be at least 1")
    if not 0.0 <= config.knowledge.promotion_confidence <= 1.0:
        raise ConfigurationError("promotion_confidence must be between 0 and 1")
