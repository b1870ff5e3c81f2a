"""Logging setup with secrets redaction.

Log records pass through ``SecretsRedactor`` before any handler formats
them, so model prompts, responses and workflow parameters logged by the
components never leak credentials. ``setup_logging`` wires a console
handler and a size-rotated file handler under the state directory.
"""

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Default rotation settings
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB
DEFAULT_MAX_BACKUP_COUNT = 5
LOG_FILE_NAME = "remediator.log"

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class SecretsRedactor(logging.Filter):
    """Redact secrets from log records.

    Detects API keys, bearer tokens, passwords and credentials embedded in
    workflow parameters and replaces them before the record is emitted.
    """

    PATTERNS = [
        # Anthropic/OpenAI style API keys (must come before the generic patterns)
        (r"\bsk-(?:ant-)?[a-zA-Z0-9_\-]{10,}", "***API_KEY_REDACTED***"),
        (r"\b(ghp_[a-zA-Z0-9]{36,})", "***GITHUB_PAT_REDACTED***"),
        (r"\b(AKIA[0-9A-Z]{16})", "***AWS_KEY_REDACTED***"),
        (r"\bAIza[0-9A-Za-z\-_]{35}", "***GOOGLE_API_KEY_REDACTED***"),
        (
            r'(?i)(api[_-]?key|apikey|x-api-key)["\s:=]+["\']?([a-zA-Z0-9_\-]{20,})["\']?',
            r"\1=***REDACTED***",
        ),
        (r'(?i)(password|passwd|pwd)["\s:=]+["\']?([^\s"\']+)["\']?', r"\1=***REDACTED***"),
        (r'(?i)(secret|token)["\s:=]+["\']?([a-zA-Z0-9_\-]{10,})["\']?', r"\1=***REDACTED***"),
        (r"(?i)(bearer\s+)([a-zA-Z0-9_\-\.]+)", r"\1***REDACTED***"),
        # Basic auth in URLs (n8n HTTP nodes)
        (r"(?i)(https?://)([^/\s:@]+):([^/\s@]+)@", r"\1\2:***REDACTED***@"),
        (
            r"-----BEGIN (?:RSA |EC )?PRIVATE KEY-----[\s\S]*?-----END (?:RSA |EC )?PRIVATE KEY-----",
            "***PRIVATE_KEY_REDACTED***",
        ),
    ]

    def __init__(self, name: str = ""):
        """Initialize with compiled patterns."""
        super().__init__(name)
        self._compiled_patterns = [
            (re.compile(pattern), replacement) for pattern, replacement in self.PATTERNS
        ]

    def redact(self, message: str) -> str:
        """Redact sensitive information from message.

        Args:
            message: The log message that may contain secrets

        Returns:
            The message with secrets redacted
        """
        for pattern, replacement in self._compiled_patterns:
            message = pattern.sub(replacement, message)
        return message

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(
    log_dir: Optional[Path] = None,
    debug: bool = False,
    console: bool = True,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    max_backup_count: int = DEFAULT_MAX_BACKUP_COUNT,
) -> logging.Logger:
    """Configure the ``remediator`` logger hierarchy.

    Args:
        log_dir: Directory for the rotated log file; no file logging when None
        debug: Enable debug logging
        console: Also log to stderr
        max_file_size: Bytes before the log file rotates
        max_backup_count: Rotated files kept

    Returns:
        The configured package logger
    """
    root = logging.getLogger("remediator")
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    redactor = SecretsRedactor()

    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        stream.addFilter(redactor)
        root.addHandler(stream)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=max_file_size,
            backupCount=max_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        file_handler.addFilter(redactor)
        root.addHandler(file_handler)

    root.propagate = False
    return root
