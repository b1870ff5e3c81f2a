"""Model service interface.

The analyzer and the fixer talk to the external language model through
the ``ModelService`` protocol: a prompt goes in, a ModelResult with the
raw text and the parsed JSON comes out. Implementations never raise for
API failures; they return ``success=False`` with the error message.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Type

from pydantic import BaseModel

logger = logging.getLogger(__name__)


@dataclass
class TokenUsageInfo:
    """Token usage information from API calls."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ModelPrompt:
    """A request to the model service.

    Attributes:
        prompt: User prompt
        system_prompt: Optional system prompt
        response_schema: Pydantic model the JSON response must satisfy
        purpose: Short label used in logs ("analysis", "fix")
        max_tokens: Override for the configured max tokens
        temperature: Override for the configured temperature
    """

    prompt: str
    system_prompt: Optional[str] = None
    response_schema: Optional[Type[BaseModel]] = None
    purpose: str = "generic"
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


@dataclass
class ModelResult:
    """Result from a model service call."""

    success: bool
    output: Optional[str] = None
    parsed_output: Optional[dict] = None
    error: Optional[str] = None
    usage: Optional[TokenUsageInfo] = None
    duration_seconds: float = 0.0
    model: Optional[str] = None
    raw_response: Optional[Any] = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "output": self.output,
            "parsed_output": self.parsed_output,
            "error": self.error,
            "usage": self.usage.to_dict() if self.usage else None,
            "duration_seconds": self.duration_seconds,
            "model": self.model,
        }


class ModelService(Protocol):
    """Opaque external model used for analysis and fix generation."""

    async def request(self, prompt: ModelPrompt) -> ModelResult:
        ...


def parse_json_response(text: str) -> Optional[dict]:
    """Parse JSON from a response that may contain markdown code blocks.

    Args:
        text: Response text that may contain JSON

    Returns:
        Parsed JSON dict or None if parsing fails
    """
    if not text:
        return None

    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    json_match = re.search(r"```(?:json)?\s*\n?([\s\S]*?)\n?```", text)
    if json_match:
        try:
            parsed = json.loads(json_match.group(1))
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    brace_match = re.search(r"\{[\s\S]*\}", text)
    if brace_match:
        try:
            parsed = json.loads(brace_match.group(0))
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    return None


def validate_response(
    parsed: Optional[dict], schema: Optional[Type[BaseModel]]
) -> tuple[Optional[dict], Optional[str]]:
    """Validate parsed JSON against a response schema.

    Returns:
        (validated data, None) on success or (None, error message)
    """
    if parsed is None:
        return None, "Response did not contain a JSON object"
    if schema is None:
        return parsed, None
    try:
        return schema.model_validate(parsed).model_dump(), None
    except Exception as e:
        logger.warning(f"Schema validation failed: {e}")
        return None, f"Schema validation failed: {e}"
