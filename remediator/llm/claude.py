"""Model service backed by the Anthropic API."""

import asyncio
import logging
import os
import time
from typing import Any, Optional

from ..config import ModelSettings
from .base import ModelPrompt, ModelResult, TokenUsageInfo, parse_json_response, validate_response

logger = logging.getLogger(__name__)

# Environment variable for API key
ANTHROPIC_API_KEY_ENV = "ANTHROPIC_API_KEY"

SYSTEM_PROMPT = (
    "You are an expert in n8n workflow automation and JavaScript/Python code nodes. "
    "You diagnose failing workflow nodes and write minimal, safe fixes. "
    "Always answer with a single JSON object and nothing else."
)


class ClaudeModelService:
    """ModelService using Claude through the async Anthropic client.

    Failed calls are retried with exponential backoff. Responses are
    parsed as JSON and validated against the prompt's response schema;
    a response that does not validate is reported as a failure.

    Example:
        async with ClaudeModelService(config.model) as service:
            result = await service.request(ModelPrompt(prompt, response_schema=AnalysisResponse))
    """

    name = "claude"

    def __init__(self, settings: Optional[ModelSettings] = None, client: Any = None):
        """Initialize the service.

        Args:
            settings: Model settings (model, limits, retries)
            client: Pre-built client, mainly for tests
        """
        self.settings = settings or ModelSettings()
        self._client = client
        self._calls = 0
        self._failures = 0
        self._usage = TokenUsageInfo()

    @classmethod
    def is_available(cls) -> bool:
        """Check if an API key is configured."""
        return bool(os.environ.get(ANTHROPIC_API_KEY_ENV))

    async def __aenter__(self) -> "ClaudeModelService":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_client(self) -> Any:
        if self._client is None:
            from anthropic import AsyncAnthropic

            api_key = self.settings.api_key or os.environ.get(ANTHROPIC_API_KEY_ENV)
            self._client = AsyncAnthropic(
                api_key=api_key,
                base_url=self.settings.base_url,
                timeout=self.settings.timeout_seconds,
                max_retries=0,  # retries handled here
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
        self._client = None

    async def request(self, prompt: ModelPrompt) -> ModelResult:
        """Send a prompt, retrying API failures.

        Args:
            prompt: The prompt and its response schema

        Returns:
            ModelResult; ``success`` is False on API or schema failure
        """
        max_retries = max(1, self.settings.max_retries)
        last_error: Optional[str] = None

        for attempt in range(max_retries):
            result = await self._request_once(prompt)
            if result.success or result.raw_response is not None:
                # Unusable answers are not retried
                return result
            last_error = result.error

            if attempt < max_retries - 1:
                delay = min(
                    self.settings.retry_delay_base * (2 ** attempt),
                    self.settings.retry_delay_max,
                )
                logger.warning(
                    f"Retry {attempt + 1}/{max_retries} for {prompt.purpose} after {delay:.1f}s: {last_error}"
                )
                await asyncio.sleep(delay)

        return ModelResult(
            success=False,
            error=f"All {max_retries} retries failed: {last_error}",
            model=self.settings.model,
        )

    async def _request_once(self, prompt: ModelPrompt) -> ModelResult:
        client = self._ensure_client()
        kwargs: dict[str, Any] = {
            "model": self.settings.model,
            "max_tokens": prompt.max_tokens or self.settings.max_tokens,
            "messages": [{"role": "user", "content": prompt.prompt}],
            "system": prompt.system_prompt or SYSTEM_PROMPT,
            "temperature": (
                prompt.temperature if prompt.temperature is not None else self.settings.temperature
            ),
        }

        self._calls += 1
        start = time.monotonic()
        try:
            response = await client.messages.create(**kwargs)
        except Exception as e:
            self._failures += 1
            error_msg = f"{type(e).__name__}: {e}"
            logger.error(f"Claude API error during {prompt.purpose}: {error_msg}")
            return ModelResult(success=False, error=error_msg, model=self.settings.model)
        duration = time.monotonic() - start

        output_text = ""
        for block in response.content:
            if hasattr(block, "text"):
                output_text += block.text

        usage = None
        if getattr(response, "usage", None):
            usage = TokenUsageInfo(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )
            self._usage.input_tokens += usage.input_tokens
            self._usage.output_tokens += usage.output_tokens

        parsed, error = validate_response(parse_json_response(output_text), prompt.response_schema)
        if error:
            self._failures += 1
        return ModelResult(
            success=error is None,
            output=output_text,
            parsed_output=parsed,
            error=error,
            usage=usage,
            duration_seconds=duration,
            model=self.settings.model,
            raw_response=response,
        )

    def get_stats(self) -> dict:
        return {
            "model": self.settings.model,
            "calls": self._calls,
            "failures": self._failures,
            "usage": self._usage.to_dict(),
        }
