"""Tests for the model service layer."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from remediator.config import ModelSettings
from remediator.llm import (
    AnalysisResponse,
    ClaudeModelService,
    FixResponse,
    ModelPrompt,
    parse_json_response,
    validate_response,
)


def make_response(text: str, input_tokens: int = 10, output_tokens: int = 5):
    return SimpleNamespace(
        content=[SimpleNamespace(text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def make_client(*results):
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=list(results))
    client.close = AsyncMock()
    return client


FIX_JSON = '{"fixedCode": "return $input.all();", "description": "Return items", "riskLevel": "low"}'


class TestParseJsonResponse:
    """Tests for extracting JSON from model output."""

    def test_plain_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_markdown_block(self):
        text = 'Here is the fix:\n```json\n{"a": 1}\n```\nDone.'
        assert parse_json_response(text) == {"a": 1}

    def test_embedded_object(self):
        assert parse_json_response('The answer is {"a": {"b": 2}} as requested') == {"a": {"b": 2}}

    def test_not_an_object(self):
        assert parse_json_response("[1, 2]") is None
        assert parse_json_response("no json here") is None
        assert parse_json_response("") is None


class TestValidateResponse:
    """Tests for schema validation of parsed responses."""

    def test_aliases_are_normalized(self):
        data, error = validate_response(
            {"rootCause": "x is undefined", "complexity": "simple", "confidence": 0.5},
            AnalysisResponse,
        )
        assert error is None
        assert data == {
            "root_cause": "x is undefined",
            "problem_description": "",
            "severity": "medium",
            "complexity": "simple",
            "confidence": 0.5,
            "recommendation": None,
        }

    def test_invalid_data(self):
        data, error = validate_response({"rootCause": "x", "complexity": "huge", "confidence": 2}, AnalysisResponse)
        assert data is None
        assert error.startswith("Schema validation failed")

    def test_empty_fixed_code_is_rejected(self):
        data, error = validate_response({"fixedCode": "", "description": "noop"}, FixResponse)
        assert data is None
        assert error is not None

    def test_missing_json(self):
        assert validate_response(None, FixResponse) == (None, "Response did not contain a JSON object")

    def test_no_schema(self):
        assert validate_response({"a": 1}, None) == ({"a": 1}, None)


class TestClaudeModelService:
    """Tests for the Anthropic backed model service."""

    @pytest.fixture
    def settings(self):
        return ModelSettings(model="test-model", max_retries=2, retry_delay_base=0.0)

    @pytest.mark.asyncio
    async def test_successful_request(self, settings):
        client = make_client(make_response(FIX_JSON))
        service = ClaudeModelService(settings, client=client)

        result = await service.request(ModelPrompt("fix it", response_schema=FixResponse, purpose="fix"))

        assert result.success
        assert result.parsed_output["fixed_code"] == "return $input.all();"
        assert result.parsed_output["risk_level"] == "low"
        assert result.usage.total_tokens == 15
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["messages"] == [{"role": "user", "content": "fix it"}]
        assert kwargs["temperature"] == 0.0

    @pytest.mark.asyncio
    async def test_prompt_overrides(self, settings):
        client = make_client(make_response("{}"))
        service = ClaudeModelService(settings, client=client)

        await service.request(ModelPrompt("p", system_prompt="sys", max_tokens=100, temperature=0.3))

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["max_tokens"] == 100
        assert kwargs["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_api_errors_are_retried(self, settings):
        client = make_client(RuntimeError("overloaded"), make_response(FIX_JSON))
        service = ClaudeModelService(settings, client=client)

        result = await service.request(ModelPrompt("fix it", response_schema=FixResponse))

        assert result.success
        assert client.messages.create.await_count == 2
        assert service.get_stats()["failures"] == 1

    @pytest.mark.asyncio
    async def test_all_retries_fail(self, settings):
        client = make_client(RuntimeError("boom"), RuntimeError("boom"))
        service = ClaudeModelService(settings, client=client)

        result = await service.request(ModelPrompt("fix it"))

        assert not result.success
        assert result.error == "All 2 retries failed: RuntimeError: boom"

    @pytest.mark.asyncio
    async def test_unusable_answer_is_not_retried(self, settings):
        client = make_client(make_response("I cannot help with that"))
        service = ClaudeModelService(settings, client=client)

        result = await service.request(ModelPrompt("fix it", response_schema=FixResponse))

        assert not result.success
        assert result.output == "I cannot help with that"
        assert result.error == "Response did not contain a JSON object"
        assert client.messages.create.await_count == 1

    @pytest.mark.asyncio
    async def test_stats_accumulate_usage(self, settings):
        client = make_client(make_response("{}", 3, 4), make_response("{}", 5, 6))
        service = ClaudeModelService(settings, client=client)

        await service.request(ModelPrompt("a"))
        await service.request(ModelPrompt("b"))

        stats = service.get_stats()
        assert stats["calls"] == 2
        assert stats["usage"] == {"input_tokens": 8, "output_tokens": 10, "total_tokens": 18}

    @pytest.mark.asyncio
    async def test_close_releases_client(self, settings):
        client = make_client()
        async with ClaudeModelService(settings, client=client) as service:
            assert service._client is client
        client.close.assert_awaited_once()
        assert service._client is None

    def test_is_available(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert not ClaudeModelService.is_available()
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        assert ClaudeModelService.is_available()
