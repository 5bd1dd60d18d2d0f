"""
Tests for logging, configuration, errors and the Gemini provider adapter.
"""

import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest


class TestLogging:
    """Structured logging tests."""

    def test_json_formatter(self):
        from groundlint.logging import JSONFormatter

        formatter = JSONFormatter()
        record = logging.LogRecord(
            name="groundlint.test",
            level=logging.INFO,
            pathname="test.py",
            lineno=1,
            msg="Test message",
            args=(),
            exc_info=None,
        )
        parsed = json.loads(formatter.format(record))
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Test message"
        assert "timestamp" in parsed

    def test_json_formatter_extra_fields(self):
        from groundlint.logging import JSONFormatter

        formatter = JSONFormatter()
        record = logging.LogRecord(
            name="groundlint.test",
            level=logging.INFO,
            pathname="test.py",
            lineno=1,
            msg="Linted",
            args=(),
            exc_info=None,
        )
        record.file = "docs/a.md"
        record.errors = 2
        record.unrelated = "dropped"
        parsed = json.loads(formatter.format(record))
        assert parsed["file"] == "docs/a.md"
        assert parsed["errors"] == 2
        assert "unrelated" not in parsed

    def test_get_logger(self):
        from groundlint.logging import get_logger
        assert get_logger("orchestrator").name == "groundlint.orchestrator"

    def test_setup_logging_uses_stderr(self):
        import sys
        from groundlint.logging import setup_logging

        root = setup_logging()
        assert root.name == "groundlint"
        assert [h.stream for h in root.handlers] == [sys.stderr]


class TestConfig:

    def test_settings_are_frozen(self):
        import dataclasses
        from groundlint.config import settings

        with pytest.raises(dataclasses.FrozenInstanceError):
            settings.CONCURRENCY = 99

    def test_override_by_construction(self):
        from groundlint.config import Settings
        assert Settings(CONCURRENCY=2).CONCURRENCY == 2


class TestErrors:

    def test_describe_error_uses_code(self):
        from groundlint.errors import ProviderError, describe_error
        text = describe_error(ProviderError("quota"), "Running rule Tone")
        assert text == "Running rule Tone: [PROVIDER_ERROR] quota"

    def test_describe_foreign_error_uses_type(self):
        from groundlint.errors import describe_error
        assert "[ValueError]" in describe_error(ValueError("bad"), "ctx")

    def test_model_response_error_truncates_raw(self):
        from groundlint.errors import ModelResponseError
        assert len(ModelResponseError("bad", raw="x" * 1000).raw) == 300


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        from groundlint.llm.gemini import CircuitBreaker

        cb = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        cb.record_failure()
        assert not cb.is_open
        cb.record_failure()
        assert cb.is_open

    def test_half_open_after_timeout(self):
        from groundlint.llm.gemini import CircuitBreaker

        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        assert cb.state == "half-open"

    def test_success_closes(self):
        from groundlint.llm.gemini import CircuitBreaker

        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()
        cb.record_success()
        assert cb.state == "closed"


def _provider_with_client(**client_kwargs):
    from groundlint.llm.gemini import GeminiProvider

    provider = GeminiProvider(api_key="test-key", model="test-model")
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(**client_kwargs)
    provider._client = client
    return provider, client


class TestGeminiProvider:

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        from groundlint.errors import ProviderError
        from groundlint.llm.gemini import GeminiProvider

        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(ProviderError, match="GEMINI_API_KEY"):
            await GeminiProvider(api_key="").generate("hi")

    @pytest.mark.asyncio
    async def test_structured_call(self):
        provider, client = _provider_with_client(
            return_value=MagicMock(text='{"violations": []}'),
        )
        result = await provider.run_prompt_structured(
            "Document.", "Review it.", {"name": "s", "schema": {"type": "object"}},
            temperature=0.0,
        )
        assert result == {"violations": []}

        kwargs = client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["contents"] == "Document."
        assert kwargs["config"].response_mime_type == "application/json"
        assert kwargs["config"].temperature == 0.0
        assert "Review it." in kwargs["config"].system_instruction

    @pytest.mark.asyncio
    async def test_sdk_failure_wrapped_and_counted(self):
        from groundlint.errors import ProviderError

        provider, _ = _provider_with_client(side_effect=RuntimeError("boom"))
        with pytest.raises(ProviderError, match="boom"):
            await provider.generate("hi")
        assert provider.circuit_breaker._failures == 1

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self):
        from groundlint.errors import CircuitOpenError

        provider, client = _provider_with_client(return_value=MagicMock(text="{}"))
        for _ in range(provider.circuit_breaker.failure_threshold):
            provider.circuit_breaker.record_failure()
        with pytest.raises(CircuitOpenError):
            await provider.generate("hi")
        client.aio.models.generate_content.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_text_is_invalid_json(self):
        from groundlint.errors import ModelResponseError

        provider, _ = _provider_with_client(return_value=MagicMock(text=None))
        with pytest.raises(ModelResponseError):
            await provider.generate_json("hi")


class TestFactory:

    def test_gemini(self):
        from groundlint.llm.factory import get_provider
        from groundlint.llm.gemini import GeminiProvider
        assert isinstance(get_provider("gemini"), GeminiProvider)

    def test_unknown(self):
        from groundlint.llm.factory import get_provider
        with pytest.raises(ValueError):
            get_provider("nope")
