"""Tests for the language-model collaborator and retry helpers."""

import asyncio

import pytest

from certeval.collaborators.language_model import LanguageModel, decode_json_object, extract_json
from certeval.providers.base import Message
from conftest import ScriptedProvider
from utils.exceptions import CollaboratorError, ParseError
from utils.retry import (
    NonRetryableError,
    RetryConfig,
    async_retry_with_backoff,
    call_with_timeout,
    retry_with_backoff,
)


class TestExtractJson:
    def test_fenced_block(self) -> None:
        text = 'Here you go:\n```json\n{"intent": "stop"}\n```\nThanks'

        assert extract_json(text) == '{"intent": "stop"}'

    def test_bare_object(self) -> None:
        assert extract_json('  {"a": 1}  ') == '{"a": 1}'

    def test_object_inside_prose(self) -> None:
        assert extract_json('Sure! {"a": {"b": 2}} Hope that helps.') == '{"a": {"b": 2}}'

    def test_nothing_found(self) -> None:
        assert extract_json("no braces here") is None
        assert extract_json("") is None


class TestDecodeJsonObject:
    def test_decodes(self) -> None:
        assert decode_json_object('```\n{"passed": true}\n```') == {"passed": True}

    def test_invalid_json_keeps_raw_text(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            decode_json_object("{not json}")

        assert exc_info.value.raw_text == "{not json}"

    def test_array_is_rejected(self) -> None:
        with pytest.raises(ParseError):
            decode_json_object("[1, 2, 3]")


class TestLanguageModel:
    @pytest.mark.asyncio
    async def test_interpret_sends_system_and_user(self, provider: ScriptedProvider, llm: LanguageModel) -> None:
        provider.queue({"intent": "general"})

        result = await llm.interpret("route this", "hello")

        assert result == {"intent": "general"}
        roles = [m.role for m in provider.calls[0]]
        assert roles == ["system", "user"]

    @pytest.mark.asyncio
    async def test_interpret_unparseable(self, provider: ScriptedProvider, llm: LanguageModel) -> None:
        provider.queue("I am not JSON")

        with pytest.raises(ParseError):
            await llm.interpret("system", "prompt")

    @pytest.mark.asyncio
    async def test_provider_error_becomes_collaborator_error(self, llm: LanguageModel) -> None:
        with pytest.raises(CollaboratorError) as exc_info:
            await llm.generate([Message(role="user", content="hi")])

        assert exc_info.value.collaborator == "language_model"

    @pytest.mark.asyncio
    async def test_retries_until_success(self, provider: ScriptedProvider) -> None:
        provider.queue(RuntimeError("overloaded"), RuntimeError("overloaded"), "  hello there  ")
        llm = LanguageModel(provider, retry=RetryConfig(max_attempts=3, initial_delay=0.0, jitter=False))

        reply = await llm.generate([Message(role="user", content="hi")], system="be brief")

        assert reply == "hello there"
        assert len(provider.calls) == 3
        assert provider.calls[0][0].role == "system"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, provider: ScriptedProvider) -> None:
        provider.queue(RuntimeError("down"), RuntimeError("down"), "too late")
        llm = LanguageModel(provider, retry=RetryConfig(max_attempts=2, initial_delay=0.0, jitter=False))

        with pytest.raises(CollaboratorError):
            await llm.generate([Message(role="user", content="hi")])

        assert len(provider.calls) == 2


class TestRetry:
    def test_blocking_retry_recovers(self) -> None:
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("reset")
            return "ok"

        result = retry_with_backoff(flaky, config=RetryConfig(max_attempts=3, initial_delay=0.0, jitter=False))

        assert result == "ok"
        assert len(attempts) == 3

    def test_non_retryable_fails_immediately(self) -> None:
        attempts = []

        def broken():
            attempts.append(1)
            raise NonRetryableError("bad input")

        with pytest.raises(NonRetryableError):
            retry_with_backoff(broken, config=RetryConfig(max_attempts=5, initial_delay=0.0))

        assert len(attempts) == 1

    def test_unlisted_exceptions_are_not_retried(self) -> None:
        attempts = []

        def broken():
            attempts.append(1)
            raise ValueError("nope")

        with pytest.raises(ValueError):
            retry_with_backoff(broken, config=RetryConfig(max_attempts=3, initial_delay=0.0))

        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_async_retry_calls_on_retry(self) -> None:
        seen = []

        async def flaky():
            if not seen:
                raise CollaboratorError("busy")
            return 42

        result = await async_retry_with_backoff(
            flaky,
            config=RetryConfig(max_attempts=2, initial_delay=0.0, jitter=False),
            on_retry=lambda e, attempt: seen.append(attempt),
        )

        assert result == 42
        assert seen == [1]

    @pytest.mark.asyncio
    async def test_timeout_becomes_collaborator_error(self) -> None:
        with pytest.raises(CollaboratorError) as exc_info:
            await call_with_timeout(asyncio.sleep(1), 0.01, "retrieval")

        assert exc_info.value.collaborator == "retrieval"
        assert "timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_no_timeout(self) -> None:
        async def value():
            return "done"

        assert await call_with_timeout(value(), None, "language_model") == "done"
