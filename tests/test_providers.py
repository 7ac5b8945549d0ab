"""Tests for the provider layer with the backend client mocked out."""

from unittest.mock import AsyncMock

import pytest

from certeval.providers import (
    GenerationConfig,
    Message,
    OllamaProvider,
    ProviderFactory,
    ProviderType,
)

CHAT_RESPONSE = {
    "message": {"role": "assistant", "content": '{"intent": "task"}'},
    "prompt_eval_count": 120,
    "eval_count": 12,
    "total_duration": 2_500_000_000,
}


@pytest.fixture
def ollama() -> OllamaProvider:
    provider = OllamaProvider(model="qwen2.5:7b")
    provider._client = AsyncMock()
    return provider


class TestOllamaProvider:
    @pytest.mark.asyncio
    async def test_chat_maps_messages_and_options(self, ollama: OllamaProvider) -> None:
        ollama._client.chat.return_value = CHAT_RESPONSE

        response = await ollama.generate_chat(
            [Message("system", "route"), Message("user", "check the agency")],
            GenerationConfig(temperature=0.0, max_tokens=256, seed=7).with_json_mode(),
        )

        kwargs = ollama._client.chat.call_args.kwargs
        assert kwargs["messages"] == [
            {"role": "system", "content": "route"},
            {"role": "user", "content": "check the agency"},
        ]
        assert kwargs["format"] == "json"
        assert kwargs["options"] == {"temperature": 0.0, "num_predict": 256, "top_p": 1.0, "seed": 7}
        assert response.text == '{"intent": "task"}'
        assert response.provider == ProviderType.OLLAMA
        assert response.metrics.total_tokens == 132
        assert response.metrics.total_duration_ms == 2500
        assert response.success

    @pytest.mark.asyncio
    async def test_free_text_has_no_format(self, ollama: OllamaProvider) -> None:
        ollama._client.chat.return_value = CHAT_RESPONSE

        await ollama.generate_chat([Message("user", "hi")])

        assert "format" not in ollama._client.chat.call_args.kwargs

    @pytest.mark.asyncio
    async def test_failure_is_reported_in_band(self, ollama: OllamaProvider) -> None:
        ollama._client.chat.side_effect = ConnectionError("connection refused")

        response = await ollama.generate_chat([Message("user", "hi")])

        assert response.error == "connection refused"
        assert not response.success

    @pytest.mark.asyncio
    async def test_stats_track_requests(self, ollama: OllamaProvider) -> None:
        ollama._client.chat.return_value = CHAT_RESPONSE
        ollama._client.generate.return_value = {"response": "hello", "eval_count": 3}

        await ollama.generate_chat([Message("user", "hi")])
        await ollama.generate("hi")

        stats = ollama.get_stats()
        assert stats["request_count"] == 2
        assert stats["total_tokens"] == 135
        assert stats["provider"] == "OLLAMA"

    @pytest.mark.asyncio
    async def test_health_check(self, ollama: OllamaProvider) -> None:
        ollama._client.list.return_value = {"models": []}
        assert await ollama.health_check() is True

        ollama._client.list.side_effect = ConnectionError("down")
        assert await ollama.health_check() is False


class TestProviderFactory:
    def test_registered_providers(self) -> None:
        assert {"ollama", "google"} <= set(ProviderFactory.available_providers())

    def test_every_provider_type_is_a_real_backend(self) -> None:
        assert {t.name.lower() for t in ProviderType} == set(ProviderFactory.available_providers())

    def test_create_passes_options(self) -> None:
        provider = ProviderFactory.create("Ollama", model="llama3.1:8b", timeout=5.0, host="http://gpu:11434")

        assert isinstance(provider, OllamaProvider)
        assert provider.timeout == 5.0
        assert provider.host == "http://gpu:11434"

    def test_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown provider"):
            ProviderFactory.create("carrier-pigeon", model="x")
