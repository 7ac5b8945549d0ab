"""
Ollama Provider Implementation

Local inference via the Ollama API. The default backend for criteria
interpretation, validation judgments and conversational replies.

Usage:
    provider = OllamaProvider(model="qwen2.5:7b")
    response = await provider.generate("Summarise this certificate")
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ollama import AsyncClient

from .base import (
    BaseProvider,
    GenerationConfig,
    GenerationMetrics,
    GenerationResponse,
    Message,
    ProviderFactory,
    ProviderType,
)

logger = logging.getLogger(__name__)


class OllamaProvider(BaseProvider):
    """
    Ollama provider for local inference.

    Connects to an Ollama server (default: http://localhost:11434).
    """

    def __init__(
        self,
        model: str,
        config: Optional[GenerationConfig] = None,
        timeout: float = 120.0,
        host: str = "http://localhost:11434",
    ):
        super().__init__(model, config, timeout)
        self.host = host
        self._client = AsyncClient(host=host, timeout=timeout)

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OLLAMA

    def _request_kwargs(self, cfg: GenerationConfig) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "temperature": cfg.temperature,
            "num_predict": cfg.max_tokens,
            "top_p": cfg.top_p,
        }
        if cfg.top_k is not None:
            options["top_k"] = cfg.top_k
        if cfg.seed is not None:
            options["seed"] = cfg.seed
        if cfg.stop_sequences:
            options["stop"] = cfg.stop_sequences

        kwargs: Dict[str, Any] = {"model": self.model, "options": options, "stream": False}
        if cfg.json_mode:
            kwargs["format"] = "json"
        return kwargs

    async def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        """Generate text from a single prompt."""
        cfg = config or self.config
        try:
            response = await self._client.generate(prompt=prompt, **self._request_kwargs(cfg))
            result = GenerationResponse(
                text=response.get("response", "") or "",
                model=self.model,
                provider=self.provider_type,
                metrics=self._extract_metrics(response),
                timestamp=datetime.now(),
                raw_response=dict(response),
            )
            self._record_request(result)
            return result

        except Exception as e:
            logger.error(f"Ollama generate failed: {e}")
            return self._error_response(e)

    async def generate_chat(
        self,
        messages: List[Message],
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        """Generate text from a multi-turn conversation."""
        cfg = config or self.config
        ollama_messages = [{"role": m.role, "content": m.content} for m in messages]

        try:
            response = await self._client.chat(messages=ollama_messages, **self._request_kwargs(cfg))
            message = response.get("message") or {}
            result = GenerationResponse(
                text=message.get("content", "") or "",
                model=self.model,
                provider=self.provider_type,
                metrics=self._extract_metrics(response),
                timestamp=datetime.now(),
                raw_response=dict(response),
            )
            self._record_request(result)
            return result

        except Exception as e:
            logger.error(f"Ollama chat failed: {e}")
            return self._error_response(e)

    async def health_check(self) -> bool:
        """Check if Ollama server is reachable."""
        try:
            await self._client.list()
            return True
        except Exception as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False

    def _extract_metrics(self, response: Any) -> GenerationMetrics:
        prompt_tokens = response.get("prompt_eval_count", 0) or 0
        completion_tokens = response.get("eval_count", 0) or 0
        # Ollama returns durations in nanoseconds
        total_ns = response.get("total_duration", 0) or 0
        return GenerationMetrics(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            total_duration_ms=total_ns / 1_000_000,
        )


ProviderFactory.register("ollama", OllamaProvider)
