"""
Google Gemini Provider Implementation

Cloud inference via the google-genai SDK (optional extra).

Usage:
    provider = GoogleProvider(model="gemini-2.5-flash")
    response = await provider.generate("Summarise this certificate")
"""

import asyncio
import logging
import os
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

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


class GoogleProvider(BaseProvider):
    """
    Google Gemini provider.

    Requires GOOGLE_API_KEY environment variable or explicit api_key.
    """

    def __init__(
        self,
        model: str,
        config: Optional[GenerationConfig] = None,
        timeout: float = 120.0,
        api_key: Optional[str] = None,
    ):
        super().__init__(model, config, timeout)
        self._api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self._client: Any = None
        self._genai: Any = None

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.GOOGLE

    def _ensure_client(self) -> None:
        """Lazily initialize the Google GenAI client."""
        if self._client is not None:
            return

        if not self._api_key:
            raise ValueError(
                "Google API key required. Set GOOGLE_API_KEY env var or pass api_key."
            )

        try:
            from google import genai

            self._genai = genai
            self._client = genai.Client(api_key=self._api_key)
        except ImportError:
            raise ImportError("google-genai package required: pip install certeval[google]")

    def _content_config(self, cfg: GenerationConfig, system_instruction: Optional[str] = None) -> Any:
        generation_config: Dict[str, Any] = {
            "temperature": cfg.temperature,
            "max_output_tokens": cfg.max_tokens,
            "top_p": cfg.top_p,
        }
        if cfg.top_k is not None:
            generation_config["top_k"] = cfg.top_k
        if cfg.stop_sequences:
            generation_config["stop_sequences"] = cfg.stop_sequences
        if cfg.json_mode:
            generation_config["response_mime_type"] = "application/json"
        if system_instruction:
            generation_config["system_instruction"] = system_instruction
        return self._genai.types.GenerateContentConfig(**generation_config)

    async def _call(self, contents: Any, content_config: Any) -> GenerationResponse:
        start_time = time.perf_counter()
        # The SDK call blocks; keep the event loop free for other sessions
        response = await asyncio.to_thread(
            self._client.models.generate_content,
            model=self.model,
            contents=contents,
            config=content_config,
        )
        duration_ms = (time.perf_counter() - start_time) * 1000

        text = ""
        if response.candidates:
            candidate = response.candidates[0]
            if candidate.content and candidate.content.parts:
                text = candidate.content.parts[0].text or ""

        usage = getattr(response, "usage_metadata", None)
        prompt_tokens = (getattr(usage, "prompt_token_count", 0) or 0) if usage else 0
        completion_tokens = (getattr(usage, "candidates_token_count", 0) or 0) if usage else 0

        result = GenerationResponse(
            text=text,
            model=self.model,
            provider=self.provider_type,
            metrics=GenerationMetrics(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                total_duration_ms=duration_ms,
            ),
            timestamp=datetime.now(),
        )
        self._record_request(result)
        return result

    async def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        """Generate text from a single prompt."""
        cfg = config or self.config
        try:
            self._ensure_client()
            return await self._call(prompt, self._content_config(cfg))
        except Exception as e:
            logger.error(f"Google generate failed: {e}")
            return self._error_response(e)

    async def generate_chat(
        self,
        messages: List[Message],
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        """Generate text from a multi-turn conversation."""
        cfg = config or self.config

        # Gemini uses "user" and "model" roles
        contents = []
        system_instruction = None
        for msg in messages:
            if msg.role == "system":
                system_instruction = msg.content
            elif msg.role == "assistant":
                contents.append({"role": "model", "parts": [{"text": msg.content}]})
            else:
                contents.append({"role": "user", "parts": [{"text": msg.content}]})

        try:
            self._ensure_client()
            return await self._call(contents, self._content_config(cfg, system_instruction))
        except Exception as e:
            logger.error(f"Google chat failed: {e}")
            return self._error_response(e)

    async def health_check(self) -> bool:
        """Check that the client can be constructed."""
        try:
            self._ensure_client()
            return True
        except Exception as e:
            logger.warning(f"Google health check failed: {e}")
            return False


ProviderFactory.register("google", GoogleProvider)
