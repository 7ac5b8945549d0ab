"""
Language-model collaborator.

Wraps a provider with the two call shapes the orchestrator needs:

- interpret(): structured calls (intent routing, criteria extraction,
  validation judgments) that must decode into a JSON object
- generate(): free-text calls (follow-up questions, conversational replies)

Every call is bounded by a timeout and retried with exponential backoff on
provider failures. Exhausted retries surface as CollaboratorError; output
that cannot be decoded surfaces as ParseError carrying the raw text.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from certeval.providers.base import BaseProvider, GenerationConfig, Message
from utils.exceptions import CollaboratorError, ParseError
from utils.retry import RetryConfig, RetryStrategies, async_retry_with_backoff, call_with_timeout

logger = logging.getLogger(__name__)

COLLABORATOR_NAME = "language_model"


def extract_json(text: str) -> Optional[str]:
    """Extract a JSON object from model output, handling markdown code blocks."""
    if not text:
        return None

    code_block = re.search(r"```(?:json)?\s*\n?(.*?)\n?\s*```", text, re.DOTALL)
    if code_block:
        return code_block.group(1).strip()

    text = text.strip()
    if text.startswith("{"):
        return text

    # Outermost braces; tolerates prose before and after the object
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return None


def decode_json_object(text: str) -> Dict[str, Any]:
    """
    Decode model output into a JSON object.

    Raises:
        ParseError: If no object can be found or decoded.
    """
    extracted = extract_json(text)
    if extracted is None:
        raise ParseError("No JSON object found in model response", raw_text=text)
    try:
        parsed = json.loads(extracted)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(f"Model response is not valid JSON: {e}", raw_text=text) from e
    if not isinstance(parsed, dict):
        raise ParseError(
            f"Expected a JSON object, got {type(parsed).__name__}", raw_text=text
        )
    return parsed


class LanguageModel:
    """
    Language-model collaborator bound to one provider.

    Usage:
        llm = LanguageModel(OllamaProvider(model="qwen2.5:7b"))
        data = await llm.interpret(SYSTEM_PROMPT, "expiry must be after 2025")
        reply = await llm.generate([Message("user", "hello")])
    """

    def __init__(
        self,
        provider: BaseProvider,
        timeout: Optional[float] = 60.0,
        retry: Optional[RetryConfig] = None,
        config: Optional[GenerationConfig] = None,
    ):
        self.provider = provider
        self.timeout = timeout
        self.retry = retry or RetryStrategies.collaborator_call()
        self.config = config or provider.config

    async def _chat_once(self, messages: List[Message], config: GenerationConfig) -> str:
        response = await call_with_timeout(
            self.provider.generate_chat(messages, config),
            self.timeout,
            COLLABORATOR_NAME,
        )
        if response.error is not None:
            raise CollaboratorError(
                f"{self.provider.provider_type.name} provider error: {response.error}",
                collaborator=COLLABORATOR_NAME,
            )
        return response.text

    async def _chat(self, messages: List[Message], config: GenerationConfig) -> str:
        return await async_retry_with_backoff(
            self._chat_once,
            args=(messages, config),
            config=self.retry,
        )

    async def interpret(self, system: str, prompt: str) -> Dict[str, Any]:
        """
        Ask for a structured answer and decode it.

        Raises:
            CollaboratorError: Provider failed or timed out on every attempt.
            ParseError: The answer was not a JSON object.
        """
        messages = [Message(role="system", content=system), Message(role="user", content=prompt)]
        text = await self._chat(messages, self.config.with_json_mode())
        try:
            return decode_json_object(text)
        except ParseError as e:
            logger.warning(f"Could not decode structured response: {e}. Raw: {text[:500]!r}")
            raise

    async def generate(self, messages: List[Message], system: Optional[str] = None) -> str:
        """Free-text generation over a message list."""
        if system:
            messages = [Message(role="system", content=system)] + list(messages)
        text = await self._chat(list(messages), self.config.with_json_mode(False))
        return text.strip()
