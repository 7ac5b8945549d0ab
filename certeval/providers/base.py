"""
Base Provider Abstraction Layer

Defines the interface every language-model backend implements. The
language-model collaborator sits on top of a provider and adds JSON
decoding, retries and timeouts.

Usage:
    from certeval.providers import OllamaProvider

    provider = OllamaProvider(model="qwen2.5:7b")
    response = await provider.generate("Is this certificate expired?")
    print(response.text)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ProviderType(Enum):
    """Supported language-model provider types."""

    OLLAMA = auto()
    GOOGLE = auto()


@dataclass
class GenerationConfig:
    """Configuration for text generation."""

    temperature: float = 0.1
    max_tokens: int = 2048
    top_p: float = 1.0
    top_k: Optional[int] = None
    stop_sequences: List[str] = field(default_factory=list)
    seed: Optional[int] = None
    json_mode: bool = False  # Ask the backend for a bare JSON object

    def with_json_mode(self, enabled: bool = True) -> "GenerationConfig":
        return replace(self, json_mode=enabled)


@dataclass
class GenerationMetrics:
    """Token counts and timing from a generation request."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    total_duration_ms: float = 0.0


@dataclass
class GenerationResponse:
    """Response from a generation request."""

    text: str
    model: str
    provider: ProviderType
    metrics: GenerationMetrics = field(default_factory=GenerationMetrics)
    timestamp: datetime = field(default_factory=datetime.now)
    raw_response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        """Whether the generation succeeded."""
        return self.error is None and len(self.text) > 0


@dataclass
class Message:
    """A single message in a conversation."""

    role: str  # "system", "user", "assistant"
    content: str


class BaseProvider(ABC):
    """
    Abstract base class for language-model providers.

    All providers must implement:
    - generate(): Single prompt generation
    - generate_chat(): Multi-turn conversation
    - health_check(): Connectivity test

    Failures are reported in-band through GenerationResponse.error rather
    than raised.
    """

    def __init__(
        self,
        model: str,
        config: Optional[GenerationConfig] = None,
        timeout: float = 120.0,
    ):
        """
        Args:
            model: Model name/identifier.
            config: Generation configuration (temperature, max_tokens, etc.).
            timeout: Request timeout in seconds.
        """
        self.model = model
        self.config = config or GenerationConfig()
        self.timeout = timeout
        self._request_count = 0
        self._total_tokens = 0

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        """Return the provider type enum."""
        ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        """Generate text from a single prompt."""
        ...

    @abstractmethod
    async def generate_chat(
        self,
        messages: List[Message],
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        """Generate text from a multi-turn conversation."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the provider is reachable and working."""
        ...

    def get_stats(self) -> Dict[str, Any]:
        """Get usage statistics for this provider instance."""
        return {
            "model": self.model,
            "provider": self.provider_type.name,
            "request_count": self._request_count,
            "total_tokens": self._total_tokens,
        }

    def _record_request(self, response: GenerationResponse) -> None:
        self._request_count += 1
        self._total_tokens += response.metrics.total_tokens

    def _error_response(self, error: Exception) -> GenerationResponse:
        return GenerationResponse(
            text="",
            model=self.model,
            provider=self.provider_type,
            error=str(error),
        )


class ProviderFactory:
    """
    Factory for creating provider instances.

    Usage:
        provider = ProviderFactory.create("ollama", model="qwen2.5:7b")
    """

    _registry: Dict[str, type] = {}

    @classmethod
    def register(cls, name: str, provider_class: type) -> None:
        """Register a provider class."""
        cls._registry[name.lower()] = provider_class

    @classmethod
    def create(
        cls,
        provider_name: str,
        model: str,
        config: Optional[GenerationConfig] = None,
        **kwargs: Any,
    ) -> BaseProvider:
        """
        Create a provider instance.

        Raises:
            ValueError: If provider is not registered.
        """
        provider_class = cls._registry.get(provider_name.lower())
        if provider_class is None:
            available = ", ".join(cls._registry.keys())
            raise ValueError(
                f"Unknown provider '{provider_name}'. Available: {available}"
            )
        return provider_class(model=model, config=config, **kwargs)

    @classmethod
    def available_providers(cls) -> List[str]:
        """List registered provider names."""
        return list(cls._registry.keys())
