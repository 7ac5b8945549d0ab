"""
Language-model provider layer.

Unified interface over the backends the language-model collaborator can
talk to (Ollama locally, Google Gemini in the cloud).

Usage:
    from certeval.providers import ProviderFactory

    provider = ProviderFactory.create("ollama", model="qwen2.5:7b")
    response = await provider.generate("Hello")
"""

from .base import (
    BaseProvider,
    GenerationConfig,
    GenerationMetrics,
    GenerationResponse,
    Message,
    ProviderFactory,
    ProviderType,
)
from .ollama_provider import OllamaProvider
from .google_provider import GoogleProvider

__all__ = [
    # Base classes and types
    "BaseProvider",
    "GenerationConfig",
    "GenerationMetrics",
    "GenerationResponse",
    "Message",
    "ProviderFactory",
    "ProviderType",
    # Providers
    "OllamaProvider",
    "GoogleProvider",
]
