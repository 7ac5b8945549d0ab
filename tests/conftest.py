"""
Shared test fixtures for certeval.

Provides a scripted language-model provider, in-memory stores and
retriever, and a fully wired orchestrator that never touches the network.
"""

import json
from collections import deque
from pathlib import Path
from typing import Any, Deque, List, Optional, Union

import pytest

from certeval.collaborators.extraction import TextExtractor
from certeval.collaborators.language_model import LanguageModel
from certeval.collaborators.retrieval import InMemoryRetriever
from certeval.conversation.intents import IntentRouter
from certeval.conversation.orchestrator import Orchestrator
from certeval.conversation.responder import Responder
from certeval.criteria.generator import CriteriaGenerator
from certeval.criteria.interpreter import CriteriaInterpreter
from certeval.evaluation.executor import ValidationExecutor
from certeval.evaluation.runner import EvaluationRunner
from certeval.providers.base import (
    BaseProvider,
    GenerationConfig,
    GenerationResponse,
    Message,
    ProviderType,
)
from certeval.storage.backend import InMemoryBackend
from certeval.storage.criteria_store import CriteriaStore
from certeval.storage.evaluation_store import EvaluationStore
from certeval.storage.sessions import SessionStore
from utils.retry import RetryConfig

CERTIFICATE_TEXT = (
    "Certificate of Registration. This certificate is issued by ABC Agency to Example Ltd "
    "for the standard ISO 27001. The certificate is valid until 2027-05-01 and the expiry "
    "date is 2027-05-01. Certificate number: CERT-12345."
)

Scripted = Union[str, dict, Exception]


class ScriptedProvider(BaseProvider):
    """
    Ollama-shaped provider returning queued responses in order.

    dicts are sent as JSON text, Exceptions are reported in-band as provider
    errors, and an empty queue behaves like an unreachable backend.
    """

    def __init__(self, responses: Optional[List[Scripted]] = None):
        super().__init__(model="scripted", config=GenerationConfig())
        self.responses: Deque[Scripted] = deque(responses or [])
        self.calls: List[List[Message]] = []

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OLLAMA

    def queue(self, *responses: Scripted) -> None:
        self.responses.extend(responses)

    async def generate(self, prompt: str, config: Optional[GenerationConfig] = None) -> GenerationResponse:
        return await self.generate_chat([Message(role="user", content=prompt)], config)

    async def generate_chat(
        self, messages: List[Message], config: Optional[GenerationConfig] = None
    ) -> GenerationResponse:
        self.calls.append(list(messages))
        if not self.responses:
            return GenerationResponse(
                text="", model=self.model, provider=self.provider_type, error="no scripted response"
            )
        item = self.responses.popleft()
        if isinstance(item, Exception):
            return GenerationResponse(text="", model=self.model, provider=self.provider_type, error=str(item))
        text = json.dumps(item) if isinstance(item, dict) else item
        return GenerationResponse(text=text, model=self.model, provider=self.provider_type)

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(max_attempts=1, initial_delay=0.0, jitter=False)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def llm(provider: ScriptedProvider, fast_retry: RetryConfig) -> LanguageModel:
    return LanguageModel(provider, timeout=5.0, retry=fast_retry)


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def sessions(backend: InMemoryBackend) -> SessionStore:
    return SessionStore(backend)


@pytest.fixture
def criteria_store(backend: InMemoryBackend, sessions: SessionStore) -> CriteriaStore:
    return CriteriaStore(backend, sessions)


@pytest.fixture
def evaluation_store(backend: InMemoryBackend, criteria_store: CriteriaStore) -> EvaluationStore:
    return EvaluationStore(backend, criteria_store)


@pytest.fixture
def retriever() -> InMemoryRetriever:
    return InMemoryRetriever()


@pytest.fixture
def executor(llm: LanguageModel, retriever: InMemoryRetriever) -> ValidationExecutor:
    return ValidationExecutor(llm, retriever)


@pytest.fixture
def runner(
    executor: ValidationExecutor, criteria_store: CriteriaStore, evaluation_store: EvaluationStore
) -> EvaluationRunner:
    return EvaluationRunner(executor, criteria_store, evaluation_store)


@pytest.fixture
def orchestrator(
    llm: LanguageModel,
    sessions: SessionStore,
    criteria_store: CriteriaStore,
    evaluation_store: EvaluationStore,
    runner: EvaluationRunner,
    retriever: InMemoryRetriever,
) -> Orchestrator:
    return Orchestrator(
        sessions=sessions,
        criteria_store=criteria_store,
        evaluation_store=evaluation_store,
        runner=runner,
        interpreter=CriteriaInterpreter(llm),
        generator=CriteriaGenerator(llm, retriever, criteria_store),
        router=IntentRouter(llm),
        responder=Responder(llm),
        retriever=retriever,
        extractor=TextExtractor(),
    )


@pytest.fixture
def certificate_file(tmp_path: Path) -> Path:
    """A plain-text certificate document."""
    f = tmp_path / "certificate.txt"
    f.write_text(CERTIFICATE_TEXT)
    return f


def judgment(criterion: str, passed: bool, expected: Any = None, found: Any = None) -> dict:
    """One validation check as the model would return it."""
    return {
        "criterion": criterion,
        "expected": expected,
        "found": found,
        "passed": passed,
        "confidence": 0.9,
        "reason": "matches the certificate" if passed else "does not match",
    }
