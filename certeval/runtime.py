"""
Runtime wiring.

build_runtime() assembles a ready-to-use set of components from an
EvaluatorConfig: provider -> language model, storage backend -> stores,
retriever, criteria interpreter/generator, validation executor, runner and
the conversation orchestrator.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from certeval.collaborators.extraction import TextExtractor
from certeval.collaborators.language_model import LanguageModel
from certeval.collaborators.retrieval import (
    ChromaRetriever,
    GuardedRetriever,
    InMemoryRetriever,
    Retriever,
)
from certeval.config import EvaluatorConfig
from certeval.conversation.intents import IntentRouter
from certeval.conversation.orchestrator import Orchestrator
from certeval.conversation.responder import Responder
from certeval.criteria.generator import CriteriaGenerator
from certeval.criteria.interpreter import CriteriaInterpreter
from certeval.evaluation.executor import ValidationExecutor
from certeval.evaluation.runner import EvaluationRunner
from certeval.providers import BaseProvider, GenerationConfig, ProviderFactory
from certeval.storage.backend import InMemoryBackend, JsonFileBackend, StorageBackend
from certeval.storage.criteria_store import CriteriaStore
from certeval.storage.evaluation_store import EvaluationStore
from certeval.storage.sessions import SessionStore
from utils.exceptions import ConfigError
from utils.retry import RetryStrategies

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: EvaluatorConfig
    provider: BaseProvider
    llm: LanguageModel
    backend: StorageBackend
    sessions: SessionStore
    criteria_store: CriteriaStore
    evaluation_store: EvaluationStore
    retriever: Retriever
    executor: ValidationExecutor
    runner: EvaluationRunner
    generator: CriteriaGenerator
    orchestrator: Orchestrator


def build_provider(config: EvaluatorConfig) -> BaseProvider:
    generation = GenerationConfig(temperature=config.temperature, max_tokens=config.max_tokens)
    kwargs = {"timeout": config.timeout_seconds}
    if config.provider == "ollama":
        kwargs["host"] = config.host
    try:
        return ProviderFactory.create(config.provider, model=config.model, config=generation, **kwargs)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def build_backend(config: EvaluatorConfig) -> StorageBackend:
    if config.storage_backend == "json":
        return JsonFileBackend(config.resolved_storage_path)
    return InMemoryBackend()


def build_retriever(config: EvaluatorConfig) -> Retriever:
    if config.retriever == "chroma":
        inner: Retriever = ChromaRetriever(path=config.resolved_chroma_path)
    else:
        inner = InMemoryRetriever()
    retry = RetryStrategies.collaborator_call(config.retry_attempts, config.retry_initial_delay)
    return GuardedRetriever(inner, timeout=config.timeout_seconds, retry=retry)


def build_runtime(
    config: Optional[EvaluatorConfig] = None,
    provider: Optional[BaseProvider] = None,
    backend: Optional[StorageBackend] = None,
    retriever: Optional[Retriever] = None,
) -> Runtime:
    """Wire every component; explicit arguments override what config would build."""
    config = config or EvaluatorConfig()
    provider = provider or build_provider(config)
    backend = backend or build_backend(config)
    retriever = retriever or build_retriever(config)

    llm = LanguageModel(
        provider,
        timeout=config.timeout_seconds,
        retry=RetryStrategies.collaborator_call(config.retry_attempts, config.retry_initial_delay),
    )
    sessions = SessionStore(backend)
    criteria_store = CriteriaStore(backend, sessions, default_threshold=config.default_threshold)
    evaluation_store = EvaluationStore(backend, criteria_store)
    executor = ValidationExecutor(llm, retriever, top_k=config.retrieval_top_k)
    runner = EvaluationRunner(executor, criteria_store, evaluation_store)
    generator = CriteriaGenerator(llm, retriever, criteria_store, top_k=config.generator_top_k)

    orchestrator = Orchestrator(
        sessions=sessions,
        criteria_store=criteria_store,
        evaluation_store=evaluation_store,
        runner=runner,
        interpreter=CriteriaInterpreter(llm),
        generator=generator,
        router=IntentRouter(llm),
        responder=Responder(llm, history_window=config.history_window),
        retriever=retriever,
        extractor=TextExtractor(),
        history_window=config.history_window,
        reevaluate_persist=config.reevaluate_persist,
    )
    logger.debug(
        f"Runtime ready: {config.provider}/{config.model}, storage={config.storage_backend}, "
        f"retriever={config.retriever}"
    )
    return Runtime(
        config=config,
        provider=provider,
        llm=llm,
        backend=backend,
        sessions=sessions,
        criteria_store=criteria_store,
        evaluation_store=evaluation_store,
        retriever=retriever,
        executor=executor,
        runner=runner,
        generator=generator,
        orchestrator=orchestrator,
    )
