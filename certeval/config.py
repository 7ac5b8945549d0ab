"""
Evaluator Configuration

EvaluatorConfig gathers every tunable of a certeval runtime: the language
model backend, collaborator timeouts and retries, scoring and retrieval
defaults, and where state is kept. Load it from a sectioned YAML file or
from environment variables.

Example YAML:

    model:
      provider: ollama
      name: qwen2.5:7b
      host: http://localhost:11434
      temperature: 0.1
      max_tokens: 2048
    collaborators:
      timeout_seconds: 60
      retry_attempts: 3
      retry_initial_delay: 1.0
    evaluation:
      default_threshold: 70
      retrieval_top_k: 10
      generator_top_k: 5
      reevaluate_persist: version
    conversation:
      history_window: 20
    storage:
      backend: json
      path: ~/.certeval/storage
    retrieval:
      backend: memory
      chroma_path: ~/.certeval/chroma
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml

import config as env_config
from certeval.evaluation.runner import PERSIST_MODES
from utils.exceptions import ConfigError

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("memory", "json")
RETRIEVER_BACKENDS = ("memory", "chroma")

# YAML section -> {key in section: field name}
SECTIONS: Dict[str, Dict[str, str]] = {
    "model": {
        "provider": "provider",
        "name": "model",
        "host": "host",
        "temperature": "temperature",
        "max_tokens": "max_tokens",
    },
    "collaborators": {
        "timeout_seconds": "timeout_seconds",
        "retry_attempts": "retry_attempts",
        "retry_initial_delay": "retry_initial_delay",
    },
    "evaluation": {
        "default_threshold": "default_threshold",
        "retrieval_top_k": "retrieval_top_k",
        "generator_top_k": "generator_top_k",
        "reevaluate_persist": "reevaluate_persist",
    },
    "conversation": {
        "history_window": "history_window",
    },
    "storage": {
        "backend": "storage_backend",
        "path": "storage_path",
    },
    "retrieval": {
        "backend": "retriever",
        "chroma_path": "chroma_path",
    },
}

# Environment variable -> field name
ENV_VARS: Dict[str, str] = {
    "CERTEVAL_PROVIDER": "provider",
    "CERTEVAL_MODEL": "model",
    "OLLAMA_HOST": "host",
    "CERTEVAL_TEMPERATURE": "temperature",
    "CERTEVAL_MAX_TOKENS": "max_tokens",
    "CERTEVAL_TIMEOUT": "timeout_seconds",
    "CERTEVAL_RETRY_ATTEMPTS": "retry_attempts",
    "CERTEVAL_RETRY_INITIAL_DELAY": "retry_initial_delay",
    "CERTEVAL_THRESHOLD": "default_threshold",
    "CERTEVAL_RETRIEVAL_TOP_K": "retrieval_top_k",
    "CERTEVAL_GENERATOR_TOP_K": "generator_top_k",
    "CERTEVAL_REEVALUATE_PERSIST": "reevaluate_persist",
    "CERTEVAL_HISTORY_WINDOW": "history_window",
    "CERTEVAL_STORAGE": "storage_backend",
    "CERTEVAL_STORAGE_PATH": "storage_path",
    "CERTEVAL_RETRIEVER": "retriever",
    "CERTEVAL_CHROMA_PATH": "chroma_path",
}


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("expected an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError("expected an integer")
    return int(value)


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("expected a number")
    return float(value)


def _as_path(value: Any) -> Path:
    return Path(str(value)).expanduser()


CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "temperature": _as_float,
    "max_tokens": _as_int,
    "timeout_seconds": _as_float,
    "retry_attempts": _as_int,
    "retry_initial_delay": _as_float,
    "default_threshold": _as_float,
    "retrieval_top_k": _as_int,
    "generator_top_k": _as_int,
    "history_window": _as_int,
    "storage_path": _as_path,
    "chroma_path": _as_path,
}


@dataclass
class EvaluatorConfig:
    """Complete runtime configuration."""

    # Language model
    provider: str = "ollama"
    model: str = "qwen2.5:7b"
    host: str = "http://localhost:11434"
    temperature: float = 0.1
    max_tokens: int = 2048

    # Collaborator calls
    timeout_seconds: float = 60.0
    retry_attempts: int = 3
    retry_initial_delay: float = 1.0

    # Evaluation
    default_threshold: float = 70.0
    retrieval_top_k: int = 10
    generator_top_k: int = 5
    reevaluate_persist: str = "version"

    # Conversation
    history_window: int = 20

    # State
    storage_backend: str = "memory"
    storage_path: Optional[Path] = None
    retriever: str = "memory"
    chroma_path: Optional[Path] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ConfigError: A value is out of range or not one of the allowed choices.
        """
        if not self.provider:
            raise ConfigError("provider must not be empty")
        if not self.model:
            raise ConfigError("model must not be empty")
        if self.timeout_seconds <= 0:
            raise ConfigError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        if self.retry_attempts < 1:
            raise ConfigError(f"retry_attempts must be at least 1, got {self.retry_attempts}")
        if self.retry_initial_delay < 0:
            raise ConfigError(f"retry_initial_delay must not be negative, got {self.retry_initial_delay}")
        if not 0 <= self.default_threshold <= 100:
            raise ConfigError(f"default_threshold must be within 0-100, got {self.default_threshold}")
        for name in ("retrieval_top_k", "generator_top_k", "max_tokens"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1, got {getattr(self, name)}")
        if self.history_window < 0:
            raise ConfigError(f"history_window must not be negative, got {self.history_window}")
        if self.reevaluate_persist not in PERSIST_MODES:
            raise ConfigError(
                f"reevaluate_persist must be one of {PERSIST_MODES}, got {self.reevaluate_persist!r}"
            )
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ConfigError(
                f"storage backend must be one of {STORAGE_BACKENDS}, got {self.storage_backend!r}"
            )
        if self.retriever not in RETRIEVER_BACKENDS:
            raise ConfigError(f"retriever must be one of {RETRIEVER_BACKENDS}, got {self.retriever!r}")

    @property
    def resolved_storage_path(self) -> Path:
        return self.storage_path or env_config.STORAGE_DIR

    @property
    def resolved_chroma_path(self) -> Path:
        return self.chroma_path or env_config.STATE_DIR / "chroma"

    @classmethod
    def _build(cls, values: Dict[str, Any], source: str) -> "EvaluatorConfig":
        converted: Dict[str, Any] = {}
        for name, raw in values.items():
            converter = CONVERTERS.get(name, str)
            try:
                converted[name] = converter(raw) if raw is not None else None
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {name} in {source}: {raw!r} ({e})") from e
        converted = {k: v for k, v in converted.items() if v is not None}
        return cls(**converted)

    @classmethod
    def from_yaml(cls, path: Path) -> "EvaluatorConfig":
        """
        Load configuration from a sectioned YAML file.

        Raises:
            ConfigError: Missing file, unreadable YAML, unknown sections or keys,
                or invalid values.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping of sections")

        values: Dict[str, Any] = {}
        for section, entries in data.items():
            mapping = SECTIONS.get(section)
            if mapping is None:
                raise ConfigError(f"Unknown config section '{section}' in {path}")
            if entries is None:
                continue
            if not isinstance(entries, dict):
                raise ConfigError(f"Config section '{section}' in {path} must be a mapping")
            for key, value in entries.items():
                if key not in mapping:
                    raise ConfigError(f"Unknown key '{section}.{key}' in {path}")
                values[mapping[key]] = value

        logger.debug(f"Loaded config from {path}")
        return cls._build(values, str(path))

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EvaluatorConfig":
        """Build configuration from CERTEVAL_* environment variables."""
        environ = os.environ if environ is None else environ
        values = {name: environ[var] for var, name in ENV_VARS.items() if environ.get(var)}
        return cls._build(values, "environment")

    def to_dict(self) -> Dict[str, Any]:
        return {
            f.name: str(getattr(self, f.name)) if isinstance(getattr(self, f.name), Path) else getattr(self, f.name)
            for f in fields(self)
        }
