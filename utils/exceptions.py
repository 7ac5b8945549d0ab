"""
Custom exception hierarchy for certeval.

All project-specific exceptions inherit from CertEvalError. The
conversation layer turns every one of them into a user-facing reply;
none of them is meant to terminate the process.
"""

from typing import Optional


class CertEvalError(Exception):
    """Base exception for certeval."""

    pass


class ConfigError(CertEvalError):
    """Invalid or missing configuration."""

    pass


class ValidationError(CertEvalError):
    """Malformed criteria, weights, thresholds or an empty criteria set."""

    pass


class NotFoundError(CertEvalError):
    """Unknown session, document, criteria or evaluation id."""

    pass


class ParseError(CertEvalError):
    """A collaborator response could not be decoded into the expected schema."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class CollaboratorError(CertEvalError):
    """Retrieval or language-model call failed or timed out."""

    def __init__(self, message: str, collaborator: Optional[str] = None):
        super().__init__(message)
        self.collaborator = collaborator


class ExtractionError(CertEvalError):
    """Document text extraction failed."""

    pass


class ConflictError(CertEvalError):
    """A record changed between read and write (compare-and-set failed)."""

    pass


class InvalidTransitionError(CertEvalError):
    """A conversation state change that the transition table forbids."""

    pass
