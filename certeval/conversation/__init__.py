"""
Conversation Module

The upload -> criteria -> validation conversation: statuses, the pure
transition function, intent routing, reply rendering and the orchestrator
that applies it all to stored sessions.

Usage:
    from certeval.conversation import Orchestrator, UploadedFile

    result = await orchestrator.handle_turn(None, upload=UploadedFile(Path("cert.pdf")))
    print(result.reply)
"""

from .intents import Intent, IntentRouter, RoutedIntent, is_restart, is_stop, keyword_intent
from .orchestrator import Orchestrator, TurnResult, UploadedFile
from .rendering import ReplyRenderer
from .responder import Responder
from .status import ALLOWED_TRANSITIONS, SessionStatus
from .transitions import ConversationState, Transition, transition

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ConversationState",
    "Intent",
    "IntentRouter",
    "Orchestrator",
    "ReplyRenderer",
    "Responder",
    "RoutedIntent",
    "SessionStatus",
    "Transition",
    "TurnResult",
    "UploadedFile",
    "is_restart",
    "is_stop",
    "keyword_intent",
    "transition",
]
