"""Conversation statuses and the transitions allowed between them."""

from enum import Enum
from typing import Dict, List


class SessionStatus(Enum):
    """Where a session is in the upload -> criteria -> validation flow."""

    AWAITING_UPLOAD = "awaiting_upload"
    AWAITING_CRITERIA = "awaiting_criteria"
    READY_TO_VALIDATE = "ready_to_validate"
    VALIDATED = "validated"


ALLOWED_TRANSITIONS: Dict[SessionStatus, List[SessionStatus]] = {
    SessionStatus.AWAITING_UPLOAD: [SessionStatus.AWAITING_CRITERIA],
    SessionStatus.AWAITING_CRITERIA: [SessionStatus.READY_TO_VALIDATE],
    SessionStatus.READY_TO_VALIDATE: [SessionStatus.VALIDATED, SessionStatus.AWAITING_CRITERIA],
    SessionStatus.VALIDATED: [SessionStatus.AWAITING_CRITERIA],
}
