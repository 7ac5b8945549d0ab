"""
Session store and per-session document registry.

Sessions are written with compare-and-set: save() only succeeds when the
session has not changed since it was read. Document indexes are 1-based,
assigned from a counter on the session record and never handed out twice,
even after a document is removed.
"""

import logging
from dataclasses import replace
from typing import List, Optional

from certeval.storage.backend import StorageBackend
from certeval.storage.records import Document, Session, new_id, utc_now
from utils.exceptions import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

TABLE = "sessions"
_CAS_ATTEMPTS = 5


class SessionStore:
    """Persistence for Session records."""

    def __init__(self, backend: StorageBackend):
        self.backend = backend

    def get(self, session_id: str) -> Optional[Session]:
        data = self.backend.get(TABLE, session_id)
        return Session.from_dict(data) if data else None

    def require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def get_or_create(self, session_id: Optional[str] = None) -> Session:
        """Load a session, creating it (with a fresh id when none given) if absent."""
        session_id = session_id or new_id()
        existing = self.get(session_id)
        if existing is not None:
            return existing
        try:
            created = Session.from_dict(self.backend.insert(TABLE, Session(id=session_id).to_dict()))
            logger.info(f"Created session {session_id}")
            return created
        except ConflictError:
            # Created concurrently between get and insert
            return self.require(session_id)

    def ensure(self, session_id: str) -> Session:
        """Make sure the session record exists."""
        return self.get_or_create(session_id)

    def save(self, session: Session) -> Session:
        """
        Write back a session read earlier.

        Raises:
            ConflictError: The stored session changed since it was read.
        """
        session.updated_at = utc_now()
        data = self.backend.replace(TABLE, session.to_dict(), expected_version=session.version)
        return Session.from_dict(data)

    def add_document(
        self,
        session_id: str,
        name: str,
        mime_type: str = "application/octet-stream",
        document_id: Optional[str] = None,
        text_ref: Optional[str] = None,
    ) -> Document:
        """Register a new document under the session and make it current."""
        document_id = document_id or new_id()
        for _ in range(_CAS_ATTEMPTS):
            session = self.ensure(session_id)
            document = Document(
                id=document_id,
                session_id=session_id,
                name=name,
                index=session.next_document_index,
                mime_type=mime_type,
                text_ref=text_ref,
            )
            session.documents.append(document)
            session.next_document_index += 1
            session.current_document_id = document.id
            try:
                self.save(session)
            except ConflictError:
                continue
            logger.info(f"Registered document {name!r} as #{document.index} in session {session_id}")
            return document
        raise ConflictError(f"Could not register document in session {session_id}: too much contention")

    def get_document(self, session_id: str, document_id: str) -> Optional[Document]:
        session = self.get(session_id)
        if session is None:
            return None
        for document in session.documents:
            if document.id == document_id and not document.removed:
                return document
        return None

    def get_document_by_index(self, session_id: str, index: int) -> Optional[Document]:
        for document in self.list_documents(session_id):
            if document.index == index:
                return document
        return None

    def list_documents(self, session_id: str, include_removed: bool = False) -> List[Document]:
        session = self.get(session_id)
        if session is None:
            return []
        return [d for d in session.documents if include_removed or not d.removed]

    def remove_document(self, session_id: str, document_id: str) -> Document:
        """Mark a document removed. Its index stays consumed."""
        for _ in range(_CAS_ATTEMPTS):
            session = self.require(session_id)
            target = next(
                (d for d in session.documents if d.id == document_id and not d.removed), None
            )
            if target is None:
                raise NotFoundError(f"Document {document_id} not found in session {session_id}")
            session.documents = [
                replace(d, removed=True) if d.id == document_id else d for d in session.documents
            ]
            if session.current_document_id == document_id:
                remaining = [d for d in session.documents if not d.removed]
                session.current_document_id = remaining[-1].id if remaining else None
            try:
                self.save(session)
            except ConflictError:
                continue
            logger.info(f"Removed document #{target.index} from session {session_id}")
            return replace(target, removed=True)
        raise ConflictError(f"Could not remove document from session {session_id}: too much contention")
