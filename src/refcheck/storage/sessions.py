from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from ..core.errors import AlreadyCompleted
from ..core.models import CompletionSeal, Session, TokenGrant

if TYPE_CHECKING:
    from .base import Storage

__all__ = ["SessionStore"]


class SessionStore:
    """Tokens, session records and completion seals."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._grants: dict[str, TokenGrant] = {}
        self._sessions: dict[str, Session] = {}
        self._seals: dict[str, CompletionSeal] = {}

    # ------------------------------------------------------------------ tokens
    def add_grant(self, grant: TokenGrant) -> TokenGrant:
        def _work() -> TokenGrant:
            if grant.token in self._grants:
                raise ValueError("token already issued")
            self._grants[grant.token] = grant
            self._storage.journal(lambda: self._grants.pop(grant.token, None))
            return grant

        return self._storage.commit(_work)

    def get_grant(self, token: str) -> TokenGrant | None:
        with self._storage.lock:
            return self._grants.get(token)

    # ---------------------------------------------------------------- sessions
    def insert(self, session: Session) -> Session:
        """Store a new session and bind its token to it, once."""

        def _work() -> Session:
            grant = self._grants.get(session.token)
            if grant is None:
                raise KeyError(f"token for session '{session.session_id}' was never issued")
            if grant.session_id is not None:
                raise ValueError(f"token already bound to session '{grant.session_id}'")
            if session.session_id in self._sessions:
                raise ValueError(f"session '{session.session_id}' already exists")
            self._sessions[session.session_id] = session
            self._grants[session.token] = replace(grant, session_id=session.session_id)

            def _undo() -> None:
                del self._sessions[session.session_id]
                self._grants[session.token] = grant

            self._storage.journal(_undo)
            return session

        return self._storage.commit(_work)

    def update(self, session: Session) -> Session:
        def _work() -> Session:
            previous = self._sessions.get(session.session_id)
            if previous is None:
                raise KeyError(f"session '{session.session_id}' not found")
            self._sessions[session.session_id] = session
            self._storage.journal(lambda: self._sessions.__setitem__(session.session_id, previous))
            return session

        return self._storage.commit(_work)

    def get(self, session_id: str) -> Session | None:
        with self._storage.lock:
            return self._sessions.get(session_id)

    # ------------------------------------------------------------------- seals
    def insert_seal(self, seal: CompletionSeal) -> CompletionSeal:
        def _work() -> CompletionSeal:
            if seal.session_id in self._seals:
                raise AlreadyCompleted(f"session '{seal.session_id}' is already sealed")
            self._seals[seal.session_id] = seal
            self._storage.journal(lambda: self._seals.pop(seal.session_id, None))
            return seal

        return self._storage.commit(_work)

    def get_seal(self, session_id: str) -> CompletionSeal | None:
        with self._storage.lock:
            return self._seals.get(session_id)
