"""Payment session store - in-memory storage for checkout sessions.

Sessions are keyed by external_reference, with secondary lookups by
processor subscription id and by linked user.
"""

import threading
from typing import Callable, Dict, List, Optional

from subscription_sync.exceptions import PaymentSessionNotFoundError
from subscription_sync.models.payment_session import PaymentSession, PaymentSessionStatus

SessionMutation = Callable[[PaymentSession], Optional[PaymentSession]]


class PaymentSessionStore:
    """In-memory storage for payment sessions.

    Thread-safe. Sessions are never deleted; they only move forward through
    their status graph via ``update_with``.
    """

    def __init__(self):
        """Initialize session store with empty storage."""
        self._sessions: Dict[str, PaymentSession] = {}
        self._by_external_id: Dict[str, str] = {}
        self._lock = threading.RLock()

    def _index(self, session: PaymentSession) -> None:
        if session.external_subscription_id:
            self._by_external_id[session.external_subscription_id] = session.external_reference

    def add(self, session: PaymentSession) -> None:
        """Add a session to the store.

        Raises:
            ValueError: If the external reference already exists
        """
        with self._lock:
            if session.external_reference in self._sessions:
                raise ValueError(
                    f"Payment session '{session.external_reference}' already exists"
                )
            stored = session.model_copy(deep=True)
            self._sessions[session.external_reference] = stored
            self._index(stored)

    def get(self, external_reference: str) -> PaymentSession:
        """Get session by external reference.

        Raises:
            PaymentSessionNotFoundError: If the reference is unknown
        """
        with self._lock:
            session = self._sessions.get(external_reference)
            if session is None:
                raise PaymentSessionNotFoundError(
                    f"Payment session not found for reference: {external_reference}"
                )
            return session.model_copy(deep=True)

    def find(self, external_reference: str) -> Optional[PaymentSession]:
        """Find session by external reference (returns None if not found)."""
        with self._lock:
            session = self._sessions.get(external_reference)
            return session.model_copy(deep=True) if session else None

    def find_by_external_subscription_id(
        self, external_subscription_id: str
    ) -> Optional[PaymentSession]:
        """Find the session that created a processor subscription."""
        with self._lock:
            reference = self._by_external_id.get(external_subscription_id)
            if reference is None:
                return None
            return self.find(reference)

    def find_by_user(self, user_id: str) -> List[PaymentSession]:
        """Get all sessions linked to a user, oldest first."""
        with self._lock:
            sessions = [s for s in self._sessions.values() if s.user_id == user_id]
            sessions.sort(key=lambda s: s.created_at_millis)
            return [s.model_copy(deep=True) for s in sessions]

    def update_with(
        self, external_reference: str, mutate: SessionMutation
    ) -> Optional[PaymentSession]:
        """Atomically apply a conditional mutation to one session.

        Args:
            external_reference: Session key
            mutate: Callable applied to a copy of the current session; return
                the session to commit it, or None to leave it untouched

        Returns:
            Copy of the committed session, or None if nothing was committed

        Raises:
            PaymentSessionNotFoundError: If the reference is unknown
        """
        with self._lock:
            current = self._sessions.get(external_reference)
            if current is None:
                raise PaymentSessionNotFoundError(
                    f"Payment session not found for reference: {external_reference}"
                )

            updated = mutate(current.model_copy(deep=True))
            if updated is None:
                return None
            if updated.external_reference != external_reference:
                raise ValueError("Session mutation must not change external_reference")

            self._sessions[external_reference] = updated
            self._index(updated)
            return updated.model_copy(deep=True)

    def exists(self, external_reference: str) -> bool:
        with self._lock:
            return external_reference in self._sessions

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def count_by_status(self, status: PaymentSessionStatus) -> int:
        with self._lock:
            return sum(1 for s in self._sessions.values() if s.status == status)

    def clear(self) -> None:
        """Clear all sessions from the store."""
        with self._lock:
            self._sessions.clear()
            self._by_external_id.clear()

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, external_reference: str) -> bool:
        return self.exists(external_reference)

    def __repr__(self) -> str:
        return f"PaymentSessionStore(sessions={self.count()})"
