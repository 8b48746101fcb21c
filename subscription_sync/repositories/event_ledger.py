"""Processed-event ledger for webhook deduplication."""

import threading
from typing import Dict, Optional

from subscription_sync.logging_config import get_logger

logger = get_logger(__name__)


class EventLedger:
    """Records processor event ids that have been claimed for processing.

    ``claim`` is atomic: of two concurrent deliveries of the same event id
    exactly one gets True. Claims older than the retention window are
    pruned on the next timed claim; the processor stops redelivering long
    before then.

    Args:
        retention_millis: How long a claim is remembered (None keeps claims forever)
    """

    def __init__(self, retention_millis: Optional[int] = None):
        self._claimed: Dict[str, Optional[int]] = {}
        self._retention_millis = retention_millis
        self._lock = threading.Lock()

    def claim(self, event_id: str, claimed_at_millis: Optional[int] = None) -> bool:
        """Claim an event id.

        Args:
            event_id: Processor event id
            claimed_at_millis: Claim time; drives pruning of old claims

        Returns:
            True if this caller owns the event, False if already claimed
        """
        with self._lock:
            if claimed_at_millis is not None:
                self._prune_locked(claimed_at_millis)
            if event_id in self._claimed:
                return False
            self._claimed[event_id] = claimed_at_millis
            return True

    def release(self, event_id: str) -> None:
        """Release a claim so a redelivery of the event is processed."""
        with self._lock:
            self._claimed.pop(event_id, None)

    def prune(self, now_millis: int) -> int:
        """Forget claims older than the retention window.

        Claims recorded without a time are kept.

        Returns:
            Number of claims removed
        """
        with self._lock:
            return self._prune_locked(now_millis)

    def _prune_locked(self, now_millis: int) -> int:
        if self._retention_millis is None:
            return 0
        cutoff = now_millis - self._retention_millis
        stale = [
            event_id
            for event_id, claimed_at in self._claimed.items()
            if claimed_at is not None and claimed_at < cutoff
        ]
        for event_id in stale:
            del self._claimed[event_id]
        if stale:
            logger.debug("event_ledger_pruned", removed=len(stale), remaining=len(self._claimed))
        return len(stale)

    def is_processed(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._claimed

    def count(self) -> int:
        with self._lock:
            return len(self._claimed)

    def clear(self) -> None:
        with self._lock:
            self._claimed.clear()

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, event_id: str) -> bool:
        return self.is_processed(event_id)
