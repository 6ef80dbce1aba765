"""
EventSequencer Service - per-account ordering for real-time task events.

Every event emitted to an account's connections carries a sequence number
that is monotonic within that account, and an event_id that is unique across
process restarts. Clients use the event_id to drop duplicate deliveries.
"""

import logging
import threading
import uuid
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class EventSequencer:
    """
    Assigns per-account monotonic sequence numbers.

    Sequence numbers restart at 1 when the process starts; the epoch prefix of
    the event_id changes at the same time so restarted ids never collide with
    ids a client has already seen.
    """

    def __init__(self, epoch: Optional[str] = None):
        self.epoch = epoch or uuid.uuid4().hex[:8]
        self._last_per_account: Dict[int, int] = {}
        self._lock = threading.Lock()
        logger.info(f"EventSequencer initialized (epoch={self.epoch})")

    @property
    def lock(self) -> threading.Lock:
        """Held while sequencing and emitting so emission order matches sequence order."""
        return self._lock

    def next_event(self, account_id: int) -> Tuple[str, int]:
        """
        Get the next (event_id, sequence) pair for an account.

        Callers must hold `lock`.
        """
        sequence = self._last_per_account.get(account_id, 0) + 1
        self._last_per_account[account_id] = sequence
        return f"{self.epoch}-{account_id}-{sequence}", sequence

    def last_sequence(self, account_id: int) -> Optional[int]:
        with self._lock:
            return self._last_per_account.get(account_id)
