"""Change detection over the object pool.

An object is "new or changed" when it has no checkpoint, or when its
source last-modified timestamp is strictly newer than the recorded
checkpoint. The checkpoint is written *before* extraction begins
(:meth:`ChangeDetector.claim`), so the same object is never dispatched twice
by one process even if two runs overlap. A crash between the claim and the
final write leaves the object marked as processed; with the in-memory store
the object is reprocessed after a restart.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone

from phiscan.tasks.checkpoints import CheckpointStore, as_utc

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChangeDetector:
    """Decide which objects need processing and record checkpoints.

    Parameters
    ----------
    store:
        Where checkpoints are kept.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(self, store: CheckpointStore, clock: Callable[[], datetime] | None = None) -> None:
        self.store = store
        self._clock = clock or _utcnow
        self._lock = threading.Lock()

    def should_process(self, object_id: str, source_last_modified: datetime) -> bool:
        """Return True if *object_id* is unseen or modified since its checkpoint."""
        checkpoint = self.store.get(object_id)
        if checkpoint is None:
            return True
        return as_utc(source_last_modified) > checkpoint

    def record(
        self,
        object_id: str,
        processed_at: datetime | None = None,
        source_last_modified: datetime | None = None,
    ) -> None:
        """Write a checkpoint for *object_id* (defaults to the current time)."""
        self.store.put(object_id, processed_at or self._clock(), source_last_modified)

    def claim(self, object_id: str, source_last_modified: datetime, now: datetime | None = None) -> bool:
        """Atomically check and checkpoint *object_id*.

        Returns True if the caller should process the object; the checkpoint
        has already been written in that case.
        """
        with self._lock:
            if not self.should_process(object_id, source_last_modified):
                logger.debug("Unchanged since last checkpoint: %s", object_id)
                return False
            self.record(object_id, now, source_last_modified)
            return True
