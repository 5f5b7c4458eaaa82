"""Checkpoint stores: object id -> time the object was last taken for processing.

The change detector depends only on :class:`CheckpointStore`. Two backends
ship with the service:

    InMemoryCheckpointStore : process-lifetime dict; tests and throwaway runs
    SqlCheckpointStore      : ``scan_checkpoints`` table via SQLAlchemy; survives restarts

All timestamps crossing this interface are timezone-aware UTC. Naive values
read back from databases that drop tzinfo (SQLite) are interpreted as UTC.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy.orm import Session, sessionmaker

from phiscan.db.repositories import ScanCheckpointRepository


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CheckpointStore(ABC):
    """Pluggable storage for scan checkpoints."""

    @abstractmethod
    def get(self, object_id: str) -> datetime | None:
        """Return the last-processed timestamp for *object_id*, or None."""
        ...

    @abstractmethod
    def put(
        self,
        object_id: str,
        processed_at: datetime,
        source_last_modified: datetime | None = None,
    ) -> None:
        """Record that *object_id* was taken for processing at *processed_at*."""
        ...


class InMemoryCheckpointStore(CheckpointStore):
    def __init__(self) -> None:
        self._entries: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def get(self, object_id: str) -> datetime | None:
        with self._lock:
            return self._entries.get(object_id)

    def put(
        self,
        object_id: str,
        processed_at: datetime,
        source_last_modified: datetime | None = None,
    ) -> None:
        with self._lock:
            self._entries[object_id] = as_utc(processed_at)

    def __len__(self) -> int:
        return len(self._entries)


class SqlCheckpointStore(CheckpointStore):
    """Durable checkpoints in the ``scan_checkpoints`` table.

    Each call opens and commits its own short session so checkpoints are
    durable as soon as :meth:`put` returns.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def get(self, object_id: str) -> datetime | None:
        with self.session_factory() as db:
            checkpoint = ScanCheckpointRepository(db).get(object_id)
            if checkpoint is None:
                return None
            return as_utc(checkpoint.last_processed_at)

    def put(
        self,
        object_id: str,
        processed_at: datetime,
        source_last_modified: datetime | None = None,
    ) -> None:
        db: Session
        with self.session_factory() as db:
            try:
                ScanCheckpointRepository(db).upsert(
                    object_id,
                    as_utc(processed_at),
                    as_utc(source_last_modified) if source_last_modified is not None else None,
                )
                db.commit()
            except Exception:
                db.rollback()
                raise
