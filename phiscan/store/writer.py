"""Retrying upsert writer for finding records.

Every record is written with one insert-or-replace keyed by ``id``.

Failure handling
----------------
ValidationFailure     : ``id``, ``fileName`` or ``operation`` empty; rejected
                        before any store call.
AuthenticationFailure : the store credential could not be renewed; not retried.
ClientRejected        : the store rejected the request itself (400 Bad Request or
                        413 Entity Too Large); surfaced immediately, never retried.
TransientFailure      : any other error, retried with a fixed delay until the
                        attempt budget is spent; chained to the last error.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from azure.cosmos.exceptions import CosmosHttpResponseError

from phiscan.core.errors import AuthenticationFailure, ClientRejected, TransientFailure, ValidationFailure
from phiscan.store.records import FindingRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_S = 1.0
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_CONCURRENCY = 8

# Statuses that mean the request itself is wrong; every other failure is retried.
_REJECTED_STATUSES: frozenset[int] = frozenset({400, 413})


@dataclass
class WriteResult:
    """Settled outcome of one record write."""

    record: FindingRecord
    record_id: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def validate_record(record: FindingRecord) -> None:
    """Raise ValidationFailure if the record cannot be written."""
    missing = [
        name
        for name, value in (
            ("id", record.id),
            ("fileName", record.file_name),
            ("operation", record.operation),
        )
        if not value
    ]
    if missing:
        raise ValidationFailure(f"Finding record is missing required fields: {', '.join(missing)}")


def _is_client_error(exc: CosmosHttpResponseError) -> bool:
    return exc.status_code in _REJECTED_STATUSES


class UpsertWriter:
    """Persist finding records into a Cosmos DB container.

    Parameters
    ----------
    container:
        An ``azure.cosmos.aio.ContainerProxy`` (anything with an async
        ``upsert_item(body=...)``).
    max_attempts:
        Total attempts per record, including the first.
    retry_delay_s:
        Fixed pause between attempts.
    timeout_s:
        Upper bound on a single upsert call.
    concurrency:
        Maximum number of upserts in flight for one :meth:`persist_all` call.
    sleep:
        Awaitable sleep; injectable so tests do not wait.
    """

    def __init__(
        self,
        container: Any,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_s: float = DEFAULT_RETRY_DELAY_S,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        concurrency: int = DEFAULT_CONCURRENCY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.container = container
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s
        self.timeout_s = timeout_s
        self.concurrency = max(1, concurrency)
        self._sleep = sleep

    async def persist(self, record: FindingRecord) -> str:
        """Upsert one record and return its id."""
        validate_record(record)
        body = record.to_document()

        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                await asyncio.wait_for(self.container.upsert_item(body=body), timeout=self.timeout_s)
                logger.debug(
                    "Upserted record id=%s file=%s operation=%s field=%s",
                    record.id,
                    record.file_name,
                    record.operation.value,
                    record.field_name,
                )
                return record.id
            except AuthenticationFailure:
                raise
            except CosmosHttpResponseError as exc:
                if _is_client_error(exc):
                    logger.error("Store rejected record id=%s (status %s): %s", record.id, exc.status_code, exc.message)
                    raise ClientRejected(
                        f"Store rejected record {record.id}: {exc.message}",
                        status_code=exc.status_code,
                    ) from exc
                last_error = exc
            except Exception as exc:
                last_error = exc

            logger.warning(
                "Error upserting record id=%s: %s (attempt %d/%d)",
                record.id,
                last_error,
                attempt,
                self.max_attempts,
            )
            if attempt < self.max_attempts:
                await self._sleep(self.retry_delay_s)

        logger.error("Failed to upsert record id=%s after %d attempts", record.id, self.max_attempts)
        raise TransientFailure(
            f"Upsert of record {record.id} failed after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
        ) from last_error

    async def persist_all(self, records: Sequence[FindingRecord]) -> list[WriteResult]:
        """Write all records concurrently; wait until every write has settled.

        A permanent failure on one record never cancels its siblings. The
        returned list is in the same order as *records*.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(record: FindingRecord) -> str:
            async with semaphore:
                return await self.persist(record)

        settled = await asyncio.gather(*(_bounded(r) for r in records), return_exceptions=True)

        results: list[WriteResult] = []
        for record, outcome in zip(records, settled):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                results.append(WriteResult(record=record, error=outcome))
            else:
                results.append(WriteResult(record=record, record_id=outcome))
        return results
