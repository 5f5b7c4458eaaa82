"""Scan pipeline: wire the stages into a single ingestion run.

Stage order
-----------
1. CredentialProvider: make sure a valid credential is held (fatal if not)
2. ObjectPool:         list the pool's objects with their last-modified times
3. ChangeDetector:     claim new or changed objects (checkpoint before work)
4. LanguageClient:     analyse each claimed object's text
5. to_records:         one FindingRecord per extracted entity
6. UpsertWriter:       persist every record concurrently

Without an object pool the run submits the template's bundled text once and
records findings under fixed default provenance labels.

Claimed objects are processed concurrently, at most ``max_concurrency`` at a
time. A failure while processing one object is recorded on the RunOutcome and
does not stop the others. Only AuthenticationFailure escapes a run, and only
after all in-flight work for the run has settled.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from phiscan.core.credentials import CredentialProvider
from phiscan.core.errors import (
    AuthenticationFailure,
    ExtractionServiceUnavailable,
    MalformedResponse,
    SourceUnavailable,
)
from phiscan.language.client import LanguageClient
from phiscan.store.records import FindingRecord
from phiscan.store.writer import UpsertWriter
from phiscan.tasks.change_detection import ChangeDetector
from phiscan.tasks.discovery import ObjectInfo, ObjectPool
from phiscan.tasks.error_handler import Failure, to_failure
from phiscan.tasks.mapping import Provenance, to_records

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "default"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunOutcome:
    """Structured report of one pipeline run."""

    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None
    objects_seen: int = 0
    objects_processed: int = 0
    objects_skipped: int = 0
    records_written: int = 0
    records_failed: int = 0
    failures: list[Failure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @classmethod
    def aborted(cls, error: BaseException, started_at: datetime | None = None) -> RunOutcome:
        outcome = cls(started_at=started_at or _utcnow(), finished_at=_utcnow())
        outcome.failures.append(to_failure(error, "run"))
        return outcome

    def summary(self) -> dict[str, Any]:
        kinds: dict[str, int] = {}
        for failure in self.failures:
            kinds[failure.kind.value] = kinds.get(failure.kind.value, 0) + 1
        return {
            "objects_seen": self.objects_seen,
            "objects_processed": self.objects_processed,
            "objects_skipped": self.objects_skipped,
            "records_written": self.records_written,
            "records_failed": self.records_failed,
            "failures": kinds,
        }


class ScanPipeline:
    """One incremental scan over the object pool (or the default payload).

    Parameters
    ----------
    credentials:
        Shared credential provider; checked at the start of every run.
    language:
        Extraction service client.
    writer:
        Finding-record writer.
    template:
        analyze-text request template.
    pool:
        Object pool to scan. ``None`` selects default mode.
    detector:
        Change detector; required when *pool* is set.
    subscription, resource_group:
        Provenance labels stamped on every record.
    max_concurrency:
        Maximum number of objects processed at once within a run.
    """

    def __init__(
        self,
        *,
        credentials: CredentialProvider,
        language: LanguageClient,
        writer: UpsertWriter,
        template: dict[str, Any],
        pool: ObjectPool | None = None,
        detector: ChangeDetector | None = None,
        subscription: str = "LanguageSubscription",
        resource_group: str = "LanguageRG",
        max_concurrency: int = 8,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if pool is not None and detector is None:
            raise ValueError("A change detector is required when an object pool is configured")
        self.credentials = credentials
        self.language = language
        self.writer = writer
        self.template = template
        self.pool = pool
        self.detector = detector
        self.subscription = subscription
        self.resource_group = resource_group
        self.max_concurrency = max(1, max_concurrency)
        self._clock = clock or _utcnow

    async def run(self) -> RunOutcome:
        """Execute one run and return its outcome.

        Raises
        ------
        AuthenticationFailure
            If no valid credential can be obtained.
        """
        outcome = RunOutcome(started_at=self._clock())
        await self.credentials.credential()

        if self.pool is None:
            await self._process_default(outcome)
        else:
            await self._process_pool(outcome)

        outcome.finished_at = self._clock()
        return outcome

    # -- default mode -------------------------------------------------------

    async def _process_default(self, outcome: RunOutcome) -> None:
        outcome.objects_seen = 1
        try:
            result = await self.language.extract_default(self.template)
        except (ExtractionServiceUnavailable, MalformedResponse) as exc:
            logger.warning("Default payload skipped: %s", exc)
            outcome.failures.append(to_failure(exc, DEFAULT_SUBJECT))
            return

        provenance = Provenance.default(self.subscription, self.resource_group)
        await self._persist(to_records(result, provenance), outcome)
        outcome.objects_processed = 1

    # -- pool mode ----------------------------------------------------------

    async def _process_pool(self, outcome: RunOutcome) -> None:
        try:
            objects = await self.pool.list_objects()
        except SourceUnavailable as exc:
            logger.error("Object pool listing failed: %s", exc)
            outcome.failures.append(to_failure(exc, "pool"))
            return

        outcome.objects_seen = len(objects)
        now = self._clock()
        claimed = await asyncio.to_thread(self._claim_all, objects, now)
        outcome.objects_skipped = len(objects) - len(claimed)
        logger.info("Object pool: %d objects, %d new or changed", len(objects), len(claimed))

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(obj: ObjectInfo) -> None:
            async with semaphore:
                await self._process_object(obj, outcome)

        settled = await asyncio.gather(*(_bounded(obj) for obj in claimed), return_exceptions=True)

        fatal: AuthenticationFailure | None = None
        for obj, error in zip(claimed, settled):
            if error is None:
                continue
            if isinstance(error, AuthenticationFailure):
                fatal = error
            elif isinstance(error, Exception):
                logger.error("Unexpected error processing %s", obj["name"], exc_info=error)
                outcome.failures.append(to_failure(error, obj["name"]))
            else:
                raise error
        if fatal is not None:
            raise fatal

    def _claim_all(self, objects: list[ObjectInfo], now: datetime) -> list[ObjectInfo]:
        # Checkpoint stores block; this runs in a worker thread.
        return [obj for obj in objects if self.detector.claim(obj["name"], obj["last_modified"], now)]

    async def _process_object(self, obj: ObjectInfo, outcome: RunOutcome) -> None:
        name = obj["name"]
        try:
            text = await self.pool.read_text(name)
            if not text.strip():
                logger.info("Skipping empty object %s", name)
                outcome.objects_processed += 1
                return
            result = await self.language.extract(text, self.template)
        except (SourceUnavailable, ExtractionServiceUnavailable, MalformedResponse) as exc:
            logger.warning("Object %s skipped: %s", name, exc)
            outcome.failures.append(to_failure(exc, name))
            return

        provenance = Provenance(
            subscription=self.subscription,
            resource_group=self.resource_group,
            storage_area_name=self.pool.storage_area_name,
            storage_area_container=self.pool.storage_area_container,
            file_name=name,
            source_last_modified=obj["last_modified"],
        )
        await self._persist(to_records(result, provenance), outcome)
        outcome.objects_processed += 1

    # -- persistence --------------------------------------------------------

    async def _persist(self, records: list[FindingRecord], outcome: RunOutcome) -> None:
        if not records:
            return
        fatal: AuthenticationFailure | None = None
        for result in await self.writer.persist_all(records):
            if result.ok:
                outcome.records_written += 1
                continue
            outcome.records_failed += 1
            outcome.failures.append(to_failure(result.error, result.record.id))
            if isinstance(result.error, AuthenticationFailure):
                fatal = result.error
        if fatal is not None:
            raise fatal


def build_pipeline(
    settings: Any,
    *,
    credentials: CredentialProvider,
    language: LanguageClient,
    writer: UpsertWriter,
    template: dict[str, Any],
    pool: ObjectPool | None = None,
    detector: ChangeDetector | None = None,
) -> ScanPipeline:
    """Construct a ScanPipeline from settings and already-built components."""
    return ScanPipeline(
        credentials=credentials,
        language=language,
        writer=writer,
        template=template,
        pool=pool,
        detector=detector,
        subscription=settings.azure_subscription_id,
        resource_group=settings.azure_resource_group,
        max_concurrency=settings.max_concurrency,
    )


async def run_pipeline(pipeline: ScanPipeline) -> RunOutcome:
    """Execute one run, logging its summary; AuthenticationFailure still propagates."""
    outcome = await pipeline.run()
    level = logging.INFO if outcome.ok else logging.WARNING
    logger.log(level, "Scan run finished: %s", outcome.summary())
    return outcome
