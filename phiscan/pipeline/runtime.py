"""Build the long-lived components of the service from Settings.

One Runtime exists per process. It owns every network client, so shutting
it down closes them all in reverse order of creation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from azure.cosmos.aio import CosmosClient

from phiscan.core.credentials import CredentialProvider, build_credential_provider
from phiscan.core.settings import Settings
from phiscan.db.base import Base
from phiscan.db.session import get_engine, get_session_factory
from phiscan.language.client import LanguageClient
from phiscan.language.templates import load_template
from phiscan.pipeline.dag import ScanPipeline, build_pipeline
from phiscan.pipeline.scheduler import Scheduler
from phiscan.store.schema import StoreSchemaManager
from phiscan.store.writer import UpsertWriter
from phiscan.tasks.change_detection import ChangeDetector
from phiscan.tasks.checkpoints import CheckpointStore, InMemoryCheckpointStore, SqlCheckpointStore
from phiscan.tasks.discovery import BlobObjectPool, FilesystemObjectPool, ObjectPool

logger = logging.getLogger(__name__)

CHECKPOINT_BACKENDS = ("database", "memory")


@dataclass
class Runtime:
    settings: Settings
    credentials: CredentialProvider
    cosmos_client: Any
    language: LanguageClient
    writer: UpsertWriter
    pipeline: ScanPipeline
    scheduler: Scheduler
    pool: ObjectPool | None = None

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.language.aclose()
        if self.pool is not None:
            await self.pool.close()
        await self.cosmos_client.close()
        await self.credentials.close()


def _require(settings: Settings, *names: str) -> None:
    missing = [name for name in names if not getattr(settings, name)]
    if missing:
        aliases = [Settings.model_fields[name].alias or name.upper() for name in missing]
        raise ValueError(f"Missing required configuration: {', '.join(aliases)}")


def build_checkpoint_store(settings: Settings) -> CheckpointStore:
    """Return the checkpoint store selected by ``CHECKPOINT_BACKEND``."""
    backend = settings.checkpoint_backend.lower()
    if backend not in CHECKPOINT_BACKENDS:
        raise ValueError(f"CHECKPOINT_BACKEND must be one of {CHECKPOINT_BACKENDS}, got {backend!r}")
    if backend == "memory":
        logger.warning("Using in-memory checkpoints; objects are reprocessed after a restart")
        return InMemoryCheckpointStore()
    Base.metadata.create_all(bind=get_engine())
    return SqlCheckpointStore(get_session_factory())


def build_pool(settings: Settings, credential: Any) -> ObjectPool | None:
    """Return the configured object pool, or None for default mode."""
    if settings.blob_storage_endpoint and settings.blob_container_name:
        return BlobObjectPool(settings.blob_storage_endpoint, settings.blob_container_name, credential)
    if settings.local_pool_dir:
        return FilesystemObjectPool(settings.local_pool_dir)
    return None


async def build_runtime(settings: Settings) -> Runtime:
    """Create clients, provision the store schema, and assemble the scheduler.

    Clients created before a startup failure are closed before the error
    propagates.
    """
    _require(settings, "cosmosdb_endpoint", "language_endpoint", "language_key")

    credentials = build_credential_provider(settings.cosmosdb_scope, settings.managed_identity_client_id)
    cosmos_client = CosmosClient(settings.cosmosdb_endpoint, credential=credentials)
    language: LanguageClient | None = None
    pool: ObjectPool | None = None
    try:
        container = await StoreSchemaManager(cosmos_client).ensure_schema(
            settings.cosmosdb_dbname,
            settings.cosmosdb_container,
        )
        template = load_template(settings.language_template_path)

        writer = UpsertWriter(
            container,
            max_attempts=settings.upsert_max_attempts,
            retry_delay_s=settings.upsert_retry_delay_s,
            timeout_s=settings.store_timeout_s,
            concurrency=settings.max_concurrency,
        )
        language = LanguageClient(
            settings.language_endpoint,
            settings.language_key,
            api_version=settings.language_api_version,
            timeout_s=settings.language_timeout_s,
        )

        pool = build_pool(settings, credentials)
        detector = ChangeDetector(build_checkpoint_store(settings)) if pool is not None else None
    except BaseException:
        logger.error("Runtime startup failed; closing the clients created so far")
        if language is not None:
            await language.aclose()
        if pool is not None:
            await pool.close()
        await cosmos_client.close()
        await credentials.close()
        raise

    if pool is None:
        logger.info("No object pool configured; scanning the template's bundled text")

    pipeline = build_pipeline(
        settings,
        credentials=credentials,
        language=language,
        writer=writer,
        template=template,
        pool=pool,
        detector=detector,
    )
    scheduler = Scheduler(
        pipeline.run,
        settings.schedule_interval_seconds,
        failure_alert_threshold=settings.failure_alert_threshold,
    )
    return Runtime(
        settings=settings,
        credentials=credentials,
        cosmos_client=cosmos_client,
        language=language,
        writer=writer,
        pipeline=pipeline,
        scheduler=scheduler,
        pool=pool,
    )
