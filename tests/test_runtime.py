"""Tests for phiscan/pipeline/runtime.py."""
from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from azure.core.exceptions import ServiceRequestError

from fakes import FakeContainer, FakeTokenSource
from phiscan.core.credentials import CredentialProvider
from phiscan.core.errors import TemplateError
from phiscan.core.settings import Settings
from phiscan.db.session import reset_engine
from phiscan.pipeline import runtime as runtime_module
from phiscan.pipeline.runtime import build_checkpoint_store, build_pool, build_runtime
from phiscan.tasks.checkpoints import InMemoryCheckpointStore, SqlCheckpointStore
from phiscan.tasks.discovery import BlobObjectPool, FilesystemObjectPool


def _settings(**values) -> Settings:
    return Settings(_env_file=None, **values)


class TestCheckpointStoreSelection:

    def test_memory_backend(self):
        assert isinstance(build_checkpoint_store(_settings(CHECKPOINT_BACKEND="memory")), InMemoryCheckpointStore)

    def test_database_backend_creates_table(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        from phiscan.core.settings import get_settings

        monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'checkpoints.db'}")
        get_settings.cache_clear()
        reset_engine()
        try:
            store = build_checkpoint_store(_settings(CHECKPOINT_BACKEND="database"))
            assert isinstance(store, SqlCheckpointStore)
            assert store.get("a.txt") is None
        finally:
            reset_engine()
            get_settings.cache_clear()

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValueError, match="CHECKPOINT_BACKEND"):
            build_checkpoint_store(_settings(CHECKPOINT_BACKEND="redis"))


class TestPoolSelection:

    def test_no_pool_configured(self):
        assert build_pool(_settings(), credential=None) is None

    def test_local_pool(self, tmp_path: Path):
        pool = build_pool(_settings(LOCAL_POOL_DIR=str(tmp_path)), credential=None)
        assert isinstance(pool, FilesystemObjectPool)
        assert pool.root == tmp_path

    def test_blob_pool_takes_precedence(self, tmp_path: Path):
        settings = _settings(
            BLOB_STORAGE_ENDPOINT="https://acct.blob.core.windows.net",
            BLOB_CONTAINER_NAME="inbox",
            LOCAL_POOL_DIR=str(tmp_path),
        )
        credential = CredentialProvider(FakeTokenSource(), "https://storage.azure.com/.default")

        pool = build_pool(settings, credential)

        assert isinstance(pool, BlobObjectPool)
        assert pool.storage_area_container == "inbox"


class TestBuildRuntime:

    def test_missing_configuration_is_reported_by_env_name(self):
        with pytest.raises(ValueError) as exc_info:
            asyncio.run(build_runtime(_settings(LANGUAGE_ENDPOINT="https://lang.example.com")))

        message = str(exc_info.value)
        assert "COSMOSDB_ENDPOINT" in message
        assert "LANGUAGE_KEY" in message
        assert "LANGUAGE_ENDPOINT" not in message

    def test_wires_components_and_closes_them(self, tmp_path: Path):
        settings = _settings(
            COSMOSDB_ENDPOINT="https://acct.documents.azure.com:443/",
            LANGUAGE_ENDPOINT="https://lang.example.com",
            LANGUAGE_KEY="secret-key",
            LANGUAGE_TEMPLATE_PATH=str(Path(__file__).resolve().parents[1] / "lang.json"),
            LOCAL_POOL_DIR=str(tmp_path),
            CHECKPOINT_BACKEND="memory",
            SCHEDULE_INTERVAL_SECONDS=5,
            UPSERT_MAX_ATTEMPTS=4,
        )
        source = FakeTokenSource()
        container = FakeContainer()
        cosmos_client = MagicMock()
        cosmos_client.close = AsyncMock()
        schema_manager = MagicMock()
        schema_manager.ensure_schema = AsyncMock(return_value=container)

        with (
            patch.object(
                runtime_module,
                "build_credential_provider",
                return_value=CredentialProvider(source, settings.cosmosdb_scope),
            ),
            patch.object(runtime_module, "CosmosClient", return_value=cosmos_client) as cosmos_cls,
            patch.object(runtime_module, "StoreSchemaManager", return_value=schema_manager),
        ):
            async def _scenario():
                runtime = await build_runtime(settings)
                await runtime.close()
                return runtime

            runtime = asyncio.run(_scenario())

        cosmos_cls.assert_called_once_with(settings.cosmosdb_endpoint, credential=runtime.credentials)
        schema_manager.ensure_schema.assert_awaited_once_with("phiscan", "phirecords-v9")
        assert runtime.writer.container is container
        assert runtime.writer.max_attempts == 4
        assert isinstance(runtime.pool, FilesystemObjectPool)
        assert runtime.pipeline.detector is not None
        assert runtime.scheduler.interval_s == 5
        cosmos_client.close.assert_awaited_once()
        assert source.closed is True

    @pytest.mark.parametrize("failure", ["schema", "template"])
    def test_startup_failure_closes_created_clients(self, tmp_path: Path, failure: str):
        settings = _settings(
            COSMOSDB_ENDPOINT="https://acct.documents.azure.com:443/",
            LANGUAGE_ENDPOINT="https://lang.example.com",
            LANGUAGE_KEY="secret-key",
            LANGUAGE_TEMPLATE_PATH=str(tmp_path / "missing.json"),
            CHECKPOINT_BACKEND="memory",
        )
        source = FakeTokenSource()
        cosmos_client = MagicMock()
        cosmos_client.close = AsyncMock()
        schema_manager = MagicMock()
        if failure == "schema":
            schema_manager.ensure_schema = AsyncMock(side_effect=ServiceRequestError("cosmos unreachable"))
            expected: type[Exception] = ServiceRequestError
        else:
            schema_manager.ensure_schema = AsyncMock(return_value=FakeContainer())
            expected = TemplateError

        with (
            patch.object(
                runtime_module,
                "build_credential_provider",
                return_value=CredentialProvider(source, settings.cosmosdb_scope),
            ),
            patch.object(runtime_module, "CosmosClient", return_value=cosmos_client),
            patch.object(runtime_module, "StoreSchemaManager", return_value=schema_manager),
        ):
            with pytest.raises(expected):
                asyncio.run(build_runtime(settings))

        cosmos_client.close.assert_awaited_once()
        assert source.closed is True
