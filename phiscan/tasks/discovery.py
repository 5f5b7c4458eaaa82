"""Object pools: list text-bearing objects and read their content.

Implements the pluggable ObjectPool interface. The pipeline does not know
which pool an object came from; it only needs each object's name, its
last-modified timestamp, and its text.

    BlobObjectPool       : one Azure Blob Storage container (production)
    FilesystemObjectPool : a local directory tree (development, tests)

Every listed object is returned as an ObjectInfo dict:

    name          : object identifier within the pool (blob name / relative path)
    last_modified : timezone-aware UTC timestamp of the last change
    size_bytes    : content size in bytes

Pool-level failures are raised as SourceUnavailable.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypedDict

from azure.core.exceptions import AzureError
from azure.storage.blob.aio import BlobServiceClient

from phiscan.core.errors import SourceUnavailable

logger = logging.getLogger(__name__)

# Extensions read as plain text by FilesystemObjectPool.
_TEXT_EXTENSIONS: frozenset[str] = frozenset({
    "txt", "csv", "json", "md", "log", "xml", "html", "htm",
})


class ObjectInfo(TypedDict):
    """Minimal object descriptor returned by every pool."""
    name: str
    last_modified: datetime
    size_bytes: int


class ObjectPool(ABC):
    """Pluggable interface for object sources."""

    #: Provenance labels copied onto every finding record.
    storage_area_name: str
    storage_area_container: str

    @abstractmethod
    async def list_objects(self) -> list[ObjectInfo]:
        """Return an ObjectInfo for every object currently in the pool."""
        ...

    @abstractmethod
    async def read_text(self, name: str) -> str:
        """Download the object called *name* and decode it as UTF-8 text."""
        ...

    async def close(self) -> None:
        """Release network resources held by the pool."""


class BlobObjectPool(ObjectPool):
    """Treat the blobs of one Azure Storage container as the object pool.

    Parameters
    ----------
    account_url:
        Blob service endpoint, e.g. ``https://acct.blob.core.windows.net``.
    container_name:
        Container to scan.
    credential:
        Async token credential (usually the shared CredentialProvider).
    service_client:
        Pre-built ``BlobServiceClient``; overrides *account_url*/*credential*.
    """

    def __init__(
        self,
        account_url: str,
        container_name: str,
        credential: Any = None,
        *,
        service_client: Any = None,
    ) -> None:
        self.service_client = service_client or BlobServiceClient(account_url, credential=credential)
        self.container_client = self.service_client.get_container_client(container_name)
        self.storage_area_name = getattr(self.service_client, "account_name", None) or account_url
        self.storage_area_container = container_name

    async def list_objects(self) -> list[ObjectInfo]:
        objects: list[ObjectInfo] = []
        try:
            async for blob in self.container_client.list_blobs():
                objects.append(
                    ObjectInfo(
                        name=blob.name,
                        last_modified=blob.last_modified.astimezone(timezone.utc),
                        size_bytes=blob.size or 0,
                    )
                )
        except AzureError as exc:
            raise SourceUnavailable(
                f"Cannot list container {self.storage_area_container}: {exc}"
            ) from exc
        return objects

    async def read_text(self, name: str) -> str:
        try:
            downloader = await self.container_client.download_blob(name, encoding="utf-8")
            return await downloader.readall()
        except (AzureError, UnicodeDecodeError) as exc:
            raise SourceUnavailable(f"Cannot download blob {name}: {exc}") from exc

    async def close(self) -> None:
        await self.service_client.close()


class FilesystemObjectPool(ObjectPool):
    """Scan a local directory tree for text files.

    Parameters
    ----------
    root:
        Root directory to scan recursively.
    extensions:
        If provided, only files with these (lowercase, no-dot) extensions are
        listed.  Defaults to all _TEXT_EXTENSIONS.
    """

    def __init__(
        self,
        root: str | Path,
        extensions: frozenset[str] | None = None,
    ) -> None:
        self.root = Path(root)
        self.extensions = extensions if extensions is not None else _TEXT_EXTENSIONS
        self.storage_area_name = "local"
        self.storage_area_container = self.root.name or str(self.root)

    async def list_objects(self) -> list[ObjectInfo]:
        if not self.root.is_dir():
            raise SourceUnavailable(f"Pool directory does not exist: {self.root}")

        objects: list[ObjectInfo] = []
        for path in sorted(self.root.rglob("*")):
            if not path.is_file():
                continue
            ext = path.suffix.lstrip(".").lower()
            if self.extensions and ext not in self.extensions:
                continue
            try:
                objects.append(self._describe(path))
            except OSError as exc:
                logger.warning("Skipping %s: %s", path, exc)
        return objects

    async def read_text(self, name: str) -> str:
        try:
            return (self.root / name).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceUnavailable(f"Cannot read {name}: {exc}") from exc

    def _describe(self, path: Path) -> ObjectInfo:
        stat = path.stat()
        return ObjectInfo(
            name=path.relative_to(self.root).as_posix(),
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            size_bytes=stat.st_size,
        )
