"""Provision the Cosmos DB database and findings container.

Run once per process at startup. ``create_*_if_not_exists`` makes the calls
idempotent on the service side, and :class:`StoreSchemaManager` caches the
container handle so repeated calls in the same process do not touch the
store again.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from azure.cosmos import PartitionKey

from phiscan.store.records import RECORD_FIELDS

logger = logging.getLogger(__name__)

PARTITION_KEY_PATH = "/id"

# The store's revision field changes on every write and is never queried.
EXCLUDED_PATHS: tuple[str, ...] = ('/"_etag"/?',)


def build_indexing_policy(fields: tuple[str, ...] = RECORD_FIELDS) -> dict[str, Any]:
    """Return a consistent indexing policy covering every finding-record field."""
    included = [{"path": "/*"}] + [{"path": f"/{name}/?"} for name in fields]
    return {
        "indexingMode": "consistent",
        "automatic": True,
        "includedPaths": included,
        "excludedPaths": [{"path": path} for path in EXCLUDED_PATHS],
    }


class StoreSchemaManager:
    """Ensure the target database and container exist before the first write.

    Parameters
    ----------
    client:
        An ``azure.cosmos.aio.CosmosClient``.
    """

    def __init__(self, client: Any) -> None:
        self.client = client
        self._containers: dict[tuple[str, str], Any] = {}
        self._lock = asyncio.Lock()

    async def ensure_schema(
        self,
        database_name: str,
        container_name: str,
        partition_key_path: str = PARTITION_KEY_PATH,
        indexing_policy: dict[str, Any] | None = None,
    ) -> Any:
        """Create the database and container if missing; return the container handle."""
        key = (database_name, container_name)
        if key in self._containers:
            return self._containers[key]

        async with self._lock:
            if key in self._containers:
                return self._containers[key]

            database = await self.client.create_database_if_not_exists(id=database_name)
            container = await database.create_container_if_not_exists(
                id=container_name,
                partition_key=PartitionKey(path=partition_key_path),
                indexing_policy=indexing_policy or build_indexing_policy(),
            )
            logger.info(
                "Store schema ready: database=%s container=%s partition_key=%s",
                database_name,
                container_name,
                partition_key_path,
            )
            self._containers[key] = container
            return container
