from __future__ import annotations

from datetime import datetime
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from phiscan.db import models

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, entity_id) -> ModelT | None:
        return self.db.get(self.model, entity_id)

    def list(self, limit: int = 100, offset: int = 0) -> list[ModelT]:
        stmt = select(self.model).offset(offset).limit(limit)
        return self.db.execute(stmt).scalars().all()

    def update(self, entity: ModelT, **kwargs) -> ModelT:
        for key, value in kwargs.items():
            setattr(entity, key, value)
        self.db.flush()
        return entity


class ScanCheckpointRepository(BaseRepository[models.ScanCheckpoint]):
    model = models.ScanCheckpoint

    def upsert(
        self,
        object_id: str,
        last_processed_at: datetime,
        source_last_modified: datetime | None = None,
    ) -> models.ScanCheckpoint:
        checkpoint = self.get(object_id)
        if checkpoint is None:
            return self.create(
                object_id=object_id,
                last_processed_at=last_processed_at,
                source_last_modified=source_last_modified,
            )
        return self.update(
            checkpoint,
            last_processed_at=last_processed_at,
            source_last_modified=source_last_modified,
        )
