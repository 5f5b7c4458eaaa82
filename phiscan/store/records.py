"""Finding records persisted to the document store.

One :class:`FindingRecord` describes one sensitive-data occurrence detected
in a source object. Records are serialised with camelCase keys, which are
also the property paths named in the container's indexing policy.

Record identity is a fresh UUID per record, never derived from the source
content: reprocessing the same object produces new records rather than
replacing the earlier ones.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Operation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    # Declared for the stored schema; no code path produces it.
    DELETE = "delete"


def new_record_id() -> str:
    return str(uuid4())


class FindingRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=new_record_id)
    subscription: str
    resource_group: str
    storage_area_name: str
    storage_area_container: str
    file_name: str
    operation: Operation = Operation.INSERT
    field_name: str
    field_type: str
    source_last_modified: datetime | None = None

    def to_document(self) -> dict:
        """Return the JSON-ready body written to the store."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)

    @classmethod
    def from_document(cls, document: dict) -> FindingRecord:
        """Rebuild a record from a stored body, ignoring store metadata keys."""
        body = {key: value for key, value in document.items() if not key.startswith("_")}
        return cls.model_validate(body)


# Property names as stored, in declaration order.
RECORD_FIELDS: tuple[str, ...] = tuple(
    field.alias or name for name, field in FindingRecord.model_fields.items()
)
