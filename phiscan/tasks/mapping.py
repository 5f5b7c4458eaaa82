"""Record mapping: turn extracted entities into finding records.

Each entity of each document in an ExtractionResult becomes exactly one
FindingRecord. The entity's category is used as both ``fieldName`` and
``fieldType``; the entity text is never copied onto the record. Provenance
comes from the object being processed, or from fixed default labels when the
pipeline runs without an object pool.

No deduplication or merging happens here: every call mints new record ids.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from phiscan.language.client import ExtractionResult
from phiscan.store.records import FindingRecord, Operation


@dataclass(frozen=True)
class Provenance:
    """Where the findings of one extraction came from."""

    subscription: str
    resource_group: str
    storage_area_name: str
    storage_area_container: str
    file_name: str
    source_last_modified: datetime | None = None

    @classmethod
    def default(
        cls,
        subscription: str = "LanguageSubscription",
        resource_group: str = "LanguageRG",
    ) -> Provenance:
        """Labels used when the template's bundled text is analysed directly."""
        return cls(
            subscription=subscription,
            resource_group=resource_group,
            storage_area_name="LanguageStorage",
            storage_area_container="Container",
            file_name="FromLanguage",
        )


def to_records(result: ExtractionResult, provenance: Provenance) -> list[FindingRecord]:
    """Return one insert record per extracted entity, in response order."""
    records: list[FindingRecord] = []
    for document in result.documents:
        for entity in document.entities:
            records.append(
                FindingRecord(
                    subscription=provenance.subscription,
                    resource_group=provenance.resource_group,
                    storage_area_name=provenance.storage_area_name,
                    storage_area_container=provenance.storage_area_container,
                    file_name=provenance.file_name,
                    operation=Operation.INSERT,
                    field_name=entity.category,
                    field_type=entity.category,
                    source_last_modified=provenance.source_last_modified,
                )
            )
    return records
