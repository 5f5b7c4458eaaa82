"""Error handling: categorize pipeline failures into typed run-outcome entries.

Every exception raised inside a pipeline run is mapped to a FailureKind and
recorded as a Failure on the run's RunOutcome. Only AUTHENTICATION is fatal
and aborts the run; every other kind is logged and the run continues with
the next object or record.

Failure kinds
-------------
AUTHENTICATION        : credential renewal failed; fatal
VALIDATION            : record missing id / fileName / operation; record skipped
CLIENT_REJECTED       : store refused the write as malformed; record skipped
TRANSIENT             : write retries exhausted; record failed
SERVICE_UNAVAILABLE   : extraction service non-success or unreachable; object skipped
MALFORMED_RESPONSE    : extraction response missing expected fields; object skipped
SOURCE_UNAVAILABLE    : pool listing or download failed; object (or run input) skipped
UNKNOWN               : anything else; logged with traceback
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from phiscan.core.errors import (
    AuthenticationFailure,
    ClientRejected,
    ExtractionServiceUnavailable,
    MalformedResponse,
    SourceUnavailable,
    TransientFailure,
    ValidationFailure,
)


class FailureKind(str, Enum):
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    CLIENT_REJECTED = "client_rejected"
    TRANSIENT = "transient"
    SERVICE_UNAVAILABLE = "service_unavailable"
    MALFORMED_RESPONSE = "malformed_response"
    SOURCE_UNAVAILABLE = "source_unavailable"
    UNKNOWN = "unknown"


_KIND_BY_TYPE: tuple[tuple[type[Exception], FailureKind], ...] = (
    (AuthenticationFailure, FailureKind.AUTHENTICATION),
    (ValidationFailure, FailureKind.VALIDATION),
    (ClientRejected, FailureKind.CLIENT_REJECTED),
    (TransientFailure, FailureKind.TRANSIENT),
    (ExtractionServiceUnavailable, FailureKind.SERVICE_UNAVAILABLE),
    (MalformedResponse, FailureKind.MALFORMED_RESPONSE),
    (SourceUnavailable, FailureKind.SOURCE_UNAVAILABLE),
)


@dataclass(frozen=True)
class Failure:
    """One failed unit of work inside a run."""

    kind: FailureKind
    subject: str  # object name, record id, or "run"
    detail: str


def categorize(error: BaseException) -> FailureKind:
    """Map an exception to its FailureKind."""
    for exc_type, kind in _KIND_BY_TYPE:
        if isinstance(error, exc_type):
            return kind
    return FailureKind.UNKNOWN


def is_fatal(kind: FailureKind) -> bool:
    """Return True if a failure of this kind must abort the run."""
    return kind is FailureKind.AUTHENTICATION


def to_failure(error: BaseException, subject: str) -> Failure:
    return Failure(kind=categorize(error), subject=subject, detail=str(error))
