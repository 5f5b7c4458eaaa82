"""Failure taxonomy shared by every pipeline stage.

Only :class:`AuthenticationFailure` is allowed to abort a run. Every other
error is converted into a :class:`~phiscan.tasks.error_handler.Failure`
entry on the run outcome by the pipeline.
"""
from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class AuthenticationFailure(PipelineError):
    """Credential renewal failed; the enclosing run cannot proceed."""


class ValidationFailure(PipelineError, ValueError):
    """A finding record is missing a required field; never written."""


class ClientRejected(PipelineError):
    """The document store rejected the request as malformed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientFailure(PipelineError):
    """A write kept failing after the retry budget was spent."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class ExtractionServiceUnavailable(PipelineError, ConnectionError):
    """The extraction service answered with a non-success status or was unreachable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponse(PipelineError, ValueError):
    """The extraction service response lacks the expected nested fields."""


class SourceUnavailable(PipelineError):
    """The object pool could not be listed or an object could not be read."""


class TemplateError(PipelineError, ValueError):
    """The request template does not have the expected document structure."""
