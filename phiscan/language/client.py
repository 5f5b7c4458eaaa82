"""Azure AI Language ``analyze-text`` client.

Wraps ``POST {endpoint}/language/:analyze-text?api-version=...`` with:

- **Template substitution**: the request body is a JSON template whose
  ``analysisInput.documents[0].text`` is replaced by the object's text
  (see :mod:`phiscan.language.templates`).
- **Subscription-key auth**: every call carries ``Ocp-Apim-Subscription-Key``.
- **Explicit timeout**: the call never waits longer than ``timeout_s``.
- **Typed failures**: a non-success status or transport error raises
  ``ExtractionServiceUnavailable``; a body without
  ``results.documents[*].entities[*].category`` raises ``MalformedResponse``.

The client uses ``httpx.AsyncClient`` so many objects can be analysed
concurrently within one pipeline run.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from phiscan.core.errors import ExtractionServiceUnavailable, MalformedResponse
from phiscan.language.templates import build_request

logger = logging.getLogger(__name__)

ANALYZE_TEXT_PATH = "/language/:analyze-text"
DEFAULT_API_VERSION = "2022-05-01"
SUBSCRIPTION_KEY_HEADER = "Ocp-Apim-Subscription-Key"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExtractedEntity:
    text: str
    category: str


@dataclass
class ExtractedDocument:
    id: str | None
    entities: list[ExtractedEntity] = field(default_factory=list)


@dataclass
class ExtractionResult:
    """Parsed analyze-text response, in service order."""

    documents: list[ExtractedDocument] = field(default_factory=list)

    @property
    def entity_count(self) -> int:
        return sum(len(doc.entities) for doc in self.documents)


def _parse_entity(entity: Any) -> ExtractedEntity:
    category = entity["category"]
    text = entity.get("text", "")
    if not isinstance(category, str) or not category:
        raise TypeError(f"entity category must be a non-empty string, got {category!r}")
    if not isinstance(text, str):
        raise TypeError(f"entity text must be a string, got {type(text).__name__}")
    return ExtractedEntity(text=text, category=category)


def parse_response(payload: Any) -> ExtractionResult:
    """Turn an analyze-text response body into an ExtractionResult.

    Raises
    ------
    MalformedResponse
        If any of the expected nested fields is missing or mistyped.
    """
    try:
        results = payload["results"]
        raw_documents = results["documents"]
        documents: list[ExtractedDocument] = []
        for raw_doc in raw_documents:
            entities = [_parse_entity(entity) for entity in raw_doc["entities"]]
            documents.append(ExtractedDocument(id=raw_doc.get("id"), entities=entities))
        service_errors = results.get("errors") or []
        if not isinstance(service_errors, list):
            raise TypeError(f"results.errors must be a list, got {type(service_errors).__name__}")
    except (KeyError, TypeError, AttributeError) as exc:
        raise MalformedResponse(f"Unexpected analyze-text response shape: {exc}") from exc

    for error in service_errors:
        if isinstance(error, dict):
            logger.warning(
                "Extraction service reported an error for document %s: %s", error.get("id"), error.get("error")
            )
        else:
            logger.warning("Extraction service reported an unrecognised error entry: %r", error)

    return ExtractionResult(documents=documents)


# ---------------------------------------------------------------------------
# LanguageClient
# ---------------------------------------------------------------------------


class LanguageClient:
    """Async client for the analyze-text endpoint.

    Parameters
    ----------
    endpoint:
        Language resource endpoint, e.g. ``https://my-lang.cognitiveservices.azure.com``.
    key:
        Subscription key sent in ``Ocp-Apim-Subscription-Key``.
    api_version:
        Value of the ``api-version`` query parameter.
    timeout_s:
        Per-request timeout in seconds.
    http_client:
        Optional pre-built ``httpx.AsyncClient`` (tests inject a
        ``MockTransport``). When omitted the client creates and owns one.
    """

    def __init__(
        self,
        endpoint: str,
        key: str,
        *,
        api_version: str = DEFAULT_API_VERSION,
        timeout_s: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.api_version = api_version
        self.timeout_s = timeout_s
        self._key = key
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_s)
        self._last_latency_ms: int | None = None

    @property
    def url(self) -> str:
        return f"{self.endpoint}{ANALYZE_TEXT_PATH}"

    # -- public API ---------------------------------------------------------

    async def extract(self, document_text: str, template: dict[str, Any]) -> ExtractionResult:
        """Analyse *document_text* using *template* as the request body."""
        return await self._analyze(build_request(template, document_text))

    async def extract_default(self, template: dict[str, Any]) -> ExtractionResult:
        """Analyse the text bundled with *template*, unchanged."""
        return await self._analyze(template)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    @property
    def last_latency_ms(self) -> int | None:
        """Wall-clock latency of the most recent request (ms)."""
        return self._last_latency_ms

    # -- internal -----------------------------------------------------------

    async def _analyze(self, payload: dict[str, Any]) -> ExtractionResult:
        start = time.monotonic()
        try:
            response = await self._http.post(
                self.url,
                params={"api-version": self.api_version},
                headers={SUBSCRIPTION_KEY_HEADER: self._key},
                json=payload,
                timeout=self.timeout_s,
            )
        except httpx.TimeoutException as exc:
            self._last_latency_ms = int((time.monotonic() - start) * 1000)
            raise ExtractionServiceUnavailable(
                f"Extraction service timed out after {self.timeout_s}s"
            ) from exc
        except httpx.HTTPError as exc:
            self._last_latency_ms = int((time.monotonic() - start) * 1000)
            raise ExtractionServiceUnavailable(
                f"Cannot reach extraction service at {self.endpoint}: {exc}"
            ) from exc

        self._last_latency_ms = int((time.monotonic() - start) * 1000)

        if not response.is_success:
            raise ExtractionServiceUnavailable(
                f"Extraction service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponse("Extraction service returned a non-JSON body") from exc

        result = parse_response(body)
        logger.info(
            "Extraction returned %d entities in %d documents (%d ms)",
            result.entity_count,
            len(result.documents),
            self._last_latency_ms,
        )
        return result
