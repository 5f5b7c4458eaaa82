"""Test doubles for the Azure clients and the analyze-text endpoint."""
from __future__ import annotations

import json
import time
from collections.abc import Callable

import httpx
from azure.core.credentials import AccessToken

from phiscan.language.client import LanguageClient

JANE_DOE_RESPONSE = {
    "kind": "PiiEntityRecognitionResults",
    "results": {
        "documents": [
            {
                "id": "1",
                "entities": [
                    {"text": "Jane Doe", "category": "Person", "offset": 8, "length": 8, "confidenceScore": 0.98},
                ],
                "warnings": [],
            }
        ],
        "errors": [],
        "modelVersion": "2023-04-15-preview",
    },
}


def entities_response(*categories: str) -> dict:
    return {
        "results": {
            "documents": [
                {
                    "id": "1",
                    "entities": [{"text": f"value-{i}", "category": c} for i, c in enumerate(categories)],
                }
            ],
            "errors": [],
        }
    }


class FakeContainer:
    """In-memory stand-in for a Cosmos ``ContainerProxy``.

    ``fail_when`` receives each upsert body and returns an exception to raise
    for that call, or None to store the body.
    """

    def __init__(self, fail_when: Callable[[dict], Exception | None] | None = None) -> None:
        self.items: dict[str, dict] = {}
        self.calls: list[dict] = []
        self.fail_when = fail_when

    async def upsert_item(self, body: dict, **kwargs) -> dict:
        self.calls.append(body)
        if self.fail_when is not None:
            error = self.fail_when(body)
            if error is not None:
                raise error
        self.items[body["id"]] = dict(body)
        return body

    async def read_item(self, item: str, partition_key: str, **kwargs) -> dict:
        return {**self.items[item], "_etag": '"0000"', "_ts": 1700000000}


class FakeTokenSource:
    """Async azure-identity credential double."""

    def __init__(self, lifetime_s: int = 3600, error: Exception | None = None) -> None:
        self.lifetime_s = lifetime_s
        self.error = error
        self.calls = 0
        self.closed = False

    async def get_token(self, *scopes: str, **kwargs) -> AccessToken:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return AccessToken(f"token-{self.calls}", int(time.time()) + self.lifetime_s)

    async def close(self) -> None:
        self.closed = True


class LanguageStub:
    """Records analyze-text requests and answers them from ``respond``."""

    def __init__(self, respond: Callable[[dict], httpx.Response] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.bodies: list[dict] = []
        self._respond = respond or (lambda body: httpx.Response(200, json=JANE_DOE_RESPONSE))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.loads(request.content)
        self.bodies.append(body)
        return self._respond(body)

    def client(self, **kwargs) -> LanguageClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(self))
        return LanguageClient("https://lang.example.com", "secret-key", http_client=http, **kwargs)


async def no_sleep(_: float) -> None:
    return None
