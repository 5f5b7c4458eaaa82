"""Renewable access credential shared by the store and object-pool clients.

The provider wraps an ``azure-identity`` async credential and keeps one
:class:`Credential` per token scope together with an explicit expiry
instant. Callers ask for a credential on demand; when the held one is stale
(``now >= expires_at``) it is renewed first. Renewal failures surface as
:class:`~phiscan.core.errors.AuthenticationFailure`.

The expiry arithmetic lives in two pure helpers, :func:`needs_renewal` and
:func:`next_expiry`, so boundaries can be tested without a real clock.

The provider also implements the azure-core async ``TokenCredential``
protocol, so ``CosmosClient`` and ``BlobServiceClient`` can be handed the
provider directly and every token they use goes through the same expiry
bookkeeping.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from azure.core.credentials import AccessToken
from azure.core.exceptions import AzureError
from azure.identity.aio import DefaultAzureCredential

from phiscan.core.errors import AuthenticationFailure

logger = logging.getLogger(__name__)

CREDENTIAL_LIFETIME = timedelta(minutes=55)


@dataclass(frozen=True, slots=True)
class Credential:
    """An opaque bearer token and the instant after which it must be renewed."""

    token: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def needs_renewal(credential: Credential | None, now: datetime) -> bool:
    """Return True if *credential* is missing or ``now`` is at or past its expiry."""
    return credential is None or now >= credential.expires_at


def next_expiry(
    now: datetime,
    token_expires_on: datetime | None = None,
    lifetime: timedelta = CREDENTIAL_LIFETIME,
) -> datetime:
    """Return the expiry to record for a credential renewed at *now*.

    The expiry is ``now + lifetime`` but never later than the token's own
    validity window.
    """
    expiry = now + lifetime
    if token_expires_on is not None and token_expires_on < expiry:
        return token_expires_on
    return expiry


class CredentialProvider:
    """Issue valid credentials, renewing them transparently when stale.

    Parameters
    ----------
    source:
        An ``azure-identity`` async credential (e.g. ``DefaultAzureCredential``).
    default_scope:
        Scope used when :meth:`credential` is called without one.
    lifetime:
        How long a renewed credential is trusted before the next renewal.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        source: Any,
        default_scope: str,
        *,
        lifetime: timedelta = CREDENTIAL_LIFETIME,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._source = source
        self.default_scope = default_scope
        self._lifetime = lifetime
        self._clock = clock or _utcnow
        self._credentials: dict[str, Credential] = {}
        self._lock = asyncio.Lock()

    # -- public API ---------------------------------------------------------

    async def credential(self, scope: str | None = None, now: datetime | None = None) -> Credential:
        """Return a valid credential for *scope*, renewing it if stale.

        Raises
        ------
        AuthenticationFailure
            If renewal is needed and the identity source refuses it.
        """
        scope = scope or self.default_scope
        now = now or self._clock()

        current = self._credentials.get(scope)
        if not needs_renewal(current, now):
            return current

        async with self._lock:
            # Another task may have renewed while we waited.
            current = self._credentials.get(scope)
            if not needs_renewal(current, now):
                return current
            renewed = await self._renew(scope, now)
            self._credentials[scope] = renewed
            return renewed

    def expires_at(self, scope: str | None = None) -> datetime | None:
        current = self._credentials.get(scope or self.default_scope)
        return current.expires_at if current is not None else None

    # -- azure-core AsyncTokenCredential protocol ----------------------------

    async def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        credential = await self.credential(scopes[0] if scopes else None)
        return AccessToken(credential.token, int(credential.expires_at.timestamp()))

    async def close(self) -> None:
        close = getattr(self._source, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> CredentialProvider:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -- internal -----------------------------------------------------------

    async def _renew(self, scope: str, now: datetime) -> Credential:
        try:
            token = await self._source.get_token(scope)
        except AzureError as exc:
            logger.error("Credential renewal failed for scope %s: %s", scope, exc)
            raise AuthenticationFailure(f"Could not obtain a credential for scope {scope}") from exc

        token_expires_on = datetime.fromtimestamp(token.expires_on, tz=timezone.utc)
        renewed = Credential(
            token=token.token,
            expires_at=next_expiry(now, token_expires_on, self._lifetime),
        )
        logger.info("Credential renewed for scope %s; valid until %s", scope, renewed.expires_at.isoformat())
        return renewed


def build_credential_provider(
    default_scope: str,
    managed_identity_client_id: str | None = None,
) -> CredentialProvider:
    """Create a provider backed by ``DefaultAzureCredential``."""
    source = DefaultAzureCredential(managed_identity_client_id=managed_identity_client_id)
    return CredentialProvider(source, default_scope)
