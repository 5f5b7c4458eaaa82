"""Tests for phiscan/core/credentials.py."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError

from fakes import FakeTokenSource
from phiscan.core.credentials import (
    CREDENTIAL_LIFETIME,
    Credential,
    CredentialProvider,
    needs_renewal,
    next_expiry,
)
from phiscan.core.errors import AuthenticationFailure

SCOPE = "https://cosmos.azure.com/.default"
T0 = datetime.now(timezone.utc).replace(microsecond=0)


class TestExpiryArithmetic:

    def test_missing_credential_needs_renewal(self):
        assert needs_renewal(None, T0) is True

    def test_one_instant_before_expiry_is_still_valid(self):
        credential = Credential("tok", T0 + CREDENTIAL_LIFETIME)
        assert needs_renewal(credential, T0 + CREDENTIAL_LIFETIME - timedelta(microseconds=1)) is False

    def test_exactly_at_expiry_needs_renewal(self):
        credential = Credential("tok", T0 + CREDENTIAL_LIFETIME)
        assert needs_renewal(credential, T0 + CREDENTIAL_LIFETIME) is True

    def test_default_lifetime_is_55_minutes(self):
        assert next_expiry(T0) == T0 + timedelta(minutes=55)

    def test_expiry_capped_by_token_validity(self):
        token_expires_on = T0 + timedelta(minutes=10)
        assert next_expiry(T0, token_expires_on) == token_expires_on

    def test_longer_token_validity_does_not_extend_lifetime(self):
        assert next_expiry(T0, T0 + timedelta(hours=24)) == T0 + CREDENTIAL_LIFETIME


class TestCredentialProvider:

    def test_first_call_renews(self):
        source = FakeTokenSource()
        provider = CredentialProvider(source, SCOPE)

        credential = asyncio.run(provider.credential(now=T0))

        assert source.calls == 1
        assert credential.token == "token-1"
        assert credential.expires_at == T0 + CREDENTIAL_LIFETIME
        assert provider.expires_at() == credential.expires_at

    def test_valid_credential_is_reused(self):
        source = FakeTokenSource()
        provider = CredentialProvider(source, SCOPE)

        async def _scenario():
            first = await provider.credential(now=T0)
            second = await provider.credential(now=T0 + timedelta(minutes=54))
            return first, second

        first, second = asyncio.run(_scenario())

        assert source.calls == 1
        assert first is second

    def test_stale_credential_is_renewed_once(self):
        source = FakeTokenSource(lifetime_s=24 * 3600)
        provider = CredentialProvider(source, SCOPE)

        async def _scenario():
            await provider.credential(now=T0)
            return await provider.credential(now=T0 + CREDENTIAL_LIFETIME)

        renewed = asyncio.run(_scenario())

        assert source.calls == 2
        assert renewed.token == "token-2"
        assert renewed.expires_at == T0 + 2 * CREDENTIAL_LIFETIME

    def test_concurrent_callers_share_one_renewal(self):
        class SlowSource(FakeTokenSource):
            async def get_token(self, *scopes, **kwargs):
                await asyncio.sleep(0.01)
                return await super().get_token(*scopes, **kwargs)

        source = SlowSource()
        provider = CredentialProvider(source, SCOPE)

        async def _scenario():
            return await asyncio.gather(*(provider.credential(now=T0) for _ in range(5)))

        credentials = asyncio.run(_scenario())

        assert source.calls == 1
        assert {c.token for c in credentials} == {"token-1"}

    def test_scopes_are_cached_separately(self):
        source = FakeTokenSource()
        provider = CredentialProvider(source, SCOPE)

        async def _scenario():
            await provider.credential(now=T0)
            await provider.credential("https://storage.azure.com/.default", now=T0)
            await provider.credential(now=T0)

        asyncio.run(_scenario())

        assert source.calls == 2

    def test_renewal_failure_raises_authentication_failure(self):
        source = FakeTokenSource(error=ClientAuthenticationError("identity refused"))
        provider = CredentialProvider(source, SCOPE)

        with pytest.raises(AuthenticationFailure) as exc_info:
            asyncio.run(provider.credential(now=T0))

        assert isinstance(exc_info.value.__cause__, ClientAuthenticationError)
        assert provider.expires_at() is None

    def test_injected_clock_drives_renewal(self):
        clock_value = [T0]
        source = FakeTokenSource()
        provider = CredentialProvider(source, SCOPE, clock=lambda: clock_value[0])

        async def _scenario():
            await provider.credential()
            clock_value[0] = T0 + timedelta(minutes=56)
            await provider.credential()

        asyncio.run(_scenario())

        assert source.calls == 2


class TestTokenCredentialProtocol:

    def test_get_token_returns_access_token(self):
        provider = CredentialProvider(FakeTokenSource(), SCOPE)

        token = asyncio.run(provider.get_token(SCOPE))

        assert isinstance(token, AccessToken)
        assert token.token == "token-1"
        assert token.expires_on == int(provider.expires_at(SCOPE).timestamp())

    def test_async_context_manager_closes_source(self):
        source = FakeTokenSource()

        async def _scenario():
            async with CredentialProvider(source, SCOPE) as provider:
                await provider.get_token()

        asyncio.run(_scenario())

        assert source.closed is True
