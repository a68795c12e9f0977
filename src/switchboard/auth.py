"""Credential abstraction: API keys, bearer tokens and refreshable OAuth2 tokens.

Adapters only ever see a ResolvedCredential (a secret plus how to present
it); raw secret storage stays here. API keys are read from the environment
on every resolution so rotated keys apply without a restart.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import logging
import os
import time
from typing import TYPE_CHECKING, Any, ClassVar, Literal, Union

import httpx

from switchboard._singleflight import SingleFlight
from switchboard.errors import AuthError

if TYPE_CHECKING:
    from collections.abc import Callable

    from switchboard.config import ProviderInfo

logger = logging.getLogger(__name__)

#: OAuth2 tokens are treated as expired this many seconds early.
EXPIRY_SKEW_S = 30.0

CredentialScheme = Literal["api_key", "bearer"]


@dataclass(frozen=True)
class ResolvedCredential:
    """A secret ready to be placed in a request header."""

    secret: str
    scheme: CredentialScheme

    @property
    def bearer(self) -> str:
        """``Authorization`` header value."""
        return f"Bearer {self.secret}"

    def __repr__(self) -> str:
        return f"ResolvedCredential(secret='[REDACTED]', scheme={self.scheme!r})"

    __str__ = __repr__


@dataclass(frozen=True, repr=False)
class ApiKeyCredentials:
    """API key read from a named environment variable at call time."""

    kind: ClassVar[str] = "api_key"

    provider_id: str
    env_var: str
    instructions: str | None = None

    def __repr__(self) -> str:
        return f"ApiKeyCredentials(provider_id={self.provider_id!r}, env_var={self.env_var!r})"


@dataclass(frozen=True, repr=False)
class BearerTokenCredentials:
    """Static bearer token."""

    kind: ClassVar[str] = "bearer_token"

    provider_id: str
    token: str

    def __repr__(self) -> str:
        return f"BearerTokenCredentials(provider_id={self.provider_id!r}, token='[REDACTED]')"


@dataclass(frozen=True, repr=False)
class OAuth2Credentials:
    """OAuth2 access token with optional refresh capability."""

    kind: ClassVar[str] = "oauth2"

    provider_id: str
    access_token: str
    refresh_token: str | None = None
    #: Absolute expiry, seconds since the epoch.
    expires_at: float | None = None
    token_url: str | None = None
    client_id: str | None = None
    scope: str | None = None

    def __repr__(self) -> str:
        return (
            f"OAuth2Credentials(provider_id={self.provider_id!r}, "
            f"access_token='[REDACTED]', expires_at={self.expires_at!r}, "
            f"refreshable={self.refresh_token is not None and self.token_url is not None})"
        )


Credentials = Union[ApiKeyCredentials, BearerTokenCredentials, OAuth2Credentials]


def is_expired(credentials: Credentials, *, now: float | None = None) -> bool:
    """Whether *credentials* must be refreshed before use.

    API keys and bearer tokens never expire.
    """
    if not isinstance(credentials, OAuth2Credentials) or credentials.expires_at is None:
        return False
    current = time.time() if now is None else now
    return current >= credentials.expires_at - EXPIRY_SKEW_S


def resolve(credentials: Credentials, *, now: float | None = None) -> ResolvedCredential:
    """Resolve *credentials* into a header-ready secret.

    Raises:
        AuthError: ``missing_credential`` for an unset API key variable,
            ``expired`` for an OAuth2 token past its expiry.
    """
    if isinstance(credentials, ApiKeyCredentials):
        value = os.environ.get(credentials.env_var)
        if value is None or not value.strip():
            raise AuthError(
                f"Missing environment variable: {credentials.env_var}",
                kind="missing_credential",
                hint=credentials.instructions or f"Set {credentials.env_var}.",
                provider=credentials.provider_id,
            )
        return ResolvedCredential(secret=value.strip(), scheme="api_key")
    if isinstance(credentials, BearerTokenCredentials):
        return ResolvedCredential(secret=credentials.token, scheme="bearer")
    if is_expired(credentials, now=now):
        raise AuthError(
            f"OAuth2 token for {credentials.provider_id!r} has expired",
            kind="expired",
            hint="Refresh the credentials or log in again.",
            provider=credentials.provider_id,
        )
    return ResolvedCredential(secret=credentials.access_token, scheme="bearer")


def _refresh_failed(credentials: OAuth2Credentials, reason: str) -> AuthError:
    return AuthError(
        f"OAuth2 refresh failed for {credentials.provider_id!r}: {reason}",
        kind="refresh_failed",
        hint="Log in again to obtain a new refresh token.",
        provider=credentials.provider_id,
    )


async def refresh(
    credentials: Credentials,
    *,
    http_client: httpx.AsyncClient,
    now: Callable[[], float] = time.time,
) -> Credentials:
    """Exchange a refresh token for a new access token.

    API keys and bearer tokens are returned unchanged.

    Raises:
        AuthError: ``refresh_failed`` for any failure; the stale token is
            never returned in its place.
    """
    if not isinstance(credentials, OAuth2Credentials):
        return credentials
    if not credentials.refresh_token or not credentials.token_url:
        raise _refresh_failed(credentials, "no refresh token or token URL")

    form: dict[str, str] = {
        "grant_type": "refresh_token",
        "refresh_token": credentials.refresh_token,
    }
    if credentials.client_id:
        form["client_id"] = credentials.client_id
    if credentials.scope:
        form["scope"] = credentials.scope

    try:
        response = await http_client.post(credentials.token_url, data=form)
    except asyncio.CancelledError:
        raise
    except httpx.HTTPError as e:
        raise _refresh_failed(credentials, str(e) or type(e).__name__) from e

    if response.status_code >= 400:
        raise _refresh_failed(credentials, f"token endpoint returned {response.status_code}")

    try:
        payload: Any = response.json()
    except ValueError as e:
        raise _refresh_failed(credentials, "token endpoint returned invalid JSON") from e
    access_token = payload.get("access_token") if isinstance(payload, dict) else None
    if not isinstance(access_token, str) or not access_token:
        raise _refresh_failed(credentials, "response has no access_token")

    expires_in = payload.get("expires_in")
    expires_at = (
        now() + float(expires_in) if isinstance(expires_in, (int, float)) else None
    )
    rotated = payload.get("refresh_token")
    logger.debug("Refreshed OAuth2 token for %s", credentials.provider_id)
    return replace(
        credentials,
        access_token=access_token,
        expires_at=expires_at,
        refresh_token=rotated if isinstance(rotated, str) and rotated else credentials.refresh_token,
    )


class CredentialStore:
    """Credentials per provider id, with refreshes serialized per provider.

    Concurrent requests for the same provider that find an expired OAuth2
    token share a single refresh instead of racing to refresh it.
    """

    def __init__(
        self,
        credentials: list[Credentials] | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._credentials: dict[str, Credentials] = {}
        self._http_client = http_client
        self._clock = clock
        self._refreshes: SingleFlight[str, Credentials] = SingleFlight()
        for cred in credentials or []:
            self.register(cred)

    def register(self, credentials: Credentials) -> None:
        self._credentials[credentials.provider_id] = credentials

    def get(self, provider_id: str) -> Credentials | None:
        return self._credentials.get(provider_id)

    def bind_http_client(self, http_client: httpx.AsyncClient) -> None:
        """Use *http_client* for refreshes unless one was given explicitly."""
        if self._http_client is None:
            self._http_client = http_client

    def is_expired(self, provider_id: str) -> bool:
        cred = self._credentials.get(provider_id)
        return cred is not None and is_expired(cred, now=self._clock())

    async def refresh(self, provider_id: str) -> Credentials:
        """Refresh the credentials for *provider_id* (single-flight)."""
        cred = self._credentials.get(provider_id)
        if cred is None:
            raise AuthError(
                f"No credentials registered for {provider_id!r}",
                kind="missing_credential",
                provider=provider_id,
            )
        return await self._refreshes.run(provider_id, lambda: self._do_refresh(cred))

    async def _do_refresh(self, cred: Credentials) -> Credentials:
        if self._http_client is not None:
            new = await refresh(cred, http_client=self._http_client, now=self._clock)
        else:
            async with httpx.AsyncClient() as client:
                new = await refresh(cred, http_client=client, now=self._clock)
        self._credentials[new.provider_id] = new
        return new

    async def resolve_for(
        self, provider_id: str, provider: ProviderInfo
    ) -> ResolvedCredential | None:
        """Resolve the credential to send to *provider*.

        Precedence: the provider's ``experimental_bearer_token``, then
        registered credentials (refreshed when expired), then the provider's
        ``env_key``. Returns None for providers that need no credential.

        Raises:
            AuthError: before any network call when a credential is required
                but unavailable.
        """
        if provider.experimental_bearer_token is not None:
            return ResolvedCredential(
                secret=provider.experimental_bearer_token.get_secret_value(),
                scheme="bearer",
            )

        cred = self._credentials.get(provider_id)
        if cred is not None:
            if is_expired(cred, now=self._clock()):
                cred = await self.refresh(provider_id)
            return resolve(cred, now=self._clock())

        key = provider.api_key()
        if key is None:
            return None
        return ResolvedCredential(secret=key.strip(), scheme="api_key")
