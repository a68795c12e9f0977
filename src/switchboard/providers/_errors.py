"""Shared provider-side error helpers.

HTTP failures are mapped into the Switchboard hierarchy with retry metadata
attached, so the transport's retry loop stays bounded and deterministic
without brittle substring matching.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any

import httpx

from switchboard._http import AUTH_STATUS_CODES, ERROR_BODY_LIMIT, RETRYABLE_STATUS_CODES
from switchboard.errors import (
    APIError,
    AuthError,
    ProviderError,
    RateLimitError,
    TransportError,
    _walk_exception_chain,
)

_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _retry_info_seconds(body: Any) -> float | None:
    """Extract retry delay from a Google API-style RetryInfo error body.

    Shaped like::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}

    The ``retryDelay`` value is a protobuf Duration string (e.g. ``"8s"``,
    ``"8.352104981s"``).
    """
    if isinstance(body, list) and body:
        body = body[0]
    if not isinstance(body, dict):
        return None
    error: Any = body.get("error")
    if not isinstance(error, dict):
        return None
    detail_list: Any = error.get("details")
    if not isinstance(detail_list, list):
        return None
    for entry in detail_list:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if not isinstance(delay_raw, str):
            continue
        m = _PROTO_DURATION_RE.match(delay_raw)
        if m:
            return float(m.group(1))
    return None


def extract_retry_after_s(headers: httpx.Headers | None, body: str = "") -> float | None:
    """Return the server-requested retry delay in seconds, if any."""
    if headers is not None:
        raw = headers.get("retry-after")
        if isinstance(raw, str) and raw.strip():
            try:
                seconds = float(raw)
            except ValueError:
                seconds = None
            if seconds is not None and seconds >= 0:
                return seconds
        raw_ms = headers.get("retry-after-ms")
        if isinstance(raw_ms, str) and raw_ms.strip():
            try:
                return max(0.0, float(raw_ms) / 1000.0)
            except ValueError:
                pass

    if body:
        try:
            parsed = json.loads(body)
        except ValueError:
            return None
        return _retry_info_seconds(parsed)
    return None


def error_message_from_body(body: str) -> str | None:
    """Pull a human-readable ``error.message`` out of a JSON error body."""
    try:
        parsed = json.loads(body)
    except ValueError:
        return None
    if isinstance(parsed, list) and parsed:
        parsed = parsed[0]
    if not isinstance(parsed, dict):
        return None
    error = parsed.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    message = parsed.get("message")
    return message if isinstance(message, str) else None


def error_for_status(
    status_code: int,
    body: str,
    *,
    headers: httpx.Headers | None = None,
    provider: str,
    env_key: str | None = None,
) -> AuthError | ProviderError:
    """Map a non-2xx response into AuthError or ProviderError."""
    body = body[:ERROR_BODY_LIMIT]
    detail = error_message_from_body(body) or body.strip()[:200]
    status_note = f" (status={status_code})"

    if status_code in AUTH_STATUS_CODES:
        hint = (
            f"Check credentials/permissions (try setting {env_key})."
            if env_key
            else "Check credentials/permissions for this provider."
        )
        return AuthError(
            f"{provider} rejected the credential{status_note}: {detail}",
            kind="invalid_credential",
            hint=hint,
            provider=provider,
            status_code=status_code,
        )

    retry_after_s = extract_retry_after_s(headers, body)
    err_cls: type[ProviderError] = RateLimitError if status_code == 429 else ProviderError
    return err_cls(
        f"{provider} request failed{status_note}: {detail}"
        if detail
        else f"{provider} request failed{status_note}",
        status_code=status_code,
        body=body,
        retryable=status_code in RETRYABLE_STATUS_CODES,
        retry_after_s=retry_after_s,
        provider=provider,
        phase="request",
    )


def wrap_transport_error(
    exc: BaseException, *, provider: str, phase: str = "connect"
) -> APIError:
    """Map httpx/network exceptions into TransportError."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        return exc

    retryable = False
    for e in _walk_exception_chain(exc):
        if isinstance(e, (httpx.TimeoutException, httpx.RequestError, TimeoutError)):
            retryable = True
            break

    cause = str(exc) or type(exc).__name__
    return TransportError(
        f"{provider} {phase} failed: {cause}",
        retryable=retryable,
        provider=provider,
        phase=phase,
    )
