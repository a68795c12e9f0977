"""Exception hierarchy for Switchboard."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Iterator

BuildErrorKind = Literal[
    "missing_required_field",
    "unsupported_tool",
    "duplicate_tool",
    "header_collision",
    "invalid_request",
]
AuthErrorKind = Literal[
    "missing_credential",
    "expired",
    "invalid_credential",
    "refresh_failed",
]


class SwitchboardError(Exception):
    """Base exception for all Switchboard errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(SwitchboardError):
    """Provider configuration validation or lookup failed."""


class InternalError(SwitchboardError):
    """A Switchboard internal error (bug) or invariant violation."""


class BuildError(SwitchboardError):
    """A provider request could not be constructed.

    Raised before any network call is made.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: BuildErrorKind = "invalid_request",
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.kind = kind


class UnsupportedToolError(BuildError):
    """A tool spec variant has no representation in the target protocol."""

    def __init__(self, message: str, *, tool_name: str, hint: str | None = None) -> None:
        super().__init__(message, kind="unsupported_tool", hint=hint)
        self.tool_name = tool_name


class HeaderCollisionError(BuildError):
    """A configured header would override a protocol-mandatory header."""

    def __init__(self, message: str, *, header: str, hint: str | None = None) -> None:
        super().__init__(message, kind="header_collision", hint=hint)
        self.header = header


class AuthError(SwitchboardError):
    """Credential missing, expired, rejected, or failed to refresh.

    Never retried automatically; only an explicit refresh recovers.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: AuthErrorKind,
        hint: str | None = None,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.kind = kind
        self.provider = provider
        self.status_code = status_code


class APIError(SwitchboardError):
    """HTTP exchange with a provider failed.

    Transport code attaches retry metadata so the retry loop can stay bounded
    without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class TransportError(APIError):
    """Connection failure or timeout before a response was obtained."""


class ProviderError(APIError):
    """Provider answered with a non-2xx status.

    ``body`` holds a bounded fragment of the response body so callers can
    render a precise message without re-reading the stream.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: str = "",
        hint: str | None = None,
        retryable: bool | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(
            message,
            hint=hint,
            retryable=retryable,
            status_code=status_code,
            retry_after_s=retry_after_s,
            provider=provider,
            phase=phase,
        )
        self.body = body


class RateLimitError(ProviderError):
    """Rate limit exceeded (HTTP 429)."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
