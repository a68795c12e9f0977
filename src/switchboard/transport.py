"""Transport shell: dispatch one request and stream unified events back.

One ``ModelClient.stream`` call owns one in-flight HTTP request at a time.
Retries always restart the whole request with a fresh parser, so the caller
never sees events from two attempts interleaved.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
import logging
from typing import TYPE_CHECKING

import httpx

from switchboard.auth import CredentialStore
from switchboard.config import ProviderRegistry, load_env_file
from switchboard.errors import APIError, ProviderError
from switchboard.models import StreamError, StreamErrorKind, StreamWarning
from switchboard.providers import adapter_for, aparse_bytes
from switchboard.providers._errors import error_for_status, wrap_transport_error
from switchboard.retry import RetryPolicy, compute_backoff_delay, retry_async

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from types import TracebackType

    from switchboard.config import ProviderInfo
    from switchboard.models import ProviderRequest, UnifiedEvent
    from switchboard.providers import BuiltRequest

logger = logging.getLogger(__name__)

#: Connect/write/pool timeouts; reads are bounded by the provider's idle timeout.
DEFAULT_CONNECT_TIMEOUT_S = 30.0


class ModelClient:
    """Streams ProviderRequests to configured providers.

    Example:
        async with ModelClient(ProviderRegistry.built_in()) as client:
            async for event in client.stream("openai", request):
                ...
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        credentials: CredentialStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        load_env_file()
        self.registry = registry if registry is not None else ProviderRegistry.built_in()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(DEFAULT_CONNECT_TIMEOUT_S, read=None)
        )
        self.credentials = credentials if credentials is not None else CredentialStore()
        self.credentials.bind_http_client(self._client)
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def __aenter__(self) -> ModelClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def stream(
        self, provider_id: str, request: ProviderRequest
    ) -> AsyncIterator[UnifiedEvent]:
        """Send *request* to *provider_id* and yield unified events.

        The sequence always ends with exactly one Completed or StreamError.

        Raises:
            ConfigurationError: unknown provider id.
            AuthError: missing/expired credential (before any network call)
                or a 401/403 response.
            BuildError: the request cannot be rendered for the protocol.
        """
        provider = self.registry.get(provider_id)
        adapter = adapter_for(provider.wire_api)
        credential = await self.credentials.resolve_for(provider_id, provider)
        built = adapter.build(request, provider, credential)
        logger.debug("Prepared %r for provider %s", built, provider_id)

        for name in built.dropped_tools:
            yield StreamWarning(
                f"Tool {name!r} dropped: not supported by the {provider.wire_api.value} protocol"
            )

        policy = self.retry_policy.with_max_retries(provider.effective_request_max_retries())
        stream_retries = provider.effective_stream_max_retries()
        idle_timeout_s = provider.stream_idle_timeout_s()

        for attempt in range(stream_retries + 1):
            try:
                response = await retry_async(
                    lambda: asyncio.wait_for(self._open(provider, built), idle_timeout_s),
                    policy=policy,
                    sleep=self._sleep,
                )
            except ProviderError as e:
                yield StreamError(
                    kind=StreamErrorKind.PROVIDER_ERROR,
                    message=str(e),
                    status=e.status_code,
                    body=e.body,
                )
                return
            except APIError as e:
                yield StreamError(kind=StreamErrorKind.TRANSPORT_ERROR, message=str(e))
                return
            except asyncio.TimeoutError:
                yield StreamError(
                    kind=StreamErrorKind.IDLE_TIMEOUT,
                    message=f"no response headers within {idle_timeout_s:g}s",
                )
                return

            parser = adapter.new_parser()
            delivered = False
            failure: StreamError | None = None
            try:
                chunks = _iter_with_idle_timeout(response, idle_timeout_s)
                async with aclosing(aparse_bytes(parser, chunks)) as events:
                    async for event in events:
                        if (
                            not delivered
                            and isinstance(event, StreamError)
                            and event.kind is StreamErrorKind.TRUNCATED
                        ):
                            failure = event
                            break
                        delivered = True
                        yield event
            except asyncio.TimeoutError:
                failure = parser.fail(
                    StreamErrorKind.IDLE_TIMEOUT,
                    f"no data received for {idle_timeout_s:g}s",
                )
            except httpx.HTTPError as e:
                wrapped = wrap_transport_error(e, provider=provider.name, phase="stream")
                failure = parser.fail(StreamErrorKind.TRANSPORT_ERROR, str(wrapped))
            finally:
                await response.aclose()

            if failure is None:
                return
            if delivered or attempt >= stream_retries:
                yield failure
                return
            delay = compute_backoff_delay(self.retry_policy, retry_index=attempt + 1)
            logger.warning(
                "Stream from %s dropped before any event (%s); reconnecting in %.2fs (%d/%d)",
                provider_id,
                failure.kind.value,
                delay,
                attempt + 1,
                stream_retries,
            )
            if delay > 0:
                await self._sleep(delay)

    async def _open(self, provider: ProviderInfo, built: BuiltRequest) -> httpx.Response:
        """POST the request and return the streaming response (2xx only)."""
        logger.debug("POST %s", built.url)
        req = self._client.build_request(
            "POST", built.url, headers=built.headers, json=built.body
        )
        try:
            response = await self._client.send(req, stream=True)
        except httpx.HTTPError as e:
            raise wrap_transport_error(e, provider=provider.name) from e

        if response.is_success:
            return response
        try:
            raw = await response.aread()
        except httpx.HTTPError as e:
            raise wrap_transport_error(e, provider=provider.name, phase="request") from e
        finally:
            await response.aclose()
        raise error_for_status(
            response.status_code,
            raw.decode("utf-8", errors="replace"),
            headers=response.headers,
            provider=provider.name,
            env_key=provider.env_key,
        )


async def _iter_with_idle_timeout(
    response: httpx.Response, timeout_s: float
) -> AsyncIterator[bytes]:
    """Yield response bytes; raise TimeoutError when a read stalls past *timeout_s*."""
    chunks = response.aiter_bytes()
    while True:
        try:
            chunk = await asyncio.wait_for(chunks.__anext__(), timeout_s)
        except StopAsyncIteration:
            return
        yield chunk
