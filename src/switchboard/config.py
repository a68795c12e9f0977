"""Provider definitions and the registry passed into the transport.

Providers come from two places: built-in defaults so the library works
out of the box, and caller-supplied entries (already parsed from whatever
config format the caller uses) that override or extend them. The registry is
an explicit object; nothing here is process-wide mutable state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from switchboard.errors import AuthError, ConfigurationError
from switchboard.models import WireApi

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

DEFAULT_STREAM_IDLE_TIMEOUT_MS = 300_000
DEFAULT_STREAM_MAX_RETRIES = 5
DEFAULT_REQUEST_MAX_RETRIES = 4
#: Hard caps for user-configured retry counts.
MAX_STREAM_MAX_RETRIES = 100
MAX_REQUEST_MAX_RETRIES = 100

OPENAI_DEFAULT_BASE_URL = "https://api.openai.com/v1"
GOOGLE_GENAI_DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
ANTHROPIC_DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_OLLAMA_PORT = 11434

BUILT_IN_OPENAI_PROVIDER_ID = "openai"
BUILT_IN_OSS_PROVIDER_ID = "oss"
BUILT_IN_GOOGLE_GENAI_PROVIDER_ID = "google_genai"
BUILT_IN_ANTHROPIC_PROVIDER_ID = "anthropic"

_AZURE_MARKERS = (
    "openai.azure.",
    "cognitiveservices.azure.",
    "aoai.azure.",
    "azure-api.",
    "azurefd.",
)


_DOTENV_LOADED: bool = False


def load_env_file() -> None:
    """Load a ``.env`` file from the working directory upward, once per process.

    Variables already set in the environment win over the file.
    """
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    _DOTENV_LOADED = True
    dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))


def _env_nonblank(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return value


class ProviderInfo(BaseModel):
    """Serializable provider definition."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    #: Friendly display name.
    name: str = Field(min_length=1)
    base_url: str | None = None
    #: Environment variable holding the API key; read at request time.
    env_key: str | None = None
    #: Shown to the user when ``env_key`` is missing.
    env_key_instructions: str | None = None
    #: Sent as ``Authorization: Bearer``; prefer ``env_key``.
    experimental_bearer_token: SecretStr | None = None
    wire_api: WireApi = WireApi.CHAT
    query_params: dict[str, str] | None = None
    #: Static headers: name -> value.
    http_headers: dict[str, str] | None = None
    #: Headers sourced from the environment: name -> variable. Unset or blank
    #: variables omit the header.
    env_http_headers: dict[str, str] | None = None
    request_max_retries: int | None = Field(default=None, ge=0)
    stream_max_retries: int | None = Field(default=None, ge=0)
    stream_idle_timeout_ms: int | None = Field(default=None, gt=0)
    #: The provider expects an OpenAI account login rather than only an ``env_key``
    #: API key. Recorded for callers that drive a login flow; not used here.
    requires_openai_auth: bool = False

    @field_validator("base_url", mode="before")
    @classmethod
    def normalize_base_url(cls, v: Any) -> Any:
        """Trim whitespace and trailing slashes; blank means unset."""
        if isinstance(v, str):
            v = v.strip().rstrip("/")
            return v or None
        return v

    @field_validator("experimental_bearer_token", mode="before")
    @classmethod
    def normalize_bearer_token(cls, v: Any) -> Any:
        """Map empty or whitespace-only tokens to None."""
        if isinstance(v, SecretStr):
            v = v.get_secret_value()
        if isinstance(v, str):
            s = v.strip()
            return SecretStr(s) if s else None
        return v

    def full_url(self, model: str | None = None) -> str:
        """Return the streaming endpoint URL for this provider.

        Gemini carries the model in the path; other protocols ignore *model*.
        """
        base_url = self.base_url or OPENAI_DEFAULT_BASE_URL
        params = dict(self.query_params or {})
        if self.wire_api is WireApi.RESPONSES:
            path = "/responses"
        elif self.wire_api is WireApi.CHAT:
            path = "/chat/completions"
        elif self.wire_api is WireApi.GOOGLE_GENAI:
            if not model:
                raise ConfigurationError(
                    f"Provider {self.name!r} needs a model name to build its URL",
                    hint="Gemini substitutes the model into /models/{model}:streamGenerateContent.",
                )
            path = f"/models/{model}:streamGenerateContent"
            params.setdefault("alt", "sse")
        else:
            path = "/messages"
        query = f"?{urlencode(params)}" if params else ""
        return f"{base_url}{path}{query}"

    def api_key(self) -> str | None:
        """Read the API key from ``env_key`` at call time.

        Returns None when the provider declares no ``env_key``; raises
        AuthError when it declares one that is missing or blank.
        """
        if self.env_key is None:
            return None
        value = _env_nonblank(self.env_key)
        if value is None:
            raise AuthError(
                f"Missing environment variable: {self.env_key}",
                kind="missing_credential",
                hint=self.env_key_instructions or f"Set {self.env_key}.",
                provider=self.name,
            )
        return value

    def env_headers(self) -> dict[str, str]:
        """Resolve ``env_http_headers`` against the current environment."""
        resolved: dict[str, str] = {}
        for header, env_var in (self.env_http_headers or {}).items():
            value = _env_nonblank(env_var)
            if value is not None:
                resolved[header] = value
        return resolved

    def effective_request_max_retries(self) -> int:
        value = self.request_max_retries
        if value is None:
            value = DEFAULT_REQUEST_MAX_RETRIES
        return min(value, MAX_REQUEST_MAX_RETRIES)

    def effective_stream_max_retries(self) -> int:
        value = self.stream_max_retries
        if value is None:
            value = DEFAULT_STREAM_MAX_RETRIES
        return min(value, MAX_STREAM_MAX_RETRIES)

    def stream_idle_timeout_s(self) -> float:
        ms = self.stream_idle_timeout_ms or DEFAULT_STREAM_IDLE_TIMEOUT_MS
        return ms / 1000.0

    def is_azure_responses_endpoint(self) -> bool:
        """Whether this is an Azure-hosted Responses deployment."""
        if self.wire_api is not WireApi.RESPONSES:
            return False
        if self.name.lower() == "azure":
            return True
        if self.base_url is None:
            return False
        base = self.base_url.lower()
        return any(marker in base for marker in _AZURE_MARKERS)


def create_openai_provider() -> ProviderInfo:
    """OpenAI Responses provider; ``OPENAI_BASE_URL`` points it at a proxy."""
    return ProviderInfo(
        name="OpenAI",
        base_url=_env_nonblank("OPENAI_BASE_URL"),
        env_key="OPENAI_API_KEY",
        env_key_instructions="Create an API key at https://platform.openai.com/api-keys",
        wire_api=WireApi.RESPONSES,
        env_http_headers={
            "OpenAI-Organization": "OPENAI_ORGANIZATION",
            "OpenAI-Project": "OPENAI_PROJECT",
        },
        requires_openai_auth=True,
    )


def create_oss_provider() -> ProviderInfo:
    """Local OpenAI-compatible server (Ollama by default)."""
    base_url = _env_nonblank("CODEX_OSS_BASE_URL")
    if base_url is None:
        port = DEFAULT_OLLAMA_PORT
        raw_port = _env_nonblank("CODEX_OSS_PORT")
        if raw_port is not None and raw_port.strip().isdigit():
            port = int(raw_port)
        base_url = f"http://localhost:{port}/v1"
    return create_oss_provider_with_base_url(base_url)


def create_oss_provider_with_base_url(base_url: str) -> ProviderInfo:
    return ProviderInfo(name="gpt-oss", base_url=base_url, wire_api=WireApi.CHAT)


def create_google_genai_provider() -> ProviderInfo:
    """Gemini via the Generative Language API; key sent as ``x-goog-api-key``."""
    return ProviderInfo(
        name="Google GenAI",
        base_url=_env_nonblank("GOOGLE_GENAI_BASE_URL") or GOOGLE_GENAI_DEFAULT_BASE_URL,
        env_key="GOOGLE_GENAI_API_KEY",
        env_key_instructions="Get your API key from https://aistudio.google.com/app/apikey",
        wire_api=WireApi.GOOGLE_GENAI,
    )


def create_anthropic_provider() -> ProviderInfo:
    """Anthropic Messages; key sent as ``x-api-key``."""
    return ProviderInfo(
        name="Anthropic",
        base_url=_env_nonblank("ANTHROPIC_BASE_URL") or ANTHROPIC_DEFAULT_BASE_URL,
        env_key="ANTHROPIC_API_KEY",
        env_key_instructions="Get your API key from https://console.anthropic.com/settings/keys",
        wire_api=WireApi.ANTHROPIC_MESSAGES,
        http_headers={"anthropic-version": ANTHROPIC_VERSION},
    )


@dataclass(frozen=True)
class ProviderRegistry:
    """Immutable mapping of provider id -> ProviderInfo."""

    providers: Mapping[str, ProviderInfo] = field(default_factory=dict)

    @classmethod
    def built_in(cls) -> ProviderRegistry:
        """Built-in providers, resolved against the current environment."""
        load_env_file()
        return cls(
            {
                BUILT_IN_OPENAI_PROVIDER_ID: create_openai_provider(),
                BUILT_IN_OSS_PROVIDER_ID: create_oss_provider(),
                BUILT_IN_GOOGLE_GENAI_PROVIDER_ID: create_google_genai_provider(),
                BUILT_IN_ANTHROPIC_PROVIDER_ID: create_anthropic_provider(),
            }
        )

    def with_overrides(
        self, overrides: Mapping[str, ProviderInfo | Mapping[str, Any]]
    ) -> ProviderRegistry:
        """Return a new registry where *overrides* replace or extend entries.

        Raw mappings are validated into ProviderInfo; validation failures
        raise ConfigurationError naming the provider id.
        """
        merged = dict(self.providers)
        for provider_id, raw in overrides.items():
            if isinstance(raw, ProviderInfo):
                merged[provider_id] = raw
                continue
            try:
                merged[provider_id] = ProviderInfo.model_validate(dict(raw))
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid provider definition for {provider_id!r}: {e}",
                    hint="Check the field names and types of this provider entry.",
                ) from e
        return ProviderRegistry(merged)

    def get(self, provider_id: str) -> ProviderInfo:
        info = self.providers.get(provider_id)
        if info is None:
            known = ", ".join(sorted(self.providers)) or "(none)"
            raise ConfigurationError(
                f"Unknown provider: {provider_id!r}",
                hint=f"Configured providers: {known}",
            )
        return info

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self.providers

    def __iter__(self) -> Iterator[str]:
        return iter(self.providers)

    def __len__(self) -> int:
        return len(self.providers)
