"""Switchboard: one streaming interface over several LLM wire protocols.

Public API:
    - ModelClient: dispatch a ProviderRequest and stream UnifiedEvents
    - ProviderRegistry / ProviderInfo: explicit provider configuration
    - CredentialStore: API keys, bearer tokens and refreshable OAuth2 tokens
    - adapter_for(): request builder + stream parser for a wire protocol
"""

from __future__ import annotations

import logging

from switchboard.auth import (
    ApiKeyCredentials,
    BearerTokenCredentials,
    CredentialStore,
    OAuth2Credentials,
)
from switchboard.config import ProviderInfo, ProviderRegistry
from switchboard.errors import (
    APIError,
    AuthError,
    BuildError,
    ConfigurationError,
    HeaderCollisionError,
    InternalError,
    ProviderError,
    RateLimitError,
    SwitchboardError,
    TransportError,
    UnsupportedToolError,
)
from switchboard.models import (
    Completed,
    CustomToolCall,
    CustomToolCallOutput,
    FreeformFormat,
    FreeformTool,
    FunctionCall,
    FunctionCallOutput,
    FunctionTool,
    GenerationSettings,
    InputText,
    Message,
    OutputItemAdded,
    OutputItemDone,
    OutputText,
    OutputTextDelta,
    ProviderRequest,
    Reasoning,
    ReasoningDelta,
    StreamError,
    StreamErrorKind,
    StreamWarning,
    TokenUsage,
    WireApi,
)
from switchboard.providers import adapter_for
from switchboard.retry import RetryPolicy
from switchboard.transport import ModelClient

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("switchboard-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("switchboard").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "ApiKeyCredentials",
    "AuthError",
    "BearerTokenCredentials",
    "BuildError",
    "Completed",
    "ConfigurationError",
    "CredentialStore",
    "CustomToolCall",
    "CustomToolCallOutput",
    "FreeformFormat",
    "FreeformTool",
    "FunctionCall",
    "FunctionCallOutput",
    "FunctionTool",
    "GenerationSettings",
    "HeaderCollisionError",
    "InputText",
    "InternalError",
    "Message",
    "ModelClient",
    "OAuth2Credentials",
    "OutputItemAdded",
    "OutputItemDone",
    "OutputText",
    "OutputTextDelta",
    "ProviderError",
    "ProviderInfo",
    "ProviderRegistry",
    "ProviderRequest",
    "RateLimitError",
    "Reasoning",
    "ReasoningDelta",
    "RetryPolicy",
    "StreamError",
    "StreamErrorKind",
    "StreamWarning",
    "SwitchboardError",
    "TokenUsage",
    "TransportError",
    "UnsupportedToolError",
    "WireApi",
    "adapter_for",
    "__version__",
]
