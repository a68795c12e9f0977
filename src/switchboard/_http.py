"""HTTP status tables and limits shared by error mapping and the retry loop.

Kept in a leaf module so ``retry`` and ``providers._errors`` can both import
it without a cycle.
"""

from __future__ import annotations

# Retryable status codes shared by provider error mapping and the retry loop.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})

# Rejected credentials: surfaced immediately, never retried.
AUTH_STATUS_CODES: frozenset[int] = frozenset({401, 403})

# Upper bound on the error body fragment kept on ProviderError.
ERROR_BODY_LIMIT = 4096
