"""
Exception types for the search core.

Only SearchConfigurationError (and subclasses) is allowed to escape the
orchestrator. Provider errors are absorbed by the adapters and turned into
empty responses.
"""

from __future__ import annotations

from typing import List, Optional


class SearchConfigurationError(ValueError):
    """A query or configuration that must never reach a provider."""


class ProvenanceViolation(SearchConfigurationError):
    """Disallowed vocabulary or augmentation entered a composed query."""

    def __init__(
        self,
        message: str,
        term: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.term = term
        self.errors = errors or [message]


class QueryTooLongError(SearchConfigurationError):
    """The base query cannot be fitted under the query length cap."""


class ProviderError(RuntimeError):
    """Base class for failures talking to a search backend."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class TransientProviderError(ProviderError):
    """Failure worth retrying (timeouts, network errors, 429, 5xx)."""


class NonRetryableProviderError(ProviderError):
    """Failure that retrying cannot fix (auth, bad request, missing keys)."""


class CircuitOpenError(ProviderError):
    """Raised when a breaker short-circuits a call."""
