"""
Exceptions for the fundamentals data layer.

Provider adapters raise these; the aggregator catches them per ticker and
never lets them escape past its boundary. CacheError is the exception that
does propagate: a broken cache store is a total failure.
"""


class ProviderError(Exception):
    """Base exception for all market data provider errors."""

    def __init__(self, message: str, provider_id: str = ""):
        super().__init__(message)
        self.provider_id = provider_id


class TransientProviderError(ProviderError):
    """Network error, timeout, HTTP 5xx or malformed payload. Retry later."""

    def __init__(
        self, message: str, provider_id: str = "", status_code: int | None = None
    ):
        super().__init__(message, provider_id)
        self.status_code = status_code


class QuotaExceededError(ProviderError):
    """Provider quota is used up (HTTP 429, quota notice, or local tracker refusal)."""


class ProviderConfigError(ProviderError):
    """API key missing, rejected or otherwise unusable."""


class CacheError(Exception):
    """The cache backing store failed to read or write."""
