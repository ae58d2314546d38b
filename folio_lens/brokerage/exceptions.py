"""
Custom exceptions for brokerage integration.

Clean error hierarchy for distinct failure modes.
"""


class BrokerageError(Exception):
    """Base exception for all brokerage-related errors."""


class BrokerageAuthError(BrokerageError):
    """Missing credentials, or the broker rejected them (401/403)."""


class BrokerageAPIError(BrokerageError):
    """HTTP errors, rate limits (429), server errors and network failures."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
