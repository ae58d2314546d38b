from abc import ABC, abstractmethod

import structlog

from folio_lens.data.exceptions import ProviderError, QuotaExceededError
from folio_lens.data.models import FundamentalsRecord, ProviderQuotaStatus
from folio_lens.data.quota import QuotaTracker

logger = structlog.get_logger(__name__)


class FinancialDataProvider(ABC):
    """
    Abstract Base Class for all fundamentals providers.

    Every upstream source (Alpha Vantage, Tiingo, yfinance, ...) implements
    this fixed method set so the aggregator can walk a priority-ordered list
    of providers without knowing which one it is talking to.

    Result conventions:
        - fetch_one returns a FundamentalsRecord on success
        - fetch_one returns None when the provider confirms it has no data
        - fetch_one raises ProviderError (or a subclass) on any failure

    Quota accounting lives with the caller. The aggregator reserves
    `calls_per_lookup` (or `batch_calls` for fetch_many) on the shared
    QuotaTracker immediately before dispatching.
    """

    provider_id: str = ""
    display_name: str = ""
    supports_batch: bool = False
    calls_per_lookup: int = 1
    batch_calls: int = 1
    confidence: int = 50

    def __init__(self, quota: QuotaTracker):
        self.quota = quota

    @abstractmethod
    def is_configured(self) -> bool:
        """True if credentials (if any) are present."""
        pass

    def is_available(self) -> bool:
        """
        Synchronous check: configured and inside quota for one lookup.
        Never touches the network.
        """
        return self.is_configured() and self.quota.can_call(
            self.provider_id, self.calls_per_lookup
        )

    def rate_limit_status(self) -> ProviderQuotaStatus:
        return self.quota.status(self.provider_id)

    @abstractmethod
    async def fetch_one(self, ticker: str) -> FundamentalsRecord | None:
        pass

    async def fetch_many(self, tickers: list[str]) -> dict[str, FundamentalsRecord]:
        """
        Best-effort multi-ticker lookup.

        Providers without a batch endpoint fall back to one lookup per
        ticker. A ticker missing from the result failed or had no data;
        the call as a whole only fails on quota exhaustion before any
        result came back.
        """
        results: dict[str, FundamentalsRecord] = {}
        for ticker in tickers:
            try:
                record = await self.fetch_one(ticker)
            except QuotaExceededError:
                if not results:
                    raise
                break
            except ProviderError as e:
                logger.debug(
                    "provider_lookup_failed",
                    provider=self.provider_id,
                    ticker=ticker,
                    error=str(e),
                )
                continue
            if record is not None:
                results[ticker] = record
        return results

    async def close(self) -> None:
        """Release network resources. Safe to call multiple times."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider_id={self.provider_id!r})"
