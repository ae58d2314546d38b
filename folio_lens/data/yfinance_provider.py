"""
Yahoo Finance provider via yfinance.

Keyless and lowest in priority. yfinance is synchronous, so every lookup
runs in a worker thread under a timeout. Yahoo throttles aggressively, so
self-imposed quota limits (YFINANCE_RPM/RPH/RPD) still apply.
"""

import asyncio
from typing import Any

import structlog
import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from folio_lens.data.exceptions import QuotaExceededError, TransientProviderError
from folio_lens.data.interfaces import FinancialDataProvider
from folio_lens.data.models import FundamentalsRecord
from folio_lens.data.parsing import (
    normalize_country,
    normalize_ticker,
    parse_optional_number,
    parse_optional_str,
)
from folio_lens.data.quota import QuotaTracker

logger = structlog.get_logger(__name__)


class YFinanceProvider(FinancialDataProvider):
    provider_id = "yfinance"
    display_name = "Yahoo Finance"
    supports_batch = False
    calls_per_lookup = 1
    confidence = 60

    def __init__(self, quota: QuotaTracker, timeout_seconds: float = 15.0):
        super().__init__(quota)
        self.timeout_seconds = timeout_seconds

    def is_configured(self) -> bool:
        return True

    def _load_info(self, symbol: str) -> dict[str, Any]:
        return yf.Ticker(symbol).info or {}

    async def fetch_one(self, ticker: str) -> FundamentalsRecord | None:
        symbol = normalize_ticker(ticker)
        try:
            info = await asyncio.wait_for(
                asyncio.to_thread(self._load_info, symbol),
                timeout=self.timeout_seconds,
            )
        except YFRateLimitError as e:
            raise QuotaExceededError(f"Yahoo Finance throttled: {e}", self.provider_id) from e
        except asyncio.TimeoutError as e:
            raise TransientProviderError(
                f"Yahoo Finance lookup timed out after {self.timeout_seconds}s",
                self.provider_id,
            ) from e
        except Exception as e:
            raise TransientProviderError(
                f"Yahoo Finance lookup failed: {e}", self.provider_id
            ) from e

        if not isinstance(info, dict) or not (info.get("longName") or info.get("shortName")):
            logger.debug("yfinance_ticker_not_found", ticker=symbol)
            return None

        return self.normalize(symbol, info)

    def normalize(self, ticker: str, info: dict[str, Any]) -> FundamentalsRecord:
        name = parse_optional_str(info.get("longName")) or parse_optional_str(
            info.get("shortName")
        )
        return FundamentalsRecord(
            ticker=ticker,
            company_name=name or ticker,
            sector=parse_optional_str(info.get("sector")),
            industry=parse_optional_str(info.get("industry")),
            country=normalize_country(info.get("country")),
            exchange=parse_optional_str(info.get("exchange")),
            currency=parse_optional_str(info.get("currency")),
            description=parse_optional_str(info.get("longBusinessSummary")),
            market_cap=parse_optional_number(info.get("marketCap")),
            pe_ratio=parse_optional_number(info.get("trailingPE")),
            peg_ratio=parse_optional_number(
                info.get("trailingPegRatio") or info.get("pegRatio")
            ),
            eps=parse_optional_number(info.get("trailingEps")),
            book_value=parse_optional_number(info.get("bookValue")),
            price_to_book=parse_optional_number(info.get("priceToBook")),
            # Fractional yield, same unit as Alpha Vantage's DividendYield
            dividend_yield=parse_optional_number(info.get("trailingAnnualDividendYield")),
            beta=parse_optional_number(info.get("beta")),
            source_provider=self.provider_id,
            confidence_score=self.confidence,
        )
