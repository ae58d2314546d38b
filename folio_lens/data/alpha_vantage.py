"""
Alpha Vantage fundamentals provider (OVERVIEW function).

One HTTP call per ticker, no batch endpoint. Free keys allow 5 calls per
minute and 25 per day, so this provider is usually first in priority and
first to run dry.

Alpha Vantage reports problems inside a 200 response:
    - {}                      -> unknown ticker
    - {"Error Message": ...}  -> unknown ticker / bad symbol
    - {"Note": ...}           -> call frequency exceeded
    - {"Information": ...}    -> rate limit or premium-only notice

Missing values arrive as the string "None" (or "-"), never as JSON null.
"""

from typing import Any

import structlog

from folio_lens.data.exceptions import QuotaExceededError, TransientProviderError
from folio_lens.data.http_client import HttpProvider
from folio_lens.data.models import FundamentalsRecord
from folio_lens.data.parsing import (
    normalize_country,
    normalize_ticker,
    parse_optional_number,
    parse_optional_str,
)

logger = structlog.get_logger(__name__)

RATE_LIMIT_MARKERS = ("call frequency", "rate limit", "requests per", "premium")


class AlphaVantageProvider(HttpProvider):
    provider_id = "alphavantage"
    display_name = "Alpha Vantage"
    base_url = "https://www.alphavantage.co"
    supports_batch = False
    calls_per_lookup = 1
    confidence = 90

    def _auth_params(self) -> dict[str, str]:
        return {"apikey": self.api_key or ""}

    async def fetch_one(self, ticker: str) -> FundamentalsRecord | None:
        symbol = normalize_ticker(ticker)
        data = await self._get_json("/query", {"function": "OVERVIEW", "symbol": symbol})

        if data is None:
            return None
        if not isinstance(data, dict):
            raise TransientProviderError(
                f"Unexpected OVERVIEW payload type {type(data).__name__}",
                self.provider_id,
            )

        notice = data.get("Note") or data.get("Information")
        if notice:
            if any(marker in str(notice).lower() for marker in RATE_LIMIT_MARKERS):
                raise QuotaExceededError(f"Alpha Vantage: {notice}", self.provider_id)
            raise TransientProviderError(f"Alpha Vantage: {notice}", self.provider_id)

        if "Error Message" in data or not data.get("Symbol"):
            logger.debug("alphavantage_ticker_not_found", ticker=symbol)
            return None

        return self.normalize(symbol, data)

    def normalize(self, ticker: str, data: dict[str, Any]) -> FundamentalsRecord:
        """Map an OVERVIEW payload onto a FundamentalsRecord."""
        return FundamentalsRecord(
            ticker=ticker,
            company_name=parse_optional_str(data.get("Name")) or ticker,
            sector=_title(parse_optional_str(data.get("Sector"))),
            industry=_title(parse_optional_str(data.get("Industry"))),
            country=normalize_country(data.get("Country")),
            exchange=parse_optional_str(data.get("Exchange")),
            currency=parse_optional_str(data.get("Currency")),
            description=parse_optional_str(data.get("Description")),
            market_cap=parse_optional_number(data.get("MarketCapitalization")),
            pe_ratio=parse_optional_number(data.get("PERatio")),
            peg_ratio=parse_optional_number(data.get("PEGRatio")),
            eps=parse_optional_number(data.get("EPS")),
            book_value=parse_optional_number(data.get("BookValue")),
            price_to_book=parse_optional_number(data.get("PriceToBookRatio")),
            dividend_yield=parse_optional_number(data.get("DividendYield")),
            beta=parse_optional_number(data.get("Beta")),
            source_provider=self.provider_id,
            confidence_score=self.confidence,
        )


def _title(value: str | None) -> str | None:
    # OVERVIEW reports sectors upper-cased ("TECHNOLOGY")
    if value is None or not value.isupper():
        return value
    return value.title()
