"""
Tiingo fundamentals provider.

Single lookup:  /tiingo/fundamentals/<ticker>/meta   (company profile)
              + /tiingo/fundamentals/<ticker>/daily  (valuation metrics)
    Two HTTP calls, so calls_per_lookup = 2.

Batch lookup:   /tiingo/fundamentals/meta?tickers=a,b,c
    One HTTP call for the whole list, profile fields only (no daily
    metrics), so batch records carry a lower confidence score.

A 404 or an empty list means Tiingo has no such ticker.
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

BATCH_CONFIDENCE = 70


class TiingoProvider(HttpProvider):
    provider_id = "tiingo"
    display_name = "Tiingo"
    base_url = "https://api.tiingo.com"
    supports_batch = True
    calls_per_lookup = 2
    batch_calls = 1
    confidence = 80

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Token {self.api_key or ''}",
        }

    async def fetch_one(self, ticker: str) -> FundamentalsRecord | None:
        symbol = normalize_ticker(ticker)
        meta = _first(await self._get_json(f"/tiingo/fundamentals/{symbol.lower()}/meta"))
        if not meta:
            logger.debug("tiingo_ticker_not_found", ticker=symbol)
            return None

        confidence = self.confidence
        try:
            daily = _latest(
                await self._get_json(f"/tiingo/fundamentals/{symbol.lower()}/daily")
            )
        except QuotaExceededError:
            raise
        except TransientProviderError as e:
            # Profile without valuation metrics is still usable
            logger.warning("tiingo_daily_unavailable", ticker=symbol, error=str(e))
            daily = {}
            confidence = BATCH_CONFIDENCE

        return self.normalize(symbol, meta, daily or {}, confidence)

    async def fetch_many(self, tickers: list[str]) -> dict[str, FundamentalsRecord]:
        symbols = [normalize_ticker(t) for t in tickers]
        if not symbols:
            return {}

        data = await self._get_json(
            "/tiingo/fundamentals/meta",
            {"tickers": ",".join(s.lower() for s in symbols)},
        )
        if not data:
            return {}
        if not isinstance(data, list):
            raise TransientProviderError(
                f"Unexpected batch meta payload type {type(data).__name__}",
                self.provider_id,
            )

        wanted = set(symbols)
        results: dict[str, FundamentalsRecord] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            symbol = normalize_ticker(str(item.get("ticker") or ""))
            if symbol not in wanted:
                continue
            results[symbol] = self.normalize(symbol, item, {}, BATCH_CONFIDENCE)

        logger.debug(
            "tiingo_batch_complete", requested=len(symbols), returned=len(results)
        )
        return results

    def normalize(
        self,
        ticker: str,
        meta: dict[str, Any],
        daily: dict[str, Any],
        confidence: int,
    ) -> FundamentalsRecord:
        return FundamentalsRecord(
            ticker=ticker,
            company_name=parse_optional_str(meta.get("name")) or ticker,
            sector=parse_optional_str(meta.get("sector")),
            industry=parse_optional_str(meta.get("industry")),
            country=_country_from(meta),
            exchange=parse_optional_str(meta.get("exchange") or meta.get("exchangeCode")),
            currency=parse_optional_str(
                meta.get("reportingCurrency") or meta.get("currency")
            ),
            description=parse_optional_str(meta.get("description")),
            market_cap=parse_optional_number(daily.get("marketCap")),
            pe_ratio=parse_optional_number(daily.get("peRatio")),
            peg_ratio=parse_optional_number(daily.get("trailingPEG1Y")),
            eps=parse_optional_number(daily.get("eps")),
            book_value=parse_optional_number(daily.get("bookValue")),
            price_to_book=parse_optional_number(daily.get("pbRatio")),
            dividend_yield=parse_optional_number(daily.get("dividendYield")),
            beta=parse_optional_number(daily.get("beta")),
            source_provider=self.provider_id,
            confidence_score=confidence,
        )


def _first(data: Any) -> dict[str, Any] | None:
    if isinstance(data, list):
        data = data[0] if data else None
    return data if isinstance(data, dict) and data else None


def _latest(data: Any) -> dict[str, Any]:
    """Most recent entry of a /daily series (entries carry an ISO date)."""
    if isinstance(data, dict):
        return data
    if not isinstance(data, list) or not data:
        return {}
    rows = [row for row in data if isinstance(row, dict)]
    if not rows:
        return {}
    return max(rows, key=lambda row: str(row.get("date") or ""))


def _country_from(meta: dict[str, Any]) -> str | None:
    # "location" looks like "California, USA"
    country = normalize_country(meta.get("country"))
    if country:
        return country
    location = parse_optional_str(meta.get("location"))
    if not location:
        return None
    return normalize_country(location.split(",")[-1])
