"""
Join brokerage positions with fundamentals.

Positions without a fundamentals record keep "Unknown" classifications and
use their symbol as the company name, so a partial enrichment still yields
a complete table.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from folio_lens.brokerage.models import Position
from folio_lens.data.models import FundamentalsRecord
from folio_lens.portfolio.models import UNKNOWN, EnrichedPosition

logger = structlog.get_logger(__name__)

BASE_RISK = 50


def risk_score(value: float, record: FundamentalsRecord | None) -> int:
    """
    Heuristic 0-100 risk score from beta, P/E and position size.

    Starts at 50; high beta and rich valuations push it up, low beta,
    cheap valuations and small positions pull it down.
    """
    score = BASE_RISK

    beta = record.beta if record else None
    if beta:
        if beta > 1.5:
            score += 20
        elif beta > 1.2:
            score += 10
        elif beta < 0.8:
            score -= 10

    pe = record.pe_ratio if record else None
    if pe:
        if pe > 30:
            score += 15
        elif pe > 20:
            score += 5
        elif pe < 10:
            score -= 5

    if value > 10_000:
        score += 10
    elif value < 1_000:
        score -= 5

    return max(0, min(100, score))


def enrich_positions(
    positions: Iterable[Position],
    records: dict[str, FundamentalsRecord],
    sources: dict[str, str] | None = None,
    stale: Iterable[str] = (),
) -> list[EnrichedPosition]:
    """
    Build EnrichedPosition rows, weighted and sorted by value descending.

    Args:
        positions: Normalized brokerage positions
        records: Fundamentals keyed by symbol
        sources: Where each symbol's record came from ("cache", provider id, "demo")
        stale: Symbols whose record was served from stale cache

    Returns:
        Enriched positions; weights sum to 100 when total value > 0
    """
    sources = sources or {}
    stale = set(stale)
    enriched: list[EnrichedPosition] = []

    for position in positions:
        record = records.get(position.symbol)
        value = position.current_price * position.quantity

        enriched.append(
            EnrichedPosition(
                ticker=position.broker_ticker,
                symbol=position.symbol,
                company_name=(record.company_name if record else None)
                or position.name
                or position.symbol,
                quantity=position.quantity,
                current_price=position.current_price,
                average_price=position.average_price,
                currency=position.currency,
                value=value,
                total_cost=position.total_cost,
                pnl=position.unrealized_pnl,
                pnl_percent=position.pnl_percent,
                listing_region=position.region,
                sector=(record.sector if record else None) or UNKNOWN,
                industry=(record.industry if record else None) or UNKNOWN,
                country=(record.country if record else None) or UNKNOWN,
                exchange=(record.exchange if record else None) or UNKNOWN,
                market_cap=record.market_cap if record else None,
                pe_ratio=record.pe_ratio if record else None,
                eps=record.eps if record else None,
                dividend_yield=record.dividend_yield if record else None,
                book_value=record.book_value if record else None,
                beta=record.beta if record else None,
                risk_score=risk_score(value, record),
                data_source=(
                    sources.get(position.symbol, record.source_provider) if record else None
                ),
                confidence_score=record.confidence_score if record else None,
                is_stale=position.symbol in stale,
            )
        )

    total_value = sum(p.value for p in enriched)
    for p in enriched:
        p.weight = (p.value / total_value * 100) if total_value > 0 else 0.0

    enriched.sort(key=lambda p: p.value, reverse=True)

    logger.debug(
        "positions_enriched",
        count=len(enriched),
        with_fundamentals=sum(1 for p in enriched if p.data_source),
    )
    return enriched
