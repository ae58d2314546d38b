"""
Position and account normalization.

Reads raw Trading212 payloads and converts them to Position / Account
models. Two position shapes are accepted:

    nested (current API):
        {"instrument": {"ticker", "name", "isin", "currency"},
         "quantity", "currentPrice", "averagePricePaid", "createdAt",
         "walletImpact": {"currency", "totalCost", "currentValue",
                          "unrealizedProfitLoss", "fxImpact"}}

    flat (legacy /equity/portfolio):
        {"ticker", "quantity", "averagePrice", "currentPrice", "ppl",
         "fxPpl", "initialFillDate"}
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from folio_lens.brokerage.models import Account, Position, Region
from folio_lens.data.parsing import parse_optional_number, parse_optional_str

logger = structlog.get_logger(__name__)

# Lower-case venue suffix on non-US broker tickers, e.g. "VODl_EQ"
VENUE_SUFFIXES = {
    "l": "London",
    "d": "Xetra",
    "a": "Amsterdam",
    "p": "Paris",
}

_VENUE_RE = re.compile(r"[ladp]$")


def derive_symbol(broker_ticker: str) -> str:
    """
    Broker ticker -> plain symbol used for fundamentals lookups.

    "AAPL_US_EQ" -> "AAPL", "VODl_EQ" -> "VOD", "SAPd_EQ" -> "SAP"
    """
    symbol = broker_ticker.strip().replace("_EQ", "", 1)
    symbol = re.sub(r"_US$", "", symbol)
    symbol = _VENUE_RE.sub("", symbol)
    return symbol.upper()


def derive_region(broker_ticker: str) -> Region:
    """Listing region from the broker ticker's market suffix."""
    if "_US_" in broker_ticker or broker_ticker.endswith("_US"):
        return "North America"
    base = broker_ticker.split("_", 1)[0]
    if base and base[-1] in VENUE_SUFFIXES:
        return "Europe"
    return "Other"


def _num(value: Any) -> float:
    parsed = parse_optional_number(value)
    return parsed if parsed is not None else 0.0


def normalize_position(raw: dict[str, Any]) -> Position | None:
    """One raw position -> Position, or None if it has no usable ticker/quantity."""
    instrument = raw.get("instrument")
    if isinstance(instrument, dict):
        return _normalize_nested(raw, instrument)
    return _normalize_flat(raw)


def _normalize_nested(raw: dict[str, Any], instrument: dict[str, Any]) -> Position | None:
    ticker = parse_optional_str(instrument.get("ticker"))
    quantity = parse_optional_number(raw.get("quantity"))
    if not ticker or quantity is None:
        return None

    wallet = raw.get("walletImpact") or {}
    current_price = _num(raw.get("currentPrice"))
    average_price = _num(raw.get("averagePricePaid") or raw.get("averagePrice"))
    current_value = parse_optional_number(wallet.get("currentValue"))
    total_cost = parse_optional_number(wallet.get("totalCost"))
    pnl = parse_optional_number(wallet.get("unrealizedProfitLoss"))

    if current_value is None:
        current_value = current_price * quantity
    if total_cost is None:
        total_cost = average_price * quantity
    if pnl is None:
        pnl = current_value - total_cost

    return Position(
        broker_ticker=ticker,
        symbol=derive_symbol(ticker),
        name=parse_optional_str(instrument.get("name")) or "",
        isin=parse_optional_str(instrument.get("isin")) or "",
        currency=parse_optional_str(instrument.get("currency")) or "USD",
        wallet_currency=parse_optional_str(wallet.get("currency")) or "",
        quantity=quantity,
        current_price=current_price,
        average_price=average_price,
        total_cost=total_cost,
        current_value=current_value,
        unrealized_pnl=pnl,
        fx_impact=parse_optional_number(wallet.get("fxImpact")),
        region=derive_region(ticker),
        opened_at=parse_optional_str(raw.get("createdAt")),
    )


def _normalize_flat(raw: dict[str, Any]) -> Position | None:
    ticker = parse_optional_str(raw.get("ticker"))
    quantity = parse_optional_number(raw.get("quantity"))
    if not ticker or quantity is None:
        return None

    current_price = _num(raw.get("currentPrice"))
    average_price = _num(raw.get("averagePrice"))
    current_value = current_price * quantity
    total_cost = average_price * quantity
    pnl = parse_optional_number(raw.get("ppl"))

    return Position(
        broker_ticker=ticker,
        symbol=derive_symbol(ticker),
        quantity=quantity,
        current_price=current_price,
        average_price=average_price,
        total_cost=total_cost,
        current_value=current_value,
        unrealized_pnl=pnl if pnl is not None else current_value - total_cost,
        fx_impact=parse_optional_number(raw.get("fxPpl")),
        region=derive_region(ticker),
        opened_at=parse_optional_str(raw.get("initialFillDate")),
    )


def normalize_positions(raw_positions: list[dict[str, Any]]) -> list[Position]:
    """
    Convert raw broker position dicts to Position models.

    Args:
        raw_positions: List of raw position dicts (either shape)

    Returns:
        List of Position models (skips records that can't be parsed)
    """
    positions: list[Position] = []

    for raw in raw_positions:
        position = normalize_position(raw) if isinstance(raw, dict) else None
        if position is None:
            logger.warning(
                "position_unparseable",
                raw_ticker=(raw.get("ticker") if isinstance(raw, dict) else None) or "?",
            )
            continue
        positions.append(position)

    logger.info(
        "positions_normalized",
        count=len(positions),
        skipped=len(raw_positions) - len(positions),
    )
    return positions


def normalize_account(raw: dict[str, Any]) -> Account:
    """
    Raw account payload -> Account.

    Accepts the /equity/account/summary shape (nested cash / investments)
    and the legacy /equity/account/cash shape (free, invested, ppl, ...).
    """
    cash = raw.get("cash")
    investments = raw.get("investments")

    if isinstance(cash, dict) or isinstance(investments, dict):
        cash = cash if isinstance(cash, dict) else {}
        investments = investments if isinstance(investments, dict) else {}
        return Account(
            id=str(raw.get("id") or ""),
            currency=parse_optional_str(raw.get("currency")) or "",
            total_value=_num(raw.get("totalValue")),
            available_to_trade=_num(cash.get("availableToTrade")),
            investments_value=_num(investments.get("currentValue")),
            total_cost=_num(investments.get("totalCost")),
            realized_pnl=_num(investments.get("realizedProfitLoss")),
            unrealized_pnl=_num(investments.get("unrealizedProfitLoss")),
        )

    invested = _num(raw.get("invested"))
    ppl = _num(raw.get("ppl"))
    return Account(
        id=str(raw.get("id") or ""),
        currency=parse_optional_str(raw.get("currencyCode") or raw.get("currency")) or "",
        total_value=_num(raw.get("total")),
        available_to_trade=_num(raw.get("free")),
        investments_value=invested + ppl,
        total_cost=invested,
        realized_pnl=_num(raw.get("result")),
        unrealized_pnl=ppl,
    )
