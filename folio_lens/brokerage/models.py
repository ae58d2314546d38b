"""
Pydantic models for brokerage data.

Canonical position and account shapes, whichever broker payload produced them.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

Region = Literal["North America", "Europe", "Asia-Pacific", "South America", "Other"]


class Position(BaseModel):
    """A normalized brokerage position."""

    broker_ticker: str  # e.g. "AAPL_US_EQ", "VODl_EQ"
    symbol: str  # enrichment key, e.g. "AAPL", "VOD"
    name: str = ""
    isin: str = ""
    currency: str = "USD"  # instrument currency
    wallet_currency: str = ""  # account currency the values below are in
    quantity: float
    current_price: float = 0.0
    average_price: float = 0.0
    total_cost: float = 0.0
    current_value: float = 0.0
    unrealized_pnl: float = 0.0
    fx_impact: float | None = None
    region: Region = "Other"
    opened_at: str | None = None

    @property
    def pnl_percent(self) -> float:
        return (self.unrealized_pnl / self.total_cost * 100) if self.total_cost else 0.0


class Account(BaseModel):
    """Account summary for display."""

    id: str = ""
    currency: str = ""
    total_value: float = 0.0
    available_to_trade: float = 0.0
    investments_value: float = 0.0
    total_cost: float = 0.0
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
