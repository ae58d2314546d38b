"""
Pydantic models for the enriched portfolio view.

Typed contracts for enriched positions, allocations, metrics and the
dashboard payload consumed by the API and CLI.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from folio_lens.brokerage.models import Account
from folio_lens.data.models import FallbackResult

UNKNOWN = "Unknown"


class EnrichedPosition(BaseModel):
    """A brokerage position joined with its fundamentals (or defaults)."""

    ticker: str  # broker ticker
    symbol: str
    company_name: str
    quantity: float
    current_price: float = 0.0
    average_price: float = 0.0
    currency: str = "USD"
    value: float = 0.0
    total_cost: float = 0.0
    pnl: float = 0.0
    pnl_percent: float = 0.0
    weight: float = 0.0  # % of total portfolio value
    listing_region: str = "Other"
    sector: str = UNKNOWN
    industry: str = UNKNOWN
    country: str = UNKNOWN
    exchange: str = UNKNOWN
    market_cap: float | None = None
    pe_ratio: float | None = None
    eps: float | None = None
    dividend_yield: float | None = None
    book_value: float | None = None
    beta: float | None = None
    risk_score: int = 50
    # "cache", a provider id, "demo", or None when no fundamentals were found
    data_source: str | None = None
    confidence_score: int | None = None
    is_stale: bool = False


class AllocationSlice(BaseModel):
    name: str
    value: float
    percentage: float
    count: int
    region: str | None = None  # set on country slices


class Allocations(BaseModel):
    sector: list[AllocationSlice] = Field(default_factory=list)
    country: list[AllocationSlice] = Field(default_factory=list)
    region: list[AllocationSlice] = Field(default_factory=list)
    exchange: list[AllocationSlice] = Field(default_factory=list)


class ConcentrationAlert(BaseModel):
    """A single allocation bucket above its concentration threshold."""

    type: Literal["sector", "geographic", "exchange"]
    level: Literal["high", "medium"]
    name: str
    percentage: float
    message: str
    recommendation: str


class PortfolioMetrics(BaseModel):
    total_value: float = 0.0
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    position_count: int = 0
    # Herfindahl-Hirschman index on a 0-100 scale (100 = one bucket)
    sector_concentration: float = 0.0
    region_concentration: float = 0.0
    exchange_concentration: float = 0.0
    diversification_score: float = 0.0
    risk_score: float = 0.0
    average_pe: float | None = None
    average_eps: float | None = None
    dividend_yield: float | None = None
    # Highest level first
    alerts: list[ConcentrationAlert] = Field(default_factory=list)


class DashboardSummary(BaseModel):
    """Enrichment bookkeeping shown on the dashboard (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_processed: int = 0
    from_cache: int = 0
    freshly_fetched: int = 0
    skipped_or_failed: int = 0
    daily_api_usage: str = "0/0"
    cache_hit_rate: str = "0.0%"


class ProviderStatusEntry(BaseModel):
    """One row of the provider status feed (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    provider_id: str
    provider_name: str
    can_make_request: bool
    remaining_minute: int | None = None
    remaining_hour: int | None = None
    remaining_day: int | None = None
    next_reset_timestamps: dict[str, float | None] = Field(default_factory=dict)
    warning_message: str | None = None
    last_error: str | None = None
    daily_usage: str = ""


class FallbackInfo(BaseModel):
    """The fallback path that produced the fundamentals, minus the data."""

    outcome: str
    provider: str | None = None
    served_by: str | None = None
    reason: str | None = None
    is_stale: bool = False
    stale_age_ms: int | None = None
    degraded_features: list[str] = Field(default_factory=list)
    user_message: str = ""
    reasons: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: FallbackResult) -> "FallbackInfo":
        return cls.model_validate(result.model_dump(include=set(cls.model_fields)))


class PortfolioDashboard(BaseModel):
    positions: list[EnrichedPosition]
    account: Account | None = None
    metrics: PortfolioMetrics
    allocations: Allocations
    summary: DashboardSummary
    provider_status: list[ProviderStatusEntry]
    fallback: FallbackInfo

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict; summary and provider feed use camelCase keys."""
        payload = self.model_dump(mode="json", exclude={"summary", "provider_status"})
        payload["summary"] = self.summary.model_dump(mode="json", by_alias=True)
        payload["provider_status"] = [
            entry.model_dump(mode="json", by_alias=True) for entry in self.provider_status
        ]
        return payload
