"""
Pydantic models for the fundamentals data layer.

Typed contracts for normalized fundamentals, quota status, aggregation
summaries and fallback results.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

T = TypeVar("T")

WINDOWS = ("minute", "hour", "day")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FundamentalsRecord(BaseModel):
    """
    Canonical company fundamentals, whichever provider produced them.

    Immutable: a later fetch supersedes a record, it never mutates one.
    """

    model_config = ConfigDict(frozen=True)

    ticker: str
    company_name: str
    sector: str | None = None
    industry: str | None = None
    country: str | None = None
    exchange: str | None = None
    currency: str | None = None
    description: str | None = None
    market_cap: float | None = None
    pe_ratio: float | None = None
    peg_ratio: float | None = None
    eps: float | None = None
    book_value: float | None = None
    price_to_book: float | None = None
    dividend_yield: float | None = None
    beta: float | None = None
    source_provider: str
    confidence_score: int = Field(ge=0, le=100)
    retrieved_at: datetime = Field(default_factory=utc_now)


class ProviderQuotaStatus(BaseModel):
    """Point-in-time quota view for one provider. None means no limit."""

    provider_id: str
    display_name: str
    can_call: bool
    remaining_minute: int | None = None
    remaining_hour: int | None = None
    remaining_day: int | None = None
    used_minute: int = 0
    used_hour: int = 0
    used_day: int = 0
    limit_minute: int | None = None
    limit_hour: int | None = None
    limit_day: int | None = None
    # Epoch seconds at which the oldest call in each window ages out
    next_reset_at: dict[str, float | None] = Field(default_factory=dict)
    warning: str | None = None
    last_error: str | None = None
    last_error_at: float | None = None
    total_calls: int = 0

    def min_remaining(self) -> float:
        """Remaining calls under the most restrictive window."""
        values = [
            v
            for v in (self.remaining_minute, self.remaining_hour, self.remaining_day)
            if v is not None
        ]
        return min(values) if values else float("inf")

    def daily_usage(self) -> str:
        """Day window usage as used/limit, e.g. 7/25."""
        limit = "unlimited" if self.limit_day is None else str(self.limit_day)
        return f"{self.used_day}/{limit}"


class QuotaSummary(BaseModel):
    """Quota status across all registered providers."""

    providers: list[ProviderQuotaStatus]
    # None means at least one provider is unlimited in that window
    total_remaining: dict[str, int | None]
    critical_limits: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class EnrichmentSummary(BaseModel):
    """Bookkeeping for one aggregation pass."""

    total_requested: int = 0
    from_cache: int = 0
    freshly_fetched: int = 0
    not_found: int = 0
    failed: int = 0
    by_provider: dict[str, int] = Field(default_factory=dict)

    @property
    def skipped_or_failed(self) -> int:
        return self.failed + self.not_found


class EnrichmentResult(BaseModel):
    """Records found for a ticker list plus where each one came from."""

    records: dict[str, FundamentalsRecord] = Field(default_factory=dict)
    summary: EnrichmentSummary = Field(default_factory=EnrichmentSummary)
    # ticker -> "cache" or the provider id that served it
    sources: dict[str, str] = Field(default_factory=dict)
    not_found: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    # Subset of failed: never attempted because every provider's quota was spent
    quota_limited: list[str] = Field(default_factory=list)
    # Records served from expired (stale) cache entries
    stale: list[str] = Field(default_factory=list)

    @property
    def served(self) -> int:
        return self.summary.from_cache + self.summary.freshly_fetched


class CachedPayload(BaseModel, Generic[T]):
    """What a fallback cache action hands back: data plus its age."""

    data: T
    age_seconds: float = 0.0


FallbackProvider = Literal["primary", "secondary", "cache", "demo"]
FallbackOutcome = Literal["done", "stale", "synthetic", "failed"]
FallbackReason = Literal["rate_limited", "quota_exceeded", "api_error", "network_error"]


class FallbackOptions(BaseModel):
    """Per-invocation knobs for the fallback policy."""

    enable_cache_fallback: bool = True
    allow_demo_data: bool = False
    max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0.0)
    preferred_provider: str | None = None


class FallbackResult(BaseModel, Generic[T]):
    """
    Aggregation output annotated with the path that produced it.

    provider == "cache" implies is_stale; provider == "demo" means the data
    is synthetic and must never be written back to the cache.
    """

    data: T | None = None
    outcome: FallbackOutcome
    provider: FallbackProvider | None = None
    served_by: str | None = None
    reason: FallbackReason | None = None
    is_stale: bool = False
    stale_age_ms: int | None = None
    degraded_features: list[str] = Field(default_factory=list)
    user_message: str = ""
    reasons: list[str] = Field(default_factory=list)
    fallback_applied: bool = False
    attempts: int = 0

    @model_validator(mode="after")
    def check_provenance(self) -> "FallbackResult[T]":
        if self.provider == "cache" and not self.is_stale:
            raise ValueError("cache-sourced results must be flagged stale")
        if self.outcome == "failed" and self.provider is not None:
            raise ValueError("failed results carry no provider")
        return self

    @property
    def ok(self) -> bool:
        return self.outcome != "failed"
