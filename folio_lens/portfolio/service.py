"""
Portfolio dashboard assembly.

brokerage positions -> normalizer -> fallback-wrapped aggregation
-> enrichment -> metrics / allocations -> dashboard payload
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

import structlog

from folio_lens.brokerage.interfaces import BrokerageSource
from folio_lens.brokerage.normalizer import normalize_account, normalize_positions
from folio_lens.data.aggregator import FundamentalsAggregator
from folio_lens.data.demo import DEMO_PROVIDER_ID, demo_records
from folio_lens.data.exceptions import QuotaExceededError, TransientProviderError
from folio_lens.data.fallback import FallbackService
from folio_lens.data.models import (
    CachedPayload,
    EnrichmentResult,
    EnrichmentSummary,
    FallbackOptions,
    FallbackResult,
)
from folio_lens.data.parsing import normalize_ticker
from folio_lens.portfolio.analytics import build_allocations, portfolio_metrics
from folio_lens.portfolio.enrichment import enrich_positions
from folio_lens.portfolio.models import (
    DashboardSummary,
    FallbackInfo,
    PortfolioDashboard,
    ProviderStatusEntry,
)

logger = structlog.get_logger(__name__)

OPERATION = "fundamentals enrichment"


class PortfolioService:
    """Builds enriched portfolio views from injected collaborators."""

    def __init__(
        self,
        brokerage: BrokerageSource,
        aggregator: FundamentalsAggregator,
        fallback: FallbackService,
        allow_demo_data: bool = False,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
    ):
        self.brokerage = brokerage
        self.aggregator = aggregator
        self.fallback = fallback
        self.allow_demo_data = allow_demo_data
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay

    @property
    def cache(self):
        return self.aggregator.cache

    def fallback_options(self, allow_demo: bool | None = None) -> FallbackOptions:
        return FallbackOptions(
            allow_demo_data=self.allow_demo_data if allow_demo is None else allow_demo,
            max_attempts=self.max_attempts,
            retry_base_delay=self.retry_base_delay,
        )

    async def enrich_tickers(
        self, tickers: Iterable[str], allow_demo: bool | None = None
    ) -> FallbackResult:
        """
        Fundamentals for a ticker list through the full fallback chain.

        The result's data is an EnrichmentResult (None only when the
        outcome is "failed").
        """
        symbols = list(dict.fromkeys(normalize_ticker(t) for t in tickers if t and t.strip()))

        async def primary() -> EnrichmentResult:
            result = await self.aggregator.enrich(symbols)
            if result.failed and not result.records:
                if len(result.quota_limited) == len(result.failed):
                    raise QuotaExceededError(
                        f"No provider quota left for {len(result.failed)} tickers"
                    )
                raise TransientProviderError(
                    f"No provider could serve {len(result.failed)} tickers"
                )
            return result

        async def from_cache() -> CachedPayload | None:
            return self._stale_payload(symbols)

        async def demo() -> EnrichmentResult:
            records = demo_records(symbols)
            return EnrichmentResult(
                records=records,
                sources={s: DEMO_PROVIDER_ID for s in records},
                summary=EnrichmentSummary(total_requested=len(symbols)),
            )

        outcome = await self.fallback.execute_with_fallback(
            OPERATION,
            self.aggregator.estimate_calls(symbols),
            primary,
            from_cache,
            self.fallback_options(allow_demo),
            demo_action=demo,
            served_by=lambda result: result.sources.values(),
        )

        if outcome.outcome == "done" and outcome.data.failed:
            result = outcome.data
            filled = self._backfill_stale(result)
            if filled:
                outcome.degraded_features.append("partial_stale_fundamentals")
                outcome.user_message += (
                    f"; {len(filled)} tickers shown from stale cache"
                )
            if result.failed:
                outcome.degraded_features.append("partial_fundamentals")
                outcome.user_message += (
                    f"; {result.served} of {result.summary.total_requested} "
                    "tickers enriched"
                )
        return outcome

    def _stale_payload(self, symbols: list[str]) -> CachedPayload | None:
        entries = self.cache.get_stale_many(symbols)
        if not entries:
            return None
        failed = [s for s in symbols if s not in entries]
        result = EnrichmentResult(
            records={s: e.value for s, e in entries.items()},
            sources={s: "cache" for s in entries},
            stale=list(entries),
            failed=failed,
            summary=EnrichmentSummary(
                total_requested=len(symbols),
                from_cache=len(entries),
                failed=len(failed),
            ),
        )
        oldest = max(self.cache.age_of(e) for e in entries.values())
        return CachedPayload(data=result, age_seconds=oldest)

    def _backfill_stale(self, result: EnrichmentResult) -> list[str]:
        """Fill failed tickers from stale cache entries, in place."""
        entries = self.cache.get_stale_many(result.failed)
        for symbol, entry in entries.items():
            result.records[symbol] = entry.value
            result.sources[symbol] = "cache"
            result.stale.append(symbol)
        if entries:
            result.failed = [s for s in result.failed if s not in entries]
            result.summary.from_cache += len(entries)
            result.summary.failed = len(result.failed)
            logger.info("stale_backfill", tickers=list(entries))
        return list(entries)

    def build_summary(self, result: EnrichmentResult | None, total: int) -> DashboardSummary:
        """Dashboard counters. A failed run counts every ticker as skipped."""
        if result is None:
            summary = EnrichmentSummary(total_requested=total, failed=total)
        else:
            summary = result.summary
        processed = summary.total_requested or total
        from_cache = summary.from_cache

        primary = self.aggregator.provider_statuses()[:1]
        return DashboardSummary(
            total_processed=processed,
            from_cache=from_cache,
            freshly_fetched=summary.freshly_fetched,
            skipped_or_failed=summary.skipped_or_failed,
            daily_api_usage=primary[0].daily_usage() if primary else "0/0",
            cache_hit_rate=f"{(from_cache / processed * 100) if processed else 0.0:.1f}%",
        )

    def provider_status(self) -> list[ProviderStatusEntry]:
        return [
            ProviderStatusEntry(
                provider_id=status.provider_id,
                provider_name=status.display_name,
                can_make_request=status.can_call,
                remaining_minute=status.remaining_minute,
                remaining_hour=status.remaining_hour,
                remaining_day=status.remaining_day,
                next_reset_timestamps=status.next_reset_at,
                warning_message=status.warning,
                last_error=status.last_error,
                daily_usage=status.daily_usage(),
            )
            for status in self.aggregator.provider_statuses()
        ]

    async def get_dashboard(self, allow_demo: bool | None = None) -> PortfolioDashboard:
        """
        Full dashboard payload. Brokerage failures propagate as
        BrokerageError; fundamentals failures only degrade the payload.
        """
        raw_positions, raw_account = await asyncio.gather(
            self.brokerage.get_positions(), self.brokerage.get_account()
        )
        positions = normalize_positions(raw_positions)
        account = normalize_account(raw_account)
        symbols = [p.symbol for p in positions]

        outcome = await self.enrich_tickers(symbols, allow_demo)
        enrichment = outcome.data
        records = enrichment.records if enrichment else {}
        sources = enrichment.sources if enrichment else {}
        stale = enrichment.stale if enrichment else []

        enriched = enrich_positions(positions, records, sources, stale)

        dashboard = PortfolioDashboard(
            positions=enriched,
            account=account,
            metrics=portfolio_metrics(enriched),
            allocations=build_allocations(enriched),
            summary=self.build_summary(enrichment, len(set(symbols))),
            provider_status=self.provider_status(),
            fallback=FallbackInfo.from_result(outcome),
        )
        logger.info(
            "dashboard_built",
            positions=len(enriched),
            fallback=outcome.outcome,
            total_value=round(dashboard.metrics.total_value, 2),
        )
        return dashboard
