"""
Tests for the dashboard pipeline.

Brokerage positions flow through the fallback-wrapped aggregator, so these
cover the live, partially stale, fully stale, demo and failed paths end to
end with in-memory fakes.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FakeProvider, make_record

from folio_lens.brokerage.exceptions import BrokerageAuthError
from folio_lens.brokerage.interfaces import StaticBrokerageSource
from folio_lens.data.aggregator import FundamentalsAggregator
from folio_lens.data.cache import NOT_CACHED
from folio_lens.data.exceptions import TransientProviderError
from folio_lens.data.fallback import FallbackService
from folio_lens.portfolio.service import PortfolioService

RAW_POSITIONS = [
    {"ticker": "AAPL_US_EQ", "quantity": 10, "averagePrice": 80.0, "currentPrice": 100.0, "ppl": 200.0},
    {"ticker": "MSFT_US_EQ", "quantity": 5, "averagePrice": 300.0, "currentPrice": 400.0, "ppl": 500.0},
]
RAW_ACCOUNT = {
    "id": "acc-1",
    "currency": "USD",
    "totalValue": 3100.0,
    "cash": {"availableToTrade": 100.0},
    "investments": {"currentValue": 3000.0, "totalCost": 2300.0, "unrealizedProfitLoss": 700.0},
}


@pytest.fixture
def brokerage():
    return StaticBrokerageSource(RAW_POSITIONS, RAW_ACCOUNT)


def build_service(quota, cache, brokerage, providers, allow_demo=False):
    aggregator = FundamentalsAggregator(providers, cache, quota, max_concurrency=1)
    fallback = FallbackService(
        quota, [p.provider_id for p in providers], sleep=AsyncMock()
    )
    return PortfolioService(
        brokerage,
        aggregator,
        fallback,
        allow_demo_data=allow_demo,
        max_attempts=2,
        retry_base_delay=0.0,
    )


class TestDashboard:
    @pytest.mark.asyncio
    async def test_live_dashboard(self, quota, cache, brokerage, register):
        register(quota, "a", minute=5, day=25)
        service = build_service(quota, cache, brokerage, [FakeProvider(quota, "a")])

        dashboard = await service.get_dashboard()

        assert [p.symbol for p in dashboard.positions] == ["MSFT", "AAPL"]
        assert dashboard.account.total_value == 3100.0
        assert dashboard.metrics.total_value == 3000.0
        assert dashboard.metrics.total_pnl == 700.0
        assert dashboard.fallback.outcome == "done"
        assert dashboard.fallback.provider == "primary"
        assert dashboard.summary.total_processed == 2
        assert dashboard.summary.freshly_fetched == 2
        assert dashboard.summary.daily_api_usage == "2/25"
        assert dashboard.summary.cache_hit_rate == "0.0%"
        assert dashboard.allocations.sector[0].name == "Technology"
        assert dashboard.provider_status[0].provider_id == "a"
        assert dashboard.provider_status[0].remaining_day == 23

    @pytest.mark.asyncio
    async def test_second_dashboard_served_from_cache(self, quota, cache, brokerage):
        provider = FakeProvider(quota, "a")
        service = build_service(quota, cache, brokerage, [provider])

        await service.get_dashboard()
        dashboard = await service.get_dashboard()

        assert provider.calls == ["AAPL", "MSFT"]
        assert dashboard.summary.from_cache == 2
        assert dashboard.summary.cache_hit_rate == "100.0%"
        assert all(p.data_source == "cache" for p in dashboard.positions)

    @pytest.mark.asyncio
    async def test_payload_uses_camel_case_feeds(self, quota, cache, brokerage):
        service = build_service(quota, cache, brokerage, [FakeProvider(quota, "a")])

        payload = (await service.get_dashboard()).to_payload()

        assert payload["summary"]["totalProcessed"] == 2
        assert "cacheHitRate" in payload["summary"]
        assert payload["provider_status"][0]["providerId"] == "a"
        assert payload["provider_status"][0]["canMakeRequest"] is True
        assert payload["positions"][0]["symbol"] == "MSFT"
        assert payload["fallback"]["outcome"] == "done"

    @pytest.mark.asyncio
    async def test_failed_ticker_backfilled_from_stale_cache(
        self, quota, cache, clock, brokerage
    ):
        cache.set("MSFT", make_record("MSFT", provider="a"))
        clock.advance(25 * 3600)
        provider = FakeProvider(
            quota, "a", responses={"MSFT": TransientProviderError("503", "a")}
        )
        service = build_service(quota, cache, brokerage, [provider])

        dashboard = await service.get_dashboard()

        by_symbol = {p.symbol: p for p in dashboard.positions}
        assert by_symbol["AAPL"].is_stale is False
        assert by_symbol["MSFT"].is_stale is True
        assert by_symbol["MSFT"].data_source == "cache"
        assert by_symbol["MSFT"].sector == "Technology"
        assert dashboard.fallback.outcome == "done"
        assert "partial_stale_fundamentals" in dashboard.fallback.degraded_features
        assert dashboard.summary.skipped_or_failed == 0

    @pytest.mark.asyncio
    async def test_all_providers_failing_serves_stale_cache(
        self, quota, cache, clock, brokerage
    ):
        for symbol in ("AAPL", "MSFT"):
            cache.set(symbol, make_record(symbol, provider="a"))
        clock.advance(30 * 3600)
        provider = FakeProvider(
            quota,
            "a",
            responses={
                "AAPL": TransientProviderError("503", "a"),
                "MSFT": TransientProviderError("503", "a"),
            },
        )
        service = build_service(quota, cache, brokerage, [provider])

        dashboard = await service.get_dashboard()

        assert dashboard.fallback.outcome == "stale"
        assert dashboard.fallback.provider == "cache"
        assert dashboard.fallback.is_stale is True
        assert dashboard.fallback.stale_age_ms == 30 * 3600 * 1000
        assert all(p.is_stale for p in dashboard.positions)
        assert dashboard.summary.from_cache == 2

    @pytest.mark.asyncio
    async def test_demo_fundamentals_when_nothing_else(self, quota, cache, brokerage):
        service = build_service(quota, cache, brokerage, [], allow_demo=True)

        dashboard = await service.get_dashboard()

        assert dashboard.fallback.outcome == "synthetic"
        assert dashboard.fallback.provider == "demo"
        assert all(p.data_source == "demo" for p in dashboard.positions)
        assert {p.sector for p in dashboard.positions} == {"Technology"}
        assert cache.get("AAPL") is NOT_CACHED

    @pytest.mark.asyncio
    async def test_failed_enrichment_still_lists_positions(self, quota, cache, brokerage):
        service = build_service(quota, cache, brokerage, [])

        dashboard = await service.get_dashboard()

        assert dashboard.fallback.outcome == "failed"
        assert len(dashboard.positions) == 2
        assert all(p.sector == "Unknown" for p in dashboard.positions)
        assert dashboard.summary.skipped_or_failed == 2
        assert dashboard.summary.daily_api_usage == "0/0"
        assert dashboard.metrics.total_value == 3000.0

    @pytest.mark.asyncio
    async def test_request_can_override_demo_setting(self, quota, cache, brokerage):
        service = build_service(quota, cache, brokerage, [], allow_demo=True)

        dashboard = await service.get_dashboard(allow_demo=False)

        assert dashboard.fallback.outcome == "failed"

    @pytest.mark.asyncio
    async def test_brokerage_errors_propagate(self, quota, cache):
        broken = MagicMock()
        broken.get_positions = AsyncMock(side_effect=BrokerageAuthError("bad key"))
        broken.get_account = AsyncMock(return_value={})
        service = build_service(quota, cache, broken, [FakeProvider(quota, "a")])

        with pytest.raises(BrokerageAuthError):
            await service.get_dashboard()


class TestEnrichTickers:
    @pytest.mark.asyncio
    async def test_exhausted_quota_fails_with_reasons(self, quota, cache, register):
        register(quota, "a", day=1)
        quota.record_call("a")
        provider = FakeProvider(quota, "a")
        service = build_service(quota, cache, MagicMock(), [provider])

        outcome = await service.enrich_tickers(["AAPL", "MSFT"])

        assert provider.calls == []
        assert outcome.outcome == "failed"
        assert outcome.reason == "quota_exceeded"
        assert "A quota exhausted" in outcome.reasons

    @pytest.mark.asyncio
    async def test_cached_tickers_need_no_quota(self, quota, cache, register):
        register(quota, "a", day=1)
        quota.record_call("a")
        cache.set("AAPL", make_record("AAPL"))
        service = build_service(quota, cache, MagicMock(), [FakeProvider(quota, "a")])

        outcome = await service.enrich_tickers(["aapl"])

        assert outcome.outcome == "done"
        assert outcome.data.sources == {"AAPL": "cache"}

    @pytest.mark.asyncio
    async def test_provider_short_of_the_batch_still_serves_what_it_can(
        self, quota, cache, register
    ):
        """Five calls left for six tickers: five are enriched, one is reported."""
        register(quota, "a", minute=5)
        provider = FakeProvider(quota, "a")
        service = build_service(quota, cache, MagicMock(), [provider])
        tickers = [f"T{i}" for i in range(1, 7)]

        outcome = await service.enrich_tickers(tickers)

        assert outcome.outcome == "done"
        assert provider.calls == tickers[:5]
        assert set(outcome.data.records) == set(tickers[:5])
        assert outcome.data.failed == ["T6"]
        assert outcome.data.quota_limited == ["T6"]
        assert "partial_fundamentals" in outcome.degraded_features
        assert outcome.user_message.endswith("; 5 of 6 tickers enriched")

    @pytest.mark.asyncio
    async def test_combined_quota_covers_the_batch(self, quota, cache, register):
        register(quota, "a", day=2)
        register(quota, "b", day=2)
        a = FakeProvider(quota, "a")
        b = FakeProvider(quota, "b")
        service = build_service(quota, cache, MagicMock(), [a, b])

        outcome = await service.enrich_tickers(["AAPL", "GOOGL", "MSFT"])

        assert outcome.outcome == "done"
        assert outcome.data.failed == []
        assert a.calls == ["AAPL", "GOOGL"]
        assert b.calls == ["MSFT"]

    @pytest.mark.asyncio
    async def test_batch_provider_needs_one_call_for_many_tickers(
        self, quota, cache, register
    ):
        register(quota, "tiingo", hour=50)
        provider = FakeProvider(quota, "tiingo", supports_batch=True)
        service = build_service(quota, cache, MagicMock(), [provider])
        tickers = [f"T{i}" for i in range(60)]

        outcome = await service.enrich_tickers(tickers)

        assert outcome.outcome == "done"
        assert len(provider.batch_calls_made) == 1
        assert len(outcome.data.records) == 60
        assert quota.status("tiingo").used_hour == 1

    @pytest.mark.asyncio
    async def test_spill_to_secondary_is_labelled_from_actual_sources(
        self, quota, cache, register
    ):
        """Two calls left on A, plenty on B: A serves two tickers, B the third."""
        register(quota, "a", day=2)
        register(quota, "b", day=1000)
        service = build_service(
            quota, cache, MagicMock(), [FakeProvider(quota, "a"), FakeProvider(quota, "b")]
        )

        outcome = await service.enrich_tickers(["AAPL", "GOOGL", "MSFT"])

        assert outcome.data.sources == {"AAPL": "a", "GOOGL": "a", "MSFT": "b"}
        assert outcome.provider == "secondary"
        assert outcome.served_by == "a,b"
        assert outcome.fallback_applied is True
        assert outcome.user_message == (
            "Completed fundamentals enrichment using A and B (fallback provider)"
        )
        assert outcome.data.summary.from_cache == 0
        assert outcome.data.summary.freshly_fetched == 3

    def test_build_summary_for_failed_run(self, quota, cache):
        service = build_service(quota, cache, MagicMock(), [FakeProvider(quota, "a")])

        summary = service.build_summary(None, 4)

        assert summary.total_processed == 4
        assert summary.skipped_or_failed == 4
        assert summary.cache_hit_rate == "0.0%"
        assert summary.daily_api_usage == "0/unlimited"
