"""
Explicit service construction.

Everything stateful (quota tracker, cache, providers, aggregator, fallback
policy, brokerage client) is built here from a Settings instance and handed
to callers. Nothing is a module-level singleton: the API lifespan and the
CLI each build one Services container and close it on shutdown.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from folio_lens.brokerage.interfaces import BrokerageSource, demo_brokerage
from folio_lens.brokerage.trading212 import Trading212Client
from folio_lens.config import Settings, validate_environment_variables
from folio_lens.data.aggregator import FundamentalsAggregator
from folio_lens.data.alpha_vantage import AlphaVantageProvider
from folio_lens.data.cache import FundamentalsCache
from folio_lens.data.fallback import FallbackService
from folio_lens.data.interfaces import FinancialDataProvider
from folio_lens.data.quota import QuotaLimits, QuotaTracker
from folio_lens.data.store import InMemoryStore, JsonFileStore, KeyValueStore
from folio_lens.data.tiingo import TiingoProvider
from folio_lens.data.yfinance_provider import YFinanceProvider
from folio_lens.portfolio.service import PortfolioService

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    quota: QuotaTracker
    cache: FundamentalsCache
    providers: list[FinancialDataProvider]
    aggregator: FundamentalsAggregator
    fallback: FallbackService
    brokerage: BrokerageSource
    portfolio: PortfolioService

    async def close(self) -> None:
        await self.aggregator.close()
        await self.brokerage.close()
        logger.debug("services_closed")


def build_store(settings: Settings) -> KeyValueStore:
    if settings.fundamentals_cache_path:
        return JsonFileStore(settings.fundamentals_cache_path)
    return InMemoryStore()


def build_providers(settings: Settings, quota: QuotaTracker) -> list[FinancialDataProvider]:
    """Providers in configured priority order, each registered with the tracker."""
    factories: dict[str, Callable[[], FinancialDataProvider]] = {
        "alphavantage": lambda: AlphaVantageProvider(
            quota,
            api_key=settings.get_alpha_vantage_api_key(),
            timeout_seconds=settings.http_timeout_seconds,
        ),
        "tiingo": lambda: TiingoProvider(
            quota,
            api_key=settings.get_tiingo_api_key(),
            timeout_seconds=settings.http_timeout_seconds,
        ),
        "yfinance": lambda: YFinanceProvider(
            quota, timeout_seconds=settings.http_timeout_seconds
        ),
    }

    providers = []
    for provider_id in settings.enabled_providers():
        provider = factories[provider_id]()
        quota.register(
            provider_id,
            QuotaLimits.from_mapping(settings.quota_limits(provider_id)),
            display_name=provider.display_name,
        )
        providers.append(provider)

    logger.info(
        "providers_configured",
        order=[p.provider_id for p in providers],
        configured=[p.provider_id for p in providers if p.is_configured()],
    )
    return providers


def build_services(
    settings: Settings | None = None,
    *,
    providers: list[FinancialDataProvider] | None = None,
    brokerage: BrokerageSource | None = None,
    store: KeyValueStore | None = None,
    quota: QuotaTracker | None = None,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Services:
    """
    Wire up every service from settings.

    Keyword overrides exist for tests and embedding; anything not given
    is built from settings. Without Trading212 credentials and with demo
    data allowed, a static demo brokerage stands in.
    """
    if settings is None:
        from folio_lens.config import config as settings

    validate_environment_variables(settings)

    quota = quota or QuotaTracker(clock=clock)
    cache = FundamentalsCache(
        store=store if store is not None else build_store(settings),
        ttl_seconds=settings.fundamentals_cache_ttl_hours * 3600,
        stale_retention_seconds=settings.stale_retention_days * 86400,
        clock=clock,
    )

    if providers is None:
        providers = build_providers(settings, quota)

    aggregator = FundamentalsAggregator(
        providers, cache, quota, max_concurrency=settings.max_concurrent_lookups
    )
    fallback = FallbackService(
        quota,
        [p.provider_id for p in providers if p.is_configured()],
        clock=clock,
        sleep=sleep,
    )

    if brokerage is None:
        client = Trading212Client.from_settings(settings)
        if not client.is_configured() and settings.allow_demo_data:
            logger.info("using_demo_brokerage")
            brokerage = demo_brokerage()
        else:
            brokerage = client

    portfolio = PortfolioService(
        brokerage,
        aggregator,
        fallback,
        allow_demo_data=settings.allow_demo_data,
        max_attempts=settings.fallback_max_attempts,
        retry_base_delay=settings.fallback_retry_base_seconds,
    )

    return Services(
        settings=settings,
        quota=quota,
        cache=cache,
        providers=providers,
        aggregator=aggregator,
        fallback=fallback,
        brokerage=brokerage,
        portfolio=portfolio,
    )
