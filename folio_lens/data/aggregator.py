"""
Multi-provider fundamentals aggregation.

Given a ticker list, serves what it can from the cache, then walks the
providers in their configured priority order for everything else:

    1. Partition tickers into cached (fresh record or confirmed-null) and
       pending.
    2. For each provider, in order, while tickers are still pending:
         - batch-capable providers get one fetch_many for all pending
           tickers when more than one is pending
         - otherwise pending tickers are looked up concurrently, each
           lookup reserving quota (check + record, serialised per provider)
           immediately before its request goes out
       Hits are cached and removed from the pending set. A quota refusal
       or a provider-side quota error retires the provider for the rest
       of the pass.
    3. Tickers still pending at the end are failures and stay uncached,
       unless a provider confirmed it has no data for them (and no other
       provider errored), in which case a confirmed-null is cached.

Provider errors never escape enrich(); the caller always gets a partial
result. Only a failing cache store propagates.
"""

import asyncio
import enum
import functools
from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from folio_lens.data.cache import NOT_CACHED, FundamentalsCache
from folio_lens.data.exceptions import (
    ProviderConfigError,
    ProviderError,
    QuotaExceededError,
)
from folio_lens.data.interfaces import FinancialDataProvider
from folio_lens.data.models import (
    EnrichmentResult,
    EnrichmentSummary,
    FundamentalsRecord,
    ProviderQuotaStatus,
)
from folio_lens.data.parsing import normalize_ticker
from folio_lens.data.quota import QuotaTracker
from folio_lens.data.singleflight import SingleFlight

logger = structlog.get_logger(__name__)


class _Outcome(enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"
    # The three below retire the provider for the rest of the pass
    REFUSED = "refused"
    QUOTA = "quota"
    UNAVAILABLE = "unavailable"


_RETIRING = {_Outcome.REFUSED, _Outcome.QUOTA, _Outcome.UNAVAILABLE}


@dataclass
class _PassState:
    missing: set[str] = field(default_factory=set)
    errored: set[str] = field(default_factory=set)
    attempted: set[str] = field(default_factory=set)
    retired: set[str] = field(default_factory=set)


class FundamentalsAggregator:
    """Cache-first, priority-ordered enrichment across providers."""

    def __init__(
        self,
        providers: Iterable[FinancialDataProvider],
        cache: FundamentalsCache,
        quota: QuotaTracker,
        max_concurrency: int = 4,
    ):
        self.providers = list(providers)
        self.cache = cache
        self.quota = quota
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._flight = SingleFlight()

    @property
    def provider_ids(self) -> list[str]:
        return [p.provider_id for p in self.providers]

    def provider_statuses(self) -> list[ProviderQuotaStatus]:
        return [p.rate_limit_status() for p in self.providers]

    def estimate_calls(self, tickers: Iterable[str]) -> int:
        """
        Quota calls enrich(tickers) would spend right now on the first
        configured provider: one batch for a batch-capable provider,
        calls_per_lookup per uncached ticker otherwise.
        """
        pending = len(self.cache.tickers_to_refresh(tickers))
        if not pending:
            return 0
        for provider in self.providers:
            if not provider.is_configured():
                continue
            if provider.supports_batch and pending > 1:
                return provider.batch_calls
            return pending * provider.calls_per_lookup
        return pending

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()

    async def enrich(self, tickers: Iterable[str]) -> EnrichmentResult:
        symbols = list(
            dict.fromkeys(normalize_ticker(t) for t in tickers if t and t.strip())
        )
        result = EnrichmentResult(summary=EnrichmentSummary(total_requested=len(symbols)))

        pending = []
        for symbol in symbols:
            cached = self.cache.get(symbol)
            if cached is NOT_CACHED:
                pending.append(symbol)
            elif cached is None:
                result.not_found.append(symbol)
            else:
                result.records[symbol] = cached
                result.sources[symbol] = "cache"
                result.summary.from_cache += 1

        if pending:
            await self._fetch_pending(pending, result)

        result.summary.not_found = len(result.not_found)
        result.summary.failed = len(result.failed)

        logger.info(
            "enrichment_complete",
            requested=result.summary.total_requested,
            from_cache=result.summary.from_cache,
            fetched=result.summary.freshly_fetched,
            not_found=result.summary.not_found,
            failed=result.summary.failed,
            by_provider=result.summary.by_provider,
        )
        return result

    async def _fetch_pending(self, pending: list[str], result: EnrichmentResult) -> None:
        state = _PassState()
        remaining = list(pending)

        for provider in self.providers:
            if not remaining:
                break
            pid = provider.provider_id
            if not provider.is_configured():
                logger.debug("provider_not_configured", provider=pid)
                continue

            if provider.supports_batch and len(remaining) > 1:
                found = await self._fetch_batch(provider, remaining, state)
            else:
                found = await self._fetch_each(provider, remaining, state)

            for symbol, record in found.items():
                self.cache.set(symbol, record)
                result.records[symbol] = record
                result.sources[symbol] = pid
                result.summary.freshly_fetched += 1
                result.summary.by_provider[pid] = result.summary.by_provider.get(pid, 0) + 1

            remaining = [s for s in remaining if s not in found]

        for symbol in remaining:
            if symbol in state.missing and symbol not in state.errored:
                self.cache.set(symbol, None)
                result.not_found.append(symbol)
                continue
            result.failed.append(symbol)
            if symbol not in state.attempted:
                result.quota_limited.append(symbol)

        if result.failed:
            logger.warning(
                "enrichment_partial",
                failed=result.failed,
                quota_limited=result.quota_limited,
            )

    async def _fetch_batch(
        self,
        provider: FinancialDataProvider,
        symbols: list[str],
        state: _PassState,
    ) -> dict[str, FundamentalsRecord]:
        pid = provider.provider_id
        if not await self.quota.reserve(pid, provider.batch_calls):
            state.retired.add(pid)
            return {}

        state.attempted.update(symbols)
        try:
            found = await provider.fetch_many(symbols)
        except QuotaExceededError as e:
            logger.warning("provider_quota_exceeded", provider=pid, error=str(e))
            self.quota.record_error(pid, str(e))
            state.retired.add(pid)
            return {}
        except ProviderError as e:
            logger.warning("provider_batch_failed", provider=pid, error=str(e))
            self.quota.record_error(pid, str(e))
            state.errored.update(symbols)
            return {}
        except Exception as e:
            logger.error("provider_unexpected_error", provider=pid, error=str(e), exc_info=True)
            self.quota.record_error(pid, str(e))
            state.errored.update(symbols)
            return {}

        self.quota.clear_error(pid)
        wanted = set(symbols)
        results = {}
        for ticker, record in found.items():
            symbol = normalize_ticker(ticker)
            if symbol in wanted and record is not None:
                results[symbol] = record
        return results

    async def _fetch_each(
        self,
        provider: FinancialDataProvider,
        symbols: list[str],
        state: _PassState,
    ) -> dict[str, FundamentalsRecord]:
        pid = provider.provider_id

        async def lookup(symbol: str):
            async with self._semaphore:
                if pid in state.retired:
                    return symbol, None
                outcome, record = await self._flight.do(
                    f"{pid}:{symbol}", functools.partial(self._lookup_one, provider, symbol)
                )

            if outcome in _RETIRING:
                state.retired.add(pid)
                return symbol, None

            state.attempted.add(symbol)
            if outcome is _Outcome.NOT_FOUND:
                state.missing.add(symbol)
            elif outcome is _Outcome.ERROR:
                state.errored.add(symbol)
            return symbol, record

        pairs = await asyncio.gather(*(lookup(s) for s in symbols))
        return {symbol: record for symbol, record in pairs if record is not None}

    async def _lookup_one(
        self, provider: FinancialDataProvider, symbol: str
    ) -> tuple[_Outcome, FundamentalsRecord | None]:
        pid = provider.provider_id
        if not await self.quota.reserve(pid, provider.calls_per_lookup):
            return _Outcome.REFUSED, None

        try:
            record = await provider.fetch_one(symbol)
        except QuotaExceededError as e:
            logger.warning("provider_quota_exceeded", provider=pid, ticker=symbol, error=str(e))
            self.quota.record_error(pid, str(e))
            return _Outcome.QUOTA, None
        except ProviderConfigError as e:
            logger.error("provider_misconfigured", provider=pid, error=str(e))
            self.quota.record_error(pid, str(e))
            return _Outcome.UNAVAILABLE, None
        except ProviderError as e:
            logger.warning("provider_lookup_failed", provider=pid, ticker=symbol, error=str(e))
            self.quota.record_error(pid, str(e))
            return _Outcome.ERROR, None
        except Exception as e:
            logger.error(
                "provider_unexpected_error",
                provider=pid,
                ticker=symbol,
                error=str(e),
                exc_info=True,
            )
            self.quota.record_error(pid, str(e))
            return _Outcome.ERROR, None

        self.quota.clear_error(pid)
        if record is None:
            logger.debug("provider_ticker_not_found", provider=pid, ticker=symbol)
            return _Outcome.NOT_FOUND, None
        return _Outcome.FOUND, record
