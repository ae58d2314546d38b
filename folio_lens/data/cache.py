"""
TTL cache of normalized fundamentals, keyed by upper-cased ticker.

Three read outcomes are distinguished:
    - a FundamentalsRecord: fresh data
    - None: a provider confirmed it has no data for the ticker
    - NOT_CACHED: never looked up, or the entry has expired

Expiry is lazy. An expired entry is evicted by the read that finds it and,
if it held real provider data, demoted to a stale slot that the fallback
policy can still serve (flagged stale) for STALE_RETENTION_DAYS.
"""

from __future__ import annotations

import enum
import time
from collections.abc import Callable, Iterable
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from folio_lens.data.demo import DEMO_PROVIDER_ID
from folio_lens.data.models import FundamentalsRecord
from folio_lens.data.parsing import normalize_ticker
from folio_lens.data.store import InMemoryStore, KeyValueStore

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 24 * 3600
DEFAULT_STALE_RETENTION_SECONDS = 7 * 86400

FRESH_PREFIX = "fundamentals:"
STALE_PREFIX = "stale:"


class _CacheMiss(enum.Enum):
    NOT_CACHED = "NOT_CACHED"

    def __repr__(self) -> str:
        return "NOT_CACHED"

    def __bool__(self) -> bool:
        return False


NOT_CACHED = _CacheMiss.NOT_CACHED


class CacheEntry(BaseModel):
    """A cached lookup. value=None records a confirmed "not found"."""

    ticker: str
    value: FundamentalsRecord | None
    cached_at: float
    expires_at: float

    @property
    def is_confirmed_null(self) -> bool:
        return self.value is None

    def age_seconds(self, now: float) -> float:
        return max(0.0, now - self.cached_at)


class FundamentalsCache:
    """Read-through fundamentals cache over an injectable key-value store."""

    def __init__(
        self,
        store: KeyValueStore | None = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        stale_retention_seconds: float = DEFAULT_STALE_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else InMemoryStore()
        self.ttl_seconds = ttl_seconds
        self.stale_retention_seconds = stale_retention_seconds
        self._clock = clock
        self._hits = 0
        self._misses = 0

    # --- store access -----------------------------------------------------

    def _load(self, key: str) -> CacheEntry | None:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            return CacheEntry.model_validate(raw)
        except ValidationError as e:
            logger.warning("cache_entry_invalid", key=key, error=str(e))
            self.store.delete(key)
            return None

    def _save(self, key: str, entry: CacheEntry) -> None:
        self.store.set(key, entry.model_dump(mode="json"))

    # --- core contract ----------------------------------------------------

    def is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() >= entry.expires_at

    def get(self, ticker: str) -> FundamentalsRecord | None | _CacheMiss:
        """Fresh record, None for a confirmed-null, or NOT_CACHED."""
        symbol = normalize_ticker(ticker)
        entry = self._load(FRESH_PREFIX + symbol)
        if entry is None:
            self._misses += 1
            return NOT_CACHED

        if self.is_expired(entry):
            self._evict(symbol, entry)
            self._misses += 1
            return NOT_CACHED

        self._hits += 1
        return entry.value

    def set(self, ticker: str, record: FundamentalsRecord | None) -> None:
        """Cache a record (or a confirmed-null). Replaces any stale copy."""
        if record is not None and record.source_provider == DEMO_PROVIDER_ID:
            logger.debug("cache_skip_demo_record", ticker=ticker)
            return

        symbol = normalize_ticker(ticker)
        now = self._clock()
        entry = CacheEntry(
            ticker=symbol,
            value=record,
            cached_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self._save(FRESH_PREFIX + symbol, entry)
        self.store.delete(STALE_PREFIX + symbol)
        logger.debug(
            "fundamentals_cached",
            ticker=symbol,
            confirmed_null=record is None,
            source=record.source_provider if record else None,
        )

    def _evict(self, symbol: str, entry: CacheEntry) -> None:
        self.store.delete(FRESH_PREFIX + symbol)
        if not entry.is_confirmed_null and entry.value.source_provider != DEMO_PROVIDER_ID:
            self._save(STALE_PREFIX + symbol, entry)
        logger.debug("cache_entry_expired", ticker=symbol, demoted=not entry.is_confirmed_null)

    # --- stale access for the fallback path -------------------------------

    def _stale_expired(self, entry: CacheEntry, now: float) -> bool:
        return now >= entry.expires_at + self.stale_retention_seconds

    def get_stale(self, ticker: str) -> CacheEntry | None:
        """
        Newest entry holding real data, whether fresh or stale.

        Does not touch hit/miss counters. Confirmed-nulls are not returned.
        """
        symbol = normalize_ticker(ticker)
        now = self._clock()
        for key in (FRESH_PREFIX + symbol, STALE_PREFIX + symbol):
            entry = self._load(key)
            if entry is None or entry.is_confirmed_null:
                continue
            if self._stale_expired(entry, now):
                continue
            return entry
        return None

    def age_of(self, entry: CacheEntry) -> float:
        """Seconds since the entry was written."""
        return entry.age_seconds(self._clock())

    def get_stale_many(self, tickers: Iterable[str]) -> dict[str, CacheEntry]:
        found = {}
        for ticker in tickers:
            entry = self.get_stale(ticker)
            if entry is not None:
                found[normalize_ticker(ticker)] = entry
        return found

    # --- maintenance ------------------------------------------------------

    def tickers_to_refresh(self, tickers: Iterable[str]) -> list[str]:
        """Tickers with no live entry. Peeks only, nothing is evicted."""
        pending = []
        for ticker in tickers:
            symbol = normalize_ticker(ticker)
            entry = self._load(FRESH_PREFIX + symbol)
            if entry is None or self.is_expired(entry):
                pending.append(symbol)
        return pending

    def cleanup(self) -> int:
        """Sweep expired entries now. Returns how many were removed."""
        now = self._clock()
        removed = 0
        for key in self.store.keys():
            if key.startswith(FRESH_PREFIX):
                entry = self._load(key)
                if entry is not None and self.is_expired(entry):
                    self._evict(key[len(FRESH_PREFIX):], entry)
                    removed += 1
            elif key.startswith(STALE_PREFIX):
                entry = self._load(key)
                if entry is not None and self._stale_expired(entry, now):
                    self.store.delete(key)
                    removed += 1
        if removed:
            logger.info("cache_cleanup", removed=removed)
        return removed

    def clear(self) -> None:
        for key in self.store.keys():
            if key.startswith((FRESH_PREFIX, STALE_PREFIX)):
                self.store.delete(key)
        self._hits = 0
        self._misses = 0
        logger.info("fundamentals_cache_cleared")

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        total = fresh = expired = confirmed_null = stale = 0
        ages = []
        for key in self.store.keys():
            if key.startswith(STALE_PREFIX):
                stale += 1
                continue
            if not key.startswith(FRESH_PREFIX):
                continue
            entry = self._load(key)
            if entry is None:
                continue
            total += 1
            ages.append(entry.age_seconds(now))
            if entry.is_confirmed_null:
                confirmed_null += 1
            if self.is_expired(entry):
                expired += 1
            else:
                fresh += 1

        lookups = self._hits + self._misses
        return {
            "total_cached": total,
            "fresh": fresh,
            "expired": expired,
            "confirmed_null": confirmed_null,
            "stale": stale,
            "average_age_hours": round(sum(ages) / len(ages) / 3600, 2) if ages else 0.0,
            "cache_hit_rate": round(self._hits / lookups * 100, 1) if lookups else 0.0,
            "hits": self._hits,
            "misses": self._misses,
        }
