"""
Per-provider API quota tracking over sliding minute/hour/day windows.

Every provider keeps an append-only list of call timestamps. A check prunes
entries older than the longest window and counts the rest against each
window ending *now*. A call is allowed only when every configured window is
strictly below its limit, so the most restrictive window governs and no
window can ever be overshot.

The tracker never raises. A provider it has never heard of has no limits
and no history, so it is fully available.

Usage:
    tracker = QuotaTracker()
    tracker.register("alphavantage", QuotaLimits(per_minute=5, per_day=25))
    if await tracker.reserve("alphavantage"):
        ...  # the call is already counted
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import structlog

from folio_lens.data.models import ProviderQuotaStatus, QuotaSummary

logger = structlog.get_logger(__name__)

WINDOW_SECONDS = {"minute": 60.0, "hour": 3600.0, "day": 86400.0}
LONGEST_WINDOW = max(WINDOW_SECONDS.values())

# Remaining-call thresholds that trigger a dashboard warning
WARN_DAY = 5
WARN_HOUR = 5
WARN_MINUTE = 1


@dataclass(frozen=True)
class QuotaLimits:
    """Call limits per window. None (or 0) means that window is unlimited."""

    per_minute: int | None = None
    per_hour: int | None = None
    per_day: int | None = None

    @classmethod
    def from_mapping(cls, limits: dict[str, int | None]) -> "QuotaLimits":
        return cls(
            per_minute=limits.get("minute") or None,
            per_hour=limits.get("hour") or None,
            per_day=limits.get("day") or None,
        )

    def for_window(self, window: str) -> int | None:
        value = {
            "minute": self.per_minute,
            "hour": self.per_hour,
            "day": self.per_day,
        }[window]
        return value or None


@dataclass
class _ProviderState:
    display_name: str
    limits: QuotaLimits
    calls: deque = field(default_factory=deque)
    total_calls: int = 0
    last_error: str | None = None
    last_error_at: float | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class QuotaTracker:
    """Sliding-window call accounting for every registered provider."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._providers: dict[str, _ProviderState] = {}

    def register(
        self,
        provider_id: str,
        limits: QuotaLimits,
        display_name: str | None = None,
    ) -> None:
        """Register (or re-configure) a provider. Call history is kept."""
        existing = self._providers.get(provider_id)
        if existing is not None:
            existing.limits = limits
            if display_name:
                existing.display_name = display_name
            return
        self._providers[provider_id] = _ProviderState(
            display_name=display_name or provider_id, limits=limits
        )

    def provider_ids(self) -> list[str]:
        return list(self._providers)

    def _state(self, provider_id: str) -> _ProviderState:
        state = self._providers.get(provider_id)
        if state is None:
            # Unknown provider: unlimited, tracked from now on
            state = _ProviderState(display_name=provider_id, limits=QuotaLimits())
            self._providers[provider_id] = state
        return state

    def _prune(self, state: _ProviderState, now: float) -> None:
        calls = state.calls
        while calls and now - calls[0] >= LONGEST_WINDOW:
            calls.popleft()

    def _window_counts(self, state: _ProviderState, now: float) -> dict[str, int]:
        self._prune(state, now)
        return {
            window: sum(1 for t in state.calls if now - t < seconds)
            for window, seconds in WINDOW_SECONDS.items()
        }

    def can_call(self, provider_id: str, calls: int = 1) -> bool:
        """True if `calls` more calls fit under every configured window."""
        state = self._providers.get(provider_id)
        if state is None:
            return True
        counts = self._window_counts(state, self._clock())
        for window, used in counts.items():
            limit = state.limits.for_window(window)
            if limit is not None and used + calls > limit:
                return False
        return True

    def record_call(self, provider_id: str, calls: int = 1) -> None:
        """Count `calls` calls at the current instant."""
        state = self._state(provider_id)
        now = self._clock()
        self._prune(state, now)
        for _ in range(calls):
            state.calls.append(now)
        state.total_calls += calls
        logger.debug(
            "provider_call_recorded",
            provider=provider_id,
            usage=self.format_usage(provider_id),
        )

    async def reserve(self, provider_id: str, calls: int = 1) -> bool:
        """
        Atomically check and record `calls` calls.

        Serialised per provider so two concurrent lookups cannot both see
        the last free slot. Returns False (and records nothing) if the
        calls would break any window.
        """
        state = self._state(provider_id)
        async with state.lock:
            if not self.can_call(provider_id, calls):
                logger.info(
                    "provider_quota_refused",
                    provider=provider_id,
                    usage=self.format_usage(provider_id),
                )
                return False
            self.record_call(provider_id, calls)
            return True

    def record_error(self, provider_id: str, error: str) -> None:
        state = self._state(provider_id)
        state.last_error = error
        state.last_error_at = self._clock()

    def clear_error(self, provider_id: str) -> None:
        state = self._state(provider_id)
        state.last_error = None
        state.last_error_at = None

    def status(self, provider_id: str) -> ProviderQuotaStatus:
        """Remaining calls, usage and next reset time for each window."""
        state = self._providers.get(provider_id)
        if state is None:
            return ProviderQuotaStatus(
                provider_id=provider_id, display_name=provider_id, can_call=True
            )

        now = self._clock()
        counts = self._window_counts(state, now)
        remaining: dict[str, int | None] = {}
        next_reset: dict[str, float | None] = {}
        for window, seconds in WINDOW_SECONDS.items():
            limit = state.limits.for_window(window)
            remaining[window] = None if limit is None else max(0, limit - counts[window])
            in_window = [t for t in state.calls if now - t < seconds]
            next_reset[window] = (in_window[0] + seconds) if in_window else None

        can_call = all(r is None or r > 0 for r in remaining.values())

        return ProviderQuotaStatus(
            provider_id=provider_id,
            display_name=state.display_name,
            can_call=can_call,
            remaining_minute=remaining["minute"],
            remaining_hour=remaining["hour"],
            remaining_day=remaining["day"],
            used_minute=counts["minute"],
            used_hour=counts["hour"],
            used_day=counts["day"],
            limit_minute=state.limits.for_window("minute"),
            limit_hour=state.limits.for_window("hour"),
            limit_day=state.limits.for_window("day"),
            next_reset_at=next_reset,
            warning=self._warning(remaining),
            last_error=state.last_error,
            last_error_at=state.last_error_at,
            total_calls=state.total_calls,
        )

    @staticmethod
    def _warning(remaining: dict[str, int | None]) -> str | None:
        day, hour, minute = remaining["day"], remaining["hour"], remaining["minute"]
        if day is not None and day <= WARN_DAY:
            return f"Only {day} requests remaining today"
        if hour is not None and hour <= WARN_HOUR:
            return f"Only {hour} requests remaining this hour"
        if minute is not None and minute <= WARN_MINUTE:
            return f"Only {minute} requests remaining this minute"
        return None

    def format_usage(self, provider_id: str) -> str:
        """Compact usage string for logs, e.g. "3/5/min, 7/25/day"."""
        status = self.status(provider_id)
        parts = []
        for window, label in (("minute", "min"), ("hour", "hour"), ("day", "day")):
            limit = getattr(status, f"limit_{window}")
            if limit is not None:
                parts.append(f"{getattr(status, f'used_{window}')}/{limit}/{label}")
        return ", ".join(parts) or f"{status.used_day} calls/day (no limits)"

    def summary(self) -> QuotaSummary:
        statuses = [self.status(pid) for pid in self._providers]
        totals: dict[str, int | None] = {window: 0 for window in WINDOW_SECONDS}
        critical: list[str] = []
        for status in statuses:
            for window in WINDOW_SECONDS:
                value = getattr(status, f"remaining_{window}")
                if value is None or totals[window] is None:
                    totals[window] = None
                else:
                    totals[window] += value
            if not status.can_call:
                critical.append(f"{status.display_name} has reached its limits")
            elif status.warning:
                critical.append(f"{status.display_name}: {status.warning}")

        recommendations = []
        if critical:
            recommendations.append("Consider using cached data or reducing API calls")
            best = self.best_provider()
            if best is not None:
                recommendations.append(
                    f"{self._state(best).display_name} has the most quota left"
                )
        if statuses and all(not s.can_call for s in statuses):
            recommendations.append(
                "All providers are exhausted - results will come from cache or demo data"
            )

        return QuotaSummary(
            providers=statuses,
            total_remaining=totals,
            critical_limits=critical,
            recommendations=recommendations,
        )

    def best_provider(self, provider_ids: Iterable[str] | None = None) -> str | None:
        """
        Provider with the most weighted headroom (informational only).

        Aggregation keeps its static priority order; this feeds the status
        dashboard's recommendation.
        """
        best, best_score = None, -1.0
        for pid in provider_ids if provider_ids is not None else self._providers:
            status = self.status(pid)
            if not status.can_call:
                continue
            day = status.remaining_day if status.remaining_day is not None else 10_000
            hour = status.remaining_hour if status.remaining_hour is not None else 1_000
            minute = (
                status.remaining_minute if status.remaining_minute is not None else 100
            )
            score = day + hour * 24 + minute * 1440
            if score > best_score:
                best, best_score = pid, score
        return best

    def reset(self, provider_id: str | None = None) -> None:
        """Forget call history for one provider, or for all of them."""
        targets = [provider_id] if provider_id else list(self._providers)
        for pid in targets:
            state = self._providers.get(pid)
            if state is None:
                continue
            state.calls.clear()
            state.total_calls = 0
            state.last_error = None
            state.last_error_at = None
