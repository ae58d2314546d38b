"""
Degradation policy around provider-backed operations.

Per invocation:

    TRY_PRIMARY --success--------------------------------> done
    TRY_PRIMARY --quota exhausted / error--> TRY_CACHE --hit--> stale
    TRY_CACHE   --miss--> TRY_DEMO (if allowed) ---------> synthetic
    TRY_DEMO    --disabled / miss--------------------------> failed

Transient errors retry the whole primary pipeline with exponential backoff
(base * 2^(attempt-1)). Quota exhaustion never retries: nothing changes
until a window rolls over, so it fails fast to the cache. "Exhausted" means
no provider can take even one more call; a provider with some quota left
still runs the primary action, which returns whatever it managed.

The policy never raises for provider trouble. A "failed" outcome is a
normal return value carrying the reasons.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from folio_lens.data.exceptions import (
    ProviderConfigError,
    ProviderError,
    QuotaExceededError,
    TransientProviderError,
)
from folio_lens.data.models import (
    CachedPayload,
    FallbackOptions,
    FallbackResult,
)
from folio_lens.data.quota import QuotaTracker

logger = structlog.get_logger(__name__)

STALE_FEATURES = ["real_time_data"]
DEMO_FEATURES = ["real_time_data", "live_fundamentals"]


class ProvidersExhaustedError(QuotaExceededError):
    """No provider can take another call."""

    def __init__(self, reasons: list[str]):
        super().__init__("; ".join(reasons) or "No providers configured")
        self.reasons = reasons


class FallbackService:
    """Runs an operation through primary -> cache -> demo with retries."""

    def __init__(
        self,
        quota: QuotaTracker,
        provider_ids: Iterable[str],
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.quota = quota
        self.provider_ids = list(provider_ids)
        self._clock = clock
        self._sleep = sleep

    def _ordered(self, preferred: str | None = None) -> list[str]:
        order = list(self.provider_ids)
        if preferred and preferred in order:
            order.remove(preferred)
            order.insert(0, preferred)
        return order

    def select_provider(
        self, estimated_calls: int, preferred: str | None = None
    ) -> tuple[str, int]:
        """
        First provider (preferred one first, if given) that can take at
        least one more call. Returns (provider_id, priority index).

        A provider that cannot cover the whole estimate is still selected:
        the operation reserves quota per call and returns what it managed.
        Raises ProvidersExhaustedError only when no provider can take a call.
        """
        order = self._ordered(preferred)

        if estimated_calls <= 0 and order:
            # Everything is cached; no quota is spent
            return order[0], self.provider_ids.index(order[0])

        reasons = []
        for provider_id in order:
            status = self.quota.status(provider_id)
            if status.can_call:
                remaining = status.min_remaining()
                if remaining < estimated_calls:
                    logger.info(
                        "fallback_partial_capacity",
                        provider=provider_id,
                        remaining=int(remaining),
                        estimated_calls=estimated_calls,
                    )
                return provider_id, self.provider_ids.index(provider_id)
            reasons.append(f"{status.display_name} quota exhausted")
        raise ProvidersExhaustedError(reasons)

    async def execute_with_fallback(
        self,
        operation: str,
        estimated_call_count: int,
        primary_action: Callable[[], Awaitable[Any]],
        cache_action: Callable[[], Awaitable[CachedPayload | None]] | None = None,
        options: FallbackOptions | None = None,
        demo_action: Callable[[], Awaitable[Any]] | None = None,
        served_by: Callable[[Any], Iterable[str]] | None = None,
    ) -> FallbackResult:
        """
        Run primary_action through the degradation chain.

        served_by, if given, maps the primary result to the provider ids
        that actually produced it; the primary/secondary label and the
        message follow those. Without it the first provider with quota
        left is credited.
        """
        options = options or FallbackOptions()
        reasons: list[str] = []
        attempts = 0
        reason = None

        retrying = AsyncRetrying(
            stop=stop_after_attempt(options.max_attempts),
            wait=wait_exponential(multiplier=options.retry_base_delay, exp_base=2),
            retry=retry_if_exception_type(TransientProviderError),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    provider_id, _ = self.select_provider(
                        estimated_call_count, options.preferred_provider
                    )
                    try:
                        data = await primary_action()
                    except TransientProviderError as e:
                        logger.warning(
                            "fallback_primary_transient_error",
                            operation=operation,
                            attempt=attempts,
                            error=str(e),
                        )
                        reasons.append(f"Attempt {attempts}: {e}")
                        raise

            used = self._providers_used(data, served_by, options.preferred_provider)
            if used is None:
                used = [provider_id]
            fallback_applied = any(self.provider_ids.index(pid) > 0 for pid in used)
            label = "secondary" if fallback_applied else "primary"
            if used:
                message = f"Completed {operation} using {_join(self._display(p) for p in used)}"
            else:
                message = f"Completed {operation} from cache"
            if fallback_applied:
                message += " (fallback provider)"
            logger.info(
                "fallback_primary_success",
                operation=operation,
                providers=used,
                attempts=attempts,
            )
            return FallbackResult(
                data=data,
                outcome="done",
                provider=label,
                served_by=",".join(used) or "cache",
                user_message=message,
                reasons=reasons,
                fallback_applied=fallback_applied,
                attempts=attempts,
            )

        except ProvidersExhaustedError as e:
            reason = "quota_exceeded"
            reasons.extend(e.reasons)
            logger.warning("fallback_providers_exhausted", operation=operation, reasons=e.reasons)
        except QuotaExceededError as e:
            reason = "rate_limited"
            reasons.append(str(e))
            logger.warning("fallback_rate_limited", operation=operation, error=str(e))
        except TransientProviderError as e:
            reason = "network_error"
            logger.warning(
                "fallback_retries_exhausted", operation=operation, attempts=attempts, error=str(e)
            )
        except (ProviderConfigError, ProviderError) as e:
            reason = "api_error"
            reasons.append(str(e))
            logger.warning("fallback_primary_failed", operation=operation, error=str(e))

        return await self._degrade(
            operation, reason, reasons, attempts, cache_action, demo_action, options
        )

    async def _degrade(
        self,
        operation: str,
        reason: str,
        reasons: list[str],
        attempts: int,
        cache_action: Callable[[], Awaitable[CachedPayload | None]] | None,
        demo_action: Callable[[], Awaitable[Any]] | None,
        options: FallbackOptions,
    ) -> FallbackResult:
        why = _REASON_TEXT[reason]

        if options.enable_cache_fallback and cache_action is not None:
            cached = await cache_action()
            if cached is not None:
                logger.info(
                    "fallback_served_from_cache",
                    operation=operation,
                    age_seconds=round(cached.age_seconds),
                )
                return FallbackResult(
                    data=cached.data,
                    outcome="stale",
                    provider="cache",
                    served_by="cache",
                    reason=reason,
                    is_stale=True,
                    stale_age_ms=int(cached.age_seconds * 1000),
                    degraded_features=list(STALE_FEATURES),
                    user_message=(
                        f"Showing cached data for {operation} "
                        f"({_format_age(cached.age_seconds)} old) because {why}"
                    ),
                    reasons=reasons,
                    fallback_applied=True,
                    attempts=attempts,
                )
            reasons.append("No cached data available")

        if options.allow_demo_data and demo_action is not None:
            data = await demo_action()
            logger.info("fallback_served_demo_data", operation=operation)
            return FallbackResult(
                data=data,
                outcome="synthetic",
                provider="demo",
                served_by="demo",
                reason=reason,
                degraded_features=list(DEMO_FEATURES),
                user_message=f"Showing demo data for {operation} because {why}",
                reasons=reasons,
                fallback_applied=True,
                attempts=attempts,
            )

        logger.error("fallback_failed", operation=operation, reason=reason, reasons=reasons)
        return FallbackResult(
            outcome="failed",
            reason=reason,
            user_message=f"Could not complete {operation}: {why} and no fallback data is available",
            reasons=reasons,
            fallback_applied=True,
            attempts=attempts,
        )

    def _providers_used(
        self,
        data: Any,
        served_by: Callable[[Any], Iterable[str]] | None,
        preferred: str | None,
    ) -> list[str] | None:
        if served_by is None:
            return None
        sources = set(served_by(data))
        return [pid for pid in self._ordered(preferred) if pid in sources]

    def _display(self, provider_id: str) -> str:
        return self.quota.status(provider_id).display_name


_REASON_TEXT = {
    "quota_exceeded": "API limits were reached",
    "rate_limited": "a data provider is rate limiting requests",
    "network_error": "data providers could not be reached",
    "api_error": "a data provider returned an error",
}


def _format_age(seconds: float) -> str:
    if seconds < 3600:
        return f"{max(1, int(seconds // 60))} min"
    if seconds < 86400:
        return f"{seconds / 3600:.1f} h"
    return f"{seconds / 86400:.1f} days"


def _join(names: Iterable[str]) -> str:
    names = list(names)
    if len(names) <= 1:
        return "".join(names)
    return ", ".join(names[:-1]) + " and " + names[-1]
