"""
Trading212 public API client.

Provides rate-friendly access to positions and the account summary.
Trading212 throttles these endpoints to roughly one request every few
seconds, so responses are held in short TTL caches and concurrent callers
share a single in-flight request.

Usage:
    async with Trading212Client.from_settings(config) as client:
        positions = await client.get_positions()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

import aiohttp
import structlog

from folio_lens.brokerage.exceptions import BrokerageAPIError, BrokerageAuthError
from folio_lens.brokerage.interfaces import BrokerageSource
from folio_lens.data.singleflight import SingleFlight

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://live.trading212.com/api/v0"

_STATUS_HINTS = {
    401: "Invalid Trading212 API key. Please check your configuration.",
    403: "Trading212 API key lacks the required permissions (needs portfolio and account read).",
    429: "Trading212 API rate limit exceeded. Please try again later.",
    503: "Trading212 API is temporarily unavailable. Please try again later.",
}


class Trading212Client(BrokerageSource):
    """
    aiohttp client for the Trading212 equity API (HTTP Basic auth).

    Usage:
        client = Trading212Client(api_key, api_secret)
        positions = await client.get_positions()
        await client.close()
    """

    def __init__(
        self,
        api_key: str | None,
        api_secret: str | None,
        base_url: str = DEFAULT_BASE_URL,
        positions_ttl: float = 5.0,
        account_ttl: float = 2.0,
        timeout_seconds: float = 15.0,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = api_key or None
        self.api_secret = api_secret or None
        self.base_url = base_url.rstrip("/")
        self.positions_ttl = positions_ttl
        self.account_ttl = account_ttl
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None
        self._clock = clock
        self._flight = SingleFlight()
        # key -> (expires_at, payload)
        self._cache: dict[str, tuple[float, Any]] = {}

    @classmethod
    def from_settings(cls, settings) -> "Trading212Client":
        return cls(
            api_key=settings.get_trading212_api_key(),
            api_secret=settings.get_trading212_api_secret(),
            base_url=settings.trading212_base_url,
            positions_ttl=settings.positions_cache_seconds,
            account_ttl=settings.account_cache_seconds,
            timeout_seconds=settings.http_timeout_seconds,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self) -> None:
        """Close the aiohttp session. Safe to call multiple times."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def is_configured(self) -> bool:
        return self.api_key is not None and self.api_secret is not None

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_status(self) -> dict[str, float]:
        """Seconds until each cached response expires."""
        now = self._clock()
        return {key: max(0.0, expires - now) for key, (expires, _) in self._cache.items()}

    async def get_positions(self) -> list[dict[str, Any]]:
        data = await self._cached("positions", self.positions_ttl, "/equity/positions")
        if not isinstance(data, list):
            raise BrokerageAPIError(
                f"Unexpected positions payload type {type(data).__name__}"
            )
        return data

    async def get_account(self) -> dict[str, Any]:
        data = await self._cached("account", self.account_ttl, "/equity/account/summary")
        if not isinstance(data, dict):
            raise BrokerageAPIError(f"Unexpected account payload type {type(data).__name__}")
        return data

    async def _cached(self, key: str, ttl: float, path: str) -> Any:
        hit = self._cache.get(key)
        if hit is not None and self._clock() < hit[0]:
            return hit[1]
        return await self._flight.do(key, lambda: self._refresh(key, ttl, path))

    async def _refresh(self, key: str, ttl: float, path: str) -> Any:
        data = await self._get(path)
        self._cache[key] = (self._clock() + ttl, data)
        return data

    async def _get(self, path: str) -> Any:
        """
        Make API request with error handling.

        Raises:
            BrokerageAuthError: credentials missing or rejected
            BrokerageAPIError: any other HTTP, payload or network failure
        """
        if not self.is_configured():
            raise BrokerageAuthError(
                "Trading212 credentials not configured. Required in .env: "
                "TRADING212_API_KEY, TRADING212_API_SECRET"
            )

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        url = f"{self.base_url}{path}"
        auth = aiohttp.BasicAuth(self.api_key, self.api_secret)

        try:
            async with self._session.get(url, auth=auth, timeout=self.timeout) as response:
                if response.status == 200:
                    try:
                        data = await response.json(content_type=None)
                    except (ValueError, aiohttp.ContentTypeError) as e:
                        raise BrokerageAPIError(
                            f"Trading212 returned malformed JSON for {path}: {e}", 200
                        ) from e
                    logger.debug("trading212_response", path=path, status=200)
                    return data

                text = await response.text()
                message = _STATUS_HINTS.get(
                    response.status, f"Trading212 {path} returned {response.status}"
                )
                logger.warning(
                    "trading212_http_error",
                    path=path,
                    status=response.status,
                    body=text[:200],
                )
                if response.status in (401, 403):
                    raise BrokerageAuthError(message)
                raise BrokerageAPIError(message, response.status)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("trading212_network_error", path=path, error=str(e))
            raise BrokerageAPIError(f"Trading212 request failed: {e or type(e).__name__}") from e
