"""
Shared aiohttp plumbing for HTTP-based fundamentals providers.

Maps transport outcomes onto the provider error taxonomy:
    - 200 with JSON body: parsed payload
    - 404: None (the provider has no such ticker)
    - 429: QuotaExceededError
    - 401 / 403: ProviderConfigError (key rejected)
    - other 4xx / 5xx, malformed JSON, network errors, timeouts:
      TransientProviderError
"""

import asyncio
from typing import Any

import aiohttp
import structlog

from folio_lens.data.exceptions import (
    ProviderConfigError,
    QuotaExceededError,
    TransientProviderError,
)
from folio_lens.data.interfaces import FinancialDataProvider
from folio_lens.data.quota import QuotaTracker

logger = structlog.get_logger(__name__)


class HttpProvider(FinancialDataProvider):
    """Provider backed by a lazily-created aiohttp session."""

    base_url: str = ""

    def __init__(
        self,
        quota: QuotaTracker,
        api_key: str | None = None,
        timeout_seconds: float = 15.0,
        session: aiohttp.ClientSession | None = None,
    ):
        super().__init__(quota)
        self.api_key = api_key or None
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def is_configured(self) -> bool:
        return self.api_key is not None

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    def _auth_params(self) -> dict[str, str]:
        return {}

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET base_url + path and return the decoded JSON body.

        Returns None on 404. Raises a ProviderError subclass otherwise.
        """
        if not self.is_configured():
            raise ProviderConfigError(
                f"{self.display_name} API key not configured", self.provider_id
            )

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        url = f"{self.base_url}{path}"
        query = {**(params or {}), **self._auth_params()}

        try:
            async with self._session.get(
                url, params=query, headers=self._headers(), timeout=self.timeout
            ) as response:
                status = response.status
                if status == 200:
                    try:
                        return await response.json(content_type=None)
                    except (ValueError, aiohttp.ContentTypeError) as e:
                        raise TransientProviderError(
                            f"{self.display_name} malformed JSON: {e}",
                            self.provider_id,
                            status_code=status,
                        ) from e

                if status == 404:
                    logger.debug("provider_not_found", provider=self.provider_id, path=path)
                    return None

                if status == 429:
                    raise QuotaExceededError(
                        f"{self.display_name} rate limit hit (HTTP 429)", self.provider_id
                    )

                if status in (401, 403):
                    logger.error(
                        "provider_key_rejected", provider=self.provider_id, status=status
                    )
                    raise ProviderConfigError(
                        f"{self.display_name} rejected the API key (HTTP {status})",
                        self.provider_id,
                    )

                raise TransientProviderError(
                    f"{self.display_name} returned HTTP {status}",
                    self.provider_id,
                    status_code=status,
                )

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientProviderError(
                f"{self.display_name} request failed: {e or type(e).__name__}",
                self.provider_id,
            ) from e
