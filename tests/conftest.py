"""Pytest configuration for Folio Lens tests."""

import logging
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import structlog

# Make the package importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent))

from folio_lens.data.cache import FundamentalsCache  # noqa: E402
from folio_lens.data.interfaces import FinancialDataProvider  # noqa: E402
from folio_lens.data.models import FundamentalsRecord  # noqa: E402
from folio_lens.data.quota import QuotaLimits, QuotaTracker  # noqa: E402
from folio_lens.data.store import InMemoryStore  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """
    Set up test environment variables.
    Keys are blanked so nothing in the suite can reach a real provider.
    """
    test_env = {
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "ERROR",
        "ALPHAVANTAGE_API_KEY": "",
        "TIINGO_API_KEY": "",
        "TRADING212_API_KEY": "",
        "TRADING212_API_SECRET": "",
        "FUNDAMENTALS_CACHE_PATH": "",
        "ALLOW_DEMO_DATA": "false",
    }
    with patch.dict(os.environ, test_env, clear=False):
        yield


@pytest.fixture(autouse=True)
def configure_structlog_for_tests():
    """Configure structlog for test environment."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.root.setLevel(logging.WARNING)
    yield


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_record(ticker: str, provider: str = "alphavantage", **overrides) -> FundamentalsRecord:
    fields = {
        "ticker": ticker,
        "company_name": f"{ticker} Corp",
        "sector": "Technology",
        "industry": "Software",
        "country": "United States",
        "exchange": "NASDAQ",
        "pe_ratio": 20.0,
        "eps": 5.0,
        "beta": 1.0,
        "source_provider": provider,
        "confidence_score": 90,
    }
    fields.update(overrides)
    return FundamentalsRecord(**fields)


class FakeProvider(FinancialDataProvider):
    """
    In-memory provider.

    `responses` maps ticker -> record, None (not found) or an exception
    instance to raise. Tickers not listed get a generated record.
    """

    def __init__(
        self,
        quota: QuotaTracker,
        provider_id: str,
        responses: dict | None = None,
        configured: bool = True,
        supports_batch: bool = False,
        calls_per_lookup: int = 1,
        display_name: str | None = None,
    ):
        super().__init__(quota)
        self.provider_id = provider_id
        self.display_name = display_name or provider_id.title()
        self.supports_batch = supports_batch
        self.calls_per_lookup = calls_per_lookup
        self.responses = responses or {}
        self.configured = configured
        self.calls: list[str] = []
        self.batch_calls_made: list[list[str]] = []
        self.closed = False

    def is_configured(self) -> bool:
        return self.configured

    def _respond(self, ticker: str):
        outcome = self.responses.get(ticker, ...)
        if outcome is ...:
            return make_record(ticker, self.provider_id)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fetch_one(self, ticker: str):
        self.calls.append(ticker)
        return self._respond(ticker)

    async def fetch_many(self, tickers: list[str]):
        if not self.supports_batch:
            return await super().fetch_many(tickers)
        self.batch_calls_made.append(list(tickers))
        results = {}
        for ticker in tickers:
            outcome = self.responses.get(ticker, ...)
            if isinstance(outcome, Exception):
                raise outcome
            record = self._respond(ticker)
            if record is not None:
                results[ticker] = record
        return results

    async def close(self) -> None:
        self.closed = True


def make_session(status: int = 200, payload=None, json_error: Exception | None = None):
    """
    MagicMock aiohttp session whose get() yields a single canned response.

    The response is exposed as session.response; get call args are on
    session.get.call_args.
    """
    mock_response = MagicMock()
    mock_response.status = status
    if json_error is not None:
        mock_response.json = AsyncMock(side_effect=json_error)
    else:
        mock_response.json = AsyncMock(return_value=payload)
    mock_response.text = AsyncMock(return_value="")

    mock_response_cm = AsyncMock()
    mock_response_cm.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response_cm.__aexit__ = AsyncMock(return_value=None)

    mock_session = MagicMock()
    mock_session.closed = False
    mock_session.get = MagicMock(return_value=mock_response_cm)
    mock_session.response = mock_response
    return mock_session


def make_session_sequence(*responses):
    """Session whose successive get() calls return (status, payload) pairs in order."""
    cms = []
    for status, payload in responses:
        mock_response = MagicMock()
        mock_response.status = status
        mock_response.json = AsyncMock(return_value=payload)
        mock_response.text = AsyncMock(return_value="")
        cm = AsyncMock()
        cm.__aenter__ = AsyncMock(return_value=mock_response)
        cm.__aexit__ = AsyncMock(return_value=None)
        cms.append(cm)

    mock_session = MagicMock()
    mock_session.closed = False
    mock_session.get = MagicMock(side_effect=cms)
    return mock_session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def quota(clock):
    return QuotaTracker(clock=clock)


@pytest.fixture
def cache(clock):
    return FundamentalsCache(store=InMemoryStore(), ttl_seconds=24 * 3600, clock=clock)


@pytest.fixture
def register():
    """Register a provider's limits: register(quota, "av", minute=5, day=25)."""

    def _register(tracker: QuotaTracker, provider_id: str, minute=None, hour=None, day=None):
        tracker.register(
            provider_id,
            QuotaLimits(per_minute=minute, per_hour=hour, per_day=day),
            display_name=provider_id.title(),
        )

    return _register
