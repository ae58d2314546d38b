"""Tests for the Trading212 client: auth, error mapping, TTL cache and coalescing."""

import asyncio
from unittest.mock import MagicMock

import aiohttp
import pytest
from conftest import FakeClock, make_session

from folio_lens.brokerage.exceptions import BrokerageAPIError, BrokerageAuthError
from folio_lens.brokerage.trading212 import Trading212Client

POSITIONS = [{"ticker": "AAPL_US_EQ", "quantity": 1, "currentPrice": 200.0}]


def make_client(session, clock=None, **kwargs):
    return Trading212Client(
        "key",
        "secret",
        base_url="https://demo.trading212.com/api/v0/",
        session=session,
        clock=clock or FakeClock(),
        **kwargs,
    )


class TestRequests:
    @pytest.mark.asyncio
    async def test_positions_use_basic_auth(self):
        session = make_session(200, POSITIONS)
        client = make_client(session)

        positions = await client.get_positions()

        assert positions == POSITIONS
        args, kwargs = session.get.call_args
        assert args[0] == "https://demo.trading212.com/api/v0/equity/positions"
        assert kwargs["auth"] == aiohttp.BasicAuth("key", "secret")

    @pytest.mark.asyncio
    async def test_account_summary(self):
        session = make_session(200, {"id": 1, "totalValue": 10.0})
        client = make_client(session)

        account = await client.get_account()

        assert account["totalValue"] == 10.0
        assert session.get.call_args.args[0].endswith("/equity/account/summary")

    @pytest.mark.asyncio
    async def test_unconfigured_raises_auth_error_without_request(self):
        session = make_session(200, POSITIONS)
        client = Trading212Client(None, "", session=session)

        assert client.is_configured() is False
        with pytest.raises(BrokerageAuthError):
            await client.get_positions()
        session.get.assert_not_called()


class TestErrorMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_statuses(self, status):
        client = make_client(make_session(status))

        with pytest.raises(BrokerageAuthError):
            await client.get_positions()

    @pytest.mark.asyncio
    async def test_server_error_carries_status(self):
        client = make_client(make_session(500))

        with pytest.raises(BrokerageAPIError) as exc_info:
            await client.get_positions()

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_rate_limit_message(self):
        client = make_client(make_session(429))

        with pytest.raises(BrokerageAPIError) as exc_info:
            await client.get_account()

        assert exc_info.value.status_code == 429
        assert "rate limit" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_error(self):
        session = MagicMock()
        session.closed = False
        session.get = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        client = make_client(session)

        with pytest.raises(BrokerageAPIError, match="request failed"):
            await client.get_positions()

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        client = make_client(make_session(200, json_error=ValueError("not json")))

        with pytest.raises(BrokerageAPIError, match="malformed JSON"):
            await client.get_positions()

    @pytest.mark.asyncio
    async def test_unexpected_payload_type(self):
        client = make_client(make_session(200, {"items": []}))

        with pytest.raises(BrokerageAPIError, match="Unexpected positions payload"):
            await client.get_positions()

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self):
        session = make_session(500)
        client = make_client(session)

        for _ in range(2):
            with pytest.raises(BrokerageAPIError):
                await client.get_positions()

        assert session.get.call_count == 2


class TestCaching:
    @pytest.mark.asyncio
    async def test_positions_reused_within_ttl(self):
        clock = FakeClock()
        session = make_session(200, POSITIONS)
        client = make_client(session, clock=clock, positions_ttl=5.0)

        await client.get_positions()
        clock.advance(4)
        await client.get_positions()
        assert session.get.call_count == 1
        assert client.cache_status()["positions"] == pytest.approx(1.0)

        clock.advance(2)
        await client.get_positions()
        assert session.get.call_count == 2

    @pytest.mark.asyncio
    async def test_clear_cache_forces_refetch(self):
        session = make_session(200, POSITIONS)
        client = make_client(session)

        await client.get_positions()
        client.clear_cache()
        await client.get_positions()

        assert session.get.call_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_request(self):
        session = make_session(200, POSITIONS)
        client = make_client(session)

        results = await asyncio.gather(*(client.get_positions() for _ in range(5)))

        assert all(r == POSITIONS for r in results)
        assert session.get.call_count == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_injected_session_is_not_closed(self):
        session = make_session(200, POSITIONS)
        async with make_client(session):
            pass
        session.close.assert_not_called()

    def test_from_settings(self):
        settings = MagicMock()
        settings.get_trading212_api_key.return_value = "k"
        settings.get_trading212_api_secret.return_value = "s"
        settings.trading212_base_url = "https://live.trading212.com/api/v0"
        settings.positions_cache_seconds = 5.0
        settings.account_cache_seconds = 2.0
        settings.http_timeout_seconds = 10.0

        client = Trading212Client.from_settings(settings)

        assert client.is_configured() is True
        assert client.positions_ttl == 5.0
