from abc import ABC, abstractmethod
from typing import Any


class BrokerageSource(ABC):
    """
    Abstract Base Class for brokerage position sources.

    Sources return raw broker payloads; folio_lens.brokerage.normalizer
    turns them into Position and Account models.
    """

    @abstractmethod
    def is_configured(self) -> bool:
        pass

    @abstractmethod
    async def get_positions(self) -> list[dict[str, Any]]:
        """Raw open positions. Raises BrokerageError on failure."""
        pass

    @abstractmethod
    async def get_account(self) -> dict[str, Any]:
        """Raw account summary. Raises BrokerageError on failure."""
        pass

    async def close(self) -> None:
        pass


class StaticBrokerageSource(BrokerageSource):
    """Fixed positions and account, for demo mode and tests."""

    def __init__(self, positions: list[dict[str, Any]], account: dict[str, Any]):
        self._positions = positions
        self._account = account

    def is_configured(self) -> bool:
        return True

    async def get_positions(self) -> list[dict[str, Any]]:
        return [dict(p) for p in self._positions]

    async def get_account(self) -> dict[str, Any]:
        return dict(self._account)


DEMO_POSITIONS = [
    {"ticker": "AAPL_US_EQ", "quantity": 25, "averagePrice": 150.0, "currentPrice": 228.5, "ppl": 1962.5},
    {"ticker": "MSFT_US_EQ", "quantity": 12, "averagePrice": 310.0, "currentPrice": 415.2, "ppl": 1262.4},
    {"ticker": "NVDA_US_EQ", "quantity": 40, "averagePrice": 95.0, "currentPrice": 131.4, "ppl": 1456.0},
    {"ticker": "ASMLa_EQ", "quantity": 4, "averagePrice": 640.0, "currentPrice": 702.0, "ppl": 248.0},
    {"ticker": "SAPd_EQ", "quantity": 10, "averagePrice": 180.0, "currentPrice": 238.6, "ppl": 586.0},
    {"ticker": "SHELl_EQ", "quantity": 60, "averagePrice": 27.5, "currentPrice": 26.1, "ppl": -84.0},
]

DEMO_ACCOUNT = {
    "id": "demo",
    "currency": "USD",
    "totalValue": 23850.0,
    "cash": {"availableToTrade": 1250.0},
    "investments": {
        "currentValue": 22600.0,
        "totalCost": 17169.0,
        "realizedProfitLoss": 0.0,
        "unrealizedProfitLoss": 5430.9,
    },
}


def demo_brokerage() -> StaticBrokerageSource:
    return StaticBrokerageSource(DEMO_POSITIONS, DEMO_ACCOUNT)
