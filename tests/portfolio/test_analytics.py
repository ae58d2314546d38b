"""Tests for allocation and concentration metrics."""

import pytest

from folio_lens.portfolio.analytics import (
    build_allocations,
    portfolio_metrics,
    region_for_country,
)
from folio_lens.portfolio.models import EnrichedPosition


def position(symbol, value, weight, sector, country, **fields):
    return EnrichedPosition(
        ticker=f"{symbol}_EQ",
        symbol=symbol,
        company_name=symbol,
        quantity=1,
        current_price=value,
        value=value,
        weight=weight,
        sector=sector,
        country=country,
        **fields,
    )


@pytest.fixture
def positions():
    return [
        position(
            "AAPL", 600.0, 60.0, "Technology", "United States",
            exchange="NASDAQ", pnl=100.0, risk_score=80, pe_ratio=30.0, dividend_yield=0.02,
        ),
        position(
            "SAP", 200.0, 20.0, "Technology", "Germany",
            exchange="XETRA", pnl=0.0, risk_score=40,
        ),
        position(
            "SHEL", 200.0, 20.0, "Energy", "United Kingdom",
            exchange="LSE", pnl=-50.0, risk_score=50, pe_ratio=10.0, dividend_yield=0.04,
        ),
    ]


class TestAllocations:
    def test_sector_slices(self, positions):
        sectors = build_allocations(positions).sector

        assert [s.name for s in sectors] == ["Technology", "Energy"]
        assert sectors[0].value == 800.0
        assert sectors[0].percentage == pytest.approx(80.0)
        assert sectors[0].count == 2

    def test_country_slices_carry_region(self, positions):
        countries = {s.name: s for s in build_allocations(positions).country}

        assert countries["United States"].region == "North America"
        assert countries["Germany"].region == "Europe"
        assert countries["United States"].percentage == pytest.approx(60.0)

    def test_region_slices(self, positions):
        regions = {s.name: s.percentage for s in build_allocations(positions).region}
        assert regions == pytest.approx({"North America": 60.0, "Europe": 40.0})

    def test_exchange_slices(self, positions):
        assert len(build_allocations(positions).exchange) == 3

    def test_unknown_sector_is_its_own_bucket(self):
        sectors = build_allocations([position("Z", 10.0, 100.0, "Unknown", "Unknown")]).sector
        assert sectors[0].name == "Unknown"
        assert sectors[0].percentage == pytest.approx(100.0)

    def test_empty_portfolio(self):
        allocations = build_allocations([])
        assert allocations.sector == []
        assert allocations.region == []


class TestMetrics:
    def test_totals(self, positions):
        metrics = portfolio_metrics(positions)

        assert metrics.total_value == 1000.0
        assert metrics.total_pnl == 50.0
        assert metrics.total_pnl_percent == pytest.approx(50.0 / 950.0 * 100)
        assert metrics.position_count == 3

    def test_concentration_and_diversification(self, positions):
        metrics = portfolio_metrics(positions)

        # Sector shares 0.8 / 0.2; region shares 0.6 / 0.4; exchange 0.6 / 0.2 / 0.2
        assert metrics.sector_concentration == pytest.approx(68.0)
        assert metrics.region_concentration == pytest.approx(52.0)
        assert metrics.exchange_concentration == pytest.approx(44.0)
        assert metrics.diversification_score == pytest.approx(40.0)

    def test_single_holding_is_fully_concentrated(self):
        metrics = portfolio_metrics([position("A", 10.0, 100.0, "Tech", "Japan")])
        assert metrics.sector_concentration == pytest.approx(100.0)
        assert metrics.diversification_score == 0.0

    def test_weighted_risk_and_averages(self, positions):
        metrics = portfolio_metrics(positions)

        assert metrics.risk_score == pytest.approx(66.0)
        assert metrics.average_pe == pytest.approx(20.0)
        assert metrics.average_eps is None
        assert metrics.dividend_yield == pytest.approx(0.03)

    def test_zero_dividend_counts_toward_average(self, positions):
        positions[1].dividend_yield = 0.0

        metrics = portfolio_metrics(positions)

        assert metrics.dividend_yield == pytest.approx(0.02)

    def test_concentration_alerts(self, positions):
        alerts = portfolio_metrics(positions).alerts

        assert [(a.type, a.level, a.name) for a in alerts] == [
            ("sector", "high", "Technology"),
            ("exchange", "high", "NASDAQ"),
            ("geographic", "medium", "North America"),
        ]
        assert alerts[0].message == "High Technology sector concentration (80.0%)"
        assert "below 40%" in alerts[0].recommendation
        assert alerts[2].message == (
            "Moderate North America geographic concentration (60.0%)"
        )

    def test_balanced_portfolio_has_no_alerts(self):
        sectors = ["Technology", "Energy", "Utilities", "Healthcare", "Financials"]
        countries = ["United States", "Germany", "Japan", "Brazil", "United Kingdom"]
        exchanges = ["NASDAQ", "XETRA", "TSE", "B3", "LSE"]
        positions = [
            position(f"S{i}", 100.0, 20.0, sectors[i], countries[i], exchange=exchanges[i])
            for i in range(5)
        ]

        assert portfolio_metrics(positions).alerts == []

    def test_empty_portfolio(self):
        metrics = portfolio_metrics([])
        assert metrics.total_value == 0.0
        assert metrics.average_pe is None


def test_region_for_country():
    assert region_for_country("Japan") == "Asia-Pacific"
    assert region_for_country("Atlantis") == "Other"
    assert region_for_country(None) == "Other"
