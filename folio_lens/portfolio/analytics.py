"""
Portfolio allocation and concentration analytics (pandas).

Allocations group enriched positions by sector, country, region and
exchange. Concentration uses the Herfindahl-Hirschman index over
portfolio weights, scaled to 0-100 so it can feed the diversification
score directly. Buckets above fixed percentage thresholds raise
concentration alerts.
"""

from __future__ import annotations

from collections.abc import Sequence

import pandas as pd

from folio_lens.portfolio.models import (
    AllocationSlice,
    Allocations,
    ConcentrationAlert,
    EnrichedPosition,
    PortfolioMetrics,
)

REGION_BY_COUNTRY = {
    "USA": "North America",
    "United States": "North America",
    "Canada": "North America",
    "Mexico": "North America",
    "Germany": "Europe",
    "United Kingdom": "Europe",
    "France": "Europe",
    "Italy": "Europe",
    "Spain": "Europe",
    "Netherlands": "Europe",
    "Switzerland": "Europe",
    "Denmark": "Europe",
    "Sweden": "Europe",
    "Ireland": "Europe",
    "Japan": "Asia-Pacific",
    "China": "Asia-Pacific",
    "Taiwan": "Asia-Pacific",
    "South Korea": "Asia-Pacific",
    "Australia": "Asia-Pacific",
    "India": "Asia-Pacific",
    "Singapore": "Asia-Pacific",
    "Brazil": "South America",
    "Argentina": "South America",
    "Chile": "South America",
}


def region_for_country(country: str | None) -> str:
    return REGION_BY_COUNTRY.get(country or "", "Other")


def _frame(positions: Sequence[EnrichedPosition]) -> pd.DataFrame:
    df = pd.DataFrame([p.model_dump() for p in positions])
    df["region"] = df["country"].map(region_for_country)
    return df


def _allocation(df: pd.DataFrame, column: str) -> list[AllocationSlice]:
    total = float(df["value"].sum())
    grouped = (
        df.groupby(column, dropna=False)
        .agg(value=("value", "sum"), count=("value", "size"))
        .sort_values("value", ascending=False)
    )
    slices = []
    for name, row in grouped.iterrows():
        value = float(row["value"])
        slices.append(
            AllocationSlice(
                name=str(name),
                value=value,
                percentage=(value / total * 100) if total > 0 else 0.0,
                count=int(row["count"]),
            )
        )
    return slices


def sector_allocation(positions: Sequence[EnrichedPosition]) -> list[AllocationSlice]:
    if not positions:
        return []
    return _allocation(_frame(positions), "sector")


def country_allocation(positions: Sequence[EnrichedPosition]) -> list[AllocationSlice]:
    """Per-country slices, each tagged with the region it belongs to."""
    if not positions:
        return []
    slices = _allocation(_frame(positions), "country")
    for s in slices:
        s.region = region_for_country(s.name)
    return slices


def region_allocation(positions: Sequence[EnrichedPosition]) -> list[AllocationSlice]:
    if not positions:
        return []
    return _allocation(_frame(positions), "region")


def exchange_allocation(positions: Sequence[EnrichedPosition]) -> list[AllocationSlice]:
    if not positions:
        return []
    return _allocation(_frame(positions), "exchange")


def build_allocations(positions: Sequence[EnrichedPosition]) -> Allocations:
    return Allocations(
        sector=sector_allocation(positions),
        country=country_allocation(positions),
        region=region_allocation(positions),
        exchange=exchange_allocation(positions),
    )


def herfindahl(df: pd.DataFrame, column: str) -> float:
    """HHI of portfolio weight across `column` buckets, 0-100 scale."""
    shares = df.groupby(column, dropna=False)["weight"].sum() / 100
    return float((shares**2).sum() * 100)


# (high above, medium above) in percent of portfolio value
ALERT_THRESHOLDS = {
    "sector": (40.0, 25.0),
    "geographic": (60.0, 40.0),
    "exchange": (50.0, 35.0),
}

_RECOMMENDATIONS = {
    ("sector", "high"): (
        "Consider reducing {name} allocation below 40% for better diversification"
    ),
    ("sector", "medium"): (
        "Monitor {name} allocation and consider diversification if it exceeds 40%"
    ),
    ("geographic", "high"): (
        "Consider reducing {name} allocation below 60% for better geographic diversification"
    ),
    ("geographic", "medium"): (
        "Monitor {name} allocation and consider international diversification"
    ),
    ("exchange", "high"): (
        "Consider diversifying across more exchanges to reduce single-market risk"
    ),
    ("exchange", "medium"): (
        "Monitor {name} allocation and consider cross-exchange diversification"
    ),
}


def concentration_alerts(
    sector: Sequence[AllocationSlice],
    region: Sequence[AllocationSlice],
    exchange: Sequence[AllocationSlice],
) -> list[ConcentrationAlert]:
    """Alerts for every bucket above its threshold, high ones first."""
    alerts = []
    for kind, slices in (("sector", sector), ("geographic", region), ("exchange", exchange)):
        high, medium = ALERT_THRESHOLDS[kind]
        for s in slices:
            if s.percentage > high:
                level = "high"
            elif s.percentage > medium:
                level = "medium"
            else:
                continue
            label = "High" if level == "high" else "Moderate"
            alerts.append(
                ConcentrationAlert(
                    type=kind,
                    level=level,
                    name=s.name,
                    percentage=round(s.percentage, 2),
                    message=f"{label} {s.name} {kind} concentration ({s.percentage:.1f}%)",
                    recommendation=_RECOMMENDATIONS[(kind, level)].format(name=s.name),
                )
            )
    alerts.sort(key=lambda a: a.level != "high")
    return alerts


def _mean_of_present(series: pd.Series) -> float | None:
    values = series.dropna()
    return float(values.mean()) if not values.empty else None


def portfolio_metrics(positions: Sequence[EnrichedPosition]) -> PortfolioMetrics:
    """
    Totals, concentration and averages for a set of enriched positions.

    Diversification = max(0, 100 - (sector HHI + region HHI) / 2).
    Risk score is the weight-averaged position risk score.
    """
    if not positions:
        return PortfolioMetrics()

    df = _frame(positions)
    total_value = float(df["value"].sum())
    total_pnl = float(df["pnl"].sum())
    cost_basis = total_value - total_pnl
    sector_hhi = herfindahl(df, "sector")
    region_hhi = herfindahl(df, "region")
    exchange_hhi = herfindahl(df, "exchange")

    return PortfolioMetrics(
        total_value=total_value,
        total_pnl=total_pnl,
        total_pnl_percent=(total_pnl / cost_basis * 100) if cost_basis > 0 else 0.0,
        position_count=len(df),
        sector_concentration=round(sector_hhi, 2),
        region_concentration=round(region_hhi, 2),
        exchange_concentration=round(exchange_hhi, 2),
        diversification_score=round(max(0.0, 100 - (sector_hhi + region_hhi) / 2), 2),
        risk_score=round(float((df["risk_score"] * df["weight"]).sum() / 100), 2),
        average_pe=_mean_of_present(df["pe_ratio"]),
        average_eps=_mean_of_present(df["eps"]),
        dividend_yield=_mean_of_present(df["dividend_yield"]),
        alerts=concentration_alerts(
            _allocation(df, "sector"),
            _allocation(df, "region"),
            _allocation(df, "exchange"),
        ),
    )
