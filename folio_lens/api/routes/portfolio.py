"""Portfolio dashboard endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from folio_lens.api.deps import get_services
from folio_lens.services import Services

router = APIRouter()


@router.get("/portfolio", summary="Enriched portfolio dashboard")
async def get_portfolio(
    allow_demo: bool | None = Query(default=None),
    services: Services = Depends(get_services),
) -> dict:
    """
    Positions joined with fundamentals, plus metrics, allocations, the
    summary counters and the provider status feed.

    Brokerage failures map to 401/502; fundamentals failures only degrade
    the payload (see the `fallback` block).
    """
    dashboard = await services.portfolio.get_dashboard(allow_demo=allow_demo)
    return dashboard.to_payload()
