"""Fundamentals enrichment, provider status and cache endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from folio_lens.api.deps import get_services
from folio_lens.portfolio.models import FallbackInfo
from folio_lens.services import Services

router = APIRouter()


class EnrichRequest(BaseModel):
    tickers: list[str] = Field(min_length=1, max_length=200)
    allow_demo: bool | None = None


@router.post("/fundamentals/enrich", summary="Enrich a ticker list")
async def enrich(body: EnrichRequest, services: Services = Depends(get_services)) -> dict:
    portfolio = services.portfolio
    outcome = await portfolio.enrich_tickers(body.tickers, allow_demo=body.allow_demo)
    result = outcome.data
    total = len({t.strip().upper() for t in body.tickers if t.strip()})

    return {
        "records": {
            symbol: record.model_dump(mode="json")
            for symbol, record in (result.records.items() if result else [])
        },
        "sources": result.sources if result else {},
        "not_found": result.not_found if result else [],
        "failed": result.failed if result else [],
        "stale": result.stale if result else [],
        "summary": portfolio.build_summary(result, total).model_dump(by_alias=True),
        "fallback": FallbackInfo.from_result(outcome).model_dump(mode="json"),
    }


@router.get("/providers/status", summary="Provider quota status feed")
async def providers_status(services: Services = Depends(get_services)) -> dict:
    quota_summary = services.quota.summary()
    return {
        "providers": [
            entry.model_dump(mode="json", by_alias=True)
            for entry in services.portfolio.provider_status()
        ],
        "total_remaining": quota_summary.total_remaining,
        "critical_limits": quota_summary.critical_limits,
        "recommendations": quota_summary.recommendations,
    }


@router.get("/cache/stats", summary="Fundamentals cache statistics")
async def cache_stats(services: Services = Depends(get_services)) -> dict:
    return services.cache.stats()


@router.delete("/cache", summary="Clear the fundamentals cache")
async def clear_cache(services: Services = Depends(get_services)) -> dict:
    cleared = services.cache.stats()["total_cached"]
    services.cache.clear()
    return {"cleared": cleared}
