"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from folio_lens import __version__
from folio_lens.api.deps import get_services
from folio_lens.services import Services

router = APIRouter()


@router.get("/health", summary="Health check")
async def health_check(services: Services = Depends(get_services)) -> dict:
    """
    Liveness plus a quick view of which providers can take calls.

    "degraded" means no configured provider currently has quota left.
    """
    available = [p.provider_id for p in services.providers if p.is_available()]
    return {
        "status": "healthy" if available else "degraded",
        "version": __version__,
        "environment": services.settings.environment,
        "providers_available": available,
        "brokerage_configured": services.brokerage.is_configured(),
    }
