"""FastAPI surface over the portfolio and fundamentals services."""

from folio_lens.api.app import create_app

__all__ = ["create_app"]
