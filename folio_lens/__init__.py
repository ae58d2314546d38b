"""
Folio Lens - brokerage portfolio enrichment service.

Fetches brokerage positions, enriches them with company fundamentals from
quota-limited market data providers, and computes sector, geographic and
exchange allocation for the dashboard.
"""

__version__ = "0.3.0"
