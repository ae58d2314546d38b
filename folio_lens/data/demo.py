"""
Synthetic fundamentals for demo mode.

Served by the fallback policy only when every provider and the cache have
come up empty and demo data is explicitly allowed. Records are tagged
source_provider="demo" with a low confidence score; the cache refuses to
store them.
"""

from folio_lens.data.models import FundamentalsRecord
from folio_lens.data.parsing import normalize_ticker

DEMO_PROVIDER_ID = "demo"
DEMO_CONFIDENCE = 10

# ticker: (name, sector, industry, country, exchange, market cap, PE, EPS, yield, beta)
_DEMO_FUNDAMENTALS = {
    "AAPL": ("Apple Inc", "Technology", "Consumer Electronics", "United States", "NASDAQ", 3.4e12, 33.0, 6.6, 0.0044, 1.24),
    "MSFT": ("Microsoft Corporation", "Technology", "Software", "United States", "NASDAQ", 3.1e12, 35.5, 11.8, 0.0072, 0.90),
    "GOOGL": ("Alphabet Inc Class A", "Communication Services", "Internet Services", "United States", "NASDAQ", 2.1e12, 23.1, 7.5, 0.0045, 1.05),
    "AMZN": ("Amazon.com Inc", "Consumer Discretionary", "E-commerce", "United States", "NASDAQ", 1.9e12, 41.0, 4.7, None, 1.15),
    "NVDA": ("NVIDIA Corporation", "Technology", "Semiconductors", "United States", "NASDAQ", 3.0e12, 55.2, 2.1, 0.0003, 1.68),
    "TSLA": ("Tesla Inc", "Consumer Discretionary", "Electric Vehicles", "United States", "NASDAQ", 8.0e11, 70.4, 3.6, None, 2.30),
    "META": ("Meta Platforms Inc", "Communication Services", "Social Media", "United States", "NASDAQ", 1.4e12, 27.3, 21.2, 0.0035, 1.22),
    "JPM": ("JPMorgan Chase & Co", "Financial Services", "Banks", "United States", "NYSE", 6.1e11, 12.4, 17.9, 0.022, 1.08),
    "V": ("Visa Inc", "Financial Services", "Payment Processing", "United States", "NYSE", 5.6e11, 30.2, 9.7, 0.0078, 0.95),
    "ASML": ("ASML Holding NV", "Technology", "Semiconductor Equipment", "Netherlands", "AEX", 2.8e11, 36.8, 19.9, 0.0091, 1.12),
    "SAP": ("SAP SE", "Technology", "Software", "Germany", "XETRA", 2.7e11, 48.5, 4.6, 0.0098, 0.88),
    "NVO": ("Novo Nordisk A/S", "Healthcare", "Pharmaceuticals", "Denmark", "NYSE", 4.4e11, 28.9, 3.1, 0.014, 0.42),
    "SHEL": ("Shell plc", "Energy", "Oil & Gas Integrated", "United Kingdom", "LSE", 2.1e11, 12.9, 2.6, 0.041, 0.55),
}


def demo_record(ticker: str) -> FundamentalsRecord:
    """Synthetic record for one ticker; unknown tickers get a bare profile."""
    symbol = normalize_ticker(ticker)
    row = _DEMO_FUNDAMENTALS.get(symbol)
    if row is None:
        return FundamentalsRecord(
            ticker=symbol,
            company_name=symbol,
            source_provider=DEMO_PROVIDER_ID,
            confidence_score=DEMO_CONFIDENCE,
        )

    name, sector, industry, country, exchange, cap, pe, eps, dividend, beta = row
    return FundamentalsRecord(
        ticker=symbol,
        company_name=name,
        sector=sector,
        industry=industry,
        country=country,
        exchange=exchange,
        market_cap=cap,
        pe_ratio=pe,
        eps=eps,
        dividend_yield=dividend,
        beta=beta,
        source_provider=DEMO_PROVIDER_ID,
        confidence_score=DEMO_CONFIDENCE,
    )


def demo_records(tickers: list[str]) -> dict[str, FundamentalsRecord]:
    return {normalize_ticker(t): demo_record(t) for t in tickers}
