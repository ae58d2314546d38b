"""
Value parsing for provider payloads.

Providers mark missing values with sentinels ("None", "-", "N/A", empty
strings, NaN). These helpers turn such sentinels into None. A sentinel is
never read as zero.
"""

import math
from typing import Any

MISSING_SENTINELS = frozenset({"", "none", "null", "-", "--", "n/a", "na", "nan"})

COUNTRY_ALIASES = {
    "USA": "United States",
    "US": "United States",
    "U.S.": "United States",
    "UNITED STATES OF AMERICA": "United States",
    "UK": "United Kingdom",
    "GB": "United Kingdom",
    "GREAT BRITAIN": "United Kingdom",
}


def parse_optional_number(raw: Any) -> float | None:
    """
    Parse a provider value into a float, or None when the field is absent.

    Accepts ints, floats and numeric strings (thousands separators and a
    trailing % are stripped). Booleans, sentinels, NaN/inf and anything
    unparseable come back as None.
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        text = raw.strip()
        if text.lower() in MISSING_SENTINELS:
            return None
        text = text.replace(",", "").rstrip("%").strip()
        try:
            value = float(text)
        except ValueError:
            return None
    else:
        return None

    if math.isnan(value) or math.isinf(value):
        return None
    return value


def parse_optional_str(raw: Any) -> str | None:
    """Strip a provider string, returning None for sentinels and non-strings."""
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    if text.lower() in MISSING_SENTINELS:
        return None
    return text


def normalize_country(raw: Any) -> str | None:
    """Map common country spellings onto one name ("USA" -> "United States")."""
    country = parse_optional_str(raw)
    if country is None:
        return None
    return COUNTRY_ALIASES.get(country.upper(), country)


def normalize_ticker(raw: str) -> str:
    """Tickers are cache and quota keys: trimmed and upper-cased."""
    return raw.strip().upper()
