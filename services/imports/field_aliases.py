"""
Column/field aliasing shared by the CSV and JSON connectors.

Both sources accept the same vocabulary: "ticker", "asset" and "coin" all
mean symbol, "qty" means quantity, and so on.
"""
from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Optional

FIELD_ALIASES: Dict[str, List[str]] = {
    "symbol": ["symbol", "ticker", "asset", "token", "coin", "id"],
    "name": ["name", "assetname", "asset_name", "description"],
    "quantity": ["quantity", "qty", "amount", "balance", "units"],
    "price_usd": ["price", "priceusd", "price_usd", "price(usd)", "lastprice", "markprice"],
    "value_usd": ["value", "valueusd", "value_usd", "marketvalue", "market_value", "usdvalue", "usd_value", "notional"],
    "currency": ["currency", "ccy", "denomination"],
    "role": ["role", "asset_role", "position_role", "classification", "intent"],
}

SYMBOL_MAX_LEN = 32

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_NON_NUMERIC = re.compile(r"[^0-9.eE+\-]")


def normalize_header(raw: Any) -> str:
    """'Price (USD)' -> 'priceusd'."""
    return _NON_ALNUM.sub("", str(raw or "").lower())


def resolve_header_indexes(header: List[str]) -> Dict[str, int]:
    """Map canonical field -> column index, first matching alias wins."""
    normalized = [normalize_header(h) for h in header]
    out: Dict[str, int] = {}
    for key, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            target = normalize_header(alias)
            if target in normalized:
                out[key] = normalized.index(target)
                break
    return out


def pick_field(obj: Dict[str, Any], key: str) -> Any:
    """Exact key first, then a case-insensitive alias match."""
    if key in obj:
        return obj[key]
    lowered = {str(k).lower(): k for k in obj.keys()}
    for alias in FIELD_ALIASES.get(key, []):
        found = lowered.get(alias.lower())
        if found is not None:
            return obj[found]
    return None


def parse_number(raw: Any) -> Optional[float]:
    """
    Lenient number parsing for exports: "$1,234.50" -> 1234.5, "(500.00)" -> -500.0.
    Returns None for blanks and anything that doesn't parse to a finite float.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        f = float(raw)
        return f if math.isfinite(f) else None
    text = str(raw).strip()
    # accounting negatives: (1,234.50)
    negative = len(text) > 2 and text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    s = _NON_NUMERIC.sub("", text)
    if not s:
        return None
    try:
        f = float(s)
    except ValueError:
        return None
    if negative:
        f = -abs(f)
    return f if math.isfinite(f) else None


def sanitize_symbol(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw).strip().upper()[:SYMBOL_MAX_LEN]


def clean_text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    s = str(raw).strip()
    return s or None
