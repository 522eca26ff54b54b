from decimal import Decimal, InvalidOperation
import math
import re
from typing import Any, Dict, Optional
import httpx

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def safe_float(x: Any) -> Optional[float]:
    try:
        if x is None or isinstance(x, bool):
            return None
        f = float(x)
        if math.isnan(f) or math.isinf(f):
            return None
        return f
    except Exception:
        return None

def is_positive(x: Any) -> bool:
    f = safe_float(x)
    return f is not None and f > 0

def safe_json(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None

def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(ADDRESS_RE.match(value.strip()))

def normalize_address(value: Any) -> Optional[str]:
    s = str(value or "").strip().lower()
    return s if ADDRESS_RE.match(s) else None

def mask_address(address: Optional[str]) -> str:
    """Shorten a wallet address for logs: 0x1234…abcd."""
    s = (address or "").strip()
    if len(s) <= 10:
        return s
    return f"{s[:6]}…{s[-4:]}"

def scale_units(raw: int, decimals: Any) -> float:
    """
    Convert an integer on-chain amount to a float quantity.
    Division happens in Decimal so precision is only lost at the final float().
    """
    try:
        d = int(decimals)
    except (TypeError, ValueError):
        d = 18
    d = max(0, min(d, 77))
    try:
        return float(Decimal(int(raw)) / (Decimal(10) ** d))
    except (InvalidOperation, ValueError):
        return 0.0
