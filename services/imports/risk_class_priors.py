# services/imports/risk_class_priors.py
from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional, Tuple

STABLECOIN_SYMBOLS = frozenset({"USDC", "USDT", "DAI", "USDP", "TUSD", "BUSD"})
LARGE_CAP_CRYPTO_SYMBOLS = frozenset({"BTC", "ETH", "SOL", "BNB", "ADA", "AVAX", "XRP", "DOGE"})
LARGE_CAP_EQUITY_SYMBOLS = frozenset({"SPY", "IVV", "VOO", "AAPL", "MSFT", "AMZN", "GOOGL", "GOOG", "META", "NVDA"})

UNCLASSIFIED = "unclassified"

# canonical label -> (expected_return, volatility)
RISK_CLASS_PRIORS: Dict[str, Tuple[float, float]] = {
    "Stablecoin": (0.04, 0.03),
    "Large Cap Equity (Core)": (0.08, 0.165),
    "Defensive Equity": (0.055, 0.115),
    "Growth / High Beta Equity": (0.11, 0.25),
    "Wealth Management": (0.10, 0.15),
    "Fund Of Funds": (0.12, 0.25),
    "Defi Bluechip": (0.18, 0.35),
    "Large Cap Crypto": (0.20, 0.50),
    "(none)": (0.10, 0.30),
}

# keys are lower-case with spaces/underscores collapsed to one space
RISK_CLASS_ALIASES: Dict[str, str] = {
    "stablecoin": "Stablecoin",
    "stable coin": "Stablecoin",
    "cash equivalent": "Stablecoin",
    "stable cash": "Stablecoin",
    "large cap equity core": "Large Cap Equity (Core)",
    "large cap equity (core)": "Large Cap Equity (Core)",
    "large cap equity": "Large Cap Equity (Core)",
    "core equity": "Large Cap Equity (Core)",
    "defensive equity": "Defensive Equity",
    "growth high beta equity": "Growth / High Beta Equity",
    "growth / high beta equity": "Growth / High Beta Equity",
    "high beta equity": "Growth / High Beta Equity",
    "growth equity": "Growth / High Beta Equity",
    "wealth management": "Wealth Management",
    "fund of funds": "Fund Of Funds",
    "defi bluechip": "Defi Bluechip",
    "large cap crypto": "Large Cap Crypto",
    "none": "(none)",
    "(none)": "(none)",
    UNCLASSIFIED: "(none)",
}

_SEP = re.compile(r"[\s_]+")


def normalize_risk_class_key(value: Optional[str]) -> str:
    raw = str(value or "").strip()
    if not raw:
        return "(none)"
    lowered = _SEP.sub(" ", raw.lower()).strip()
    return RISK_CLASS_ALIASES.get(lowered, raw)


def apply_priors(risk_class: Optional[str]) -> Tuple[float, float]:
    """(expected_return, volatility) for a risk class, via alias normalization."""
    key = normalize_risk_class_key(risk_class)
    return RISK_CLASS_PRIORS.get(key, RISK_CLASS_PRIORS["(none)"])


def _has_any(text: str, *needles: str) -> bool:
    return any(n in text for n in needles)


def infer_risk_class(symbol: Optional[str], name: Optional[str] = None, meta: Optional[Mapping[str, Any]] = None) -> str:
    sym = str(symbol or "").strip().upper()
    nm = str(name or "").strip().lower()
    hint = str((meta or {}).get("risk_class") or "").lower()

    if sym in STABLECOIN_SYMBOLS:
        return "stablecoin"

    combined = f"{sym.lower()} {nm} {hint}"

    if _has_any(combined, "large_cap_equity_core", "large cap equity core"):
        return "large_cap_equity_core"
    if _has_any(combined, "defensive_equity", "defensive equity"):
        return "defensive_equity"
    if _has_any(combined, "growth_high_beta_equity", "growth high beta equity"):
        return "growth_high_beta_equity"

    if "fund of funds" in combined:
        return "fund_of_funds"
    if "wealth" in combined:
        return "wealth_management"
    if _has_any(combined, "defi", "finance", "swap", "dex"):
        return "defi_bluechip"
    if sym in LARGE_CAP_CRYPTO_SYMBOLS or _has_any(combined, "crypto", "blockchain"):
        return "large_cap_crypto"

    if sym in LARGE_CAP_EQUITY_SYMBOLS:
        return "large_cap_equity_core"
    if (
        _has_any(combined, "s&p 500", "sp 500", "s&p500", "large cap equity")
        or ("s&p" in combined and "index" in combined)
    ):
        return "large_cap_equity_core"

    if _has_any(combined, "health", "staples", "utility", "utilities", "defensive"):
        return "defensive_equity"
    if _has_any(combined, "growth", "momentum", "high beta", "nasdaq", "technology", "tech"):
        return "growth_high_beta_equity"

    return UNCLASSIFIED
