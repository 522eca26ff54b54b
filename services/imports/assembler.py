"""
Turns surviving raw positions into proposed assets.

- risk class + return/volatility priors per asset
- role from the explicit hint, else a symbol-based default
- weights from USD value, equal weights when nothing is priced
- weights always renormalized to sum to 1
"""
from __future__ import annotations

import logging
import math
import re
from typing import Dict, List, Optional

from schemas.imports import PreviewResult, PreviewWarning, ProposedAsset, RawPosition
from services.imports.field_aliases import sanitize_symbol
from services.imports.risk_class_priors import STABLECOIN_SYMBOLS, apply_priors, infer_risk_class

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-6

CORE_SYMBOLS = frozenset({"BTC", "ETH", "WBTC", "WETH"})

ROLE_ALIASES: Dict[str, str] = {
    "core": "core",
    "core exposure": "core",
    "primary": "core",
    "satellite": "satellite",
    "alpha": "satellite",
    "growth": "satellite",
    "tactical": "satellite",
    "defensive": "defensive",
    "hedge": "defensive",
    "protection": "defensive",
    "liquidity": "liquidity",
    "cash": "liquidity",
    "stable": "liquidity",
    "buffer": "liquidity",
    "carry": "carry",
    "yield": "carry",
    "income": "carry",
    "speculative": "speculative",
    "moonshot": "speculative",
    "high risk": "speculative",
}

_SEP = re.compile(r"[\s_]+")


def default_role_for_symbol(symbol: Optional[str]) -> str:
    sym = str(symbol or "").strip().upper()
    if sym in STABLECOIN_SYMBOLS:
        return "liquidity"
    if sym in CORE_SYMBOLS:
        return "core"
    return "satellite"


def normalize_role(raw: Optional[str], symbol: Optional[str] = None) -> str:
    """Alias-normalize an explicit role hint. Unknown hints become satellite; a missing hint uses the symbol default."""
    value = _SEP.sub(" ", str(raw or "").strip().lower())
    if not value:
        return default_role_for_symbol(symbol)
    return ROLE_ALIASES.get(value, "satellite")


def usable_value(pos: RawPosition) -> Optional[float]:
    """USD value usable for weighting: finite, non-negative, and only for USD-denominated rows."""
    v = pos.value_usd
    if v is None or not math.isfinite(v) or v < 0:
        return None
    if pos.currency and str(pos.currency).strip().upper() != "USD":
        return None
    return float(v)


def _is_non_usd(pos: RawPosition) -> bool:
    return bool(pos.currency) and str(pos.currency).strip().upper() != "USD"


def assemble_assets(positions: List[RawPosition], warnings: List[PreviewWarning]) -> List[ProposedAsset]:
    """Build sorted proposed assets; appends weighting warnings to `warnings`."""
    assets: List[ProposedAsset] = []
    missing_values = 0
    non_usd = 0

    for pos in positions:
        symbol = sanitize_symbol(pos.symbol)
        name = str(pos.name).strip() if pos.name and str(pos.name).strip() else symbol
        value = usable_value(pos)
        if _is_non_usd(pos):
            non_usd += 1
        if value is None:
            missing_values += 1

        risk_class = infer_risk_class(symbol, name, pos.meta)
        expected_return, volatility = apply_priors(risk_class)
        assets.append(
            ProposedAsset(
                id=symbol,
                name=name,
                risk_class=risk_class,
                role=normalize_role(pos.role, symbol),
                current_weight=0.0,
                expected_return=expected_return,
                volatility=volatility,
                source_value_usd=value,
            )
        )

    if not assets:
        return assets

    total = sum(a.source_value_usd or 0.0 for a in assets)
    if total > 0:
        for a in assets:
            a.current_weight = (a.source_value_usd or 0.0) / total
        if missing_values:
            warnings.append(PreviewWarning(
                code="MISSING_VALUES",
                detail=f"{missing_values} position(s) had no usable USD value; weights use priced positions only.",
                count=missing_values,
            ))
    else:
        eq = 1.0 / len(assets)
        for a in assets:
            a.current_weight = eq
        warnings.append(PreviewWarning(
            code="EQUAL_WEIGHT_FALLBACK",
            detail="No usable USD values found; applied equal weights.",
        ))

    if non_usd:
        warnings.append(PreviewWarning(
            code="NON_USD_UNSUPPORTED",
            detail=f"{non_usd} position(s) had a non-USD currency; source_value_usd left null.",
            count=non_usd,
        ))

    weight_sum = sum(a.current_weight for a in assets)
    if weight_sum > 0 and abs(weight_sum - 1.0) > WEIGHT_TOLERANCE:
        for a in assets:
            a.current_weight = a.current_weight / weight_sum

    assets.sort(key=lambda a: (-a.current_weight, -(a.source_value_usd or 0.0), a.id))
    return assets


def build_preview_from_raw(
    positions: List[RawPosition],
    *,
    summary: str,
    warnings: Optional[List[PreviewWarning]] = None,
    empty_error: str = "No positions could be parsed.",
) -> PreviewResult:
    out_warnings = list(warnings or [])
    if not positions:
        return PreviewResult.failure("No positions found.", [empty_error], out_warnings)

    assets = assemble_assets(positions, out_warnings)
    logger.info("imports.assembled assets=%s warnings=%s", len(assets), len(out_warnings))
    return PreviewResult(
        ok=True,
        summary=summary,
        warnings=out_warnings,
        errors=[],
        raw_positions=positions,
        proposed_assets=assets,
    )
