"""
Position filter.

A position survives only if every rule passes. The first failing rule names
the rejection reason, so per-reason counts plus survivors always add up to
the number of input positions.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config.import_config import ImportConfig, OfficialContracts
from schemas.imports import PreviewWarning, RawPosition
from services.imports.diagnostics import MAX_SAMPLES, add_sample, describe_position, make_warning
from utils.common_helpers import is_address, is_positive, normalize_address

logger = logging.getLogger(__name__)

GENERIC_NAMES = frozenset({
    "", "unknown", "unknown token", "token", "erc20", "erc-20", "n/a", "na", "none", "null", "untitled",
})

# reason code -> warning detail, in evaluation order
FILTER_REASONS: Dict[str, str] = {
    "FILTERED_INVALID_SYMBOL": "Positions without a usable ticker symbol were removed.",
    "FILTERED_MISSING_NAME": "Positions without a real display name were removed (strict mode).",
    "FILTERED_SPAM": "Tokens flagged as possible spam were removed.",
    "FILTERED_UNVERIFIED": "Tokens from unverified contracts were removed.",
    "FILTERED_CONTRACT_MISMATCH": "Tokens whose contract is not the official contract for their symbol were removed.",
    "FILTERED_ZERO_BALANCE": "Positions with a zero or missing quantity were removed.",
    "FILTERED_MISSING_VALUE": "Positions without a positive USD value were removed.",
    "FILTERED_MISSING_PRICE": "Positions without a resolved price were removed (strict mode).",
}


@dataclass
class FilterOptions:
    strict: bool = False
    filter_spam: bool = True
    filter_unverified: bool = False
    require_value: bool = True
    official_contracts: OfficialContracts = field(default_factory=dict)
    max_samples: int = MAX_SAMPLES

    @classmethod
    def for_wallet(cls, config: ImportConfig) -> "FilterOptions":
        return cls(
            strict=config.strict_filtering,
            filter_spam=config.filter_spam,
            filter_unverified=config.filter_unverified,
            require_value=True,
            official_contracts=config.official_contracts,
        )

    @classmethod
    def for_tabular(cls, config: ImportConfig) -> "FilterOptions":
        # exports may be unpriced on purpose; they fall back to equal weights,
        # so strict mode only adds the display-name check here
        return cls(
            strict=config.strict_filtering,
            filter_spam=False,
            filter_unverified=False,
            require_value=False,
            official_contracts=config.official_contracts,
        )


@dataclass
class FilterOutcome:
    kept: List[RawPosition] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)
    samples: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def rejected(self) -> int:
        return sum(self.counts.values())

    def warnings(self) -> List[PreviewWarning]:
        out: List[PreviewWarning] = []
        for code, detail in FILTER_REASONS.items():
            n = self.counts.get(code, 0)
            if n:
                out.append(make_warning(code, f"{n} position(s): {detail}", count=n, samples=self.samples.get(code)))
        return out


def _contract_allowed(pos: RawPosition, official: OfficialContracts) -> bool:
    entry = official.get((pos.symbol or "").strip().upper())
    if not entry:
        return True
    contract = normalize_address(pos.meta.get("contract_address"))
    if not contract:
        return True
    chain = str(pos.meta.get("chain") or "").strip().lower()
    allowed = set(entry.get(chain, [])) | set(entry.get("*", []))
    if not allowed:
        return True
    return contract in allowed


def rejection_reason(pos: RawPosition, options: FilterOptions) -> Optional[str]:
    symbol = (pos.symbol or "").strip()
    if not symbol or is_address(symbol):
        return "FILTERED_INVALID_SYMBOL"

    if options.strict:
        name = str(pos.name or "").strip()
        if name.lower() in GENERIC_NAMES or is_address(name):
            return "FILTERED_MISSING_NAME"

    if options.filter_spam and pos.meta.get("possible_spam") is True:
        return "FILTERED_SPAM"
    if options.filter_unverified and not pos.meta.get("native_token") and pos.meta.get("verified_contract") is False:
        return "FILTERED_UNVERIFIED"

    if options.official_contracts and not _contract_allowed(pos, options.official_contracts):
        return "FILTERED_CONTRACT_MISMATCH"

    if options.require_value:
        if not is_positive(pos.quantity):
            return "FILTERED_ZERO_BALANCE"
        if not is_positive(pos.value_usd):
            return "FILTERED_MISSING_VALUE"
        if options.strict and not is_positive(pos.price_usd):
            return "FILTERED_MISSING_PRICE"

    return None


def filter_positions(positions: List[RawPosition], options: FilterOptions) -> FilterOutcome:
    outcome = FilterOutcome()
    for pos in positions:
        reason = rejection_reason(pos, options)
        if reason is None:
            outcome.kept.append(pos)
            continue
        outcome.counts[reason] = outcome.counts.get(reason, 0) + 1
        add_sample(outcome.samples.setdefault(reason, []), describe_position(pos), options.max_samples)

    if outcome.rejected:
        logger.info(
            "imports.filtered kept=%s rejected=%s reasons=%s",
            len(outcome.kept), outcome.rejected, outcome.counts,
        )
    return outcome
