"""
Price/identity enrichment against the CoinMarketCap registry.

Only positions with neither a positive price nor a positive value are looked
up. A registry record is accepted for a position only when:
  - the position has no contract (plain ticker from CSV/JSON, or a native coin), or
  - the record lists the position's contract on a platform that matches the
    position's chain.
This keeps a well-known ticker's price off look-alike tokens that reuse it.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from schemas.imports import PreviewWarning, RawPosition
from services.chains.chain_registry import ChainConfig, get_chain
from services.coinmarketcap.client import record_contracts, usd_quote
from services.http_retry import ProviderError
from services.imports.diagnostics import add_sample, describe_position, make_warning
from utils.common_helpers import is_address, is_positive, normalize_address, safe_float

logger = logging.getLogger(__name__)


class PriceRegistry(Protocol):
    async def get_info(self, symbols: Iterable[str]) -> Dict[str, List[Dict[str, Any]]]: ...

    async def get_quotes(self, ids: Iterable[int]) -> Dict[int, Dict[str, Any]]: ...


@dataclass
class EnrichmentReport:
    eligible: int = 0
    enriched: int = 0
    missing: List[str] = field(default_factory=list)
    missing_count: int = 0
    mismatched: List[str] = field(default_factory=list)
    mismatched_count: int = 0
    failed: Optional[str] = None

    def note_missing(self, pos: RawPosition) -> None:
        self.missing_count += 1
        add_sample(self.missing, describe_position(pos))

    def note_mismatch(self, pos: RawPosition) -> None:
        self.mismatched_count += 1
        add_sample(self.mismatched, describe_position(pos))

    def warnings(self) -> List[PreviewWarning]:
        out: List[PreviewWarning] = []
        if self.failed:
            out.append(make_warning(
                "PRICE_ENRICHMENT_FAILED",
                f"Price lookup unavailable; {self.eligible} unpriced position(s) were not enriched ({self.failed}).",
                count=self.eligible,
            ))
            return out
        if self.mismatched_count:
            out.append(make_warning(
                "ENRICH_CONTRACT_MISMATCH",
                f"{self.mismatched_count} token(s) share a ticker with a listed asset but not its contract; no price assigned.",
                count=self.mismatched_count,
                samples=self.mismatched,
            ))
        if self.missing_count:
            out.append(make_warning(
                "PRICE_MISSING",
                f"{self.missing_count} position(s) have no registry price.",
                count=self.missing_count,
                samples=self.missing,
            ))
        return out


def is_enrichment_candidate(pos: RawPosition) -> bool:
    if is_positive(pos.price_usd) or is_positive(pos.value_usd):
        return False
    sym = (pos.symbol or "").strip()
    return bool(sym) and not is_address(sym)


def platform_matches_chain(platform: Dict[str, Any], chain: Optional[ChainConfig]) -> bool:
    if chain is None:
        return True
    coin = platform.get("coin") if isinstance(platform.get("coin"), dict) else {}
    text = " ".join(
        str(v or "") for v in (platform.get("name"), platform.get("slug"), coin.get("name"), coin.get("slug"))
    ).lower()
    hints = (chain.key, chain.label.lower(), *chain.registry_hints)
    if any(h and h in text for h in hints):
        return True
    return str(coin.get("symbol") or "").strip().upper() == chain.native_symbol


def record_binds(record: Dict[str, Any], contract: Optional[str], chain: Optional[ChainConfig]) -> bool:
    if not contract:
        return True
    return any(addr == contract and platform_matches_chain(platform, chain) for addr, platform in record_contracts(record))


def select_best_quote(quotes: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Highest market cap wins; ties go to the best (lowest) rank. Unpriced records are ignored."""
    best: Optional[Dict[str, Any]] = None
    best_key: Optional[Tuple[float, float]] = None
    for q in quotes:
        price, market_cap, rank = usd_quote(q)
        if not is_positive(price):
            continue
        key = (market_cap, -(rank if rank is not None else math.inf))
        if best_key is None or key > best_key:
            best, best_key = q, key
    return best


def _record_id(record: Dict[str, Any]) -> Optional[int]:
    rid = record.get("id")
    if isinstance(rid, bool):
        return None
    try:
        return int(rid)
    except (TypeError, ValueError):
        return None


async def enrich_positions(positions: List[RawPosition], registry: Optional[PriceRegistry]) -> EnrichmentReport:
    """Mutates eligible positions in place (price_usd, value_usd, meta.cmc_id)."""
    report = EnrichmentReport()
    candidates = [p for p in positions if is_enrichment_candidate(p)]
    report.eligible = len(candidates)
    if not candidates or registry is None:
        return report

    bound: List[Tuple[RawPosition, List[int]]] = []
    try:
        info = await registry.get_info(p.symbol.strip().upper() for p in candidates)

        for pos in candidates:
            records = info.get(pos.symbol.strip().upper()) or []
            if not records:
                report.note_missing(pos)
                continue
            contract = normalize_address(pos.meta.get("contract_address"))
            chain = get_chain(pos.meta.get("chain")) if pos.meta.get("chain") else None
            matches = [r for r in records if record_binds(r, contract, chain)]
            if not matches:
                pos.meta["registry_mismatch"] = True
                report.note_mismatch(pos)
                continue
            ids = [i for i in (_record_id(r) for r in matches) if i is not None]
            bound.append((pos, ids))

        wanted_ids = {i for _, ids in bound for i in ids}
        quotes = await registry.get_quotes(wanted_ids) if wanted_ids else {}
    except ProviderError as exc:
        logger.warning("imports.enrichment_failed eligible=%s error=%s", report.eligible, exc)
        report.failed = str(exc)
        return report

    for pos, ids in bound:
        best = select_best_quote([quotes[i] for i in ids if i in quotes])
        if best is None:
            report.note_missing(pos)
            continue
        price, _, _ = usd_quote(best)
        if not is_positive(pos.price_usd):
            pos.price_usd = price
        qty = safe_float(pos.quantity)
        if qty is not None and qty > 0 and pos.price_usd is not None:
            pos.value_usd = pos.price_usd * qty
        pos.meta["cmc_id"] = _record_id(best)
        pos.meta["price_source"] = "coinmarketcap"
        if normalize_address(pos.meta.get("contract_address")):
            pos.meta["registry_verified"] = True
        report.enriched += 1

    logger.info(
        "imports.enriched eligible=%s enriched=%s missing=%s mismatched=%s",
        report.eligible, report.enriched, report.missing_count, report.mismatched_count,
    )
    return report
