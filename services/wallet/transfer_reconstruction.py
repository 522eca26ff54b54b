"""
Rebuild ERC20 balances from a wallet's transfer history.

Amounts stay Python ints end to end. This is an approximation: balances that
predate the indexed window, or change without a Transfer event (rebasing
tokens, for example), are not visible here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from utils.common_helpers import normalize_address

logger = logging.getLogger(__name__)


@dataclass
class TokenBalance:
    contract: str
    symbol: str
    name: str
    decimals: int
    balance: int = 0
    transfers: int = 0


def _parse_int(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    s = str(raw or "").strip()
    if not s:
        return None
    try:
        return int(s, 16) if s.lower().startswith("0x") else int(s)
    except ValueError:
        return None


def reconstruct_balances(transfers: Iterable[Dict[str, Any]], address: str) -> Dict[str, TokenBalance]:
    """
    Sum signed deltas per contract: +value when the wallet receives, -value when it sends.
    Self-transfers net to zero. Contracts whose final balance is not positive are dropped.
    """
    wallet = (address or "").lower()
    book: Dict[str, TokenBalance] = {}
    skipped = 0

    for tx in transfers:
        if not isinstance(tx, dict):
            skipped += 1
            continue
        contract = normalize_address(tx.get("contractAddress"))
        value = _parse_int(tx.get("value"))
        if not contract or value is None:
            skipped += 1
            continue

        sender = str(tx.get("from") or "").lower()
        receiver = str(tx.get("to") or "").lower()
        delta = 0
        if receiver == wallet:
            delta += value
        if sender == wallet:
            delta -= value

        entry = book.get(contract)
        if entry is None:
            decimals = _parse_int(tx.get("tokenDecimal"))
            entry = TokenBalance(
                contract=contract,
                symbol=str(tx.get("tokenSymbol") or "").strip(),
                name=str(tx.get("tokenName") or "").strip(),
                decimals=decimals if decimals is not None and decimals >= 0 else 18,
            )
            book[contract] = entry
        entry.balance += delta
        entry.transfers += 1

    if skipped:
        logger.debug("transfer_reconstruction.skipped_rows count=%s", skipped)

    return {c: b for c, b in book.items() if b.balance > 0}


def sorted_balances(balances: Dict[str, TokenBalance]) -> List[TokenBalance]:
    """Stable order for output: most transfer activity first, then contract address."""
    return sorted(balances.values(), key=lambda b: (-b.transfers, b.contract))
