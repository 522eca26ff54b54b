# services/imports/diagnostics.py
from __future__ import annotations

from typing import Iterable, List, Optional

from schemas.imports import PreviewWarning, RawPosition

MAX_SAMPLES = 5


def describe_position(pos: RawPosition) -> str:
    """Short human label for warning samples, e.g. 'USDC (ethereum:0xa0b8…eb48)'."""
    sym = (pos.symbol or "").strip() or "?"
    chain = str(pos.meta.get("chain") or "").strip()
    contract = str(pos.meta.get("contract_address") or "").strip()
    if contract and len(contract) > 12:
        contract = f"{contract[:6]}…{contract[-4:]}"
    where = ":".join(p for p in (chain, contract) if p)
    return f"{sym} ({where})" if where else sym


def add_sample(bucket: List[str], sample: str, limit: int = MAX_SAMPLES) -> None:
    if len(bucket) < limit and sample not in bucket:
        bucket.append(sample)


def make_warning(
    code: str,
    detail: str,
    *,
    count: Optional[int] = None,
    samples: Optional[Iterable[str]] = None,
) -> PreviewWarning:
    s = list(samples or [])[:MAX_SAMPLES]
    return PreviewWarning(code=code, detail=detail, count=count, samples=s or None)
