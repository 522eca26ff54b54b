# services/coinmarketcap/client.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from services.cache.cache_backend import cache_get_many, cache_set_many
from services.http_retry import ProviderError, RateLimitError, call_with_retry, get_json
from utils.common_helpers import normalize_address, safe_float

logger = logging.getLogger(__name__)

PROVIDER = "coinmarketcap"

# CMC status.error_code values that mean "slow down"
RATE_LIMIT_ERROR_CODES = {1008, 1009, 1010, 1011}

BATCH_SIZE = 100


def _ck_info(symbol: str) -> str:
    return f"CMC:INFO:{(symbol or '').strip().upper()}"


def _check_status(data: Dict[str, Any]) -> None:
    status = data.get("status")
    if not isinstance(status, dict):
        return
    code = status.get("error_code")
    try:
        code = int(code or 0)
    except (TypeError, ValueError):
        code = 0
    if code == 0:
        return
    msg = status.get("error_message") or f"error_code {code}"
    if code in RATE_LIMIT_ERROR_CODES:
        raise RateLimitError(f"coinmarketcap rate limited: {msg}", provider=PROVIDER)
    raise ProviderError(f"coinmarketcap error: {msg}", provider=PROVIDER)


def _chunks(items: List[Any], size: int) -> Iterable[List[Any]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def record_contracts(record: Dict[str, Any]) -> List[Tuple[str, Dict[str, Any]]]:
    """
    All (contract_address, platform) pairs a registry record is known by,
    including the record's own top-level `platform` entry.
    """
    out: List[Tuple[str, Dict[str, Any]]] = []
    entries = record.get("contract_address")
    if isinstance(entries, list):
        for e in entries:
            if not isinstance(e, dict):
                continue
            addr = normalize_address(e.get("contract_address"))
            platform = e.get("platform") if isinstance(e.get("platform"), dict) else {}
            if addr:
                out.append((addr, platform))

    top = record.get("platform")
    if isinstance(top, dict):
        addr = normalize_address(top.get("token_address"))
        if addr and all(a != addr for a, _ in out):
            out.append((addr, {"name": top.get("name"), "coin": {"symbol": top.get("symbol"), "slug": top.get("slug")}}))
    return out


def usd_quote(record: Dict[str, Any]) -> Tuple[Optional[float], float, Optional[int]]:
    """(price, market_cap, rank) from a quotes/latest record."""
    quote = record.get("quote") if isinstance(record.get("quote"), dict) else {}
    usd = quote.get("USD") if isinstance(quote.get("USD"), dict) else {}
    price = safe_float(usd.get("price"))
    market_cap = safe_float(usd.get("market_cap")) or 0.0
    rank_raw = record.get("cmc_rank")
    rank = int(rank_raw) if isinstance(rank_raw, (int, float)) and not isinstance(rank_raw, bool) else None
    return price, market_cap, rank


class CoinMarketCapClient:
    """Symbol/contract identity ("info") and batched quotes from CoinMarketCap."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://pro-api.coinmarketcap.com",
        retries: int = 2,
        retry_delay_sec: float = 1.0,
        info_ttl_sec: int = 86400,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ProviderError("Missing CMC_API_KEY", provider=PROVIDER)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self.retry_delay_sec = retry_delay_sec
        self.info_ttl_sec = int(info_ttl_sec)
        self.timeout = timeout
        self._shared_client = client

    @asynccontextmanager
    async def _client(self):
        if self._shared_client is not None:
            yield self._shared_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as c:
            yield c

    def _headers(self) -> Dict[str, str]:
        return {"X-CMC_PRO_API_KEY": self.api_key, "Accept": "application/json"}

    async def _get(self, c: httpx.AsyncClient, path: str, params: Dict[str, Any], label: str) -> Dict[str, Any]:
        async def _once() -> Dict[str, Any]:
            data = await get_json(c, f"{self.base_url}{path}", provider=PROVIDER, params=params, headers=self._headers())
            _check_status(data)
            return data

        return await call_with_retry(_once, retries=self.retries, delay_sec=self.retry_delay_sec, label=label)

    async def get_info(self, symbols: Iterable[str]) -> Dict[str, List[Dict[str, Any]]]:
        """
        Returns {"USDC": [record, ...], ...}. A symbol can map to several
        registry records (different projects sharing a ticker).
        """
        wanted: List[str] = []
        for s in symbols:
            sym = (s or "").strip().upper()
            if sym and sym not in wanted:
                wanted.append(sym)

        out: Dict[str, List[Dict[str, Any]]] = {}
        if self.info_ttl_sec > 0:
            cached = cache_get_many(_ck_info(s) for s in wanted)
            for sym in wanted:
                hit = cached.get(_ck_info(sym))
                if isinstance(hit, list):
                    out[sym] = hit
        misses = [s for s in wanted if s not in out]

        if not misses:
            return out

        async with self._client() as c:
            for batch in _chunks(misses, BATCH_SIZE):
                data = await self._get(
                    c,
                    "/v2/cryptocurrency/info",
                    {"symbol": ",".join(batch), "skip_invalid": "true"},
                    label=f"cmc info n={len(batch)}",
                )
                blob = data.get("data") if isinstance(data.get("data"), dict) else {}
                upper_blob = {str(k).upper(): v for k, v in blob.items()}
                fetched: Dict[str, List[Dict[str, Any]]] = {}
                for sym in batch:
                    raw = upper_blob.get(sym)
                    if isinstance(raw, dict):
                        records = [raw]
                    elif isinstance(raw, list):
                        records = [r for r in raw if isinstance(r, dict)]
                    else:
                        records = []
                    fetched[sym] = records
                out.update(fetched)
                if self.info_ttl_sec > 0:
                    cache_set_many({_ck_info(s): r for s, r in fetched.items()}, ttl_seconds=self.info_ttl_sec)

        logger.info("cmc.info requested=%s fetched=%s", len(wanted), len(misses))
        return out

    async def get_quotes(self, ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        wanted = sorted({int(i) for i in ids if i is not None})
        out: Dict[int, Dict[str, Any]] = {}
        if not wanted:
            return out

        async with self._client() as c:
            for batch in _chunks(wanted, BATCH_SIZE):
                data = await self._get(
                    c,
                    "/v2/cryptocurrency/quotes/latest",
                    {"id": ",".join(str(i) for i in batch), "convert": "USD", "skip_invalid": "true"},
                    label=f"cmc quotes n={len(batch)}",
                )
                blob = data.get("data") if isinstance(data.get("data"), dict) else {}
                for key, rec in blob.items():
                    if isinstance(rec, list):
                        rec = rec[0] if rec and isinstance(rec[0], dict) else None
                    if not isinstance(rec, dict):
                        continue
                    try:
                        out[int(rec.get("id", key))] = rec
                    except (TypeError, ValueError):
                        continue
        return out
