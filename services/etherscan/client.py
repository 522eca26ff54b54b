# services/etherscan/client.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from services.http_retry import ProviderError, RateLimitError, call_with_retry, get_json
from utils.common_helpers import mask_address

logger = logging.getLogger(__name__)

PROVIDER = "etherscan"

NO_RESULT_MESSAGES = ("no transactions found", "no records found")


@dataclass
class TransferHistory:
    items: List[Dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    truncated: bool = False


def _unwrap(data: Dict[str, Any]) -> Any:
    """
    Etherscan wraps everything as {"status", "message", "result"}.
    status "0" covers both "nothing found" and real errors, so look at the text.
    """
    status = str(data.get("status", ""))
    result = data.get("result")
    if status == "1":
        return result

    message = str(data.get("message") or "")
    text = f"{message} {result if isinstance(result, str) else ''}".lower()
    if "rate limit" in text:
        raise RateLimitError(f"etherscan rate limited: {result or message}", provider=PROVIDER)
    if any(m in text for m in NO_RESULT_MESSAGES) or result == []:
        return []
    raise ProviderError(f"etherscan error: {result or message or 'unknown'}", provider=PROVIDER)


def _parse_balance(result: Any) -> int:
    try:
        return int(str(result).strip())
    except (TypeError, ValueError) as exc:
        raise ProviderError(f"etherscan returned a non-numeric balance: {result!r}", provider=PROVIDER) from exc


class EtherscanClient:
    """
    Etherscan v2 multichain API (one key, chain picked by `chainid`).

    Used as the fallback balance source: native balance, ERC20 transfer
    history (page/offset pagination, bounded result window), and direct
    per-contract token balances.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.etherscan.io/v2/api",
        page_size: int = 1000,
        max_results: int = 10000,
        retries: int = 3,
        retry_delay_sec: float = 1.0,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ProviderError("Missing ETHERSCAN_API_KEY", provider=PROVIDER)
        self.api_key = api_key
        self.base_url = base_url
        self.page_size = max(1, int(page_size))
        self.max_results = max(self.page_size, int(max_results))
        self.retries = retries
        self.retry_delay_sec = retry_delay_sec
        self.timeout = timeout
        self._shared_client = client

    @asynccontextmanager
    async def _client(self, client: Optional[httpx.AsyncClient] = None):
        if client is not None:
            yield client
            return
        if self._shared_client is not None:
            yield self._shared_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as c:
            yield c

    @asynccontextmanager
    async def session(self):
        """One connection pool for a whole chain scan."""
        async with self._client() as c:
            yield c

    async def _call(self, c: httpx.AsyncClient, label: str, **params: Any) -> Any:
        query = {**params, "apikey": self.api_key}

        async def _once() -> Any:
            data = await get_json(c, self.base_url, provider=PROVIDER, params=query)
            return _unwrap(data)

        return await call_with_retry(
            _once,
            retries=self.retries,
            delay_sec=self.retry_delay_sec,
            label=label,
        )

    async def get_native_balance(
        self,
        chain_id: int,
        address: str,
        client: Optional[httpx.AsyncClient] = None,
    ) -> int:
        async with self._client(client) as c:
            result = await self._call(
                c,
                f"etherscan balance chainid={chain_id}",
                chainid=chain_id,
                module="account",
                action="balance",
                address=address,
                tag="latest",
            )
        return _parse_balance(result)

    async def get_token_transfers(
        self,
        chain_id: int,
        address: str,
        client: Optional[httpx.AsyncClient] = None,
    ) -> TransferHistory:
        """
        Full ERC20 transfer log, oldest first. A full final page at the edge of
        the result window means older/newer rows were not reachable => truncated.
        """
        out = TransferHistory()
        max_pages = max(1, self.max_results // self.page_size)
        async with self._client(client) as c:
            for page in range(1, max_pages + 1):
                batch = await self._call(
                    c,
                    f"etherscan tokentx chainid={chain_id} page={page}",
                    chainid=chain_id,
                    module="account",
                    action="tokentx",
                    address=address,
                    page=page,
                    offset=self.page_size,
                    startblock=0,
                    endblock=99999999,
                    sort="asc",
                )
                if not isinstance(batch, list):
                    raise ProviderError("etherscan tokentx returned a non-list result", provider=PROVIDER)
                out.items.extend(row for row in batch if isinstance(row, dict))
                out.pages = page
                if len(batch) < self.page_size:
                    break
            else:
                out.truncated = True

        logger.info(
            "etherscan.token_transfers chainid=%s address=%s rows=%s pages=%s truncated=%s",
            chain_id, mask_address(address), len(out.items), out.pages, out.truncated,
        )
        return out

    async def get_token_balance(
        self,
        chain_id: int,
        address: str,
        contract: str,
        client: Optional[httpx.AsyncClient] = None,
    ) -> int:
        async with self._client(client) as c:
            result = await self._call(
                c,
                f"etherscan tokenbalance chainid={chain_id}",
                chainid=chain_id,
                module="account",
                action="tokenbalance",
                contractaddress=contract,
                address=address,
                tag="latest",
            )
        return _parse_balance(result)
