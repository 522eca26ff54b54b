# services/moralis/client.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from services.http_retry import ProviderError, call_with_retry, get_json
from utils.common_helpers import mask_address

logger = logging.getLogger(__name__)

PROVIDER = "moralis"


@dataclass
class WalletTokenPage:
    items: List[Dict[str, Any]] = field(default_factory=list)
    cursor: Optional[str] = None


@dataclass
class WalletTokens:
    items: List[Dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    truncated: bool = False


class MoralisClient:
    """
    Wallet token balances from the Moralis indexer.

    GET /wallets/{address}/tokens returns native + ERC20 holdings with
    provider-side price, value, spam and verification flags, paginated by cursor.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://deep-index.moralis.io/api/v2.2",
        page_size: int = 100,
        max_pages: int = 10,
        retries: int = 3,
        retry_delay_sec: float = 1.0,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ProviderError("Missing MORALIS_API_KEY", provider=PROVIDER)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.page_size = max(1, int(page_size))
        self.max_pages = max(1, int(max_pages))
        self.retries = retries
        self.retry_delay_sec = retry_delay_sec
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
        return {"X-API-Key": self.api_key, "accept": "application/json"}

    async def fetch_token_page(
        self,
        c: httpx.AsyncClient,
        address: str,
        chain: str,
        cursor: Optional[str] = None,
    ) -> WalletTokenPage:
        params: Dict[str, Any] = {"chain": chain, "limit": self.page_size, "exclude_spam": "false"}
        if cursor:
            params["cursor"] = cursor

        async def _call() -> Dict[str, Any]:
            return await get_json(
                c,
                f"{self.base_url}/wallets/{address}/tokens",
                provider=PROVIDER,
                params=params,
                headers=self._headers(),
            )

        data = await call_with_retry(
            _call,
            retries=self.retries,
            delay_sec=self.retry_delay_sec,
            label=f"moralis tokens chain={chain}",
        )
        result = data.get("result")
        if not isinstance(result, list):
            raise ProviderError("Moralis response missing 'result' list", provider=PROVIDER)
        next_cursor = data.get("cursor")
        return WalletTokenPage(
            items=[r for r in result if isinstance(r, dict)],
            cursor=next_cursor if isinstance(next_cursor, str) and next_cursor else None,
        )

    async def get_wallet_tokens(self, address: str, chain: str) -> WalletTokens:
        """Walk the cursor up to max_pages. Leftover cursor => truncated."""
        out = WalletTokens()
        cursor: Optional[str] = None
        async with self._client() as c:
            while True:
                page = await self.fetch_token_page(c, address, chain, cursor)
                out.items.extend(page.items)
                out.pages += 1
                cursor = page.cursor
                if not cursor:
                    break
                if out.pages >= self.max_pages:
                    out.truncated = True
                    break

        logger.info(
            "moralis.wallet_tokens chain=%s address=%s items=%s pages=%s truncated=%s",
            chain, mask_address(address), len(out.items), out.pages, out.truncated,
        )
        return out
