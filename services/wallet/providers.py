"""
Wallet balance providers.

Each provider is one strategy for scanning a single chain for a single
address. The balance engine ranks them and walks the list per chain.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from schemas.imports import RawPosition
from services.chains.chain_registry import ChainConfig
from services.etherscan.client import EtherscanClient
from services.moralis.client import MoralisClient
from services.wallet.balance_cache import CallThrottle, TokenBalanceCache
from services.wallet.transfer_reconstruction import reconstruct_balances, sorted_balances
from utils.common_helpers import mask_address, normalize_address, safe_float, scale_units

logger = logging.getLogger(__name__)


@dataclass
class ChainScanResult:
    chain: str
    provider: str
    positions: List[RawPosition] = field(default_factory=list)
    truncated: bool = False
    reconciled: int = 0
    attempts: List[str] = field(default_factory=list)  # "provider: error" for failed strategies
    fell_back: bool = False


class WalletProvider(ABC):
    name: str = ""

    @abstractmethod
    def supports(self, chain: ChainConfig) -> bool:
        ...

    @abstractmethod
    async def scan_chain(self, chain: ChainConfig, address: str, *, reconcile: bool = False) -> ChainScanResult:
        ...


# ── Moralis (indexer) ──────────────────────────────────────────────────

def _parse_raw_amount(raw: Any) -> int:
    try:
        return int(str(raw or "0").strip())
    except ValueError:
        return 0


def moralis_item_to_position(item: Dict[str, Any], chain: ChainConfig) -> RawPosition:
    native = bool(item.get("native_token"))
    symbol = str(item.get("symbol") or "").strip() or (chain.native_symbol if native else "")
    name = str(item.get("name") or "").strip() or (chain.native_name if native else "")
    decimals = item.get("decimals")
    if decimals in (None, ""):
        decimals = 18
    balance_raw = _parse_raw_amount(item.get("balance"))

    return RawPosition(
        symbol=symbol.upper(),
        name=name or None,
        quantity=scale_units(balance_raw, decimals),
        price_usd=safe_float(item.get("usd_price")),
        value_usd=safe_float(item.get("usd_value")),
        currency="USD",
        meta={
            "source": "moralis",
            "chain": chain.key,
            "chain_id": chain.chain_id,
            "contract_address": None if native else normalize_address(item.get("token_address")),
            "decimals": decimals,
            "balance_raw": str(balance_raw),
            "balance_source": "indexer",
            "native_token": native,
            "possible_spam": bool(item.get("possible_spam")),
            "verified_contract": item.get("verified_contract") if isinstance(item.get("verified_contract"), bool) else None,
        },
    )


class MoralisProvider(WalletProvider):
    name = "moralis"

    def __init__(self, client: MoralisClient):
        self.client = client

    def supports(self, chain: ChainConfig) -> bool:
        return bool(chain.moralis_chain)

    async def scan_chain(self, chain: ChainConfig, address: str, *, reconcile: bool = False) -> ChainScanResult:
        # indexer balances are already exact; nothing to reconcile
        tokens = await self.client.get_wallet_tokens(address, chain.moralis_chain or chain.key)
        positions = [moralis_item_to_position(item, chain) for item in tokens.items]
        return ChainScanResult(
            chain=chain.key,
            provider=self.name,
            positions=positions,
            truncated=tokens.truncated,
        )


# ── Etherscan (block explorer) ─────────────────────────────────────────

class EtherscanProvider(WalletProvider):
    name = "etherscan"

    def __init__(
        self,
        client: EtherscanClient,
        *,
        balance_cache: TokenBalanceCache,
        throttle: CallThrottle,
        free_tier_only: bool = True,
    ):
        self.client = client
        self.balance_cache = balance_cache
        self.throttle = throttle
        self.free_tier_only = free_tier_only

    def supports(self, chain: ChainConfig) -> bool:
        return chain.free_tier or not self.free_tier_only

    def _native_position(self, chain: ChainConfig, raw: int) -> RawPosition:
        return RawPosition(
            symbol=chain.native_symbol,
            name=chain.native_name,
            quantity=scale_units(raw, 18),
            currency="USD",
            meta={
                "source": "etherscan",
                "chain": chain.key,
                "chain_id": chain.chain_id,
                "contract_address": None,
                "decimals": 18,
                "balance_raw": str(raw),
                "balance_source": "onchain",
                "native_token": True,
            },
        )

    async def _exact_balance(self, chain: ChainConfig, address: str, contract: str, c) -> int:
        cached = self.balance_cache.get(chain.key, address, contract)
        if cached is not None:
            return cached
        await self.throttle.wait()
        balance = await self.client.get_token_balance(chain.chain_id, address, contract, client=c)
        self.balance_cache.set(chain.key, address, contract, balance)
        return balance

    async def scan_chain(self, chain: ChainConfig, address: str, *, reconcile: bool = False) -> ChainScanResult:
        result = ChainScanResult(chain=chain.key, provider=self.name)
        async with self.client.session() as c:
            native_raw = await self.client.get_native_balance(chain.chain_id, address, client=c)
            if native_raw > 0:
                result.positions.append(self._native_position(chain, native_raw))

            history = await self.client.get_token_transfers(chain.chain_id, address, client=c)
            result.truncated = history.truncated

            for tb in sorted_balances(reconstruct_balances(history.items, address)):
                balance = tb.balance
                source = "transfer_log"
                if reconcile:
                    balance = await self._exact_balance(chain, address, tb.contract, c)
                    source = "onchain"
                    result.reconciled += 1
                    if balance <= 0:
                        continue
                result.positions.append(
                    RawPosition(
                        symbol=tb.symbol.upper(),
                        name=tb.name or None,
                        quantity=scale_units(balance, tb.decimals),
                        currency="USD",
                        meta={
                            "source": "etherscan",
                            "chain": chain.key,
                            "chain_id": chain.chain_id,
                            "contract_address": tb.contract,
                            "decimals": tb.decimals,
                            "balance_raw": str(balance),
                            "balance_source": source,
                            "native_token": False,
                            "transfer_count": tb.transfers,
                        },
                    )
                )

        logger.info(
            "wallet.etherscan_scan chain=%s address=%s positions=%s reconciled=%s truncated=%s",
            chain.key, mask_address(address), len(result.positions), result.reconciled, result.truncated,
        )
        return result
