# services/chains/chain_registry.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union


@dataclass(frozen=True)
class ChainConfig:
    key: str
    chain_id: int
    label: str
    native_symbol: str
    native_name: str
    moralis_chain: Optional[str] = None   # None => indexer does not cover this chain
    free_tier: bool = False               # block explorer free plan covers this chain
    registry_hints: Tuple[str, ...] = ()  # words that identify the chain in registry platform names


CHAINS: Dict[str, ChainConfig] = {
    c.key: c
    for c in (
        ChainConfig("ethereum", 1, "Ethereum", "ETH", "Ether", "eth", True, ("ethereum", "erc20")),
        ChainConfig("polygon", 137, "Polygon", "POL", "Polygon", "polygon", True, ("polygon", "matic")),
        ChainConfig("arbitrum", 42161, "Arbitrum One", "ETH", "Ether", "arbitrum", True, ("arbitrum",)),
        ChainConfig("optimism", 10, "OP Mainnet", "ETH", "Ether", "optimism", False, ("optimism", "op mainnet")),
        ChainConfig("base", 8453, "Base", "ETH", "Ether", "base", False, ("base",)),
        ChainConfig("bsc", 56, "BNB Smart Chain", "BNB", "BNB", "bsc", False, ("bnb", "bsc", "binance smart chain")),
        ChainConfig("avalanche", 43114, "Avalanche C-Chain", "AVAX", "Avalanche", "avalanche", False, ("avalanche", "avax")),
        ChainConfig("linea", 59144, "Linea", "ETH", "Ether", "linea", True, ("linea",)),
        ChainConfig("scroll", 534352, "Scroll", "ETH", "Ether", None, True, ("scroll",)),
        ChainConfig("zksync", 324, "zkSync Era", "ETH", "Ether", None, True, ("zksync",)),
        ChainConfig("gnosis", 100, "Gnosis", "XDAI", "xDAI", "gnosis", True, ("gnosis", "xdai")),
    )
}

CHAIN_ALIASES: Dict[str, str] = {
    "eth": "ethereum",
    "mainnet": "ethereum",
    "matic": "polygon",
    "arb": "arbitrum",
    "op": "optimism",
    "bnb": "bsc",
    "avax": "avalanche",
    "xdai": "gnosis",
}

SCAN_ALL_DIRECTIVES = {"all", "*"}
AUTO_DIRECTIVES = {"", "auto", "default"}


@dataclass
class ChainSelection:
    chains: List[ChainConfig] = field(default_factory=list)
    unknown: List[str] = field(default_factory=list)

    @property
    def primary(self) -> Optional[ChainConfig]:
        return self.chains[0] if self.chains else None


def get_chain(key: Optional[str]) -> Optional[ChainConfig]:
    k = (key or "").strip().lower()
    return CHAINS.get(CHAIN_ALIASES.get(k, k))


def free_tier_chains() -> List[ChainConfig]:
    return [c for c in CHAINS.values() if c.free_tier]


def _split_keys(raw: Union[str, Iterable[str], None]) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        parts = raw.split(",")
    else:
        parts = [str(p) for p in raw]
    return [p.strip().lower() for p in parts if p and p.strip()]


def _scope_keys(scope: str, default_chain: str) -> List[str]:
    s = (scope or "").strip().lower()
    if s in ("", "single"):
        return [default_chain]
    if s in ("free", "all"):
        return [c.key for c in free_tier_chains()]
    return _split_keys(s)


def resolve_chain_selection(
    requested: Union[str, List[str], None],
    *,
    scope: str = "single",
    default_chain: str = "ethereum",
) -> ChainSelection:
    """
    Turn the requested chain(s) into an ordered, de-duplicated scan list.
    The first chain is the primary chain. Unknown keys are returned separately.
    """
    keys = _split_keys(requested)
    if not keys or (len(keys) == 1 and keys[0] in AUTO_DIRECTIVES):
        keys = _scope_keys(scope, default_chain)
    elif len(keys) == 1 and keys[0] in SCAN_ALL_DIRECTIVES:
        keys = [c.key for c in free_tier_chains()]

    selection = ChainSelection()
    seen: set[str] = set()
    for k in keys:
        cfg = get_chain(k)
        if cfg is None:
            if k not in selection.unknown:
                selection.unknown.append(k)
            continue
        if cfg.key in seen:
            continue
        seen.add(cfg.key)
        selection.chains.append(cfg)
    return selection
