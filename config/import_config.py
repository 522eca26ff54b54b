"""
Configuration for the portfolio import pipeline.

Built once per process with ImportConfig.from_env() and handed to the
connector registry. Nothing below the registry reads the environment.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# symbol -> chain key ("*" = any chain) -> official contract addresses
OfficialContracts = Dict[str, Dict[str, List[str]]]

DEFAULT_OFFICIAL_CONTRACTS: OfficialContracts = {
    "USDC": {
        "ethereum": ["0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"],
        "polygon": [
            "0x3c499c542cef5e3811e1192ce70d8cc03d5c3359",
            "0x2791bca1f2de4661ed88a30c99a7a9449aa84174",
        ],
        "arbitrum": [
            "0xaf88d065e77c8cc2239327c5edb3a432268e5831",
            "0xff970a61a04b1ca14834a43f5de4533ebddb5cc8",
        ],
        "optimism": ["0x0b2c639c533813f4aa9d7837caf62653d097ff85"],
        "base": ["0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"],
        "bsc": ["0x8ac76a51cc950d9822d68b83fe1ad97b32cd580d"],
        "avalanche": ["0xb97ef9ef8734c71904d8002f8b6bc66dd9c48a6e"],
    },
    "USDT": {
        "ethereum": ["0xdac17f958d2ee523a2206206994597c13d831ec7"],
        "polygon": ["0xc2132d05d31c914a87c6611c10748aeb04b58e8f"],
        "arbitrum": ["0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9"],
        "bsc": ["0x55d398326f99059ff775485246999027b3197955"],
        "avalanche": ["0x9702230a8ea53601f5cd2dc00fdbc13d4df4a8c7"],
    },
    "DAI": {
        "ethereum": ["0x6b175474e89094c44da98b954eedeac495271d0f"],
    },
    "WETH": {
        "ethereum": ["0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"],
        "arbitrum": ["0x82af49447d8a07e3bd95bd0d56f35241523fbab1"],
        "optimism": ["0x4200000000000000000000000000000000000006"],
        "base": ["0x4200000000000000000000000000000000000006"],
    },
    "WBTC": {
        "ethereum": ["0x2260fac5e5542a773aa44fbcfedf7c193bc2c599"],
    },
}


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return v.strip()


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, ""))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, ""))
    except ValueError:
        return default


def normalize_official_contracts(raw: object) -> OfficialContracts:
    """
    Accepts {"USDC": ["0x.."]} (any chain) or {"USDC": {"ethereum": ["0x.."]}}.
    Returns upper-case symbols and lower-case addresses.
    """
    out: OfficialContracts = {}
    if not isinstance(raw, dict):
        return out
    for sym, entry in raw.items():
        key = str(sym or "").strip().upper()
        if not key:
            continue
        chains: Dict[str, List[str]] = {}
        if isinstance(entry, list):
            chains["*"] = [str(a).strip().lower() for a in entry if str(a or "").strip()]
        elif isinstance(entry, dict):
            for chain, addrs in entry.items():
                if not isinstance(addrs, list):
                    addrs = [addrs]
                chains[str(chain).strip().lower()] = [str(a).strip().lower() for a in addrs if str(a or "").strip()]
        if chains:
            out[key] = chains
    return out


class ImportConfig(BaseModel):
    # provider selection
    wallet_provider: Optional[str] = None  # "moralis" | "etherscan" | None (auto)

    moralis_api_key: Optional[str] = None
    moralis_base_url: str = "https://deep-index.moralis.io/api/v2.2"
    moralis_page_size: int = 100
    moralis_max_pages: int = 10
    moralis_retries: int = 3
    moralis_retry_delay_sec: float = 1.0

    etherscan_api_key: Optional[str] = None
    etherscan_base_url: str = "https://api.etherscan.io/v2/api"
    etherscan_page_size: int = 1000
    etherscan_max_results: int = 10000
    etherscan_retries: int = 3
    etherscan_retry_delay_sec: float = 1.0
    etherscan_free_tier_only: bool = True

    cmc_api_key: Optional[str] = None
    cmc_base_url: str = "https://pro-api.coinmarketcap.com"
    cmc_retries: int = 2
    cmc_retry_delay_sec: float = 1.0
    cmc_info_ttl_sec: int = 86400

    # chain scope
    default_chain: str = "ethereum"
    scan_scope: str = "single"  # "single" | "free" | "ethereum,polygon,..."
    verify_all_chains: bool = False
    concurrent_chain_scans: bool = False

    # reconciliation
    balance_cache_ttl_sec: int = 300
    balance_call_delay_sec: float = 0.25
    http_timeout_sec: float = 15.0

    # filtering
    strict_filtering: bool = False
    filter_spam: bool = True
    filter_unverified: bool = False
    official_contracts: OfficialContracts = Field(
        default_factory=lambda: normalize_official_contracts(DEFAULT_OFFICIAL_CONTRACTS)
    )

    debug: bool = False

    @classmethod
    def from_env(cls) -> "ImportConfig":
        load_dotenv()

        official = normalize_official_contracts(DEFAULT_OFFICIAL_CONTRACTS)
        raw_official = _env_str("IMPORT_OFFICIAL_CONTRACTS_JSON")
        if raw_official:
            try:
                official = normalize_official_contracts(json.loads(raw_official))
            except json.JSONDecodeError:
                logger.warning("import_config.official_contracts_invalid_json; using defaults")

        provider = (_env_str("IMPORT_WALLET_PROVIDER") or "").lower()

        return cls(
            wallet_provider=provider if provider and provider != "auto" else None,
            moralis_api_key=_env_str("MORALIS_API_KEY"),
            moralis_base_url=_env_str("MORALIS_BASE_URL", cls.model_fields["moralis_base_url"].default),
            moralis_page_size=_env_int("MORALIS_PAGE_SIZE", 100),
            moralis_max_pages=_env_int("MORALIS_MAX_PAGES", 10),
            moralis_retries=_env_int("MORALIS_RETRIES", 3),
            moralis_retry_delay_sec=_env_float("MORALIS_RETRY_DELAY_SEC", 1.0),
            etherscan_api_key=_env_str("ETHERSCAN_API_KEY"),
            etherscan_base_url=_env_str("ETHERSCAN_BASE_URL", cls.model_fields["etherscan_base_url"].default),
            etherscan_page_size=_env_int("ETHERSCAN_PAGE_SIZE", 1000),
            etherscan_max_results=_env_int("ETHERSCAN_MAX_RESULTS", 10000),
            etherscan_retries=_env_int("ETHERSCAN_RETRIES", 3),
            etherscan_retry_delay_sec=_env_float("ETHERSCAN_RETRY_DELAY_SEC", 1.0),
            etherscan_free_tier_only=_env_bool("ETHERSCAN_FREE_TIER_ONLY", True),
            cmc_api_key=_env_str("CMC_API_KEY"),
            cmc_base_url=_env_str("CMC_BASE_URL", cls.model_fields["cmc_base_url"].default),
            cmc_retries=_env_int("CMC_RETRIES", 2),
            cmc_retry_delay_sec=_env_float("CMC_RETRY_DELAY_SEC", 1.0),
            cmc_info_ttl_sec=_env_int("CMC_INFO_TTL_SEC", 86400),
            default_chain=(_env_str("IMPORT_DEFAULT_CHAIN", "ethereum") or "ethereum").lower(),
            scan_scope=(_env_str("IMPORT_SCAN_CHAINS", "single") or "single").lower(),
            verify_all_chains=_env_bool("IMPORT_VERIFY_ALL_CHAINS", False),
            concurrent_chain_scans=_env_bool("IMPORT_CONCURRENT_CHAIN_SCANS", False),
            balance_cache_ttl_sec=_env_int("IMPORT_BALANCE_CACHE_TTL_SEC", 300),
            balance_call_delay_sec=_env_float("IMPORT_BALANCE_CALL_DELAY_SEC", 0.25),
            http_timeout_sec=_env_float("IMPORT_HTTP_TIMEOUT_SEC", 15.0),
            strict_filtering=_env_bool("IMPORT_STRICT_FILTER", False),
            filter_spam=_env_bool("IMPORT_FILTER_SPAM", True),
            filter_unverified=_env_bool("IMPORT_FILTER_UNVERIFIED", False),
            official_contracts=official,
            debug=_env_bool("IMPORT_DEBUG", False),
        )
