# services/imports/registry.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from config.import_config import ImportConfig
from schemas.imports import ConnectorInfo
from services.coinmarketcap.client import CoinMarketCapClient
from services.imports.csv_connector import CsvConnector
from services.imports.enrichment import PriceRegistry
from services.imports.json_connector import JsonConnector
from services.imports.types import ImportConnector
from services.imports.wallet_connector import WalletConnector
from services.wallet.balance_cache import TokenBalanceCache

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    def __init__(self, connectors: List[ImportConnector]):
        self._connectors: Dict[str, ImportConnector] = {c.id: c for c in connectors}

    def list_connectors(self) -> List[ConnectorInfo]:
        return [c.info() for c in self._connectors.values()]

    def get_connector(self, connector_id: str) -> Optional[ImportConnector]:
        return self._connectors.get((connector_id or "").strip())


def build_price_registry(config: ImportConfig, client: Optional[httpx.AsyncClient] = None) -> Optional[PriceRegistry]:
    if not config.cmc_api_key:
        logger.info("imports.price_registry_disabled reason=no_cmc_key")
        return None
    return CoinMarketCapClient(
        config.cmc_api_key,
        base_url=config.cmc_base_url,
        retries=config.cmc_retries,
        retry_delay_sec=config.cmc_retry_delay_sec,
        info_ttl_sec=config.cmc_info_ttl_sec,
        timeout=config.http_timeout_sec,
        client=client,
    )


def build_connector_registry(
    config: ImportConfig,
    *,
    balance_cache: Optional[TokenBalanceCache] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ConnectorRegistry:
    """
    One registry per process. The balance cache is created here unless the
    caller supplies one, so every wallet request shares it.
    """
    cache = balance_cache if balance_cache is not None else TokenBalanceCache(config.balance_cache_ttl_sec)
    prices = build_price_registry(config, client=http_client)
    return ConnectorRegistry([
        CsvConnector(config, price_registry=prices),
        JsonConnector(config, price_registry=prices),
        WalletConnector(config, balance_cache=cache, price_registry=prices, http_client=http_client),
    ])
