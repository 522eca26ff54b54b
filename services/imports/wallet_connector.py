# services/imports/wallet_connector.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from config.import_config import ImportConfig
from schemas.imports import PreviewResult, PreviewWarning, WalletPreviewRequest
from services.chains.chain_registry import resolve_chain_selection
from services.imports.diagnostics import make_warning
from services.imports.enrichment import PriceRegistry
from services.imports.filters import FilterOptions
from services.imports.pipeline import normalize_positions
from services.imports.types import ImportConnector
from services.wallet.balance_cache import CallThrottle, TokenBalanceCache
from services.wallet.balance_engine import (
    BalanceAcquisitionEngine,
    PrimaryChainError,
    ProviderConfigError,
    build_providers,
)
from utils.common_helpers import is_address, mask_address

logger = logging.getLogger(__name__)


class WalletConnector(ImportConnector):
    id = "wallet_evm_v1"
    version = "v1"
    display_name = "EVM Wallet (On-chain)"

    def __init__(
        self,
        config: ImportConfig,
        *,
        balance_cache: TokenBalanceCache,
        price_registry: Optional[PriceRegistry] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.balance_cache = balance_cache
        self.price_registry = price_registry
        self.http_client = http_client
        self.throttle = CallThrottle(config.balance_call_delay_sec)

    async def _preview(self, payload: Dict[str, Any]) -> PreviewResult:
        try:
            req = WalletPreviewRequest.model_validate(payload)
        except ValidationError:
            return PreviewResult.failure("Invalid request.", ["Payload must include 'address' and optional 'chain'."])

        address = req.address.strip()
        if not is_address(address):
            return PreviewResult.failure(
                "Invalid wallet address.",
                ["Address must be 0x followed by 40 hexadecimal characters."],
            )

        warnings: List[PreviewWarning] = []
        selection = resolve_chain_selection(
            req.chain,
            scope=self.config.scan_scope,
            default_chain=self.config.default_chain,
        )
        if selection.unknown:
            warnings.append(make_warning(
                "UNKNOWN_CHAINS",
                f"Ignored unknown chain(s): {', '.join(selection.unknown)}.",
                count=len(selection.unknown),
                samples=selection.unknown,
            ))
        if not selection.chains:
            return PreviewResult.failure("No supported chain selected.", ["No supported chain was requested."], warnings)

        try:
            providers = build_providers(
                self.config,
                balance_cache=self.balance_cache,
                throttle=self.throttle,
                client=self.http_client,
            )
        except ProviderConfigError as exc:
            return PreviewResult.failure("Wallet import unavailable.", [str(exc)], warnings)

        engine = BalanceAcquisitionEngine(
            providers,
            verify_all_chains=self.config.verify_all_chains,
            concurrent=self.config.concurrent_chain_scans,
            debug=self.config.debug,
        )

        logger.info(
            "imports.wallet_scan_start address=%s chains=%s providers=%s",
            mask_address(address), [c.key for c in selection.chains], [p.name for p in providers],
        )
        try:
            scan = await engine.scan(selection.chains, address)
        except PrimaryChainError as exc:
            logger.warning("imports.wallet_primary_failed address=%s error=%s", mask_address(address), exc)
            return PreviewResult.failure("Wallet scan failed.", [str(exc)], warnings)

        warnings.extend(scan.warnings)
        chain_count = len(scan.chain_results)
        return await normalize_positions(
            scan.positions,
            registry=self.price_registry,
            filter_options=FilterOptions.for_wallet(self.config),
            summary=f"Found {{count}} position(s) across {chain_count} chain(s).",
            warnings=warnings,
            empty_error="No token balances were found for this address.",
        )
