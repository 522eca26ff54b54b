"""
Balance acquisition engine.

Per chain: walk the ranked provider list (first success wins), then
aggregate every chain's outcome in one sequential pass.

- The first requested chain is primary. If it fails the whole scan fails
  with PrimaryChainError.
- Any other chain failing becomes a SCAN_CHAIN_ERROR warning and its
  positions are simply absent.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

import httpx

from config.import_config import ImportConfig
from schemas.imports import PreviewWarning, RawPosition
from services.chains.chain_registry import ChainConfig
from services.etherscan.client import EtherscanClient
from services.http_retry import ProviderError
from services.imports.diagnostics import make_warning
from services.moralis.client import MoralisClient
from services.wallet.balance_cache import CallThrottle, TokenBalanceCache
from services.wallet.providers import ChainScanResult, EtherscanProvider, MoralisProvider, WalletProvider
from utils.common_helpers import mask_address

logger = logging.getLogger(__name__)

PROVIDER_NAMES = ("moralis", "etherscan")


class ProviderConfigError(RuntimeError):
    """No usable wallet balance provider is configured."""


class ChainScanError(RuntimeError):
    """Every provider failed (or none applied) for one chain."""

    def __init__(self, chain: str, attempts: List[str]):
        detail = "; ".join(attempts) if attempts else "no configured provider supports this chain"
        super().__init__(f"{chain}: {detail}")
        self.chain = chain
        self.attempts = attempts


class PrimaryChainError(RuntimeError):
    def __init__(self, cause: ChainScanError):
        super().__init__(f"Primary chain scan failed ({cause})")
        self.cause = cause


@dataclass
class WalletScan:
    positions: List[RawPosition] = field(default_factory=list)
    chain_results: List[ChainScanResult] = field(default_factory=list)
    warnings: List[PreviewWarning] = field(default_factory=list)
    failed_chains: List[str] = field(default_factory=list)


def build_providers(
    config: ImportConfig,
    *,
    balance_cache: TokenBalanceCache,
    throttle: CallThrottle,
    client: Optional[httpx.AsyncClient] = None,
) -> List[WalletProvider]:
    """
    Ranked provider list from config. Raises ProviderConfigError when nothing is usable.
    `client` is shared by every provider (tests pass one built on httpx.MockTransport).
    """
    override = (config.wallet_provider or "").strip().lower() or None
    if override is not None and override not in PROVIDER_NAMES:
        raise ProviderConfigError(
            f"Unknown wallet provider '{override}'. Expected one of: {', '.join(PROVIDER_NAMES)}."
        )

    def _moralis() -> MoralisProvider:
        return MoralisProvider(MoralisClient(
            config.moralis_api_key or "",
            base_url=config.moralis_base_url,
            page_size=config.moralis_page_size,
            max_pages=config.moralis_max_pages,
            retries=config.moralis_retries,
            retry_delay_sec=config.moralis_retry_delay_sec,
            timeout=config.http_timeout_sec,
            client=client,
        ))

    def _etherscan() -> EtherscanProvider:
        return EtherscanProvider(
            EtherscanClient(
                config.etherscan_api_key or "",
                base_url=config.etherscan_base_url,
                page_size=config.etherscan_page_size,
                max_results=config.etherscan_max_results,
                retries=config.etherscan_retries,
                retry_delay_sec=config.etherscan_retry_delay_sec,
                timeout=config.http_timeout_sec,
                client=client,
            ),
            balance_cache=balance_cache,
            throttle=throttle,
            free_tier_only=config.etherscan_free_tier_only,
        )

    if override == "moralis":
        if not config.moralis_api_key:
            raise ProviderConfigError("IMPORT_WALLET_PROVIDER=moralis but MORALIS_API_KEY is not set.")
        return [_moralis()]
    if override == "etherscan":
        if not config.etherscan_api_key:
            raise ProviderConfigError("IMPORT_WALLET_PROVIDER=etherscan but ETHERSCAN_API_KEY is not set.")
        return [_etherscan()]

    providers: List[WalletProvider] = []
    if config.moralis_api_key:
        providers.append(_moralis())
    if config.etherscan_api_key:
        providers.append(_etherscan())
    if not providers:
        raise ProviderConfigError("No wallet balance provider configured: set MORALIS_API_KEY or ETHERSCAN_API_KEY.")
    return providers


class BalanceAcquisitionEngine:
    def __init__(
        self,
        providers: List[WalletProvider],
        *,
        verify_all_chains: bool = False,
        concurrent: bool = False,
        debug: bool = False,
    ):
        if not providers:
            raise ProviderConfigError("No wallet balance provider configured.")
        self.providers = providers
        self.verify_all_chains = verify_all_chains
        self.concurrent = concurrent
        self.debug = debug

    async def scan_chain(self, chain: ChainConfig, address: str, *, primary: bool) -> ChainScanResult:
        reconcile = primary or self.verify_all_chains
        attempts: List[str] = []
        for provider in self.providers:
            if not provider.supports(chain):
                continue
            try:
                result = await provider.scan_chain(chain, address, reconcile=reconcile)
            except ProviderError as exc:
                logger.warning(
                    "wallet.provider_failed provider=%s chain=%s address=%s error=%s",
                    provider.name, chain.key, mask_address(address), exc,
                )
                attempts.append(f"{provider.name}: {exc}")
                continue
            result.attempts = attempts
            result.fell_back = bool(attempts)
            return result
        raise ChainScanError(chain.key, attempts)

    async def scan(self, chains: List[ChainConfig], address: str) -> WalletScan:
        """Raises PrimaryChainError when the first chain cannot be scanned."""
        if not chains:
            return WalletScan()

        outcomes: List[Union[ChainScanResult, BaseException]]
        if self.concurrent:
            outcomes = list(await asyncio.gather(
                *(self.scan_chain(c, address, primary=(i == 0)) for i, c in enumerate(chains)),
                return_exceptions=True,
            ))
        else:
            outcomes = []
            for i, c in enumerate(chains):
                try:
                    outcomes.append(await self.scan_chain(c, address, primary=(i == 0)))
                except ChainScanError as exc:
                    if i == 0:
                        raise PrimaryChainError(exc) from exc
                    outcomes.append(exc)

        return self._aggregate(chains, outcomes)

    def _aggregate(
        self,
        chains: List[ChainConfig],
        outcomes: List[Union[ChainScanResult, BaseException]],
    ) -> WalletScan:
        scan = WalletScan()
        chain_errors: List[str] = []
        truncated: List[str] = []
        fallbacks: List[str] = []

        for i, (chain, outcome) in enumerate(zip(chains, outcomes)):
            if isinstance(outcome, ChainScanError):
                if i == 0:
                    raise PrimaryChainError(outcome) from outcome
                scan.failed_chains.append(chain.key)
                chain_errors.append(str(outcome))
                continue
            if isinstance(outcome, BaseException):
                # only ChainScanError is expected from scan_chain
                raise outcome

            scan.chain_results.append(outcome)
            scan.positions.extend(outcome.positions)
            if outcome.truncated:
                truncated.append(chain.key)
            if outcome.fell_back:
                fallbacks.append(f"{chain.key} via {outcome.provider} ({'; '.join(outcome.attempts)})")

        if chain_errors:
            scan.warnings.append(make_warning(
                "SCAN_CHAIN_ERROR",
                f"{len(chain_errors)} chain(s) could not be scanned: {', '.join(scan.failed_chains)}.",
                count=len(chain_errors),
                samples=chain_errors,
            ))
        if truncated:
            scan.warnings.append(make_warning(
                "SCAN_TRUNCATED",
                f"Results hit the provider page limit on: {', '.join(truncated)}. Some holdings may be missing.",
                count=len(truncated),
                samples=truncated,
            ))
        if fallbacks:
            scan.warnings.append(make_warning(
                "PROVIDER_FALLBACK",
                "The preferred balance provider failed; a fallback provider was used.",
                count=len(fallbacks),
                samples=fallbacks,
            ))
        if self.debug:
            scan.warnings.append(make_warning(
                "SCAN_DIAGNOSTICS",
                f"Scanned {len(scan.chain_results)} chain(s); {len(scan.positions)} raw position(s).",
                count=len(scan.positions),
                samples=[
                    f"{r.chain}: provider={r.provider} positions={len(r.positions)} reconciled={r.reconciled}"
                    for r in scan.chain_results
                ],
            ))

        logger.info(
            "wallet.scan_done chains=%s positions=%s failed=%s truncated=%s",
            len(chains), len(scan.positions), scan.failed_chains, truncated,
        )
        return scan
