import asyncio
import unittest

import httpx

from config.import_config import ImportConfig
from services.coinmarketcap.client import CoinMarketCapClient
from services.imports.wallet_connector import WalletConnector
from services.wallet.balance_cache import TokenBalanceCache

WALLET = "0x" + "a" * 40
OTHER = "0x" + "b" * 40
USDC_ETH = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
FAKE_USDC = "0x" + "f" * 40


class RecordingTransport:
    """Routes MockTransport requests by host and counts them."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        handler = self.routes.get(request.url.host)
        if handler is None:
            return httpx.Response(404, json={})
        return handler(request)

    def count(self, host, **params):
        return sum(
            1 for r in self.requests
            if r.url.host == host and all(r.url.params.get(k) == v for k, v in params.items())
        )


def _codes(result):
    return [w.code for w in result.warnings]


def _connector(config, transport, *, with_prices=False, cache=None):
    http = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    prices = None
    if with_prices:
        prices = CoinMarketCapClient(config.cmc_api_key, info_ttl_sec=0, retry_delay_sec=0, client=http)
    return WalletConnector(
        config,
        balance_cache=cache if cache is not None else TokenBalanceCache(config.balance_cache_ttl_sec),
        price_registry=prices,
        http_client=http,
    )


def _moralis_tokens(request):
    return httpx.Response(200, json={"cursor": None, "result": [
        {"token_address": "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee", "native_token": True, "symbol": "ETH",
         "name": "Ether", "decimals": 18, "balance": "1000000000000000000", "usd_price": 3000, "usd_value": 3000},
        {"token_address": USDC_ETH, "symbol": "USDC", "name": "USD Coin", "decimals": 6, "balance": "500000000",
         "usd_price": 1, "usd_value": 500, "possible_spam": False, "verified_contract": True},
        {"token_address": FAKE_USDC, "symbol": "USDC", "name": "USD Coin", "decimals": 6, "balance": "900000000",
         "usd_price": 1, "usd_value": 900, "possible_spam": False, "verified_contract": False},
        {"token_address": "0x" + "9" * 40, "symbol": "CLAIM", "name": "Visit site to claim", "decimals": 18,
         "balance": "1", "usd_price": None, "usd_value": None, "possible_spam": True},
    ]})


class WalletInputTests(unittest.TestCase):
    def test_invalid_address_makes_no_calls(self):
        transport = RecordingTransport({})
        connector = _connector(ImportConfig(moralis_api_key="m", etherscan_api_key="e"), transport)

        for bad in ("0x123", "a" * 42, "0x" + "g" * 40, ""):
            result = asyncio.run(connector.preview({"address": bad, "chain": "ethereum"}))
            self.assertFalse(result.ok)
            self.assertEqual(len(result.errors), 1)
            self.assertIsNone(result.proposed_assets)
        self.assertEqual(transport.requests, [])

    def test_no_provider_configured(self):
        transport = RecordingTransport({})
        result = asyncio.run(_connector(ImportConfig(), transport).preview({"address": WALLET}))
        self.assertFalse(result.ok)
        self.assertIn("No wallet balance provider configured", result.errors[0])
        self.assertEqual(transport.requests, [])

    def test_unsupported_primary_chain_without_fallback(self):
        transport = RecordingTransport({"deep-index.moralis.io": _moralis_tokens})
        connector = _connector(ImportConfig(moralis_api_key="m"), transport)

        result = asyncio.run(connector.preview({"address": WALLET, "chain": "scroll"}))
        self.assertFalse(result.ok)
        self.assertIsNone(result.proposed_assets)
        self.assertIn("scroll", result.errors[0])
        self.assertEqual(transport.requests, [])

    def test_unknown_chains_only(self):
        transport = RecordingTransport({})
        result = asyncio.run(_connector(ImportConfig(moralis_api_key="m"), transport).preview(
            {"address": WALLET, "chain": "solana"}
        ))
        self.assertFalse(result.ok)
        self.assertEqual(_codes(result), ["UNKNOWN_CHAINS"])


class MoralisWalletTests(unittest.TestCase):
    def test_counterfeit_token_filtered_with_sample(self):
        transport = RecordingTransport({"deep-index.moralis.io": _moralis_tokens})
        connector = _connector(ImportConfig(moralis_api_key="m"), transport)

        result = asyncio.run(connector.preview({"address": WALLET, "chain": "eth,solana"}))
        self.assertTrue(result.ok, result.errors)
        self.assertEqual([a.id for a in result.proposed_assets], ["ETH", "USDC"])
        self.assertAlmostEqual(sum(a.current_weight for a in result.proposed_assets), 1.0, delta=1e-6)
        self.assertAlmostEqual(result.proposed_assets[0].current_weight, 3000 / 3500, delta=1e-6)

        by_code = {w.code: w for w in result.warnings}
        self.assertIn("UNKNOWN_CHAINS", by_code)
        self.assertEqual(by_code["FILTERED_CONTRACT_MISMATCH"].count, 1)
        self.assertIn("0xffff", by_code["FILTERED_CONTRACT_MISMATCH"].samples[0])
        self.assertEqual(by_code["FILTERED_SPAM"].count, 1)
        self.assertEqual(result.summary, "Found 2 position(s) across 1 chain(s).")

    def test_indexer_failure_falls_back_to_explorer(self):
        def moralis_down(request):
            return httpx.Response(503, json={"message": "unavailable"})

        def etherscan(request):
            action = request.url.params["action"]
            if action == "balance":
                return httpx.Response(200, json={"status": "1", "message": "OK", "result": "500000000000000000"})
            return httpx.Response(200, json={"status": "0", "message": "No transactions found", "result": []})

        transport = RecordingTransport({"deep-index.moralis.io": moralis_down, "api.etherscan.io": etherscan})
        cfg = ImportConfig(moralis_api_key="m", etherscan_api_key="e", balance_call_delay_sec=0)
        result = asyncio.run(_connector(cfg, transport).preview({"address": WALLET, "chain": "ethereum"}))

        # explorer balances carry no price and no registry is configured
        self.assertFalse(result.ok)
        self.assertIn("PROVIDER_FALLBACK", _codes(result))
        self.assertIn("FILTERED_MISSING_VALUE", _codes(result))


class ExplorerWalletTests(unittest.TestCase):
    def setUp(self):
        def etherscan(request):
            action = request.url.params["action"]
            if action == "balance":
                return httpx.Response(200, json={"status": "1", "message": "OK", "result": "2000000000000000000"})
            if action == "tokentx":
                return httpx.Response(200, json={"status": "1", "message": "OK", "result": [
                    {"contractAddress": USDC_ETH, "from": OTHER, "to": WALLET, "value": "100000000",
                     "tokenSymbol": "USDC", "tokenName": "USD Coin", "tokenDecimal": "6"},
                ]})
            if action == "tokenbalance":
                return httpx.Response(200, json={"status": "1", "message": "OK", "result": "150000000"})
            return httpx.Response(400, json={})

        def cmc(request):
            if request.url.path.endswith("/info"):
                return httpx.Response(200, json={"status": {"error_code": 0}, "data": {
                    "ETH": [{"id": 1027, "symbol": "ETH"}],
                    "USDC": [{"id": 3408, "symbol": "USDC", "contract_address": [
                        {"contract_address": USDC_ETH, "platform": {"name": "Ethereum", "coin": {"symbol": "ETH"}}},
                    ]}],
                }})
            return httpx.Response(200, json={"status": {"error_code": 0}, "data": {
                "1027": {"id": 1027, "cmc_rank": 2, "quote": {"USD": {"price": 2000.0, "market_cap": 2.4e11}}},
                "3408": {"id": 3408, "cmc_rank": 6, "quote": {"USD": {"price": 1.0, "market_cap": 7e10}}},
            }})

        self.transport = RecordingTransport({"api.etherscan.io": etherscan, "pro-api.coinmarketcap.com": cmc})
        self.config = ImportConfig(etherscan_api_key="e", cmc_api_key="c", balance_call_delay_sec=0)
        self.connector = _connector(self.config, self.transport, with_prices=True)

    def test_reconciled_and_enriched(self):
        result = asyncio.run(self.connector.preview({"address": WALLET, "chain": "ethereum"}))
        self.assertTrue(result.ok, result.errors)

        raw = {p.symbol: p for p in result.raw_positions}
        self.assertEqual(raw["USDC"].quantity, 150.0)
        self.assertEqual(raw["USDC"].meta["balance_source"], "onchain")
        self.assertEqual(raw["ETH"].value_usd, 4000.0)

        assets = {a.id: a for a in result.proposed_assets}
        self.assertAlmostEqual(assets["ETH"].current_weight, 4000 / 4150, delta=1e-6)
        self.assertEqual(assets["USDC"].role, "liquidity")

    def test_exact_balances_are_cached_across_requests(self):
        asyncio.run(self.connector.preview({"address": WALLET, "chain": "ethereum"}))
        asyncio.run(self.connector.preview({"address": WALLET, "chain": "ethereum"}))
        self.assertEqual(self.transport.count("api.etherscan.io", action="tokenbalance"), 1)
        self.assertEqual(self.transport.count("api.etherscan.io", action="tokentx"), 2)

    def test_secondary_chain_uses_transfer_log(self):
        result = asyncio.run(self.connector.preview({"address": WALLET, "chain": ["ethereum", "polygon"]}))
        self.assertTrue(result.ok, result.errors)
        polygon_usdc = [
            p for p in result.raw_positions
            if p.meta.get("chain") == "polygon" and p.symbol == "USDC"
        ]
        # USDC_ETH is not an official Polygon USDC contract
        self.assertEqual(polygon_usdc, [])
        self.assertIn("FILTERED_CONTRACT_MISMATCH", _codes(result))
        self.assertEqual(self.transport.count("api.etherscan.io", action="tokenbalance"), 1)


if __name__ == "__main__":
    unittest.main()
