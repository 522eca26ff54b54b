import asyncio
import unittest
from unittest.mock import patch

import httpx

from services.cache.cache_backend import local_clear
from services.coinmarketcap.client import CoinMarketCapClient, record_contracts
from services.etherscan.client import EtherscanClient
from services.http_retry import ProviderError, RateLimitError, call_with_retry
from services.moralis.client import MoralisClient

WALLET = "0x" + "a" * 40


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class RetryPolicyTests(unittest.TestCase):
    def test_rate_limit_retried_then_succeeds(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RateLimitError("slow down", provider="x")
            return "ok"

        out = asyncio.run(call_with_retry(flaky, retries=3, delay_sec=0, label="t"))
        self.assertEqual(out, "ok")
        self.assertEqual(len(calls), 3)

    def test_exhausted_retries_raise(self):
        calls = []

        async def always_limited():
            calls.append(1)
            raise RateLimitError("slow down", provider="x", status=429)

        with self.assertRaises(RateLimitError) as ctx:
            asyncio.run(call_with_retry(always_limited, retries=2, delay_sec=0, label="moralis tokens"))
        self.assertEqual(len(calls), 3)
        self.assertIn("rate limited after 2 retries", str(ctx.exception))
        self.assertEqual(ctx.exception.status, 429)

    def test_other_errors_not_retried(self):
        calls = []

        async def broken():
            calls.append(1)
            raise ProviderError("boom", provider="x")

        with self.assertRaises(ProviderError):
            asyncio.run(call_with_retry(broken, retries=5, delay_sec=0, label="t"))
        self.assertEqual(len(calls), 1)

    def test_delay_grows_linearly(self):
        async def always_limited():
            raise RateLimitError("slow down", provider="x")

        with self.assertLogs("services.http_retry", level="WARNING") as logs:
            with self.assertRaises(RateLimitError):
                asyncio.run(call_with_retry(always_limited, retries=2, delay_sec=0.25, label="t"))
        text = "\n".join(logs.output)
        self.assertIn("in 0.25 seconds", text)
        self.assertIn("in 0.5 seconds", text)


class MoralisClientTests(unittest.TestCase):
    def test_cursor_pagination_and_truncation(self):
        seen = []

        def handler(request: httpx.Request):
            seen.append(dict(request.url.params))
            self.assertEqual(request.headers["X-API-Key"], "k")
            self.assertTrue(request.url.path.endswith(f"/wallets/{WALLET}/tokens"))
            n = len(seen)
            return httpx.Response(200, json={"result": [{"symbol": f"T{n}"}], "cursor": f"c{n}"})

        async def run():
            async with _client(handler) as c:
                client = MoralisClient("k", max_pages=2, retry_delay_sec=0, client=c)
                return await client.get_wallet_tokens(WALLET, "eth")

        tokens = asyncio.run(run())
        self.assertEqual([i["symbol"] for i in tokens.items], ["T1", "T2"])
        self.assertEqual(tokens.pages, 2)
        self.assertTrue(tokens.truncated)
        self.assertNotIn("cursor", seen[0])
        self.assertEqual(seen[1]["cursor"], "c1")
        self.assertEqual(seen[0]["chain"], "eth")

    def test_last_page_not_truncated(self):
        def handler(request):
            return httpx.Response(200, json={"result": [], "cursor": None})

        async def run():
            async with _client(handler) as c:
                return await MoralisClient("k", client=c).get_wallet_tokens(WALLET, "eth")

        tokens = asyncio.run(run())
        self.assertFalse(tokens.truncated)
        self.assertEqual(tokens.pages, 1)

    def test_http_429_retried_then_fatal(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(429, json={"message": "too many"})

        async def run():
            async with _client(handler) as c:
                return await MoralisClient("k", retries=1, retry_delay_sec=0, client=c).get_wallet_tokens(WALLET, "eth")

        with self.assertRaises(RateLimitError):
            asyncio.run(run())
        self.assertEqual(len(calls), 2)

    def test_missing_key(self):
        with self.assertRaises(ProviderError):
            MoralisClient("")


class EtherscanClientTests(unittest.TestCase):
    def test_native_balance(self):
        def handler(request):
            params = request.url.params
            self.assertEqual(params["chainid"], "137")
            self.assertEqual(params["action"], "balance")
            self.assertEqual(params["apikey"], "k")
            return httpx.Response(200, json={"status": "1", "message": "OK", "result": "123456789012345678901234"})

        async def run():
            async with _client(handler) as c:
                return await EtherscanClient("k", client=c).get_native_balance(137, WALLET)

        self.assertEqual(asyncio.run(run()), 123456789012345678901234)

    def test_transfer_window_truncation(self):
        def handler(request):
            page = int(request.url.params["page"])
            rows = [{"contractAddress": "0x" + "c" * 40, "value": str(page)}] * 2
            return httpx.Response(200, json={"status": "1", "message": "OK", "result": rows})

        async def run():
            async with _client(handler) as c:
                client = EtherscanClient("k", page_size=2, max_results=4, client=c)
                return await client.get_token_transfers(1, WALLET)

        history = asyncio.run(run())
        self.assertEqual(history.pages, 2)
        self.assertEqual(len(history.items), 4)
        self.assertTrue(history.truncated)

    def test_no_transactions_is_empty(self):
        def handler(request):
            return httpx.Response(200, json={"status": "0", "message": "No transactions found", "result": []})

        async def run():
            async with _client(handler) as c:
                return await EtherscanClient("k", client=c).get_token_transfers(1, WALLET)

        history = asyncio.run(run())
        self.assertEqual(history.items, [])
        self.assertFalse(history.truncated)

    def test_rate_limit_message_is_retryable(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                return httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})
            return httpx.Response(200, json={"status": "1", "message": "OK", "result": "5"})

        async def run():
            async with _client(handler) as c:
                client = EtherscanClient("k", retry_delay_sec=0, client=c)
                return await client.get_token_balance(1, WALLET, "0x" + "c" * 40)

        self.assertEqual(asyncio.run(run()), 5)
        self.assertEqual(len(calls), 2)

    def test_error_message_is_fatal(self):
        def handler(request):
            return httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Invalid API Key"})

        async def run():
            async with _client(handler) as c:
                return await EtherscanClient("k", client=c).get_native_balance(1, WALLET)

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(run())
        self.assertNotIsInstance(ctx.exception, RateLimitError)


class CoinMarketCapClientTests(unittest.TestCase):
    def setUp(self):
        local_clear()

    def tearDown(self):
        local_clear()

    def test_info_and_quotes(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            self.assertEqual(request.headers["X-CMC_PRO_API_KEY"], "k")
            if request.url.path.endswith("/info"):
                self.assertEqual(request.url.params["symbol"], "BTC,ETH")
                return httpx.Response(200, json={
                    "status": {"error_code": 0},
                    "data": {"BTC": [{"id": 1, "symbol": "BTC"}], "eth": {"id": 1027, "symbol": "ETH"}},
                })
            return httpx.Response(200, json={
                "status": {"error_code": 0},
                "data": {"1": {"id": 1, "quote": {"USD": {"price": 50000}}}},
            })

        async def run():
            async with _client(handler) as c:
                client = CoinMarketCapClient("k", info_ttl_sec=0, client=c)
                info = await client.get_info(["btc", "ETH", "BTC"])
                quotes = await client.get_quotes([1])
                return info, quotes

        info, quotes = asyncio.run(run())
        self.assertEqual(set(info), {"BTC", "ETH"})
        self.assertEqual(info["ETH"][0]["id"], 1027)
        self.assertEqual(quotes[1]["quote"]["USD"]["price"], 50000)
        self.assertEqual(len(paths), 2)

    def test_info_cached_between_calls(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(200, json={"status": {"error_code": 0}, "data": {"UNI": [{"id": 7083}]}})

        async def run():
            async with _client(handler) as c:
                client = CoinMarketCapClient("k", info_ttl_sec=60, client=c)
                await client.get_info(["UNI"])
                return await client.get_info(["uni"])

        with patch("services.cache.cache_backend.get_redis_client", return_value=None):
            info = asyncio.run(run())
        self.assertEqual(info["UNI"][0]["id"], 7083)
        self.assertEqual(len(calls), 1)

    def test_rate_limit_error_code(self):
        def handler(request):
            return httpx.Response(200, json={"status": {"error_code": 1008, "error_message": "minute limit"}})

        async def run():
            async with _client(handler) as c:
                return await CoinMarketCapClient("k", retries=0, info_ttl_sec=0, client=c).get_info(["BTC"])

        with self.assertRaises(RateLimitError):
            asyncio.run(run())

    def test_record_contracts_includes_platform(self):
        record = {
            "platform": {"name": "Ethereum", "token_address": "0x" + "C" * 40},
            "contract_address": [{"contract_address": "0x" + "d" * 40, "platform": {"name": "Polygon"}}],
        }
        addrs = [a for a, _ in record_contracts(record)]
        self.assertEqual(addrs, ["0x" + "d" * 40, "0x" + "c" * 40])


if __name__ == "__main__":
    unittest.main()
