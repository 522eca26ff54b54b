import asyncio
import json
import unittest

from config.import_config import ImportConfig
from services.imports.csv_connector import CsvConnector, detect_delimiter, parse_csv_rows, parse_csv_to_raw_positions
from services.imports.json_connector import JsonConnector, parse_json_to_raw_positions


def _codes(result):
    return [w.code for w in result.warnings]


class CsvParsingTests(unittest.TestCase):
    def test_detects_semicolon_and_tab(self):
        self.assertEqual(detect_delimiter("symbol;name;qty"), ";")
        self.assertEqual(detect_delimiter("symbol\tname\tqty"), "\t")
        self.assertEqual(detect_delimiter("symbol"), ",")

    def test_quoted_cells_keep_commas_and_escaped_quotes(self):
        rows = parse_csv_rows('symbol,name\nAAPL,"Apple, Inc. ""Common"""\n\n')
        self.assertEqual(rows, [["symbol", "name"], ["AAPL", 'Apple, Inc. "Common"']])

    def test_aliases_and_derived_value(self):
        text = "Ticker,Description,Qty,Price (USD)\nbtc,Bitcoin,2,\"$30,000\"\n,No symbol,1,1\n"
        positions = parse_csv_to_raw_positions(text)
        self.assertEqual(len(positions), 1)
        pos = positions[0]
        self.assertEqual(pos.symbol, "BTC")
        self.assertEqual(pos.name, "Bitcoin")
        self.assertEqual(pos.quantity, 2.0)
        self.assertEqual(pos.price_usd, 30000.0)
        self.assertEqual(pos.value_usd, 60000.0)
        self.assertEqual(pos.meta["source"], "csv_v1")
        self.assertEqual(pos.meta["header_map"]["symbol"], 0)

    def test_explicit_value_wins_over_derived(self):
        positions = parse_csv_to_raw_positions("symbol,quantity,price,value\nETH,1,2000,1999\n")
        self.assertEqual(positions[0].value_usd, 1999.0)

    def test_parenthesized_amounts_are_negative(self):
        positions = parse_csv_to_raw_positions("symbol,value_usd,price\nAAA,(500.00),\"($1,234.50)\"\nBBB,1000,2\n")
        self.assertEqual(positions[0].value_usd, -500.0)
        self.assertEqual(positions[0].price_usd, -1234.5)
        self.assertEqual(positions[1].value_usd, 1000.0)

    def test_name_defaults_to_symbol(self):
        positions = parse_csv_to_raw_positions("symbol,quantity\nspy,3\n")
        self.assertEqual(positions[0].name, "SPY")


class CsvPreviewTests(unittest.TestCase):
    def setUp(self):
        self.connector = CsvConnector(ImportConfig())

    def test_two_priced_rows_weight_by_value(self):
        csv_text = "symbol,name,quantity,price_usd\nBTC,Bitcoin,1,50000\nETH,Ethereum,10,2000\n"
        result = asyncio.run(self.connector.preview({"csv_text": csv_text}))

        self.assertTrue(result.ok)
        self.assertEqual(result.errors, [])
        assets = result.proposed_assets
        self.assertEqual([a.id for a in assets], ["BTC", "ETH"])
        self.assertAlmostEqual(assets[0].current_weight, 50000 / 70000, delta=1e-4)
        self.assertAlmostEqual(assets[1].current_weight, 20000 / 70000, delta=1e-4)
        self.assertEqual(assets[0].source_value_usd, 50000)
        self.assertEqual(assets[1].source_value_usd, 20000)
        self.assertAlmostEqual(sum(a.current_weight for a in assets), 1.0, delta=1e-6)
        self.assertEqual(assets[0].role, "core")
        self.assertEqual(assets[0].risk_class, "large_cap_crypto")
        self.assertIn("2 position", result.summary)

    def test_unpriced_rows_fall_back_to_equal_weights(self):
        result = asyncio.run(self.connector.preview({"csv_text": "symbol,name,quantity\nBTC,Bitcoin,1\nETH,Ethereum,10\n"}))

        self.assertTrue(result.ok)
        self.assertEqual(_codes(result), ["EQUAL_WEIGHT_FALLBACK"])
        self.assertEqual([a.current_weight for a in result.proposed_assets], [0.5, 0.5])

    def test_empty_text_is_single_error(self):
        result = asyncio.run(self.connector.preview({"csv_text": "   \n"}))
        self.assertFalse(result.ok)
        self.assertEqual(len(result.errors), 1)
        self.assertIsNone(result.proposed_assets)

    def test_missing_payload_field(self):
        result = asyncio.run(self.connector.preview({"csv_text": 12}))
        self.assertFalse(result.ok)
        self.assertTrue(result.errors)

    def test_header_only_reports_no_positions(self):
        result = asyncio.run(self.connector.preview({"csv_text": "symbol,quantity\n"}))
        self.assertFalse(result.ok)
        self.assertIn("No positions could be parsed from the CSV.", result.errors)

    def test_non_usd_rows_lose_value(self):
        csv_text = "symbol,quantity,value,currency\nAAPL,1,100,USD\nSAP,1,100,EUR\n"
        result = asyncio.run(self.connector.preview({"csv_text": csv_text}))
        self.assertTrue(result.ok)
        self.assertIn("NON_USD_UNSUPPORTED", _codes(result))
        self.assertIn("MISSING_VALUES", _codes(result))
        by_id = {a.id: a for a in result.proposed_assets}
        self.assertIsNone(by_id["SAP"].source_value_usd)
        self.assertEqual(by_id["AAPL"].current_weight, 1.0)

    def test_negative_value_carries_no_weight(self):
        result = asyncio.run(self.connector.preview({"csv_text": "symbol,value_usd\nAAA,(500.00)\nBBB,1000\n"}))
        self.assertTrue(result.ok)
        self.assertIn("MISSING_VALUES", _codes(result))
        by_id = {a.id: a for a in result.proposed_assets}
        self.assertIsNone(by_id["AAA"].source_value_usd)
        self.assertEqual(by_id["AAA"].current_weight, 0.0)
        self.assertEqual(by_id["BBB"].current_weight, 1.0)

    def test_explicit_role_hint_is_normalized(self):
        csv_text = "symbol,value,role\nUSDC,100,Hedge\nARB,100,\n"
        result = asyncio.run(self.connector.preview({"csv_text": csv_text}))
        by_id = {a.id: a for a in result.proposed_assets}
        self.assertEqual(by_id["USDC"].role, "defensive")
        self.assertEqual(by_id["ARB"].role, "satellite")


class JsonPreviewTests(unittest.TestCase):
    def setUp(self):
        self.connector = JsonConnector(ImportConfig())

    def test_object_with_known_array_key(self):
        text = json.dumps({"holdings": [
            {"Ticker": "aapl", "Qty": 10, "Price": 200},
            {"symbol": "MSFT", "value_usd": 1000},
            "not a row",
            {"name": "missing symbol"},
        ]})
        positions = parse_json_to_raw_positions(text)
        self.assertEqual([p.symbol for p in positions], ["AAPL", "MSFT"])
        self.assertEqual(positions[0].value_usd, 2000.0)
        self.assertEqual(positions[0].meta["source"], "json_v1")

    def test_bare_array_preview(self):
        text = json.dumps([{"symbol": "SPY", "value": 300}, {"symbol": "USDC", "value": 100}])
        result = asyncio.run(self.connector.preview({"json_text": text}))
        self.assertTrue(result.ok)
        self.assertEqual([a.id for a in result.proposed_assets], ["SPY", "USDC"])
        self.assertAlmostEqual(result.proposed_assets[0].current_weight, 0.75)
        self.assertEqual(result.proposed_assets[1].role, "liquidity")

    def test_malformed_json_carries_parser_message(self):
        result = asyncio.run(self.connector.preview({"json_text": "[{\"symbol\": "}))
        self.assertFalse(result.ok)
        self.assertTrue(result.errors[0].startswith("Invalid JSON:"))

    def test_unknown_shape_has_no_positions(self):
        result = asyncio.run(self.connector.preview({"json_text": json.dumps({"items": []})}))
        self.assertFalse(result.ok)
        self.assertIn("No positions could be parsed from the JSON.", result.errors)


if __name__ == "__main__":
    unittest.main()
