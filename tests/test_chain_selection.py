import unittest

from services.chains.chain_registry import CHAINS, free_tier_chains, get_chain, resolve_chain_selection


class ChainRegistryTests(unittest.TestCase):
    def test_aliases_resolve(self):
        self.assertEqual(get_chain("ETH").key, "ethereum")
        self.assertEqual(get_chain("matic").chain_id, 137)
        self.assertIsNone(get_chain("solana"))

    def test_registry_shape(self):
        for key, cfg in CHAINS.items():
            self.assertEqual(cfg.key, key)
            self.assertTrue(cfg.native_symbol)
        self.assertIsNone(CHAINS["scroll"].moralis_chain)


class ChainSelectionTests(unittest.TestCase):
    def test_explicit_list_is_ordered_and_deduplicated(self):
        sel = resolve_chain_selection("polygon, eth,ethereum,solana,matic,foo")
        self.assertEqual([c.key for c in sel.chains], ["polygon", "ethereum"])
        self.assertEqual(sel.unknown, ["solana", "foo"])
        self.assertEqual(sel.primary.key, "polygon")

    def test_list_payload(self):
        sel = resolve_chain_selection(["base", "arbitrum"])
        self.assertEqual([c.key for c in sel.chains], ["base", "arbitrum"])

    def test_auto_uses_scope(self):
        self.assertEqual([c.key for c in resolve_chain_selection("auto").chains], ["ethereum"])
        self.assertEqual(
            [c.key for c in resolve_chain_selection(None, default_chain="base").chains], ["base"]
        )
        free = resolve_chain_selection("", scope="free")
        self.assertEqual(free.chains, free_tier_chains())
        explicit = resolve_chain_selection("auto", scope="gnosis,linea")
        self.assertEqual([c.key for c in explicit.chains], ["gnosis", "linea"])

    def test_all_means_free_tier(self):
        sel = resolve_chain_selection("all")
        self.assertEqual(sel.chains, free_tier_chains())
        self.assertEqual(sel.primary.key, "ethereum")

    def test_only_unknown(self):
        sel = resolve_chain_selection("tron")
        self.assertEqual(sel.chains, [])
        self.assertIsNone(sel.primary)
        self.assertEqual(sel.unknown, ["tron"])


if __name__ == "__main__":
    unittest.main()
