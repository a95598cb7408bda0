"""Tests for identifier sniffing, chain tagging and explorer links."""

from __future__ import annotations

import pytest

BTC_LEGACY = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
BTC_P2SH = "34xp4vRoCGJym3xR7yCVPFHoCNxv4Twseo"
BTC_BECH32 = "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh"
ETH_ADDR = "0xde0b295669a9fd93d5f28d9ec85e40f4cb697bae"
ETH_TX = "0x" + "ab" * 32
BTC_TX = "4a5e1e4baab89f3a32518a88c31bc87f618f76673e2cc77ab2127b7afdeda33b"
BTC_BLOCK_HASH = "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f"


class TestDetectSearchType:
    @pytest.mark.parametrize("query,expected", [
        (BTC_LEGACY, "address"),
        (BTC_P2SH, "address"),
        (BTC_BECH32, "address"),
        (ETH_ADDR, "eth_address"),
        (ETH_TX, "tx"),
        (BTC_TX, "tx"),
        (BTC_BLOCK_HASH, "block"),
        ("800000", "block"),
        ("  800000 ", "block"),
        ("", "unknown"),
        ("hello world", "unknown"),
        ("1234567890", "unknown"),
    ])
    def test_patterns(self, query, expected):
        from chaintrace.forensics.identifiers import detect_search_type

        assert detect_search_type(query).value == expected


class TestResolveIdentifier:
    def test_bitcoin_address(self):
        from chaintrace.forensics.identifiers import resolve_identifier
        from chaintrace.forensics.models import ChainKind, EntityKind

        assert resolve_identifier(f"  {BTC_LEGACY}\n") == (BTC_LEGACY, EntityKind.BITCOIN_ADDRESS, ChainKind.BITCOIN)

    def test_ethereum_tx_routes_to_ethereum(self):
        from chaintrace.forensics.identifiers import resolve_identifier
        from chaintrace.forensics.models import ChainKind, EntityKind

        assert resolve_identifier(ETH_TX) == (ETH_TX, EntityKind.TRANSACTION, ChainKind.ETHEREUM)

    def test_block_height(self):
        from chaintrace.forensics.identifiers import resolve_identifier
        from chaintrace.forensics.models import ChainKind, EntityKind

        assert resolve_identifier("800000") == ("800000", EntityKind.BLOCK, ChainKind.BITCOIN)

    def test_garbage_rejected(self):
        from chaintrace.forensics.errors import InputRejected
        from chaintrace.forensics.identifiers import resolve_identifier

        with pytest.raises(InputRejected):
            resolve_identifier("not-a-wallet")


class TestExplorerLinks:
    def test_bitcoin_address_links(self):
        from chaintrace.forensics.identifiers import explorer_links
        from chaintrace.forensics.models import EntityKind

        links = explorer_links(BTC_LEGACY, EntityKind.BITCOIN_ADDRESS)
        assert [l["name"] for l in links] == ["Mempool", "Blockchain.com"]
        assert links[0]["url"] == f"https://mempool.space/address/{BTC_LEGACY}"

    def test_ethereum_tx_links(self):
        from chaintrace.forensics.identifiers import explorer_links
        from chaintrace.forensics.models import EntityKind

        links = explorer_links(ETH_TX, EntityKind.TRANSACTION)
        assert links[0]["url"] == f"https://etherscan.io/tx/{ETH_TX}"

    def test_osint_hit_has_none(self):
        from chaintrace.forensics.identifiers import explorer_links
        from chaintrace.forensics.models import EntityKind

        assert explorer_links("https://example.com", EntityKind.OSINT_HIT) == []
