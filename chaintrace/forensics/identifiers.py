"""Identifier sniffing: search type, chain tag and explorer links.

The chain is decided once here (from the identifier's lexical form) and then
threaded through the adapter and the engine as a ChainKind.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Dict, List, Tuple

from .errors import InputRejected
from .models import ChainKind, EntityKind


class SearchType(str, Enum):
    ADDRESS = "address"
    ETH_ADDRESS = "eth_address"
    TX = "tx"
    BLOCK = "block"
    UNKNOWN = "unknown"


_ETH_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_ETH_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")
_BTC_BASE58_RE = re.compile(r"^[13][a-km-zA-HJ-NP-Z1-9]{25,34}$")
_BTC_BECH32_RE = re.compile(r"^bc1[qpzry9x8gf2tvdw0s3jn54khce6mua7l]{39,59}$", re.IGNORECASE)
_HEX64_RE = re.compile(r"^[a-fA-F0-9]{64}$")
_BLOCK_HEIGHT_RE = re.compile(r"^\d{1,9}$")


def detect_search_type(query: str) -> SearchType:
    q = (query or "").strip()
    if not q:
        return SearchType.UNKNOWN

    if _ETH_ADDRESS_RE.match(q):
        return SearchType.ETH_ADDRESS
    if _ETH_HASH_RE.match(q):
        return SearchType.TX
    if _BTC_BASE58_RE.match(q) or _BTC_BECH32_RE.match(q):
        return SearchType.ADDRESS
    if _BLOCK_HEIGHT_RE.match(q):
        return SearchType.BLOCK
    if _HEX64_RE.match(q):
        # Bitcoin block hashes carry leading zero work bits
        if q.startswith("00000000"):
            return SearchType.BLOCK
        return SearchType.TX
    return SearchType.UNKNOWN


def chain_of(identifier: str) -> ChainKind:
    """0x-prefixed identifiers are Ethereum-style, everything else Bitcoin-style."""
    return ChainKind.ETHEREUM if (identifier or "").lower().startswith("0x") else ChainKind.BITCOIN


def address_kind(address: str) -> EntityKind:
    if chain_of(address) is ChainKind.ETHEREUM:
        return EntityKind.ETHEREUM_ADDRESS
    return EntityKind.BITCOIN_ADDRESS


def resolve_identifier(query: str) -> Tuple[str, EntityKind, ChainKind]:
    """Map a user query to (identifier, entity kind, chain).

    Raises InputRejected when the query matches no supported pattern.
    """
    q = (query or "").strip()
    st = detect_search_type(q)
    if st is SearchType.ETH_ADDRESS:
        return q, EntityKind.ETHEREUM_ADDRESS, ChainKind.ETHEREUM
    if st is SearchType.ADDRESS:
        return q, EntityKind.BITCOIN_ADDRESS, ChainKind.BITCOIN
    if st is SearchType.TX:
        return q, EntityKind.TRANSACTION, chain_of(q)
    if st is SearchType.BLOCK:
        return q, EntityKind.BLOCK, chain_of(q)
    raise InputRejected(f"Cannot resolve identifier format: {q[:80]!r}")


def explorer_links(identifier: str, kind: EntityKind) -> List[Dict[str, str]]:
    """Public block explorer pages for an identifier (used by reports)."""
    is_eth = chain_of(identifier) is ChainKind.ETHEREUM
    if kind.is_address:
        if is_eth:
            return [
                {"name": "Etherscan", "url": f"https://etherscan.io/address/{identifier}"},
                {"name": "Sepolia Scan", "url": f"https://sepolia.etherscan.io/address/{identifier}"},
                {"name": "Blockscout", "url": f"https://eth.blockscout.com/address/{identifier}"},
            ]
        return [
            {"name": "Mempool", "url": f"https://mempool.space/address/{identifier}"},
            {"name": "Blockchain.com", "url": f"https://www.blockchain.com/explorer/addresses/btc/{identifier}"},
        ]
    if kind is EntityKind.BLOCK:
        if is_eth:
            return [
                {"name": "Etherscan", "url": f"https://etherscan.io/block/{identifier}"},
                {"name": "Sepolia Scan", "url": f"https://sepolia.etherscan.io/block/{identifier}"},
            ]
        return [
            {"name": "Mempool", "url": f"https://mempool.space/block/{identifier}"},
            {"name": "Blockchain.com", "url": f"https://www.blockchain.com/explorer/blocks/btc/{identifier}"},
        ]
    if kind is EntityKind.TRANSACTION:
        if is_eth:
            return [
                {"name": "Etherscan", "url": f"https://etherscan.io/tx/{identifier}"},
                {"name": "Sepolia Scan", "url": f"https://sepolia.etherscan.io/tx/{identifier}"},
            ]
        return [
            {"name": "Mempool", "url": f"https://mempool.space/tx/{identifier}"},
            {"name": "Blockstream", "url": f"https://blockstream.info/tx/{identifier}"},
        ]
    return []
