"""Canonical data shapes shared by the adapter, the engine and the graph store.

Provider responses are normalized into Transaction / AddressSummary before they
leave chain_data; graph nodes and edges are Entity / Relationship.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ChainKind(str, Enum):
    BITCOIN = "bitcoin"
    ETHEREUM = "ethereum"

    @property
    def unit(self) -> str:
        return "BTC" if self is ChainKind.BITCOIN else "ETH"

    @property
    def decimals(self) -> int:
        return 8 if self is ChainKind.BITCOIN else 18

    @property
    def network(self) -> str:
        return "Bitcoin" if self is ChainKind.BITCOIN else "Ethereum"

    def to_coins(self, base_units: int) -> float:
        return base_units / (10 ** self.decimals)


class EntityKind(str, Enum):
    BITCOIN_ADDRESS = "bitcoin-address"
    ETHEREUM_ADDRESS = "ethereum-address"
    TRANSACTION = "transaction"
    BLOCK = "block"
    OSINT_HIT = "osint-hit"
    SOCIAL_HIT = "social-hit"
    GITHUB_HIT = "github-hit"

    @property
    def is_address(self) -> bool:
        return self in (EntityKind.BITCOIN_ADDRESS, EntityKind.ETHEREUM_ADDRESS)


@dataclass
class TxInput:
    address: Optional[str] = None   # None for coinbase / unresolvable prevout
    value: int = 0                  # base units (sat / wei)
    prev_txid: str = ""
    prev_vout: int = 0


@dataclass
class TxOutput:
    address: Optional[str] = None
    value: int = 0


@dataclass
class TxStatus:
    confirmed: bool = False
    block_height: Optional[int] = None
    block_hash: Optional[str] = None
    block_time: Optional[int] = None   # unix seconds


@dataclass
class Transaction:
    txid: str
    chain: ChainKind = ChainKind.BITCOIN
    inputs: List[TxInput] = field(default_factory=list)
    outputs: List[TxOutput] = field(default_factory=list)
    fee: int = 0
    size: int = 0
    weight: int = 0
    status: TxStatus = field(default_factory=TxStatus)

    @property
    def total_input(self) -> int:
        return sum(i.value for i in self.inputs)

    @property
    def total_output(self) -> int:
        return sum(o.value for o in self.outputs)

    @property
    def fee_per_byte(self) -> float:
        if self.size <= 0:
            return 0.0
        return self.fee / self.size

    def net_change(self, address: str) -> int:
        """Value received by `address` minus value it spent in this tx."""
        received = sum(o.value for o in self.outputs if o.address == address)
        spent = sum(i.value for i in self.inputs if i.address == address)
        return received - spent


@dataclass
class AddressSummary:
    address: str
    chain: ChainKind = ChainKind.BITCOIN
    funded_txo_count: int = 0
    funded_txo_sum: int = 0
    spent_txo_count: int = 0
    spent_txo_sum: int = 0
    tx_count: int = 0
    mempool_tx_count: int = 0

    @property
    def balance(self) -> int:
        return self.funded_txo_sum - self.spent_txo_sum


@dataclass
class Entity:
    id: str
    kind: EntityKind
    label: str = ""
    risk_score: Optional[int] = None    # 0-100
    is_root: bool = False
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "label": self.label,
            "risk_score": self.risk_score,
            "is_root": self.is_root,
            "details": dict(self.attributes),
        }


@dataclass
class Relationship:
    source_id: str
    target_id: str
    weight: float = 1.0
    label: str = ""

    @property
    def key(self) -> tuple:
        """Unordered endpoint pair; A-B and B-A are the same edge."""
        a, b = self.source_id, self.target_id
        return (a, b) if a <= b else (b, a)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source_id,
            "target": self.target_id,
            "value": self.weight,
            "label": self.label,
        }
