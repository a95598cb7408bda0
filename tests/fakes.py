"""In-memory stand-ins and canned upstream payloads shared across tests."""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from chaintrace.forensics.errors import AllProvidersFailed, NotFound
from chaintrace.forensics.models import AddressSummary, ChainKind, Transaction, TxInput, TxOutput, TxStatus

ROOT_ADDRESS = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"


def make_tx(
    txid: str,
    inputs: Sequence[Tuple[Optional[str], int]] = (),
    outputs: Sequence[Tuple[Optional[str], int]] = (),
    confirmed: bool = True,
    block_time: Optional[int] = 1_700_000_000,
    fee: int = 1000,
    size: int = 250,
    chain: ChainKind = ChainKind.BITCOIN,
) -> Transaction:
    return Transaction(
        txid=txid,
        chain=chain,
        inputs=[TxInput(address=a, value=v) for a, v in inputs],
        outputs=[TxOutput(address=a, value=v) for a, v in outputs],
        fee=fee,
        size=size,
        status=TxStatus(
            confirmed=confirmed,
            block_height=800_000 if confirmed else None,
            block_time=block_time if confirmed else None,
        ),
    )


class FakeAdapter:
    """Serves canned data and records every call as (op, identifier)."""

    def __init__(
        self,
        transactions: Iterable[Transaction] = (),
        address_txs: Optional[Dict[str, List[str]]] = None,
        summaries: Optional[Dict[str, AddressSummary]] = None,
        blocks: Optional[Dict[str, List[str]]] = None,
        failing: Iterable[str] = (),
        exploding: Iterable[str] = (),
    ) -> None:
        self.transactions = {t.txid: t for t in transactions}
        self.address_txs = address_txs or {}
        self.summaries = summaries or {}
        self.blocks = blocks or {}
        self.failing = set(failing)
        self.exploding = set(exploding)
        self.calls: List[Tuple[str, str]] = []
        self.on_fetch: Optional[Callable[[str, str], None]] = None
        self.purged: List[str] = []
        self.cleared = 0
        self.closed = False

    def _record(self, op: str, identifier: str) -> None:
        self.calls.append((op, identifier))
        if self.on_fetch is not None:
            self.on_fetch(op, identifier)
        if identifier in self.failing:
            raise AllProvidersFailed(f"all providers failed for {identifier}")
        if identifier in self.exploding:
            raise RuntimeError(f"unexpected failure for {identifier}")

    def ops(self, op: str) -> List[str]:
        return [i for o, i in self.calls if o == op]

    async def fetch_address(self, address, chain=None):
        self._record("address", address)
        if address not in self.summaries:
            raise NotFound(f"{address} not found")
        return self.summaries[address]

    async def fetch_address_transactions(self, address, chain=None, limit=None):
        self._record("address_txs", address)
        txs = [self.transactions[t] for t in self.address_txs.get(address, [])]
        return txs if limit is None else txs[:limit]

    async def fetch_transaction(self, txid, chain=None):
        self._record("tx", txid)
        if txid not in self.transactions:
            raise NotFound(f"{txid} not found")
        return self.transactions[txid]

    async def fetch_block_transactions(self, block_id, chain=None, limit=10):
        self._record("block_txids", block_id)
        return list(self.blocks.get(block_id, []))[:limit]

    def clear_cache(self) -> None:
        self.cleared += 1

    def purge(self, identifier: str) -> int:
        self.purged.append(identifier)
        return 0

    def cache_stats(self):
        return {"hits": 0, "misses": len(self.calls), "entries": 0, "hit_rate": "0%"}

    async def aclose(self) -> None:
        self.closed = True


def small_world() -> FakeAdapter:
    """T0: A -> (B, C); A also in T1 (from D); B also in T2 (to E).

    Graph distance from T0: A/B/C = 1, T1/T2 = 2, D/E = 3.
    """
    txs = [
        make_tx("T0", inputs=[("A", 5000)], outputs=[("B", 3000), ("C", 1900)]),
        make_tx("T1", inputs=[("D", 100)], outputs=[("A", 90)]),
        make_tx("T2", inputs=[("B", 3000)], outputs=[("E", 2900)]),
    ]
    return FakeAdapter(
        transactions=txs,
        address_txs={"A": ["T0", "T1"], "B": ["T0", "T2"], "C": ["T0"], "D": ["T1"], "E": ["T2"]},
    )


def esplora_tx(txid="aa" * 32, confirmed=True):
    return {
        "txid": txid,
        "vin": [
            {"txid": "bb" * 32, "vout": 1, "prevout": {"scriptpubkey_address": "1Sender", "value": 150_000}},
            {"txid": "", "vout": 0, "is_coinbase": True, "prevout": None},
        ],
        "vout": [
            {"scriptpubkey_address": "1Receiver", "value": 100_000},
            {"scriptpubkey_type": "op_return", "value": 0},
        ],
        "fee": 5_000,
        "size": 225,
        "weight": 900,
        "status": {"confirmed": confirmed, "block_height": 800_000, "block_hash": "00" * 32, "block_time": 1_700_000_000}
        if confirmed else {"confirmed": False},
    }

