"""Expansion Engine: bounded, cancellable recursive traversal.

expand(entity, kind, max_depth, current_depth, force, ...) turns chain data
into graph entities and edges and recurses into newly discovered entities
while the depth budget allows:

    address --(weight 2)--> transaction      (address expansion)
    input address --(1)--> tx --(1)--> output address   (transaction expansion)
    block --(1)--> transaction               (block expansion)

Traversal is depth-first and strictly sequential per branch. Cancellation is
cooperative: the token is polled on entry, after every fetch and at every
loop iteration. A request already in flight is allowed to finish, but its
result is dropped once the token is seen as cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, time as dtime, timezone
from typing import Any, Awaitable, Callable, Optional, Set, Tuple

from ..settings import Settings
from .enrich import entity_risk_score, privacy_score, risk_indicators, address_statistics
from .errors import ForensicError, PartialBranchFailure
from .graph_store import EntityGraphStore
from .identifiers import address_kind, chain_of
from .models import ChainKind, Entity, EntityKind, Relationship, Transaction

log = logging.getLogger("chaintrace.forensics.expansion")

ADDRESS_TX_WEIGHT = 2
FLOW_WEIGHT = 1


class CancellationToken:
    """Shared abort flag; a child token also reports its parent's state."""

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        self._cancelled = False
        self._parent = parent

    @property
    def cancelled(self) -> bool:
        return self._cancelled or (self._parent is not None and self._parent.cancelled)

    def cancel(self) -> None:
        self._cancelled = True


class ExpansionMemo:
    """Visited (entity_id, current_depth, max_depth) triples."""

    def __init__(self) -> None:
        self._seen: Set[Tuple[str, int, int]] = set()

    @staticmethod
    def key(entity_id: str, current_depth: int, max_depth: int) -> Tuple[str, int, int]:
        return (entity_id, current_depth, max_depth)

    def __contains__(self, key: object) -> bool:
        return key in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def mark(self, key: Tuple[str, int, int]) -> None:
        self._seen.add(key)

    def purge_entity(self, entity_id: str) -> int:
        """Forget every depth recorded for one entity."""
        dead = {k for k in self._seen if k[0] == entity_id}
        self._seen -= dead
        return len(dead)

    def clear(self) -> None:
        self._seen.clear()


def _parse_bound(value: Any, end_of_day: bool) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, dtime.max if end_of_day else dtime.min)
    else:
        s = str(value).strip()
        if len(s) == 10:
            d = date.fromisoformat(s)
            dt = datetime.combine(d, dtime.max if end_of_day else dtime.min)
        else:
            dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


@dataclass
class DateRange:
    """Inclusive [start, end] filter on transaction block time (unix seconds)."""

    start: Optional[int] = None
    end: Optional[int] = None

    @classmethod
    def parse(cls, start: Any = None, end: Any = None) -> Optional["DateRange"]:
        """Build from ISO dates/datetimes or unix seconds; None if both are empty.

        A bare date as `end` covers that whole day.
        """
        lo = _parse_bound(start, end_of_day=False)
        hi = _parse_bound(end, end_of_day=True)
        if lo is None and hi is None:
            return None
        return cls(lo, hi)

    def contains(self, ts: Optional[int]) -> bool:
        if ts is None:
            return False
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts > self.end:
            return False
        return True


# ============================================================
# Entity builders
# ============================================================

def _coins(chain: ChainKind, value: int, places: int = 8) -> str:
    return f"{chain.to_coins(value):.{places}f} {chain.unit}"


def build_transaction_entity(
    tx: Transaction,
    origin_id: Optional[str] = None,
    settings: Optional[Settings] = None,
    now: Optional[float] = None,
) -> Entity:
    """Transaction node with totals, net change and enrichment attached."""
    settings = settings or Settings()
    chain = tx.chain
    amount = _coins(chain, tx.total_output, 4)
    bt = tx.status.block_time
    attrs = {
        "identifier": tx.txid,
        "chain": chain.value,
        "network": chain.network,
        "currency": chain.unit,
        "status": "Confirmed" if tx.status.confirmed else "Mempool",
        "confirmed": tx.status.confirmed,
        "amount": amount,
        "total_input": _coins(chain, tx.total_input),
        "total_output": _coins(chain, tx.total_output),
        "fee": _coins(chain, tx.fee),
        "sender": (tx.inputs[0].address if tx.inputs and tx.inputs[0].address else "Mined/Unknown"),
        "receiver": (tx.outputs[0].address if tx.outputs and tx.outputs[0].address else "Unknown"),
        "input_count": len(tx.inputs),
        "output_count": len(tx.outputs),
        "block": tx.status.block_height if tx.status.block_height is not None else "N/A",
        "block_time": bt,
        "timestamp": datetime.fromtimestamp(bt, tz=timezone.utc).isoformat() if bt is not None else "N/A",
        "privacy_score": privacy_score(tx),
        "risk_indicators": risk_indicators(
            tx, now=now,
            high_value_coins=settings.high_value_coins,
            high_fee_per_byte=settings.high_fee_per_byte,
        ),
    }
    if origin_id:
        attrs["net_change"] = f"{chain.to_coins(tx.net_change(origin_id)):+.8f} {chain.unit}"
    risk = entity_risk_score(tx.txid, attrs)
    attrs["risk_score"] = f"{risk}%"
    return Entity(
        id=tx.txid,
        kind=EntityKind.TRANSACTION,
        label=f"TX: {tx.txid[:4]} [{amount}]",
        risk_score=risk,
        attributes=attrs,
    )


def build_counterparty_entity(address: str, chain: ChainKind, value: int, inbound: bool) -> Entity:
    """Address node discovered as a transaction input (outflow) or output (inflow)."""
    attrs = {
        "identifier": address,
        "chain": chain.value,
        "network": chain.network,
        "currency": chain.unit,
        ("outflow_amount" if inbound else "inflow_amount"): _coins(chain, value, 6),
    }
    risk = entity_risk_score(address, attrs)
    attrs["risk_score"] = f"{risk}%"
    return Entity(
        id=address,
        kind=address_kind(address),
        label=f"{address[:8]}...",
        risk_score=risk,
        attributes=attrs,
    )


# ============================================================
# Engine
# ============================================================

class ExpansionEngine:
    def __init__(
        self,
        adapter: Any,
        store: EntityGraphStore,
        memo: Optional[ExpansionMemo] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.adapter = adapter
        self.store = store
        self.memo = memo if memo is not None else ExpansionMemo()
        self.settings = settings or Settings()
        self._sleep = sleep
        self._clock = clock

    # ------------- policy -------------
    def _tx_limit(self, force: bool, is_root_node: bool) -> int:
        s = self.settings
        if force and is_root_node:
            return s.root_forced_tx_limit
        if force:
            return s.forced_tx_limit
        return s.default_tx_limit

    def _io_limit(self, force: bool, is_root_node: bool) -> int:
        s = self.settings
        if force and is_root_node:
            return s.root_forced_io_limit
        if force:
            return s.forced_io_limit
        return s.default_io_limit

    def _chain_for(self, entity_id: str, kind: EntityKind) -> ChainKind:
        if kind is EntityKind.ETHEREUM_ADDRESS:
            return ChainKind.ETHEREUM
        if kind is EntityKind.BITCOIN_ADDRESS:
            return ChainKind.BITCOIN
        entity = self.store.get(entity_id)
        if entity is not None and entity.attributes.get("chain"):
            return ChainKind(entity.attributes["chain"])
        return chain_of(entity_id)

    async def _pace(self) -> None:
        if self.settings.request_pacing > 0:
            await self._sleep(self.settings.request_pacing)

    # ------------- traversal -------------
    async def expand(
        self,
        entity_id: str,
        kind: EntityKind,
        max_depth: int,
        current_depth: int = 0,
        force: bool = False,
        root_scan_id: Optional[str] = None,
        is_root_node: bool = False,
        token: Optional[CancellationToken] = None,
        date_range: Optional[DateRange] = None,
    ) -> None:
        token = token or CancellationToken()
        if current_depth > max_depth or token.cancelled:
            return

        key = ExpansionMemo.key(entity_id, current_depth, max_depth)
        if force and current_depth == 0:
            self.memo.purge_entity(entity_id)
        if key in self.memo and not force:
            return
        self.memo.mark(key)

        # children would land at current_depth + 1
        if current_depth >= max_depth:
            return

        ctx = _Walk(
            entity_id=entity_id,
            chain=self._chain_for(entity_id, kind),
            max_depth=max_depth,
            depth=current_depth,
            force=force,
            root_scan_id=root_scan_id or entity_id,
            is_root_node=is_root_node,
            token=token,
            date_range=date_range,
        )
        try:
            if kind.is_address:
                await self._expand_address(ctx)
            elif kind is EntityKind.TRANSACTION:
                await self._expand_transaction(ctx)
            elif kind is EntityKind.BLOCK:
                await self._expand_block(ctx)
        except ForensicError as e:
            # No data for this branch; siblings carry on.
            log.warning("Expansion of %s (%s) skipped: %s", entity_id, kind.value, e)

    async def _expand_address(self, ctx: "_Walk") -> None:
        txs = await self.adapter.fetch_address_transactions(ctx.entity_id, ctx.chain)
        if ctx.token.cancelled:
            return

        now = self._clock()
        self.store.annotate(ctx.entity_id, address_statistics(txs, now=now))

        if ctx.date_range is not None:
            txs = [t for t in txs if ctx.date_range.contains(t.status.block_time)]

        for tx in txs[: self._tx_limit(ctx.force, ctx.is_root_node)]:
            if ctx.token.cancelled:
                return
            try:
                tx_entity = build_transaction_entity(tx, origin_id=ctx.entity_id, settings=self.settings, now=now)
                self.store.upsert_entity(tx_entity)
                self.store.upsert_relationship(Relationship(
                    ctx.entity_id, tx.txid, ADDRESS_TX_WEIGHT, tx_entity.attributes["amount"],
                ))
                # Deep scan from the root target: reveal the tx's counterparties
                if (ctx.force and ctx.is_root_node and ctx.entity_id == ctx.root_scan_id
                        and ctx.depth + 1 < ctx.max_depth):
                    await self.expand(
                        tx.txid, EntityKind.TRANSACTION, ctx.max_depth, ctx.depth + 1,
                        force=False, root_scan_id=ctx.root_scan_id, is_root_node=False,
                        token=ctx.token, date_range=ctx.date_range,
                    )
            except Exception as e:
                log.warning("Branch failure: %s", PartialBranchFailure(tx.txid, e))
                continue
            await self._pace()

    async def _expand_transaction(self, ctx: "_Walk") -> None:
        tx = await self.adapter.fetch_transaction(ctx.entity_id, ctx.chain)
        if ctx.token.cancelled:
            return

        current = self.store.get(ctx.entity_id)
        if current is not None and "privacy_score" not in current.attributes:
            self.store.upsert_entity(build_transaction_entity(tx, settings=self.settings, now=self._clock()))

        cap = self._io_limit(ctx.force, ctx.is_root_node)
        flows = [(i.address, i.value, True) for i in tx.inputs[:cap]]
        flows += [(o.address, o.value, False) for o in tx.outputs[:cap]]
        for address, value, inbound in flows:
            if ctx.token.cancelled:
                return
            if not address:
                continue
            try:
                await self._link_counterparty(ctx, tx, address, value, inbound)
            except Exception as e:
                log.warning("Branch failure: %s", PartialBranchFailure(address, e))
                continue
            await self._pace()

    async def _link_counterparty(self, ctx: "_Walk", tx: Transaction, address: str, value: int, inbound: bool) -> None:
        entity = build_counterparty_entity(address, tx.chain, value, inbound)
        created = self.store.upsert_entity(entity)
        src, dst = (address, tx.txid) if inbound else (tx.txid, address)
        self.store.upsert_relationship(Relationship(src, dst, FLOW_WEIGHT, _coins(tx.chain, value, 6)))
        if ctx.depth + 1 < ctx.max_depth and (created or ctx.force):
            await self.expand(
                address, entity.kind, ctx.max_depth, ctx.depth + 1,
                force=False, root_scan_id=ctx.root_scan_id, is_root_node=False,
                token=ctx.token, date_range=ctx.date_range,
            )

    async def _expand_block(self, ctx: "_Walk") -> None:
        txids = await self.adapter.fetch_block_transactions(
            ctx.entity_id, ctx.chain, limit=self._tx_limit(ctx.force, ctx.is_root_node),
        )
        if ctx.token.cancelled:
            return

        for txid in txids:
            if ctx.token.cancelled:
                return
            created = self.store.upsert_entity(Entity(
                id=txid,
                kind=EntityKind.TRANSACTION,
                label=f"TX: {txid[:8]}",
                attributes={"identifier": txid, "chain": ctx.chain.value, "network": ctx.chain.network, "block": ctx.entity_id},
            ))
            self.store.upsert_relationship(Relationship(ctx.entity_id, txid, FLOW_WEIGHT, "BLOCK_TX"))
            if ctx.depth + 1 < ctx.max_depth and (created or ctx.force):
                try:
                    await self.expand(
                        txid, EntityKind.TRANSACTION, ctx.max_depth, ctx.depth + 1,
                        force=False, root_scan_id=ctx.root_scan_id, is_root_node=False,
                        token=ctx.token, date_range=ctx.date_range,
                    )
                except Exception as e:
                    log.warning("Branch failure: %s", PartialBranchFailure(txid, e))
            await self._pace()


@dataclass
class _Walk:
    """Per-call traversal state threaded through the expand helpers."""

    entity_id: str
    chain: ChainKind
    max_depth: int
    depth: int
    force: bool
    root_scan_id: str
    is_root_node: bool
    token: CancellationToken
    date_range: Optional[DateRange]
