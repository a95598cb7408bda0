"""Investigation: one user-facing session over the forensic graph.

Wires the chain data adapter, the graph store, the expansion engine and the
OSINT gateway together and owns the session state the renderer reads
(selected / scanning ids, loading flag, last error).

Operations:
- start(query, date_from, date_to): reset, resolve the root, then run the
  root expansion and the OSINT sweep side by side
- deep_trace(entity_id): forced depth-2 expansion from a selected node;
  calling it again while one is running cancels the running one
- stop / reset / delete_entity / select
- graph_state / report_data: read-only views for the collaborators
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..settings import APP_NAME, APP_VERSION, Settings
from .chain_data import ChainDataAdapter
from .enrich import entity_risk_score
from .errors import InputRejected, NotFound
from .expansion import CancellationToken, DateRange, ExpansionEngine, ExpansionMemo, build_transaction_entity
from .graph_store import EntityGraphStore
from .identifiers import explorer_links, resolve_identifier
from .models import AddressSummary, ChainKind, Entity, EntityKind
from .osint import OsintGateway

log = logging.getLogger("chaintrace.forensics.investigation")


class Investigation:
    def __init__(
        self,
        adapter: Optional[Any] = None,
        osint: Optional[OsintGateway] = None,
        settings: Optional[Settings] = None,
        store: Optional[EntityGraphStore] = None,
        memo: Optional[ExpansionMemo] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or Settings()
        self.adapter = adapter if adapter is not None else ChainDataAdapter(settings=self.settings)
        self.osint = osint if osint is not None else OsintGateway(settings=self.settings)
        self.store = store if store is not None else EntityGraphStore()
        self.memo = memo if memo is not None else ExpansionMemo()
        self.engine = ExpansionEngine(
            self.adapter, self.store, memo=self.memo, settings=self.settings, sleep=sleep, clock=clock,
        )
        self._clock = clock

        self.root_id: Optional[str] = None
        self.root_kind: Optional[EntityKind] = None
        self.selected_id: Optional[str] = None
        self.scanning_id: Optional[str] = None
        self.loading = False
        self.error: Optional[str] = None

        self._token: Optional[CancellationToken] = None
        self._trace_token: Optional[CancellationToken] = None
        self._date_range: Optional[DateRange] = None
        self._tasks: Set[asyncio.Task] = set()

    # ============================================================
    # New investigation
    # ============================================================

    def prepare(self, query: str, date_from: Any = None, date_to: Any = None):
        """Validate a query. Raises InputRejected for unusable input."""
        ident, kind, chain = resolve_identifier(query)
        try:
            date_range = DateRange.parse(date_from, date_to)
        except (TypeError, ValueError) as e:
            raise InputRejected(f"Invalid date range: {e}") from e
        return ident, kind, chain, date_range

    async def start(self, query: str, date_from: Any = None, date_to: Any = None) -> Dict[str, Any]:
        ident, kind, chain, date_range = self.prepare(query, date_from, date_to)

        await self._cancel_running()
        self._clear_graph()

        token = CancellationToken()
        self._token = token
        self._date_range = date_range
        self.root_id, self.root_kind = ident, kind
        self.loading = True
        self.error = None
        started = self._clock()
        log.info("Investigation started: %s (%s)", ident, kind.value)

        try:
            root = await self._build_root(ident, kind, chain)
            if token.cancelled:
                return self.status()
            self.store.upsert_entity(root)
            self.selected_id = ident

            await asyncio.gather(
                self.engine.expand(
                    ident, kind, self.settings.initial_depth, 0,
                    force=False, root_scan_id=ident, is_root_node=True,
                    token=token, date_range=date_range,
                ),
                self._osint_sweep(ident, token),
            )
        except Exception as e:
            self.error = str(e)
            raise
        finally:
            if self._token is token:
                self.loading = False

        log.info(
            "Investigation finished: %s, %d entities, %d relationships in %.1fs",
            ident, len(self.store), len(self.store.relationships()), self._clock() - started,
        )
        return self.status()

    def launch(self, query: str, date_from: Any = None, date_to: Any = None) -> asyncio.Task:
        """Validate now, run start() in the background."""
        self.prepare(query, date_from, date_to)
        return self._spawn(self.start(query, date_from, date_to))

    async def _build_root(self, ident: str, kind: EntityKind, chain: ChainKind) -> Entity:
        links = explorer_links(ident, kind)
        if kind.is_address:
            try:
                summary = await self.adapter.fetch_address(ident, chain)
            except NotFound:
                log.info("Address %s unknown upstream, starting from empty summary", ident)
                summary = AddressSummary(address=ident, chain=chain)
            attrs = {
                "identifier": ident,
                "chain": chain.value,
                "network": chain.network,
                "currency": chain.unit,
                "balance": f"{chain.to_coins(summary.balance):.8f} {chain.unit}",
                "total_received": f"{chain.to_coins(summary.funded_txo_sum):.8f} {chain.unit}",
                "total_sent": f"{chain.to_coins(summary.spent_txo_sum):.8f} {chain.unit}",
                "ops_count": summary.tx_count,
                "mempool_tx_count": summary.mempool_tx_count,
                "explorer_links": links,
            }
            risk = entity_risk_score(ident, attrs)
            attrs["risk_score"] = f"{risk}%"
            return Entity(id=ident, kind=kind, label=f"{ident[:8]}...", risk_score=risk, is_root=True, attributes=attrs)

        if kind is EntityKind.TRANSACTION:
            tx = await self.adapter.fetch_transaction(ident, chain)
            entity = build_transaction_entity(tx, settings=self.settings, now=self._clock())
            entity.is_root = True
            entity.attributes["explorer_links"] = links
            return entity

        return Entity(
            id=ident,
            kind=EntityKind.BLOCK,
            label=f"Block {ident[:12]}",
            is_root=True,
            attributes={"identifier": ident, "chain": chain.value, "network": chain.network, "explorer_links": links},
        )

    async def _osint_sweep(self, ident: str, token: CancellationToken) -> None:
        if not self.settings.osint_enabled or self.osint is None:
            return
        try:
            hits = await self.osint.sweep(ident)
        except Exception as e:
            # collaborator failure never sinks the chain-side expansion
            log.warning("OSINT sweep failed for %s: %s", ident, e)
            return
        if token.cancelled:
            return
        added = self.osint.ingest(self.store, hits, linked_to=ident)
        log.info("OSINT added %d entities for %s", added, ident)

    # ============================================================
    # Deep trace
    # ============================================================

    def _begin_trace(self, entity_id: str) -> Optional[CancellationToken]:
        """None when a running trace was cancelled instead of starting one."""
        if self._trace_token is not None:
            log.info("Deep trace toggled off (%s)", self.scanning_id)
            self._trace_token.cancel()
            self._trace_token = None
            self.scanning_id = None
            return None
        if entity_id not in self.store:
            raise KeyError(entity_id)
        # a stopped investigation no longer owns the trace
        parent = self._token if self._token is not None and not self._token.cancelled else None
        token = CancellationToken(parent=parent)
        self._trace_token = token
        self.scanning_id = entity_id
        return token

    async def _run_trace(self, entity_id: str, token: CancellationToken) -> Dict[str, Any]:
        entity = self.store.get(entity_id)
        try:
            if entity is None:
                raise KeyError(entity_id)
            self.store.upsert_entity(Entity(id=entity_id, kind=entity.kind, is_root=True))
            before = len(self.store)
            await self.engine.expand(
                entity_id, entity.kind, self.settings.deep_trace_depth, 0,
                force=True, root_scan_id=entity_id, is_root_node=True,
                token=token, date_range=self._date_range,
            )
            log.info("Deep trace of %s added %d entities", entity_id, len(self.store) - before)
        finally:
            if self._trace_token is token:
                self._trace_token = None
                self.scanning_id = None
        return {
            "status": "cancelled" if token.cancelled else "done",
            "entity_id": entity_id,
            "total_nodes": len(self.store),
        }

    async def deep_trace(self, entity_id: str) -> Dict[str, Any]:
        token = self._begin_trace(entity_id)
        if token is None:
            return {"status": "cancelled", "entity_id": entity_id}
        return await self._run_trace(entity_id, token)

    def launch_deep_trace(self, entity_id: str) -> Dict[str, Any]:
        token = self._begin_trace(entity_id)
        if token is None:
            return {"status": "cancelled", "entity_id": entity_id}
        self._spawn(self._run_trace(entity_id, token))
        return {"status": "started", "entity_id": entity_id}

    # ============================================================
    # Control
    # ============================================================

    def stop(self) -> Dict[str, Any]:
        for t in (self._token, self._trace_token):
            if t is not None:
                t.cancel()
        self._trace_token = None
        self.scanning_id = None
        self.loading = False
        log.info("Traversal stop requested")
        return self.status()

    async def reset(self) -> None:
        """Cancel everything in flight, then drop graph, memo and every cache."""
        await self._cancel_running()
        self._clear_graph()
        self.adapter.clear_cache()
        if self.osint is not None:
            self.osint.clear_cache()
        self.root_id = None
        self.root_kind = None
        self.error = None
        self._date_range = None
        log.info("Investigation state reset")

    def delete_entity(self, entity_id: str) -> Dict[str, Any]:
        if not self.store.remove_entity(entity_id):
            raise KeyError(entity_id)
        self.memo.purge_entity(entity_id)
        self.adapter.purge(entity_id)
        if self.osint is not None:
            self.osint.purge(entity_id)
        if self.selected_id == entity_id:
            self.selected_id = None
        if self.root_id == entity_id:
            self.root_id = None
        return {"deleted": entity_id, "total_nodes": len(self.store)}

    def select(self, entity_id: str) -> Dict[str, Any]:
        if entity_id not in self.store:
            raise KeyError(entity_id)
        self.selected_id = entity_id
        return {"selected_id": entity_id}

    def apply_settings(self, settings: Settings) -> None:
        """Swap tunables for every later traversal; the graph is kept."""
        self.settings = settings
        self.engine.settings = settings
        self.adapter.settings = settings
        if self.osint is not None:
            self.osint.settings = settings
        log.info("Settings applied to running session")

    async def aclose(self) -> None:
        await self._cancel_running()
        await self.adapter.aclose()
        if self.osint is not None:
            await self.osint.aclose()

    # ============================================================
    # Views
    # ============================================================

    def status(self) -> Dict[str, Any]:
        return {
            "root_id": self.root_id,
            "selected_id": self.selected_id,
            "scanning_id": self.scanning_id,
            "loading": self.loading,
            "error": self.error,
            "total_nodes": len(self.store),
            "total_edges": len(self.store.relationships()),
        }

    def graph_state(self) -> Dict[str, Any]:
        snap = self.store.snapshot()
        return {
            "nodes": snap["nodes"],
            "edges": snap["edges"],
            "selected_id": self.selected_id,
            "scanning_id": self.scanning_id,
            "loading": self.loading,
            "error": self.error,
            "stats": snap["stats"],
        }

    def report_data(self) -> Dict[str, Any]:
        data = self.graph_state()
        data.update({
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "generator": f"{APP_NAME} {APP_VERSION}",
            "root": {
                "id": self.root_id,
                "type": self.root_kind.value if self.root_kind else None,
                "explorer_links": explorer_links(self.root_id, self.root_kind) if self.root_id and self.root_kind else [],
            },
            "cache": self.adapter.cache_stats(),
            "osint": self.osint.metrics() if self.osint is not None else {},
        })
        return data

    # ============================================================
    # Internals
    # ============================================================

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(self._logged(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _logged(self, coro: Awaitable[Any]) -> Any:
        try:
            return await coro
        except Exception as e:
            # already recorded in self.error for the renderer
            log.exception("Background investigation task failed")
            self.error = str(e)
            return None

    async def _cancel_running(self) -> None:
        for t in (self._token, self._trace_token):
            if t is not None:
                t.cancel()
        self._trace_token = None
        self.scanning_id = None
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _clear_graph(self) -> None:
        self.store.clear()
        self.memo.clear()
        self.selected_id = None
        self.loading = False
