"""Chain Data Adapter: one canonical interface over many upstream providers.

- Bitcoin-style queries try an ordered provider list, each attempt bounded by
  its own timeout; failures advance to the next provider.
- Ethereum-style queries go to a single provider (same contract, no chain).
- Successful results are cached by (operation, id) for the process lifetime
  until clear_cache() / purge().
- Address-transaction fetches retry once after a short backoff and then
  resolve to an empty list instead of failing, so one flaky address never
  stalls a traversal.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from ..settings import Settings
from .errors import AllProvidersFailed, ForensicError, NotFound, ProviderError, ProviderTimeout
from .identifiers import chain_of
from .models import AddressSummary, ChainKind, Transaction
from .providers import ChainProvider, build_providers

log = logging.getLogger("chaintrace.forensics.chain_data")

BLOCK_TX_LIMIT = 10


class ChainDataAdapter:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        btc_providers: Optional[Sequence[ChainProvider]] = None,
        eth_provider: Optional[ChainProvider] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or Settings()
        if btc_providers is None or eth_provider is None:
            default_btc, default_eth = build_providers()
            btc_providers = default_btc if btc_providers is None else btc_providers
            eth_provider = default_eth if eth_provider is None else eth_provider
        self.btc_providers: List[ChainProvider] = list(btc_providers)
        self.eth_provider: ChainProvider = eth_provider
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._cache: Dict[Tuple[str, str], Any] = {}
        self.stats: Dict[str, int] = {
            "hits": 0,
            "misses": 0,
            "provider_failures": 0,
            "fallbacks": 0,
            "retries": 0,
        }

    # ------------- lifecycle -------------
    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.provider_timeout),
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------- cache -------------
    def clear_cache(self) -> None:
        self._cache.clear()
        for k in self.stats:
            self.stats[k] = 0

    def purge(self, identifier: str) -> int:
        """Drop every cached entry for one identifier. Returns count removed."""
        keys = [k for k in self._cache if k[1] == identifier]
        for k in keys:
            del self._cache[k]
        return len(keys)

    def cache_stats(self) -> Dict[str, Any]:
        total = self.stats["hits"] + self.stats["misses"]
        return {
            **self.stats,
            "entries": len(self._cache),
            "hit_rate": f"{(self.stats['hits'] / total * 100):.1f}%" if total else "0%",
        }

    async def _cached(self, op: str, identifier: str, load: Callable[[], Awaitable[Any]]) -> Any:
        key = (op, identifier)
        if key in self._cache:
            self.stats["hits"] += 1
            log.debug("cache hit %s %s", op, identifier)
            return self._cache[key]
        self.stats["misses"] += 1
        value = await load()
        self._cache[key] = value
        return value

    # ------------- provider fallback -------------
    def _providers_for(self, chain: ChainKind) -> List[ChainProvider]:
        if chain is ChainKind.ETHEREUM:
            return [self.eth_provider]
        return self.btc_providers

    async def _with_fallback(self, chain: ChainKind, op: str, call: Callable[[ChainProvider], Awaitable[Any]]) -> Any:
        """Try providers in order; NotFound stops the chain, anything else advances."""
        last_error: Optional[BaseException] = None
        providers = self._providers_for(chain)
        for idx, provider in enumerate(providers):
            if idx > 0:
                self.stats["fallbacks"] += 1
            try:
                return await asyncio.wait_for(call(provider), timeout=self.settings.provider_timeout)
            except NotFound:
                raise
            except asyncio.TimeoutError:
                last_error = ProviderTimeout(f"{provider.name}: {op} timed out", provider=provider.name)
            except ProviderError as e:
                last_error = e
            self.stats["provider_failures"] += 1
            log.warning("Provider %s failed on %s: %s", provider.name, op, last_error)
        raise AllProvidersFailed(f"All {chain.value} providers failed for {op}", last_error=last_error)

    # ------------- public API -------------
    async def fetch_address(self, address: str, chain: Optional[ChainKind] = None) -> AddressSummary:
        chain = chain or chain_of(address)
        return await self._cached(
            "address", address,
            lambda: self._with_fallback(chain, f"address {address}", lambda p: p.get_address(self.client, address)),
        )

    async def fetch_address_transactions(
        self, address: str, chain: Optional[ChainKind] = None, limit: Optional[int] = None,
    ) -> List[Transaction]:
        """Up to `limit` recent transactions; [] if the fetch fails twice."""
        chain = chain or chain_of(address)
        page = self.settings.address_tx_page
        limit = page if limit is None else min(limit, page)

        async def load() -> List[Transaction]:
            return await self._with_fallback(
                chain, f"txs {address}", lambda p: p.get_address_transactions(self.client, address, page),
            )

        try:
            txs = await self._cached("address_txs", address, load)
        except ForensicError as first:
            self.stats["retries"] += 1
            log.info("Retrying txs for %s after %.1fs (%s)", address, self.settings.retry_backoff, first)
            await self._sleep(self.settings.retry_backoff)
            try:
                txs = await self._cached("address_txs", address, load)
            except ForensicError as second:
                log.warning("Giving up on txs for %s: %s", address, second)
                return []
        return list(txs[:limit])

    async def fetch_transaction(self, txid: str, chain: Optional[ChainKind] = None) -> Transaction:
        chain = chain or chain_of(txid)
        return await self._cached(
            "tx", txid,
            lambda: self._with_fallback(chain, f"tx {txid}", lambda p: p.get_transaction(self.client, txid)),
        )

    async def fetch_block_transactions(
        self, block_id: str, chain: Optional[ChainKind] = None, limit: int = BLOCK_TX_LIMIT,
    ) -> List[str]:
        chain = chain or chain_of(block_id)
        txids = await self._cached(
            "block_txids", block_id,
            lambda: self._with_fallback(
                chain, f"block {block_id}", lambda p: p.get_block_txids(self.client, block_id, BLOCK_TX_LIMIT),
            ),
        )
        return list(txids[:limit])
