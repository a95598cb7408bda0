"""Upstream chain-data providers and their response-shape translation.

Each provider speaks one public API and returns the canonical shapes from
models.py, so nothing provider-specific leaks past this module:
- Esplora (mempool.space, blockstream.info): already close to canonical
- blockchain.info: non-standard rows, renamed/recomputed here
- Blockscout v2: Ethereum-style single provider

Endpoints come from config/providers.yaml; list order is the fallback order.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import yaml

from .errors import NotFound, ProviderError, ProviderTimeout
from .models import AddressSummary, ChainKind, Transaction, TxInput, TxOutput, TxStatus

log = logging.getLogger("chaintrace.forensics.providers")

_CONFIG_DIR = Path(__file__).parent / "config"
_config_cache: Optional[Dict[str, Any]] = None


def load_provider_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load and cache provider configuration."""
    global _config_cache
    if _config_cache is not None:
        return _config_cache

    if config_path is None:
        config_path = _CONFIG_DIR / "providers.yaml"

    if not config_path.exists():
        log.warning("Provider config not found: %s", config_path)
        _config_cache = _default_config()
        return _config_cache

    _config_cache = yaml.safe_load(config_path.read_text(encoding="utf-8")) or _default_config()
    log.info("Loaded %d bitcoin providers from %s", len(_config_cache.get("bitcoin", [])), config_path)
    return _config_cache


def reload_provider_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    global _config_cache
    _config_cache = None
    return load_provider_config(config_path)


def _default_config() -> Dict[str, Any]:
    """Built-in endpoints if the config file is missing."""
    return {
        "version": "1.0.0",
        "bitcoin": [
            {"name": "mempool", "kind": "esplora", "base_url": "https://mempool.space/api"},
            {"name": "blockstream", "kind": "esplora", "base_url": "https://blockstream.info/api"},
            {"name": "blockchain_info", "kind": "blockchain_info", "base_url": "https://blockchain.info"},
        ],
        "ethereum": {"name": "blockscout", "kind": "blockscout", "base_url": "https://eth.blockscout.com/api/v2"},
    }


def _parse_iso(value: Any) -> Optional[int]:
    """ISO-8601 timestamp -> unix seconds (None when absent)."""
    if not value:
        return None
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _int(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int(value)


class ChainProvider:
    """Base class: HTTP plumbing and error mapping shared by all providers."""

    kind = ""
    chain = ChainKind.BITCOIN

    def __init__(self, name: str, base_url: str) -> None:
        self.name = name
        self.base_url = base_url.rstrip("/")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.base_url}>"

    async def _get(self, client: httpx.AsyncClient, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            r = await client.get(url, params=params, headers={"Accept": "application/json"})
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"{self.name}: timeout on {path}", provider=self.name) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.name}: request failed: {e}", provider=self.name) from e

        if r.status_code == 404:
            raise NotFound(f"{self.name}: {path} not found")
        if not r.is_success:
            raise ProviderError(f"{self.name}: HTTP {r.status_code} on {path}", provider=self.name, status=r.status_code)
        return r

    async def _get_json(self, client: httpx.AsyncClient, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        r = await self._get(client, path, params)
        try:
            return r.json()
        except ValueError as e:
            raise ProviderError(f"{self.name}: malformed body on {path}", provider=self.name, status=r.status_code) from e

    def _normalize(self, fn: Callable[[Any], Any], payload: Any) -> Any:
        """Run a shape translator, mapping missing/odd fields to ProviderError."""
        try:
            return fn(payload)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProviderError(f"{self.name}: unexpected response shape ({e})", provider=self.name) from e

    async def get_address(self, client: httpx.AsyncClient, address: str) -> AddressSummary:
        raise NotImplementedError

    async def get_address_transactions(self, client: httpx.AsyncClient, address: str, limit: int) -> List[Transaction]:
        raise NotImplementedError

    async def get_transaction(self, client: httpx.AsyncClient, txid: str) -> Transaction:
        raise NotImplementedError

    async def get_block_txids(self, client: httpx.AsyncClient, block_id: str, limit: int) -> List[str]:
        raise NotImplementedError


# ============================================================
# Esplora (mempool.space, blockstream.info)
# ============================================================

def parse_esplora_tx(raw: Dict[str, Any]) -> Transaction:
    inputs = []
    for vin in raw.get("vin") or []:
        prev = vin.get("prevout") or {}
        inputs.append(TxInput(
            address=prev.get("scriptpubkey_address"),
            value=_int(prev.get("value")),
            prev_txid=vin.get("txid") or "",
            prev_vout=_int(vin.get("vout")),
        ))
    outputs = [
        TxOutput(address=o.get("scriptpubkey_address"), value=_int(o.get("value")))
        for o in raw.get("vout") or []
    ]
    st = raw.get("status") or {}
    return Transaction(
        txid=raw["txid"],
        chain=ChainKind.BITCOIN,
        inputs=inputs,
        outputs=outputs,
        fee=_int(raw.get("fee")),
        size=_int(raw.get("size")),
        weight=_int(raw.get("weight")),
        status=TxStatus(
            confirmed=bool(st.get("confirmed")),
            block_height=st.get("block_height"),
            block_hash=st.get("block_hash"),
            block_time=st.get("block_time"),
        ),
    )


def parse_esplora_address(raw: Dict[str, Any]) -> AddressSummary:
    cs = raw.get("chain_stats") or {}
    ms = raw.get("mempool_stats") or {}
    return AddressSummary(
        address=raw["address"],
        chain=ChainKind.BITCOIN,
        funded_txo_count=_int(cs.get("funded_txo_count")),
        funded_txo_sum=_int(cs.get("funded_txo_sum")),
        spent_txo_count=_int(cs.get("spent_txo_count")),
        spent_txo_sum=_int(cs.get("spent_txo_sum")),
        tx_count=_int(cs.get("tx_count")),
        mempool_tx_count=_int(ms.get("tx_count")),
    )


class EsploraProvider(ChainProvider):
    kind = "esplora"

    async def get_address(self, client, address):
        raw = await self._get_json(client, f"/address/{address}")
        return self._normalize(parse_esplora_address, raw)

    async def get_address_transactions(self, client, address, limit):
        raw = await self._get_json(client, f"/address/{address}/txs")
        return self._normalize(lambda rows: [parse_esplora_tx(t) for t in rows[:limit]], raw)

    async def get_transaction(self, client, txid):
        raw = await self._get_json(client, f"/tx/{txid}")
        return self._normalize(parse_esplora_tx, raw)

    async def get_block_txids(self, client, block_id, limit):
        block_hash = block_id
        if block_id.isdigit():
            r = await self._get(client, f"/block-height/{block_id}")
            block_hash = r.text.strip()
        raw = await self._get_json(client, f"/block/{block_hash}/txids")
        return self._normalize(lambda rows: [str(t) for t in rows[:limit]], raw)


# ============================================================
# blockchain.info (non-standard shape)
# ============================================================

def parse_blockchain_info_tx(raw: Dict[str, Any]) -> Transaction:
    inputs = []
    for i in raw.get("inputs") or []:
        prev = i.get("prev_out") or {}
        inputs.append(TxInput(
            address=prev.get("addr"),
            value=_int(prev.get("value")),
            prev_vout=_int(prev.get("n")),
        ))
    outputs = [TxOutput(address=o.get("addr"), value=_int(o.get("value"))) for o in raw.get("out") or []]
    height = raw.get("block_height")
    confirmed = height is not None
    return Transaction(
        txid=raw["hash"],
        chain=ChainKind.BITCOIN,
        inputs=inputs,
        outputs=outputs,
        fee=_int(raw.get("fee")),
        size=_int(raw.get("size")),
        weight=_int(raw.get("weight")),
        status=TxStatus(
            confirmed=confirmed,
            block_height=height,
            block_hash=raw.get("block_hash"),
            block_time=raw.get("time") if confirmed else None,
        ),
    )


def parse_blockchain_info_address(raw: Dict[str, Any]) -> AddressSummary:
    received = _int(raw.get("total_received"))
    final = _int(raw.get("final_balance"))
    n_tx = _int(raw.get("n_tx"))
    return AddressSummary(
        address=raw["address"],
        chain=ChainKind.BITCOIN,
        funded_txo_count=n_tx,
        funded_txo_sum=received,
        spent_txo_count=0,
        spent_txo_sum=received - final,
        tx_count=n_tx,
    )


class BlockchainInfoProvider(ChainProvider):
    kind = "blockchain_info"

    async def get_address(self, client, address):
        raw = await self._get_json(client, f"/rawaddr/{address}", params={"limit": 0})
        return self._normalize(parse_blockchain_info_address, raw)

    async def get_address_transactions(self, client, address, limit):
        raw = await self._get_json(client, f"/rawaddr/{address}", params={"limit": limit})
        return self._normalize(lambda d: [parse_blockchain_info_tx(t) for t in (d.get("txs") or [])[:limit]], raw)

    async def get_transaction(self, client, txid):
        raw = await self._get_json(client, f"/rawtx/{txid}")
        return self._normalize(parse_blockchain_info_tx, raw)

    async def get_block_txids(self, client, block_id, limit):
        if block_id.isdigit():
            raw = await self._get_json(client, f"/block-height/{block_id}", params={"format": "json"})
            return self._normalize(lambda d: [t["hash"] for t in d["blocks"][0].get("tx", [])[:limit]], raw)
        raw = await self._get_json(client, f"/rawblock/{block_id}")
        return self._normalize(lambda d: [t["hash"] for t in d.get("tx", [])[:limit]], raw)


# ============================================================
# Blockscout v2 (Ethereum-style)
# ============================================================

def parse_blockscout_tx(raw: Dict[str, Any]) -> Transaction:
    value = _int(raw.get("value"))
    fee = _int((raw.get("fee") or {}).get("value"))
    block = raw.get("block_number", raw.get("block"))
    sender = (raw.get("from") or {}).get("hash")
    receiver = (raw.get("to") or {}).get("hash")
    confirmed = block is not None
    return Transaction(
        txid=raw["hash"],
        chain=ChainKind.ETHEREUM,
        inputs=[TxInput(address=sender, value=value)],
        outputs=[TxOutput(address=receiver, value=value)],
        fee=fee,
        status=TxStatus(
            confirmed=confirmed,
            block_height=int(block) if confirmed else None,
            block_hash=raw.get("block_hash"),
            block_time=_parse_iso(raw.get("timestamp")),
        ),
    )


def parse_blockscout_address(raw: Dict[str, Any]) -> AddressSummary:
    return AddressSummary(
        address=raw["hash"],
        chain=ChainKind.ETHEREUM,
        funded_txo_sum=_int(raw.get("coin_balance")),
    )


class BlockscoutProvider(ChainProvider):
    kind = "blockscout"
    chain = ChainKind.ETHEREUM

    async def get_address(self, client, address):
        raw = await self._get_json(client, f"/addresses/{address}")
        return self._normalize(parse_blockscout_address, raw)

    async def get_address_transactions(self, client, address, limit):
        raw = await self._get_json(client, f"/addresses/{address}/transactions")
        return self._normalize(lambda d: [parse_blockscout_tx(t) for t in (d.get("items") or [])[:limit]], raw)

    async def get_transaction(self, client, txid):
        raw = await self._get_json(client, f"/transactions/{txid}")
        return self._normalize(parse_blockscout_tx, raw)

    async def get_block_txids(self, client, block_id, limit):
        raw = await self._get_json(client, f"/blocks/{block_id}/transactions")
        return self._normalize(lambda d: [t["hash"] for t in (d.get("items") or [])[:limit]], raw)


PROVIDER_CLASSES = {
    EsploraProvider.kind: EsploraProvider,
    BlockchainInfoProvider.kind: BlockchainInfoProvider,
    BlockscoutProvider.kind: BlockscoutProvider,
}


def _build_one(entry: Dict[str, Any]) -> Optional[ChainProvider]:
    cls = PROVIDER_CLASSES.get(str(entry.get("kind") or ""))
    if cls is None:
        log.warning("Unknown provider kind %r (%s), skipped", entry.get("kind"), entry.get("name"))
        return None
    return cls(name=str(entry.get("name") or cls.kind), base_url=str(entry["base_url"]))


def build_providers(config: Optional[Dict[str, Any]] = None) -> Tuple[List[ChainProvider], ChainProvider]:
    """Instantiate (ordered bitcoin providers, ethereum provider) from config."""
    config = config or load_provider_config()
    btc = [p for p in (_build_one(e) for e in config.get("bitcoin") or []) if p is not None]
    eth = _build_one(config.get("ethereum") or _default_config()["ethereum"])
    if eth is None:
        eth = _build_one(_default_config()["ethereum"])
    return btc, eth
