"""OSINT collaborator contract and graph ingestion.

The scraping itself happens elsewhere: a collaborator is any async callable
that takes an identifier and returns hit dicts (or OsintHit objects). This
module only:
- keeps verified hits whose URL passes re-validation (http(s) scheme, no
  denylisted fragment, reachable; any HTTP response counts as reachable)
- caches sweeps and URL checks, with hit-rate metrics for reports
- merges hits into the graph (weight 5 edges labelled by source), plus the
  wallets and emails extracted from each hit
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import httpx

from ..settings import Settings
from .graph_store import EntityGraphStore
from .identifiers import SearchType, address_kind, chain_of, detect_search_type
from .models import Entity, EntityKind, Relationship

log = logging.getLogger("chaintrace.forensics.osint")

OSINT_EDGE_WEIGHT = 5
MENTION_WEIGHT = 1

SUSPICIOUS_URL_FRAGMENTS = (
    "javascript:",
    "data:",
    "localhost",
    "127.0.0.1",
    "0.0.0.0",
    "bit.ly",
    "tinyurl",
    "grabify",
    "iplogger",
    ".onion",
)

SOCIAL_SOURCES = {"reddit", "twitter", "malicious_db", "bitcoinwho", "bitcoinabuse"}

THREAT_LEVEL_RISK = {"LOW": 20, "MEDIUM": 50, "HIGH": 80, "CRITICAL": 95}


@dataclass
class ExtractedEntities:
    wallets: List[str] = field(default_factory=list)
    emails: List[str] = field(default_factory=list)
    handles: List[str] = field(default_factory=list)


@dataclass
class OsintHit:
    source: str
    url: str
    title: str = ""
    snippet: str = ""
    extracted_entities: ExtractedEntities = field(default_factory=ExtractedEntities)
    relevance: str = ""
    linked_to: str = ""
    verified: bool = False
    content_hash: str = ""
    social_intel: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OsintHit":
        """Accept both snake_case and camelCase collaborator payloads."""
        def pick(*names: str, default: Any = None) -> Any:
            for n in names:
                if n in data and data[n] is not None:
                    return data[n]
            return default

        ents = pick("extracted_entities", "extractedEntities", default={}) or {}
        return cls(
            source=str(pick("source", default="osint")),
            url=str(pick("url", default="")),
            title=str(pick("title", default="")),
            snippet=str(pick("snippet", default="")),
            extracted_entities=ExtractedEntities(
                wallets=list(ents.get("wallets") or []),
                emails=list(ents.get("emails") or []),
                handles=list(ents.get("handles") or []),
            ),
            relevance=str(pick("relevance", default="")),
            linked_to=str(pick("linked_to", "linkedTo", default="")),
            verified=bool(pick("verified", default=False)),
            content_hash=str(pick("content_hash", "contentHash", default="")),
            social_intel=pick("social_intel", "socialIntel"),
        )

    @property
    def entity_kind(self) -> EntityKind:
        src = self.source.lower()
        if src == "github":
            return EntityKind.GITHUB_HIT
        if src in SOCIAL_SOURCES:
            return EntityKind.SOCIAL_HIT
        return EntityKind.OSINT_HIT

    @property
    def threat_level(self) -> str:
        for item in self.social_intel or []:
            level = str(item.get("threat_level") or "").upper()
            if level:
                return level
        return ""


OsintCollaborator = Callable[[str], Awaitable[Sequence[Any]]]


def is_acceptable_url(url: str) -> bool:
    """Scheme must be http(s) and no denylisted fragment may appear."""
    if not url:
        return False
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    low = url.lower()
    return not any(frag in low for frag in SUSPICIOUS_URL_FRAGMENTS)


class OsintGateway:
    def __init__(
        self,
        collaborator: Optional[OsintCollaborator] = None,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.collaborator = collaborator
        self.settings = settings or Settings()
        self._client = client
        self._owns_client = client is None
        self._sweeps: Dict[str, List[OsintHit]] = {}
        self._verified: Dict[str, bool] = {}
        self._metrics = {"total_queries": 0, "cache_hits": 0, "rejected_urls": 0}

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.settings.osint_timeout), follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------- verification -------------
    async def verify_url(self, url: str) -> bool:
        if url in self._verified:
            return self._verified[url]
        if not is_acceptable_url(url):
            self._verified[url] = False
            return False

        ok = True
        try:
            await self.client.head(url, timeout=self.settings.osint_timeout)
        except httpx.HTTPError:
            # Some hosts refuse HEAD; a plain GET is the last word.
            try:
                await self.client.get(url, timeout=self.settings.osint_timeout)
            except httpx.HTTPError as e:
                log.info("URL unreachable %s: %s", url, e)
                ok = False
        self._verified[url] = ok
        return ok

    # ------------- sweep -------------
    async def sweep(self, identifier: str) -> List[OsintHit]:
        """Verified, re-validated hits for one identifier (cached)."""
        self._metrics["total_queries"] += 1
        if identifier in self._sweeps:
            self._metrics["cache_hits"] += 1
            log.debug("OSINT cache hit for %s", identifier)
            return self._sweeps[identifier]
        if self.collaborator is None:
            return []

        raw = await self.collaborator(identifier)
        hits: List[OsintHit] = []
        for item in raw or []:
            hit = item if isinstance(item, OsintHit) else OsintHit.from_dict(item)
            if not hit.verified:
                continue
            if not await self.verify_url(hit.url):
                self._metrics["rejected_urls"] += 1
                log.info("Rejected OSINT hit %s (%s)", hit.url, hit.source)
                continue
            hits.append(hit)

        self._sweeps[identifier] = hits
        log.info("OSINT sweep for %s: %d accepted of %d", identifier, len(hits), len(raw or []))
        return hits

    # ------------- ingestion -------------
    def ingest(self, store: EntityGraphStore, hits: Sequence[OsintHit], linked_to: Optional[str] = None) -> int:
        """Merge hits into the graph. Returns number of new entities."""
        created = 0
        for hit in hits:
            anchor = linked_to or hit.linked_to
            if not anchor or anchor not in store or not hit.url:
                continue

            attrs = {
                "source": hit.source,
                "url": hit.url,
                "title": hit.title,
                "snippet": hit.snippet,
                "relevance": hit.relevance,
                "content_hash": hit.content_hash,
                "extracted_entities": asdict(hit.extracted_entities),
                "threat_level": hit.threat_level or None,
                "social_intel": hit.social_intel,
            }
            risk = THREAT_LEVEL_RISK.get(hit.threat_level)
            if store.upsert_entity(Entity(
                id=hit.url,
                kind=hit.entity_kind,
                label=(hit.title or hit.source)[:60],
                risk_score=risk,
                attributes=attrs,
            )):
                created += 1
            store.upsert_relationship(Relationship(anchor, hit.url, OSINT_EDGE_WEIGHT, f"OSINT_{hit.source.upper()}"))

            for wallet in hit.extracted_entities.wallets:
                if wallet == anchor or detect_search_type(wallet) not in (SearchType.ADDRESS, SearchType.ETH_ADDRESS):
                    continue
                chain = chain_of(wallet)
                if store.upsert_entity(Entity(
                    id=wallet,
                    kind=address_kind(wallet),
                    label=f"{wallet[:8]}...",
                    attributes={"identifier": wallet, "chain": chain.value, "network": chain.network,
                                "currency": chain.unit, "mentioned_in": hit.url},
                )):
                    created += 1
                store.upsert_relationship(Relationship(hit.url, wallet, MENTION_WEIGHT, "MENTIONED_IN"))

            for email in hit.extracted_entities.emails:
                if store.upsert_entity(Entity(
                    id=email,
                    kind=EntityKind.OSINT_HIT,
                    label=email,
                    attributes={"email": email, "mentioned_in": hit.url},
                )):
                    created += 1
                store.upsert_relationship(Relationship(hit.url, email, MENTION_WEIGHT, "MENTIONED_IN"))
        return created

    # ------------- cache -------------
    def purge(self, identifier: str) -> None:
        self._sweeps.pop(identifier, None)
        self._verified.pop(identifier, None)

    def clear_cache(self) -> None:
        self._sweeps.clear()
        self._verified.clear()
        for k in self._metrics:
            self._metrics[k] = 0

    def metrics(self) -> Dict[str, Any]:
        total = self._metrics["total_queries"]
        return {
            **self._metrics,
            "cache_hit_rate": f"{(self._metrics['cache_hits'] / total * 100):.1f}%" if total else "0%",
            "cache_sizes": {"sweeps": len(self._sweeps), "verification": len(self._verified)},
        }
