"""Tests for the OSINT gateway: URL re-validation, caching, graph ingestion."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from fakes import ROOT_ADDRESS

WALLET = "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh"


def _hit(url, source="web", verified=True, **extra):
    data = {
        "source": source,
        "url": url,
        "title": f"Mention on {source}",
        "snippet": "address spotted",
        "extractedEntities": {"wallets": [], "emails": [], "handles": []},
        "relevance": "HIGH",
        "linkedTo": ROOT_ADDRESS,
        "verified": verified,
        "contentHash": "abc123",
    }
    data.update(extra)
    return data


def _reachability(request: httpx.Request) -> httpx.Response:
    host = request.url.host
    if host == "dead.test":
        raise httpx.ConnectError("refused", request=request)
    if host == "nohead.test" and request.method == "HEAD":
        raise httpx.RemoteProtocolError("HEAD not supported", request=request)
    if host == "gone.test":
        return httpx.Response(404)
    return httpx.Response(200)


def _gateway(settings, hits):
    from chaintrace.forensics.osint import OsintGateway

    calls = []

    async def collaborator(identifier):
        calls.append(identifier)
        return hits

    gw = OsintGateway(
        collaborator=collaborator,
        client=httpx.AsyncClient(transport=httpx.MockTransport(_reachability)),
        settings=settings,
    )
    return gw, calls


def _sweep(gw, *identifiers):
    async def go():
        try:
            return [await gw.sweep(i) for i in identifiers]
        finally:
            await gw.client.aclose()
    return asyncio.run(go())


class TestUrlChecks:
    @pytest.mark.parametrize("url,ok", [
        ("https://example.com/thread/1", True),
        ("http://example.com", True),
        ("ftp://example.com/file", False),
        ("javascript:alert(1)", False),
        ("https://bit.ly/abc", False),
        ("http://localhost:8000/x", False),
        ("http://abcdefgh.onion/", False),
        ("", False),
    ])
    def test_acceptable(self, url, ok):
        from chaintrace.forensics.osint import is_acceptable_url

        assert is_acceptable_url(url) is ok


class TestSweep:
    def test_keeps_only_verified_and_reachable(self, settings):
        hits = [
            _hit("https://ok.test/a"),
            _hit("https://ok.test/b", verified=False),
            _hit("https://dead.test/c"),
            _hit("https://tinyurl.com/d"),
            _hit("https://gone.test/e"),
            _hit("https://nohead.test/f"),
        ]
        gw, _ = _gateway(settings, hits)
        (kept,) = _sweep(gw, ROOT_ADDRESS)
        assert [h.url for h in kept] == ["https://ok.test/a", "https://gone.test/e", "https://nohead.test/f"]
        assert gw.metrics()["rejected_urls"] == 2

    def test_sweep_is_cached(self, settings):
        gw, calls = _gateway(settings, [_hit("https://ok.test/a")])
        first, second = _sweep(gw, ROOT_ADDRESS, ROOT_ADDRESS)
        assert first == second
        assert calls == [ROOT_ADDRESS]
        m = gw.metrics()
        assert m["total_queries"] == 2
        assert m["cache_hits"] == 1
        assert m["cache_hit_rate"] == "50.0%"
        assert m["cache_sizes"] == {"sweeps": 1, "verification": 1}

    def test_clear_cache_resets_metrics(self, settings):
        gw, calls = _gateway(settings, [_hit("https://ok.test/a")])
        _sweep(gw, ROOT_ADDRESS)
        gw.clear_cache()
        assert gw.metrics()["total_queries"] == 0
        assert gw.metrics()["cache_hit_rate"] == "0%"

    def test_no_collaborator_means_no_hits(self, settings):
        from chaintrace.forensics.osint import OsintGateway

        gw = OsintGateway(settings=settings)
        assert asyncio.run(gw.sweep(ROOT_ADDRESS)) == []


class TestHitShape:
    def test_camel_and_snake_case(self):
        from chaintrace.forensics.osint import OsintHit

        camel = OsintHit.from_dict(_hit("https://ok.test/a", extractedEntities={"wallets": [WALLET]}))
        snake = OsintHit.from_dict({
            "source": "web", "url": "https://ok.test/a", "verified": True, "linked_to": ROOT_ADDRESS,
            "extracted_entities": {"wallets": [WALLET]}, "content_hash": "abc123",
        })
        assert camel.extracted_entities.wallets == snake.extracted_entities.wallets == [WALLET]
        assert camel.linked_to == snake.linked_to == ROOT_ADDRESS
        assert camel.content_hash == snake.content_hash == "abc123"

    @pytest.mark.parametrize("source,kind", [
        ("github", "github-hit"),
        ("reddit", "social-hit"),
        ("bitcoinabuse", "social-hit"),
        ("web", "osint-hit"),
    ])
    def test_kind_by_source(self, source, kind):
        from chaintrace.forensics.osint import OsintHit

        assert OsintHit(source=source, url="https://x.test").entity_kind.value == kind


class TestIngest:
    def _store_with_root(self):
        from chaintrace.forensics.graph_store import EntityGraphStore
        from chaintrace.forensics.models import Entity, EntityKind

        store = EntityGraphStore()
        store.upsert_entity(Entity(id=ROOT_ADDRESS, kind=EntityKind.BITCOIN_ADDRESS, is_root=True))
        return store

    def test_hits_become_linked_entities(self):
        from chaintrace.forensics.osint import OsintGateway, OsintHit

        store = self._store_with_root()
        hits = [
            OsintHit.from_dict(_hit("https://github.com/x/y", source="github")),
            OsintHit.from_dict(_hit(
                "https://reddit.com/r/z", source="reddit",
                socialIntel=[{"platform": "reddit", "threat_level": "high"}],
            )),
        ]
        added = OsintGateway().ingest(store, hits, linked_to=ROOT_ADDRESS)
        assert added == 2
        gh = store.get("https://github.com/x/y")
        assert gh.kind.value == "github-hit"
        rel = store.relationship(ROOT_ADDRESS, "https://github.com/x/y")
        assert (rel.weight, rel.label) == (5, "OSINT_GITHUB")
        rd = store.get("https://reddit.com/r/z")
        assert rd.risk_score == 80
        assert rd.attributes["threat_level"] == "HIGH"

    def test_extracted_wallets_and_emails(self):
        from chaintrace.forensics.osint import OsintGateway, OsintHit

        store = self._store_with_root()
        hit = OsintHit.from_dict(_hit(
            "https://forum.test/t/1",
            extractedEntities={"wallets": [WALLET, ROOT_ADDRESS, "not-a-wallet"], "emails": ["a@b.test"]},
        ))
        added = OsintGateway().ingest(store, [hit], linked_to=ROOT_ADDRESS)

        assert added == 3
        assert store.get(WALLET).kind.value == "bitcoin-address"
        assert store.relationship("https://forum.test/t/1", WALLET).label == "MENTIONED_IN"
        assert store.get("a@b.test").kind.value == "osint-hit"
        assert "not-a-wallet" not in store

    def test_missing_anchor_is_skipped(self):
        from chaintrace.forensics.graph_store import EntityGraphStore
        from chaintrace.forensics.osint import OsintGateway, OsintHit

        store = EntityGraphStore()
        hit = OsintHit.from_dict(_hit("https://ok.test/a"))
        assert OsintGateway().ingest(store, [hit]) == 0
        assert len(store) == 0

    def test_repeat_ingest_strengthens_edge(self):
        from chaintrace.forensics.osint import OsintGateway, OsintHit

        store = self._store_with_root()
        hit = OsintHit.from_dict(_hit("https://ok.test/a"))
        gw = OsintGateway()
        gw.ingest(store, [hit], linked_to=ROOT_ADDRESS)
        assert gw.ingest(store, [hit], linked_to=ROOT_ADDRESS) == 0
        rel = store.relationship(ROOT_ADDRESS, "https://ok.test/a")
        assert rel.weight == 10
        assert rel.label == "STRONG_LINK: OSINT_WEB"
