"""Forensic graph engine for chaintrace.

Provides:
- Identifier detection and chain tagging (Bitcoin-style vs Ethereum-style)
- Multi-provider chain data acquisition with fallback, retry and caching
- Entity graph store with identity, merge and link-strengthening rules
- Bounded, cancellable recursive expansion of addresses and transactions
- Deterministic enrichment (privacy score, risk indicators, activity stats)
- OSINT collaborator ingestion and top-level investigation orchestration
"""
