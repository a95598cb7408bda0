"""Deterministic enrichment for graph entities.

Pure functions only: the same transaction (and the same `now`) always give the
same scores, so they can be computed at entity-creation time and re-checked in
tests.

- privacy_score: heuristic 0-100 from input/output fan-in/fan-out
- risk_indicators: flags such as HIGH_VALUE, MULTI_INPUT, UNCONFIRMED
- activity_window_days / average_transaction_value / address_age_days
- entity_risk_score: 0-100 score for a node from its attributes
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Sequence

from .models import Transaction

HIGH_VALUE_COINS = 100.0
HIGH_FEE_PER_BYTE = 100.0
MULTI_INPUT_THRESHOLD = 10
MULTI_OUTPUT_THRESHOLD = 20
RECENT_SECONDS = 3600

HIGH_VALUE_REGISTRY = {
    "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa",
    "34xp4vRoCGJym3xR7yCVPFHoCNxv4Twseo",
    "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh",
}

_SECONDS_PER_DAY = 86400


def privacy_score(tx: Transaction) -> int:
    n_in = len(tx.inputs)
    n_out = len(tx.outputs)
    score = min(30, 5 * n_in) + min(30, 5 * n_out)
    if n_out > 1:
        score += 15     # possible change output
    if n_in > 3:
        score -= 10     # possible consolidation
    return max(0, min(100, score))


def risk_indicators(
    tx: Transaction,
    now: Optional[float] = None,
    high_value_coins: float = HIGH_VALUE_COINS,
    high_fee_per_byte: float = HIGH_FEE_PER_BYTE,
) -> List[str]:
    """Risk flags for a transaction, in a fixed order."""
    now = time.time() if now is None else now
    flags: List[str] = []
    if tx.chain.to_coins(tx.total_output) > high_value_coins:
        flags.append("HIGH_VALUE")
    if len(tx.inputs) > MULTI_INPUT_THRESHOLD:
        flags.append("MULTI_INPUT")
    if len(tx.outputs) > MULTI_OUTPUT_THRESHOLD:
        flags.append("MULTI_OUTPUT")
    if tx.fee_per_byte > high_fee_per_byte:
        flags.append("HIGH_FEE")
    bt = tx.status.block_time
    if tx.status.confirmed and bt is not None and 0 <= now - bt <= RECENT_SECONDS:
        flags.append("RECENT")
    if not tx.status.confirmed:
        flags.append("UNCONFIRMED")
    return flags


def _timestamps(txs: Sequence[Transaction]) -> List[int]:
    return [t.status.block_time for t in txs if t.status.block_time is not None]


def activity_window_days(txs: Sequence[Transaction]) -> int:
    ts = _timestamps(txs)
    if not ts:
        return 0
    return int((max(ts) - min(ts)) // _SECONDS_PER_DAY)


def average_transaction_value(txs: Sequence[Transaction]) -> str:
    """Mean total output per transaction, in coins, as a display string."""
    if not txs:
        return "0"
    chain = txs[0].chain
    mean = sum(t.total_output for t in txs) / len(txs)
    return f"{chain.to_coins(int(mean)):.8f}"


def address_age_days(txs: Sequence[Transaction], now: Optional[float] = None) -> int:
    ts = _timestamps(txs)
    if not ts:
        return 0
    now = time.time() if now is None else now
    return max(0, int((now - min(ts)) // _SECONDS_PER_DAY))


def address_statistics(txs: Sequence[Transaction], now: Optional[float] = None) -> Dict[str, Any]:
    return {
        "activity_window_days": activity_window_days(txs),
        "average_transaction_value": average_transaction_value(txs),
        "address_age_days": address_age_days(txs, now=now),
        "observed_tx_count": len(txs),
    }


def _as_float(value: Any) -> Optional[float]:
    """'12.5 BTC' -> 12.5; None when not numeric."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    head = str(value).strip().split(" ")[0]
    try:
        return float(head)
    except ValueError:
        return None


def entity_risk_score(entity_id: str, attributes: Dict[str, Any]) -> int:
    """Heuristic 0-100 risk for a node, driven by its enrichment attributes."""
    score = 10

    label = str(attributes.get("clustering_label") or "")
    if label and label != "Indeterminate":
        lab = label.lower()
        if any(w in lab for w in ("scam", "hack", "fraud", "darknet")):
            score += 75
        if "mixer" in lab or "tumbler" in lab:
            score += 60
        if any(w in lab for w in ("exchange", "binance", "coinbase")):
            score -= 15

    tags = str(attributes.get("entity_tags") or "")
    if tags and tags != "None detected":
        tl = tags.lower()
        if "high risk" in tl or "sanctioned" in tl:
            score += 80
        if "mixer" in tl:
            score += 50

    balance = _as_float(attributes.get("balance"))
    if balance:
        if balance > 1000:
            score += 40
        elif balance > 100:
            score += 25
        elif balance > 10:
            score += 10

    ops = _as_float(attributes.get("ops_count"))
    if ops:
        if ops > 5000:
            score += 20
        elif ops > 1000:
            score += 10

    pscore = _as_float(attributes.get("privacy_score"))
    if pscore is not None and pscore < 30:
        score += 30

    if entity_id in HIGH_VALUE_REGISTRY:
        score = max(score, 90)

    return max(0, min(score, 100))
