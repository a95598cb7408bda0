"""Entity Graph Store: the shared node/edge set for one investigation.

Identity rules:
- Entities are keyed by id; re-inserting merges attributes (new non-null
  values win), an explicit risk score overwrites, an absent one is kept.
- Relationships are keyed by the unordered endpoint pair, so A->B and B->A
  are one edge. Repeat observations add weight and relabel the edge
  (MULTI_TX, or STRONG_LINK once weight exceeds 3).

Output of snapshot() is the nodes/edges/stats JSON used by the renderer.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from .models import Entity, Relationship

log = logging.getLogger("chaintrace.forensics.graph_store")

STRONG_LINK_WEIGHT = 3


class EntityGraphStore:
    def __init__(self) -> None:
        self._entities: Dict[str, Entity] = {}
        self._relationships: Dict[Tuple[str, str], Relationship] = {}

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def get(self, entity_id: str) -> Optional[Entity]:
        return self._entities.get(entity_id)

    def entities(self) -> List[Entity]:
        return list(self._entities.values())

    def relationships(self) -> List[Relationship]:
        return list(self._relationships.values())

    def relationship(self, a: str, b: str) -> Optional[Relationship]:
        return self._relationships.get((a, b) if a <= b else (b, a))

    # ------------- mutation -------------
    def upsert_entity(self, entity: Entity) -> bool:
        """Insert or merge by id. Returns True when the entity is new."""
        existing = self._entities.get(entity.id)
        if existing is None:
            self._entities[entity.id] = Entity(
                id=entity.id,
                kind=entity.kind,
                label=entity.label,
                risk_score=entity.risk_score,
                is_root=entity.is_root,
                attributes=dict(entity.attributes),
            )
            return True

        for k, v in entity.attributes.items():
            if v is not None:
                existing.attributes[k] = v
        if entity.label:
            existing.label = entity.label
        if entity.risk_score is not None:
            existing.risk_score = entity.risk_score
        existing.is_root = existing.is_root or entity.is_root
        return False

    def annotate(self, entity_id: str, attributes: Dict[str, Any]) -> bool:
        """Merge attributes into an existing entity; no-op if it is gone."""
        existing = self._entities.get(entity_id)
        if existing is None:
            return False
        for k, v in attributes.items():
            if v is not None:
                existing.attributes[k] = v
        return True

    def upsert_relationship(self, rel: Relationship) -> Relationship:
        """Insert a new edge or strengthen the existing one for this pair."""
        key = rel.key
        existing = self._relationships.get(key)
        if existing is None:
            stored = Relationship(rel.source_id, rel.target_id, rel.weight, rel.label)
            self._relationships[key] = stored
            return stored

        existing.weight += rel.weight
        prefix = "STRONG_LINK" if existing.weight > STRONG_LINK_WEIGHT else "MULTI_TX"
        existing.label = f"{prefix}: {rel.label}" if rel.label else prefix
        return existing

    def remove_entity(self, entity_id: str) -> bool:
        """Delete an entity and every relationship touching it."""
        if self._entities.pop(entity_id, None) is None:
            return False
        dead = [k for k in self._relationships if entity_id in k]
        for k in dead:
            del self._relationships[k]
        log.info("Removed %s and %d relationships", entity_id, len(dead))
        return True

    def clear(self) -> None:
        self._entities.clear()
        self._relationships.clear()

    # ------------- export -------------
    def snapshot(self) -> Dict[str, Any]:
        kind_counts: Dict[str, int] = defaultdict(int)
        for e in self._entities.values():
            kind_counts[e.kind.value] += 1
        return {
            "nodes": [e.to_dict() for e in self._entities.values()],
            "edges": [r.to_dict() for r in self._relationships.values()],
            "stats": {
                "total_nodes": len(self._entities),
                "total_edges": len(self._relationships),
                "kinds": dict(kind_counts),
            },
        }
