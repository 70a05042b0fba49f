"""Graph statistics reported at the end of a pipeline run."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from ..stores.base import RelationalStore


@dataclass
class GraphStatistics:
    entity_counts: dict[str, int] = field(default_factory=dict)
    relationship_counts: dict[str, int] = field(default_factory=dict)
    orphan_entities: list[str] = field(default_factory=list)

    @property
    def total_entities(self) -> int:
        return sum(self.entity_counts.values())

    @property
    def total_relationships(self) -> int:
        return sum(self.relationship_counts.values())

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total_entities"] = self.total_entities
        data["total_relationships"] = self.total_relationships
        return data


def compute_statistics(store: RelationalStore, project_id: str) -> GraphStatistics:
    """Counts by type plus entities with no incident relationship."""
    entities = store.list_entities(project_id)
    relationships = store.list_relationships(project_id)

    connected = {r.from_instance_id for r in relationships} | {
        r.to_instance_id for r in relationships
    }
    return GraphStatistics(
        entity_counts=store.count_entities_by_type(project_id),
        relationship_counts=store.count_relationships_by_type(project_id),
        orphan_entities=sorted(e.instance_id for e in entities if e.instance_id not in connected),
    )
