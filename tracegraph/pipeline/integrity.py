"""
Structural integrity evaluation of an extracted graph.

Findings carry a severity rather than a pass/fail verdict: they are signals
for review, and never change a pipeline run's success.

Usage:
    report = evaluate_integrity(store, "my-project")
    for finding in report.findings:
        print(finding.severity.value, finding.message)
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from ..models import EntityType, RelationshipType
from ..stores.base import RelationalStore

logger = logging.getLogger(__name__)

# Longest Epic -> Function path searched for
MAX_PATH_LENGTH = 5


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class IntegrityFinding:
    name: str
    severity: Severity
    message: str
    evidence: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "severity": self.severity.value,
            "message": self.message,
            "evidence": self.evidence,
        }


@dataclass
class IntegrityReport:
    findings: list[IntegrityFinding] = field(default_factory=list)

    def count(self, severity: Severity) -> int:
        return sum(1 for f in self.findings if f.severity is severity)

    @property
    def summary(self) -> str:
        return (
            f"{len(self.findings)} findings ({self.count(Severity.CRITICAL)} critical, "
            f"{self.count(Severity.WARNING)} warnings)"
        )

    def finding(self, name: str) -> IntegrityFinding | None:
        for f in self.findings:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"summary": self.summary, "findings": [f.to_dict() for f in self.findings]}


class IntegrityEvaluator:
    """Runs every structural check over a project's rows in the primary store."""

    def __init__(self, store: RelationalStore, required_types: Iterable[str] = ()):
        self.store = store
        self.required_types = list(required_types)

    def evaluate(self, project_id: str) -> IntegrityReport:
        entities = self.store.list_entities(project_id)
        relationships = self.store.list_relationships(project_id)

        report = IntegrityReport(
            findings=[
                self.relationship_integrity(entities, relationships),
                self.entity_uniqueness(entities),
                self.required_entity_types(entities),
                self.orphan_files(entities, relationships),
                self.graph_connectivity(entities, relationships),
            ]
        )
        if report.count(Severity.CRITICAL):
            logger.warning("Integrity check for %s: %s", project_id, report.summary)
        else:
            logger.info("Integrity check for %s: %s", project_id, report.summary)
        return report

    @staticmethod
    def relationship_integrity(entities, relationships) -> IntegrityFinding:
        known = {e.instance_id for e in entities}
        dangling = sorted(
            r.instance_id
            for r in relationships
            if r.from_instance_id not in known or r.to_instance_id not in known
        )
        if not dangling:
            return IntegrityFinding(
                "relationship_integrity",
                Severity.INFO,
                "All relationships reference valid entities",
                {"orphan_count": 0},
            )
        return IntegrityFinding(
            "relationship_integrity",
            Severity.CRITICAL,
            f"{len(dangling)} relationships have invalid references",
            {"orphan_count": len(dangling), "instance_ids": dangling[:50]},
        )

    @staticmethod
    def entity_uniqueness(entities) -> IntegrityFinding:
        duplicates = sorted(i for i, n in Counter(e.instance_id for e in entities).items() if n > 1)
        if not duplicates:
            return IntegrityFinding(
                "entity_uniqueness",
                Severity.INFO,
                "All entity instance_ids are unique",
                {"duplicate_count": 0},
            )
        return IntegrityFinding(
            "entity_uniqueness",
            Severity.CRITICAL,
            f"{len(duplicates)} duplicate instance_ids found",
            {"duplicate_count": len(duplicates), "instance_ids": duplicates[:50]},
        )

    def required_entity_types(self, entities) -> IntegrityFinding:
        found = {e.entity_type for e in entities}
        missing = [t for t in self.required_types if t not in found]
        if not missing:
            return IntegrityFinding(
                "required_entity_types",
                Severity.INFO,
                "All required entity types present",
                {"missing_types": []},
            )
        return IntegrityFinding(
            "required_entity_types",
            Severity.WARNING,
            f"Missing entity types: {', '.join(missing)}",
            {"missing_types": missing},
        )

    @staticmethod
    def orphan_files(entities, relationships) -> IntegrityFinding:
        """Source files that contain no entity."""
        containers = {
            r.from_instance_id
            for r in relationships
            if r.relationship_type == RelationshipType.CONTAINS_ENTITY.value
        }
        orphans = sorted(
            e.instance_id
            for e in entities
            if e.entity_type == EntityType.SOURCE_FILE.value and e.instance_id not in containers
        )
        if not orphans:
            return IntegrityFinding(
                "orphan_files",
                Severity.INFO,
                "All source files have contained entities",
                {"orphan_count": 0},
            )
        return IntegrityFinding(
            "orphan_files",
            Severity.WARNING,
            f"{len(orphans)} source files have no contained entities",
            {"orphan_count": len(orphans), "instance_ids": orphans[:50]},
        )

    @staticmethod
    def graph_connectivity(entities, relationships) -> IntegrityFinding:
        """Whether any Epic reaches any Function along directed edges."""
        types = {e.instance_id: e.entity_type for e in entities}
        edges: dict[str, set[str]] = defaultdict(set)
        for r in relationships:
            edges[r.from_instance_id].add(r.to_instance_id)

        reachable = _reachable_of_type(
            [i for i, t in types.items() if t == EntityType.EPIC.value],
            edges,
            types,
            EntityType.FUNCTION.value,
        )
        if reachable:
            return IntegrityFinding(
                "graph_connectivity",
                Severity.INFO,
                "Graph is connected (Epic -> Function paths exist)",
                {"reachable_functions": len(reachable)},
            )
        return IntegrityFinding(
            "graph_connectivity",
            Severity.WARNING,
            "Graph may be disconnected (no Epic -> Function paths found)",
            {"reachable_functions": 0},
        )


def _reachable_of_type(
    starts: list[str], edges: dict[str, set[str]], types: dict[str, str], target: str
) -> set[str]:
    """Breadth-first search up to MAX_PATH_LENGTH hops."""
    seen = set(starts)
    queue = deque((s, 0) for s in starts)
    found: set[str] = set()
    while queue:
        node, depth = queue.popleft()
        if depth == MAX_PATH_LENGTH:
            continue
        for nxt in edges.get(node, ()):
            if types.get(nxt) == target:
                found.add(nxt)
            if nxt not in seen:
                seen.add(nxt)
                queue.append((nxt, depth + 1))
    return found


def evaluate_integrity(
    store: RelationalStore, project_id: str, required_types: Iterable[str] = ()
) -> IntegrityReport:
    return IntegrityEvaluator(store, required_types).evaluate(project_id)
