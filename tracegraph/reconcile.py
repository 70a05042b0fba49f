"""
Cross-store reconciliation.

Compares the primary and secondary stores at three levels, each stricter
and more expensive than the last:

1. Count parity: per-type counts must match.
2. ID-set equality: per type, the set of instance_ids must be identical.
3. Type consistency: for a sample of ids, both stores must agree on the type.

The verdict is the conjunction of all three. Every failing type/id is
reported, up to ``report_cap`` items per list. Drift is never repaired here.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from .stores.base import GraphStore, RelationalStore

logger = logging.getLogger(__name__)


@dataclass
class CountMismatch:
    type_code: str
    primary_count: int
    secondary_count: int


@dataclass
class IdSetMismatch:
    type_code: str
    only_in_primary: list[str] = field(default_factory=list)
    only_in_secondary: list[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.only_in_primary and not self.only_in_secondary


@dataclass
class TypeMismatch:
    instance_id: str
    primary_type: str
    secondary_type: str


@dataclass
class ReconciliationReport:
    """Result of a reconciliation run; computed on demand, never persisted."""

    project_id: str
    count_mismatches: list[CountMismatch] = field(default_factory=list)
    id_set_mismatches: list[IdSetMismatch] = field(default_factory=list)
    type_mismatches: list[TypeMismatch] = field(default_factory=list)
    checked_types: list[str] = field(default_factory=list)
    truncated: bool = False

    @property
    def consistent(self) -> bool:
        return not (self.count_mismatches or self.id_set_mismatches or self.type_mismatches)

    def failures(self) -> list[str]:
        """One human-readable line per failing type or id."""
        lines = [
            f"count mismatch {m.type_code}: primary={m.primary_count} secondary={m.secondary_count}"
            for m in self.count_mismatches
        ]
        for m in self.id_set_mismatches:
            lines += [f"{m.type_code} {i} only in primary" for i in m.only_in_primary]
            lines += [f"{m.type_code} {i} only in secondary" for i in m.only_in_secondary]
        lines += [
            f"type mismatch {m.instance_id}: primary={m.primary_type} secondary={m.secondary_type}"
            for m in self.type_mismatches
        ]
        return lines

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["consistent"] = self.consistent
        return data


def compare_counts(
    primary: dict[str, int], secondary: dict[str, int]
) -> list[CountMismatch]:
    """Per-type count differences, types absent on one side counted as zero."""
    return [
        CountMismatch(t, primary.get(t, 0), secondary.get(t, 0))
        for t in sorted(set(primary) | set(secondary))
        if primary.get(t, 0) != secondary.get(t, 0)
    ]


class CrossStoreReconciler:
    """Detects drift between the primary and the graph store."""

    def __init__(
        self,
        primary: RelationalStore,
        secondary: GraphStore,
        sample_size: int = 100,
        report_cap: int = 50,
    ):
        self.primary = primary
        self.secondary = secondary
        self.sample_size = sample_size
        self.report_cap = report_cap

    def _cap(self, items: list, report: ReconciliationReport) -> list:
        if len(items) > self.report_cap:
            report.truncated = True
            return items[: self.report_cap]
        return items

    def verify_counts_only(self, project_id: str) -> ReconciliationReport:
        """Level 1 only: per-type entity counts."""
        report = ReconciliationReport(project_id=project_id)
        primary = self.primary.count_entities_by_type(project_id)
        secondary = self.secondary.count_entities_by_type(project_id)
        report.checked_types = sorted(set(primary) | set(secondary))
        report.count_mismatches = self._cap(compare_counts(primary, secondary), report)
        return report

    def verify_id_set_for_type(self, project_id: str, entity_type: str) -> IdSetMismatch:
        """Level 2 for one type; the result is empty when the sets are equal."""
        primary_ids = self.primary.entity_instance_ids(project_id, entity_type)
        secondary_ids = self.secondary.entity_instance_ids(project_id, entity_type)
        return IdSetMismatch(
            type_code=entity_type,
            only_in_primary=sorted(primary_ids - secondary_ids),
            only_in_secondary=sorted(secondary_ids - primary_ids),
        )

    def verify_relationship_counts(self, project_id: str) -> list[CountMismatch]:
        return compare_counts(
            self.primary.count_relationships_by_type(project_id),
            self.secondary.count_relationships_by_type(project_id),
        )

    def _type_mismatches(
        self, project_id: str, entity_type: str, sample_size: int
    ) -> list[TypeMismatch]:
        sample = sorted(self.primary.entity_instance_ids(project_id, entity_type))[:sample_size]
        secondary_types = self.secondary.entity_types_for(project_id, sample)
        return [
            TypeMismatch(instance_id, entity_type, secondary_types[instance_id])
            for instance_id in sample
            if instance_id in secondary_types and secondary_types[instance_id] != entity_type
        ]

    def verify_cross_store_consistency(
        self, project_id: str, sample_size: int | None = None
    ) -> ReconciliationReport:
        """
        Run all three levels.

        Args:
            project_id: Project to compare
            sample_size: Ids per type checked for type consistency

        Returns:
            ReconciliationReport; ``consistent`` is False on any mismatch
        """
        sample_size = sample_size or self.sample_size
        report = self.verify_counts_only(project_id)

        id_mismatches: list[IdSetMismatch] = []
        type_mismatches: list[TypeMismatch] = []
        for entity_type in report.checked_types:
            result = self.verify_id_set_for_type(project_id, entity_type)
            if not result.consistent:
                result.only_in_primary = self._cap(result.only_in_primary, report)
                result.only_in_secondary = self._cap(result.only_in_secondary, report)
                id_mismatches.append(result)
            type_mismatches.extend(self._type_mismatches(project_id, entity_type, sample_size))

        report.id_set_mismatches = self._cap(id_mismatches, report)
        report.type_mismatches = self._cap(type_mismatches, report)

        if report.consistent:
            logger.info("Stores consistent for %s (%d types)", project_id, len(report.checked_types))
        else:
            logger.warning(
                "Stores inconsistent for %s: %d count, %d id-set, %d type mismatches",
                project_id,
                len(report.count_mismatches),
                len(report.id_set_mismatches),
                len(report.type_mismatches),
            )
        return report
