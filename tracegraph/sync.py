"""
Project primary-store state into the graph store.

Two strategies:

- merge_sync: idempotent MERGE of nodes then edges; never deletes. Used on
  every ordinary pipeline run.
- replace_relationships: deletes every edge of a project and recreates them
  from the primary store. A maintenance operation, recorded in the ledger
  before and after the rewrite.

Neither raises on a single bad record: it is logged and counted as skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence, TypeVar

from .errors import TRANSIENT_EXCEPTIONS, ConsistencyError
from .ledger import EpochService, LedgerKind, ShadowLedger
from .ledger.entry import NO_PROVENANCE
from .models import Entity, Relationship
from .reconcile import CountMismatch, compare_counts
from .stores.base import GraphStore, RelationalStore

logger = logging.getLogger(__name__)

R = TypeVar("R", Entity, Relationship)


@dataclass
class SyncReport:
    synced: int = 0
    skipped: int = 0
    deleted: int = 0
    skipped_ids: list[str] = field(default_factory=list)


@dataclass
class MergeSyncReport:
    entities: SyncReport
    relationships: SyncReport

    @property
    def synced(self) -> int:
        return self.entities.synced + self.relationships.synced

    @property
    def skipped(self) -> int:
        return self.entities.skipped + self.relationships.skipped


def _chunks(records: Sequence[R], size: int) -> list[Sequence[R]]:
    return [records[i : i + size] for i in range(0, len(records), size)]


class GraphSynchronizer:
    """Keeps the graph store in step with the primary store."""

    def __init__(
        self,
        primary: RelationalStore,
        graph: GraphStore,
        ledger: ShadowLedger | None = None,
        epochs: EpochService | None = None,
        batch_size: int = 500,
    ):
        self.primary = primary
        self.graph = graph
        self.ledger = ledger
        self.epochs = epochs
        self.batch_size = max(1, batch_size)

    def _write(
        self,
        project_id: str,
        records: Sequence[R],
        write: Callable[[str, list[R]], list[str]],
        label: str,
    ) -> SyncReport:
        """
        Write records chunk by chunk.

        A failing chunk is retried record by record; a record that still
        fails is skipped. Transient errors are not record-local and propagate.
        """
        report = SyncReport()
        for chunk in _chunks(records, self.batch_size):
            try:
                written = set(write(project_id, list(chunk)))
            except TRANSIENT_EXCEPTIONS:
                raise
            except Exception as e:
                logger.warning("%s chunk of %d failed (%s); retrying per record", label, len(chunk), e)
                written = set()
                for record in chunk:
                    try:
                        written.update(write(project_id, [record]))
                    except TRANSIENT_EXCEPTIONS:
                        raise
                    except Exception as record_error:
                        logger.error("Skipping %s %s: %s", label, record.instance_id, record_error)

            for record in chunk:
                if record.instance_id in written:
                    report.synced += 1
                else:
                    report.skipped += 1
                    report.skipped_ids.append(record.instance_id)

        if report.skipped:
            logger.warning("%s sync for %s skipped %d records", label, project_id, report.skipped)
        return report

    def sync_entities(self, project_id: str, entities: Sequence[Entity]) -> SyncReport:
        return self._write(project_id, entities, self.graph.merge_entities, "entity")

    def sync_relationships(
        self, project_id: str, relationships: Sequence[Relationship]
    ) -> SyncReport:
        """MERGE edges; an edge whose endpoint node is missing is skipped."""
        return self._write(project_id, relationships, self.graph.merge_relationships, "relationship")

    def merge_sync(self, project_id: str) -> MergeSyncReport:
        """Sync every entity, then every relationship, of a project."""
        entities = self.sync_entities(project_id, self.primary.list_entities(project_id))
        relationships = self.sync_relationships(
            project_id, self.primary.list_relationships(project_id)
        )
        logger.info(
            "Merge sync %s: %d nodes, %d edges (%d skipped)",
            project_id, entities.synced, relationships.synced,
            entities.skipped + relationships.skipped,
        )
        return MergeSyncReport(entities=entities, relationships=relationships)

    def _log_replace(self, project_id: str, decision: str, reason: str, details: dict) -> None:
        if self.ledger is None:
            return
        provenance = self.epochs.provenance() if self.epochs else NO_PROVENANCE
        self.ledger.log_decision(
            project_id, decision, reason, provenance, kind=LedgerKind.PIPELINE, details=details
        )

    def replace_relationships(self, project_id: str) -> SyncReport:
        """
        Delete all of a project's edges and recreate them from the primary store.

        REPLACE_SYNC_STARTED is logged before the delete; REPLACE_SYNC or
        REPLACE_SYNC_FAILED after it, so an interrupted replace still shows
        in the ledger.

        Returns:
            SyncReport with deleted, synced and skipped counts
        """
        relationships = self.primary.list_relationships(project_id)
        self._log_replace(
            project_id,
            "REPLACE_SYNC_STARTED",
            f"recreating {len(relationships)} relationships",
            {"primary_relationships": len(relationships)},
        )

        report = SyncReport()
        try:
            report.deleted = self.graph.delete_relationships(project_id)
            written = self._write(
                project_id, relationships, self.graph.create_relationships, "relationship"
            )
        except Exception as e:
            self._log_replace(
                project_id,
                "REPLACE_SYNC_FAILED",
                f"{type(e).__name__}: {e}",
                {"deleted": report.deleted},
            )
            logger.error("Replace sync %s failed after deleting %d edges: %s",
                         project_id, report.deleted, e)
            raise

        report.synced = written.synced
        report.skipped = written.skipped
        report.skipped_ids = written.skipped_ids
        self._log_replace(
            project_id,
            "REPLACE_SYNC",
            f"deleted={report.deleted} synced={report.synced} skipped={report.skipped}",
            {"skipped_ids": report.skipped_ids[:50]},
        )
        logger.info(
            "Replace sync %s: deleted %d, created %d, skipped %d",
            project_id, report.deleted, report.synced, report.skipped,
        )
        return report

    def verify_relationship_parity(self, project_id: str) -> list[CountMismatch]:
        return compare_counts(
            self.primary.count_relationships_by_type(project_id),
            self.graph.count_relationships_by_type(project_id),
        )

    def assert_no_duplicate_relationships(self, project_id: str) -> None:
        """
        Post-sync gate.

        Raises:
            ConsistencyError: If any edge instance_id appears more than once in the graph
        """
        duplicates = self.graph.duplicate_relationship_ids(project_id)
        if duplicates:
            raise ConsistencyError(
                f"{len(duplicates)} duplicate relationship instance_ids in graph store "
                f"for {project_id}: {', '.join(duplicates[:10])}",
                items=duplicates,
            )

    def ensure_constraints(self) -> None:
        self.graph.ensure_constraints()
