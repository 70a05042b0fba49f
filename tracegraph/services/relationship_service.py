"""
Relationship upsert service.

Endpoints are resolved within the project before any write; an edge whose
endpoint does not exist is a ReferentialError, never a silent skip.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..errors import ReferentialError, ValidationError
from ..hashing import compute_relationship_hash
from ..ledger import EpochService, LedgerKind, ShadowLedger
from ..ledger.entry import NO_PROVENANCE, Provenance
from ..models import (
    BatchUpsertResult,
    ExtractedRelationship,
    Relationship,
    UpsertFailure,
    UpsertOperation,
    UpsertResult,
    parse_relationship_type,
    validate_relationship,
)
from ..stores.base import RelationalStore

if TYPE_CHECKING:
    from ..sync import GraphSynchronizer, MergeSyncReport

logger = logging.getLogger(__name__)


class RelationshipService:
    """Upsert and query relationships for a project."""

    def __init__(
        self,
        store: RelationalStore,
        ledger: ShadowLedger,
        epochs: EpochService | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.epochs = epochs

    def _provenance(self) -> Provenance:
        return self.epochs.provenance() if self.epochs else NO_PROVENANCE

    def _resolve(
        self, project_id: str, candidate: ExtractedRelationship, endpoint: str
    ) -> str:
        instance_id = getattr(candidate, f"{endpoint}_instance_id")
        entity_id = self.store.resolve_entity_id(project_id, instance_id)
        if entity_id is None:
            raise ReferentialError(
                relationship_type=parse_relationship_type(candidate.relationship_type).value,
                relationship_id=candidate.instance_id,
                missing_instance_id=instance_id,
                project_id=project_id,
                endpoint=endpoint,
            )
        return entity_id

    def upsert(self, project_id: str, candidate: ExtractedRelationship) -> UpsertResult:
        """
        Insert or update one relationship.

        Args:
            project_id: Tenant scope
            candidate: Relationship from an extraction provider

        Returns:
            UpsertResult with the stored row (None on NO-OP)

        Raises:
            ValidationError: Malformed instance_id, type code or evidence
            ReferentialError: An endpoint entity does not exist in the project
        """
        relationship_type = validate_relationship(candidate)
        from_id = self._resolve(project_id, candidate, "from")
        to_id = self._resolve(project_id, candidate, "to")

        content_hash = compute_relationship_hash(candidate)
        record, operation = self.store.upsert_relationship(
            project_id, candidate, from_id, to_id, content_hash
        )

        if operation is UpsertOperation.CREATE:
            if self.epochs and self.epochs.get_current_epoch():
                self.epochs.record_create(
                    LedgerKind.RELATIONSHIP, relationship_type.value, candidate.instance_id
                )
            self.ledger.log_create(LedgerKind.RELATIONSHIP, record, self._provenance())
        elif operation is UpsertOperation.UPDATE:
            self.ledger.log_update(LedgerKind.RELATIONSHIP, record, self._provenance())

        return UpsertResult(operation=operation, record=record)

    def batch_upsert(
        self, project_id: str, candidates: list[ExtractedRelationship]
    ) -> BatchUpsertResult:
        """
        Upsert candidates one at a time.

        Validation and referential failures are collected per record so the
        caller can classify them; any other error propagates.
        """
        batch = BatchUpsertResult()
        for candidate in candidates:
            try:
                batch.results.append(self.upsert(project_id, candidate))
            except (ValidationError, ReferentialError) as e:
                logger.warning("Relationship %s rejected: %s", candidate.instance_id, e)
                batch.failures.append(UpsertFailure(candidate.instance_id, e))
        logger.info(
            "Relationships for %s: %d created, %d updated, %d unchanged, %d rejected",
            project_id, batch.created, batch.updated, batch.unchanged, len(batch.failures),
        )
        return batch

    def batch_upsert_and_sync(
        self,
        project_id: str,
        candidates: list[ExtractedRelationship],
        synchronizer: GraphSynchronizer,
    ) -> tuple[BatchUpsertResult, MergeSyncReport]:
        """Upsert, then merge-sync the project's nodes and edges into the graph store."""
        batch = self.batch_upsert(project_id, candidates)
        report = synchronizer.merge_sync(project_id)
        return batch, report

    def get_by_instance_id(self, project_id: str, instance_id: str) -> Relationship | None:
        return self.store.get_relationship(project_id, instance_id)

    def query_by_type(self, project_id: str, relationship_type: str) -> list[Relationship]:
        return self.store.list_relationships(
            project_id, parse_relationship_type(relationship_type).value
        )

    def count_by_type(self, project_id: str) -> dict[str, int]:
        return self.store.count_relationships_by_type(project_id)

    def get_all(self, project_id: str) -> list[Relationship]:
        return self.store.list_relationships(project_id)
