"""
Entity upsert service.

Validates candidates at the boundary, writes them idempotently to the
primary store and appends one ledger entry per CREATE or UPDATE.
"""

from __future__ import annotations

import logging

from ..errors import ReferentialError, ValidationError
from ..hashing import compute_entity_hash
from ..ledger import EpochService, LedgerKind, ShadowLedger
from ..ledger.entry import NO_PROVENANCE, Provenance
from ..models import (
    BatchUpsertResult,
    Entity,
    ExtractedEntity,
    UpsertFailure,
    UpsertOperation,
    UpsertResult,
    parse_entity_type,
    validate_entity,
)
from ..stores.base import RelationalStore

logger = logging.getLogger(__name__)


class EntityService:
    """Upsert and query entities for a project."""

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

    def upsert(self, project_id: str, candidate: ExtractedEntity) -> UpsertResult:
        """
        Insert or update one entity.

        Args:
            project_id: Tenant scope
            candidate: Entity from an extraction provider

        Returns:
            UpsertResult with the stored row (None on NO-OP)

        Raises:
            ValidationError: Bad type code, instance_id or evidence; nothing was written
        """
        entity_type = validate_entity(candidate)

        content_hash = compute_entity_hash(candidate)
        record, operation = self.store.upsert_entity(project_id, candidate, content_hash)

        if operation is UpsertOperation.CREATE:
            if self.epochs and self.epochs.get_current_epoch():
                self.epochs.record_create(LedgerKind.ENTITY, entity_type.value, candidate.instance_id)
            self.ledger.log_create(LedgerKind.ENTITY, record, self._provenance())
        elif operation is UpsertOperation.UPDATE:
            self.ledger.log_update(LedgerKind.ENTITY, record, self._provenance())

        return UpsertResult(operation=operation, record=record)

    def batch_upsert(
        self, project_id: str, candidates: list[ExtractedEntity]
    ) -> BatchUpsertResult:
        """
        Upsert candidates one at a time.

        Validation failures are collected per record; any other error
        (transient I/O included) propagates.
        """
        batch = BatchUpsertResult()
        for candidate in candidates:
            try:
                batch.results.append(self.upsert(project_id, candidate))
            except (ValidationError, ReferentialError) as e:
                logger.warning("Entity %s rejected: %s", candidate.instance_id, e)
                batch.failures.append(UpsertFailure(candidate.instance_id, e))
        logger.info(
            "Entities for %s: %d created, %d updated, %d unchanged, %d rejected",
            project_id, batch.created, batch.updated, batch.unchanged, len(batch.failures),
        )
        return batch

    def get_by_instance_id(self, project_id: str, instance_id: str) -> Entity | None:
        return self.store.get_entity(project_id, instance_id)

    def query_by_type(self, project_id: str, entity_type: str) -> list[Entity]:
        return self.store.list_entities(project_id, parse_entity_type(entity_type).value)

    def count_by_type(self, project_id: str) -> dict[str, int]:
        return self.store.count_entities_by_type(project_id)

    def get_all(self, project_id: str) -> list[Entity]:
        return self.store.list_entities(project_id)
