"""
Shadow ledger: append-only per-project log of every state change.

Usage:
    ledger = ShadowLedger(Path(".tracegraph"))
    ledger.log_create(LedgerKind.ENTITY, record, provenance)
    entries = ledger.read_all(project_id)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from ..models import Entity, Relationship
from .entry import NO_PROVENANCE, LedgerEntry, LedgerKind, LedgerOperation, Provenance
from .jsonl import JsonlScan, append_record, scan_records

logger = logging.getLogger(__name__)

LEDGER_FILENAME = "ledger.jsonl"


class ShadowLedger:
    """Line-delimited JSON ledger, one file per project under ``root``."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def path_for(self, project_id: str) -> Path:
        return self.root / project_id / LEDGER_FILENAME

    def append(self, entry: LedgerEntry) -> None:
        """Append one entry. Raises OSError if the write cannot complete."""
        append_record(self.path_for(entry.project_id), entry.to_dict())

    def scan(self, project_id: str, *, strict: bool = False) -> JsonlScan[LedgerEntry]:
        """Entries plus corrupt line numbers, for audit tooling."""
        return scan_records(self.path_for(project_id), LedgerEntry.from_dict, strict=strict)

    def read_all(self, project_id: str, *, strict: bool = False) -> list[LedgerEntry]:
        """
        Read every entry in file order.

        Args:
            project_id: Project whose ledger to read
            strict: Raise LedgerCorruptionError on a malformed line (used when
                closing an epoch); otherwise malformed lines are skipped

        Returns:
            List of entries
        """
        return self.scan(project_id, strict=strict).records

    def entries_for_epoch(
        self, project_id: str, epoch_id: str, *, strict: bool = False
    ) -> list[LedgerEntry]:
        return [e for e in self.read_all(project_id, strict=strict) if e.epoch_id == epoch_id]

    def entries_for_instance(self, project_id: str, instance_id: str) -> list[LedgerEntry]:
        """History of one entity or relationship, oldest first."""
        return [e for e in self.read_all(project_id) if e.instance_id == instance_id]

    def entries_by_operation(
        self, project_id: str, operation: LedgerOperation
    ) -> list[LedgerEntry]:
        return [e for e in self.read_all(project_id) if e.operation is operation]

    def count(self, project_id: str) -> int:
        return len(self.read_all(project_id))

    def _log_record(
        self,
        operation: LedgerOperation,
        kind: LedgerKind,
        record: Entity | Relationship,
        provenance: Provenance,
    ) -> LedgerEntry:
        is_entity = kind is LedgerKind.ENTITY
        entry = LedgerEntry(
            operation=operation,
            kind=kind,
            project_id=record.project_id,
            entity_type=record.entity_type if is_entity else None,
            relationship_type=None if is_entity else record.relationship_type,
            entity_id=record.id,
            instance_id=record.instance_id,
            content_hash=record.content_hash,
            evidence=record.evidence.to_dict(),
            **provenance.stamp(),
        )
        self.append(entry)
        return entry

    def log_create(
        self,
        kind: LedgerKind,
        record: Entity | Relationship,
        provenance: Provenance = NO_PROVENANCE,
    ) -> LedgerEntry:
        return self._log_record(LedgerOperation.CREATE, kind, record, provenance)

    def log_update(
        self,
        kind: LedgerKind,
        record: Entity | Relationship,
        provenance: Provenance = NO_PROVENANCE,
    ) -> LedgerEntry:
        return self._log_record(LedgerOperation.UPDATE, kind, record, provenance)

    def log_decision(
        self,
        project_id: str,
        decision: str,
        reason: str,
        provenance: Provenance = NO_PROVENANCE,
        *,
        kind: LedgerKind = LedgerKind.DECISION,
        target_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Record a pipeline or maintenance decision."""
        entry = LedgerEntry(
            operation=LedgerOperation.DECISION,
            kind=kind,
            project_id=project_id,
            decision=decision,
            target_id=target_id,
            reason=reason,
            details=details or {},
            **provenance.stamp(),
        )
        self.append(entry)
        logger.info("Ledger decision %s for %s: %s", decision, project_id, reason)
        return entry
