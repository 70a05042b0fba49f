"""
Ledger entry model.

A LedgerEntry is one immutable line in a project's shadow ledger: a CREATE or
UPDATE of an entity/relationship, or a DECISION made by the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class LedgerOperation(str, Enum):
    """State-changing operations recorded in the ledger."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DECISION = "DECISION"


class LedgerKind(str, Enum):
    """What the entry is about."""

    ENTITY = "entity"
    RELATIONSHIP = "relationship"
    DECISION = "decision"  # pipeline lifecycle decision
    PIPELINE = "pipeline"  # maintenance operation (e.g. replace sync)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Provenance:
    """Epoch stamp carried by every ledger entry and signal."""

    epoch_id: str | None = None
    repo_sha: str | None = None
    runner_sha: str | None = None
    brd_hash: str | None = None

    def stamp(self) -> dict[str, str | None]:
        return {
            "epoch_id": self.epoch_id,
            "repo_sha": self.repo_sha,
            "runner_sha": self.runner_sha,
            "brd_hash": self.brd_hash,
        }


NO_PROVENANCE = Provenance()


@dataclass(frozen=True)
class LedgerEntry:
    """One append-only ledger record."""

    operation: LedgerOperation
    kind: LedgerKind
    project_id: str

    timestamp: str = field(default_factory=utc_now)

    # Record identity (CREATE/UPDATE)
    entity_type: str | None = None
    relationship_type: str | None = None
    entity_id: str | None = None
    instance_id: str | None = None
    content_hash: str | None = None
    evidence: dict[str, Any] | None = None

    # Provenance stamp
    epoch_id: str | None = None
    repo_sha: str | None = None
    runner_sha: str | None = None
    brd_hash: str | None = None

    # DECISION payload
    decision: str | None = None
    target_id: str | None = None
    reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def type_code(self) -> str | None:
        return self.entity_type or self.relationship_type

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dict, omitting unset fields."""
        data = {
            "timestamp": self.timestamp,
            "operation": self.operation.value,
            "kind": self.kind.value,
            "entity_type": self.entity_type,
            "relationship_type": self.relationship_type,
            "entity_id": self.entity_id,
            "instance_id": self.instance_id,
            "content_hash": self.content_hash,
            "evidence": self.evidence,
            "project_id": self.project_id,
            "epoch_id": self.epoch_id,
            "repo_sha": self.repo_sha,
            "runner_sha": self.runner_sha,
            "brd_hash": self.brd_hash,
            "decision": self.decision,
            "target_id": self.target_id,
            "reason": self.reason,
            "details": self.details or None,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerEntry:
        """Rebuild an entry; raises KeyError/ValueError on malformed input."""
        return cls(
            operation=LedgerOperation(data["operation"]),
            kind=LedgerKind(data["kind"]),
            project_id=data["project_id"],
            timestamp=data["timestamp"],
            entity_type=data.get("entity_type"),
            relationship_type=data.get("relationship_type"),
            entity_id=data.get("entity_id"),
            instance_id=data.get("instance_id"),
            content_hash=data.get("content_hash"),
            evidence=data.get("evidence"),
            epoch_id=data.get("epoch_id"),
            repo_sha=data.get("repo_sha"),
            runner_sha=data.get("runner_sha"),
            brd_hash=data.get("brd_hash"),
            decision=data.get("decision"),
            target_id=data.get("target_id"),
            reason=data.get("reason"),
            details=data.get("details") or {},
        )
