"""
tracegraph - dual-store provenance engine for codebase traceability graphs.

Entities and relationships are upserted idempotently into PostgreSQL, every
state change is appended to a per-project shadow ledger stamped with the
running epoch, and the graph is projected into Neo4j and reconciled against
the relational store.

Usage:
    from tracegraph import Engine, ExtractedEntity, EntityType

    with Engine.from_settings() as engine:
        engine.epochs.start_epoch("my-project")
        engine.entities.upsert(
            "my-project",
            ExtractedEntity(
                entity_type=EntityType.SOURCE_FILE,
                instance_id="src/app.py",
                name="app.py",
                source_file="src/app.py",
                line_start=1,
                line_end=120,
            ),
        )
        engine.synchronizer.merge_sync("my-project")
        engine.epochs.complete_epoch()
"""

from .engine import Engine
from .errors import (
    ConsistencyError,
    DuplicateCreateError,
    EpochStateError,
    ErrorKind,
    InstanceIdFormatError,
    LedgerCorruptionError,
    ReferentialError,
    TraceGraphError,
    TransientStoreError,
    UnknownTypeCodeError,
    ValidationError,
    classify_error,
)
from .models import (
    EntityType,
    EvidenceAnchor,
    ExtractedEntity,
    ExtractedRelationship,
    RelationshipType,
    UpsertOperation,
    UpsertResult,
)
from .pipeline import PipelineConfig, PipelineStage, execute_pipeline

__all__ = [
    "Engine",
    "ConsistencyError",
    "DuplicateCreateError",
    "EpochStateError",
    "ErrorKind",
    "InstanceIdFormatError",
    "LedgerCorruptionError",
    "ReferentialError",
    "TraceGraphError",
    "TransientStoreError",
    "UnknownTypeCodeError",
    "ValidationError",
    "classify_error",
    "EntityType",
    "EvidenceAnchor",
    "ExtractedEntity",
    "ExtractedRelationship",
    "RelationshipType",
    "UpsertOperation",
    "UpsertResult",
    "PipelineConfig",
    "PipelineStage",
    "execute_pipeline",
]
