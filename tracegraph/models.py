"""
Record types for the traceability graph.

Entities and relationships arrive from extraction providers as
``ExtractedEntity`` / ``ExtractedRelationship`` candidates, are validated at
the boundary, and come back from the primary store as ``Entity`` /
``Relationship`` rows carrying their content hash and evidence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import InstanceIdFormatError, UnknownTypeCodeError, ValidationError

EXTRACTOR_VERSION = "1.0.0"


class EntityType(str, Enum):
    """Closed set of entity type codes."""

    EPIC = "E01"
    STORY = "E02"
    ACCEPTANCE_CRITERION = "E03"
    CONSTRAINT = "E04"
    TECHNICAL_DESIGN = "E06"
    DATA_SCHEMA = "E08"
    SOURCE_FILE = "E11"
    FUNCTION = "E12"
    CLASS = "E13"
    MODULE = "E15"
    TEST_FILE = "E27"
    TEST_SUITE = "E28"
    TEST_CASE = "E29"
    RELEASE_VERSION = "E49"
    COMMIT = "E50"
    CHANGE_SET = "E52"


class RelationshipType(str, Enum):
    """Closed set of relationship type codes."""

    HAS_STORY = "R01"
    HAS_AC = "R02"
    HAS_CONSTRAINT = "R03"
    CONTAINS_FILE = "R04"
    CONTAINS_ENTITY = "R05"
    CONTAINS_SUITE = "R06"
    CONTAINS_CASE = "R07"
    DESIGNED_IN = "R08"
    SPECIFIED_IN = "R09"
    DEFINES_SCHEMA = "R11"
    IMPLEMENTED_BY = "R14"
    DEFINED_IN = "R16"
    IMPLEMENTS = "R18"
    SATISFIES = "R19"
    IMPORTS = "R21"
    CALLS = "R22"
    EXTENDS = "R23"
    IMPLEMENTS_INTERFACE = "R24"
    DEPENDS_ON = "R26"
    TESTED_BY = "R36"
    VERIFIED_BY = "R37"
    INTRODUCED_IN = "R63"
    MODIFIED_IN = "R67"
    GROUPS = "R70"


def parse_entity_type(code: EntityType | str) -> EntityType:
    """Resolve a type code, raising UnknownTypeCodeError for anything outside the set."""
    try:
        return EntityType(code)
    except ValueError:
        raise UnknownTypeCodeError(str(code), "entity") from None


def parse_relationship_type(code: RelationshipType | str) -> RelationshipType:
    try:
        return RelationshipType(code)
    except ValueError:
        raise UnknownTypeCodeError(str(code), "relationship") from None


def validate_entity_instance_id(instance_id: str) -> None:
    if (
        not instance_id
        or instance_id != instance_id.strip()
        or "\n" in instance_id
    ):
        raise InstanceIdFormatError(instance_id, "a non-empty single-line id")


def expected_relationship_instance_id(
    relationship_type: RelationshipType, from_instance_id: str, to_instance_id: str
) -> str:
    return f"{relationship_type.value}:{from_instance_id}:{to_instance_id}"


def validate_relationship_instance_id(
    instance_id: str,
    relationship_type: RelationshipType,
    from_instance_id: str,
    to_instance_id: str,
) -> None:
    """A relationship instance_id must be exactly ``{TYPE}:{from}:{to}``."""
    if not from_instance_id or not to_instance_id:
        raise InstanceIdFormatError(instance_id, "non-empty endpoint instance ids")
    expected = expected_relationship_instance_id(
        relationship_type, from_instance_id, to_instance_id
    )
    if instance_id != expected:
        raise InstanceIdFormatError(instance_id, repr(expected))


@dataclass(frozen=True)
class EvidenceAnchor:
    """Where in the source a record was extracted from."""

    source_file: str
    line_start: int
    line_end: int
    extractor_version: str = EXTRACTOR_VERSION
    commit_sha: str | None = None
    extraction_timestamp: str | None = None

    def __post_init__(self) -> None:
        if not self.source_file:
            raise ValidationError("Evidence anchor requires a source_file")
        if self.line_start < 1:
            raise ValidationError(
                f"Evidence anchor {self.source_file}: line_start must be >= 1, got {self.line_start}"
            )
        if self.line_end < self.line_start:
            raise ValidationError(
                f"Evidence anchor {self.source_file}: line_end {self.line_end} "
                f"precedes line_start {self.line_start}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_file": self.source_file,
            "line_start": self.line_start,
            "line_end": self.line_end,
            "extractor_version": self.extractor_version,
            "commit_sha": self.commit_sha,
            "extraction_timestamp": self.extraction_timestamp,
        }


@dataclass
class ExtractedEntity:
    """Entity candidate produced by an extraction provider."""

    entity_type: EntityType | str
    instance_id: str
    name: str
    source_file: str
    line_start: int
    line_end: int
    attributes: dict[str, Any] = field(default_factory=dict)
    extractor_version: str = EXTRACTOR_VERSION

    @property
    def evidence(self) -> EvidenceAnchor:
        return EvidenceAnchor(
            source_file=self.source_file,
            line_start=self.line_start,
            line_end=self.line_end,
            extractor_version=self.extractor_version,
        )


@dataclass
class ExtractedRelationship:
    """Relationship candidate produced by an extraction provider."""

    relationship_type: RelationshipType | str
    instance_id: str
    name: str
    from_instance_id: str
    to_instance_id: str
    source_file: str
    line_start: int
    line_end: int
    confidence: float = 1.0
    extractor_version: str = EXTRACTOR_VERSION

    @property
    def evidence(self) -> EvidenceAnchor:
        return EvidenceAnchor(
            source_file=self.source_file,
            line_start=self.line_start,
            line_end=self.line_end,
            extractor_version=self.extractor_version,
        )


def validate_entity(candidate: ExtractedEntity) -> EntityType:
    """Check type code, instance_id and evidence; return the parsed type."""
    entity_type = parse_entity_type(candidate.entity_type)
    validate_entity_instance_id(candidate.instance_id)
    EvidenceAnchor(candidate.source_file, candidate.line_start, candidate.line_end)
    return entity_type


def validate_relationship(candidate: ExtractedRelationship) -> RelationshipType:
    """Check type code, instance_id shape, confidence and evidence; return the parsed type."""
    relationship_type = parse_relationship_type(candidate.relationship_type)
    validate_relationship_instance_id(
        candidate.instance_id,
        relationship_type,
        candidate.from_instance_id,
        candidate.to_instance_id,
    )
    if candidate.confidence is not None and not 0.0 <= candidate.confidence <= 1.0:
        raise ValidationError(
            f"Relationship {candidate.instance_id}: confidence {candidate.confidence} outside [0, 1]"
        )
    EvidenceAnchor(candidate.source_file, candidate.line_start, candidate.line_end)
    return relationship_type


@dataclass
class Entity:
    """Entity row as stored in the primary store."""

    id: str
    project_id: str
    entity_type: str
    instance_id: str
    name: str
    attributes: dict[str, Any]
    source_file: str
    line_start: int
    line_end: int
    content_hash: str
    extractor_version: str = EXTRACTOR_VERSION
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def evidence(self) -> EvidenceAnchor:
        return EvidenceAnchor(
            self.source_file, self.line_start, self.line_end, self.extractor_version
        )


@dataclass
class Relationship:
    """Relationship row as stored in the primary store, endpoints resolved."""

    id: str
    project_id: str
    relationship_type: str
    instance_id: str
    name: str
    from_entity_id: str
    to_entity_id: str
    from_instance_id: str
    to_instance_id: str
    source_file: str
    line_start: int
    line_end: int
    content_hash: str
    confidence: float = 1.0
    extractor_version: str = EXTRACTOR_VERSION
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def evidence(self) -> EvidenceAnchor:
        return EvidenceAnchor(
            self.source_file, self.line_start, self.line_end, self.extractor_version
        )


class UpsertOperation(str, Enum):
    """Outcome of an idempotent upsert."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    NOOP = "NO-OP"


@dataclass
class UpsertResult:
    """Stored record (None on NO-OP) and the operation that happened."""

    operation: UpsertOperation
    record: Entity | Relationship | None = None


@dataclass
class UpsertFailure:
    instance_id: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.instance_id}: {self.error}"


@dataclass
class BatchUpsertResult:
    """Per-record outcomes of a sequential batch upsert."""

    results: list[UpsertResult] = field(default_factory=list)
    failures: list[UpsertFailure] = field(default_factory=list)

    def _count(self, operation: UpsertOperation) -> int:
        return sum(1 for r in self.results if r.operation is operation)

    @property
    def created(self) -> int:
        return self._count(UpsertOperation.CREATE)

    @property
    def updated(self) -> int:
        return self._count(UpsertOperation.UPDATE)

    @property
    def unchanged(self) -> int:
        return self._count(UpsertOperation.NOOP)

    @property
    def changed_records(self) -> list[Entity | Relationship]:
        return [r.record for r in self.results if r.record is not None]
