"""
Pipeline configuration and result types.

Pipeline runs can be described in YAML:

    project_id: my-project
    repo_path: .
    fail_fast: false
    skip_stages: [GIT, GIT_REL]
    validate: true
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import yaml
from pydantic import BaseModel, Field, field_validator

from ..ledger.signals import SemanticSignal
from ..models import ExtractedEntity, ExtractedRelationship

if TYPE_CHECKING:
    from .integrity import IntegrityReport


class PipelineStage(str, Enum):
    """Stages in execution order."""

    SNAPSHOT = "SNAPSHOT"
    FILESYSTEM = "FILESYSTEM"
    DOCUMENT = "DOCUMENT"
    AST = "AST"
    MODULE = "MODULE"
    TEST = "TEST"
    GIT = "GIT"
    MARKERS = "MARKERS"
    DOCUMENT_REL = "DOCUMENT_REL"
    CONTAINMENT_REL = "CONTAINMENT_REL"
    TDD_REL = "TDD_REL"
    AST_REL = "AST_REL"
    TEST_REL = "TEST_REL"
    GIT_REL = "GIT_REL"
    SYNC = "SYNC"
    VALIDATE = "VALIDATE"


STAGE_ORDER: list[PipelineStage] = list(PipelineStage)

# Types every complete traceability graph is expected to contain
DEFAULT_REQUIRED_ENTITY_TYPES = ["E01", "E02", "E03", "E11", "E12", "E27", "E29"]


@dataclass(frozen=True)
class PipelineSnapshot:
    """The repository state a pipeline run extracts from."""

    snapshot_id: str
    project_id: str
    root_path: Path
    commit_sha: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "project_id": self.project_id,
            "root_path": str(self.root_path),
            "commit_sha": self.commit_sha,
            "timestamp": self.timestamp,
        }


class PipelineConfig(BaseModel):
    """Options for one pipeline run."""

    project_id: str
    repo_path: Path = Path(".")
    fail_fast: bool = True
    skip_stages: list[PipelineStage] = Field(default_factory=list)
    # Stages whose relationships are additive: missing endpoints become warnings
    optional_reference_stages: list[PipelineStage] = Field(
        default_factory=lambda: [PipelineStage.TDD_REL, PipelineStage.TEST_REL]
    )
    replace_sync: bool = False
    validate_stores: bool = Field(default=True, alias="validate")
    required_entity_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_REQUIRED_ENTITY_TYPES)
    )

    class Config:
        populate_by_name = True

    @field_validator("project_id")
    @classmethod
    def check_project_id(cls, v: str) -> str:
        if not v or "/" in v or v != v.strip():
            raise ValueError(f"Invalid project_id '{v}'")
        return v

    @classmethod
    def from_yaml(cls, path: Path | str) -> PipelineConfig:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)


@dataclass
class ExtractionBatch:
    """What an extraction provider hands back for one stage."""

    entities: list[ExtractedEntity] = field(default_factory=list)
    relationships: list[ExtractedRelationship] = field(default_factory=list)
    signals: list[SemanticSignal] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class StageProvider(Protocol):
    """Callable that extracts the records for one stage."""

    def __call__(self, config: PipelineConfig, snapshot: PipelineSnapshot) -> ExtractionBatch: ...


@dataclass
class StageResult:
    stage: PipelineStage
    success: bool = False
    skipped: bool = False
    duration_ms: float = 0.0
    entities_created: int = 0
    entities_updated: int = 0
    relationships_created: int = 0
    relationships_updated: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "success": self.success,
            "skipped": self.skipped,
            "duration_ms": round(self.duration_ms, 2),
            "entities_created": self.entities_created,
            "entities_updated": self.entities_updated,
            "relationships_created": self.relationships_created,
            "relationships_updated": self.relationships_updated,
            "errors": self.errors,
            "warnings": self.warnings,
        }


@dataclass
class PipelineResult:
    project_id: str
    epoch_id: str | None
    success: bool
    stages: list[StageResult] = field(default_factory=list)
    total_duration_ms: float = 0.0
    statistics: dict[str, Any] = field(default_factory=dict)
    snapshot: PipelineSnapshot | None = None
    integrity: IntegrityReport | None = None

    @property
    def errors(self) -> list[str]:
        return [e for s in self.stages for e in s.errors]

    @property
    def warnings(self) -> list[str]:
        return [w for s in self.stages for w in s.warnings]

    def stage(self, stage: PipelineStage) -> StageResult | None:
        for result in self.stages:
            if result.stage is stage:
                return result
        return None
