from .integrity import (
    IntegrityEvaluator,
    IntegrityFinding,
    IntegrityReport,
    Severity,
    evaluate_integrity,
)
from .orchestrator import PipelineOrchestrator, create_snapshot, execute_pipeline
from .statistics import GraphStatistics, compute_statistics
from .types import (
    STAGE_ORDER,
    ExtractionBatch,
    PipelineConfig,
    PipelineResult,
    PipelineSnapshot,
    PipelineStage,
    StageProvider,
    StageResult,
)

__all__ = [
    "IntegrityEvaluator",
    "IntegrityFinding",
    "IntegrityReport",
    "Severity",
    "evaluate_integrity",
    "PipelineOrchestrator",
    "create_snapshot",
    "execute_pipeline",
    "GraphStatistics",
    "compute_statistics",
    "STAGE_ORDER",
    "ExtractionBatch",
    "PipelineConfig",
    "PipelineResult",
    "PipelineSnapshot",
    "PipelineStage",
    "StageProvider",
    "StageResult",
]
