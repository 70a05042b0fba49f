"""
Pipeline orchestrator.

Runs the extraction stages in dependency order inside one epoch, then syncs
the graph store, validates it against the primary store and evaluates the
structural integrity of the result.

Usage:
    config = PipelineConfig(project_id="my-project", fail_fast=False)
    result = execute_pipeline(config, providers={PipelineStage.AST: extract_ast})

Providers are called as provider(config, snapshot).
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import ulid

from ..errors import EpochStateError, ErrorKind, ReferentialError, classify_error
from ..ledger import EpochService
from ..ledger.entry import utc_now
from ..models import BatchUpsertResult
from ..reconcile import CrossStoreReconciler
from ..services import EntityService, RelationshipService
from ..settings import Settings
from ..sync import GraphSynchronizer
from .integrity import evaluate_integrity
from .statistics import compute_statistics
from .types import (
    STAGE_ORDER,
    PipelineConfig,
    PipelineResult,
    PipelineSnapshot,
    PipelineStage,
    StageProvider,
    StageResult,
)

if TYPE_CHECKING:
    from ..engine import Engine

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def create_snapshot(config: PipelineConfig, commit_sha: str) -> PipelineSnapshot:
    """Identify the repository state this run extracts from."""
    return PipelineSnapshot(
        snapshot_id=f"snapshot-{ulid.new()}-{commit_sha[:8]}",
        project_id=config.project_id,
        root_path=config.repo_path,
        commit_sha=commit_sha,
        timestamp=utc_now(),
    )


class PipelineOrchestrator:
    """Sequences providers and services through the pipeline stages."""

    def __init__(
        self,
        entities: EntityService,
        relationships: RelationshipService,
        synchronizer: GraphSynchronizer,
        reconciler: CrossStoreReconciler,
        epochs: EpochService,
        providers: dict[PipelineStage, StageProvider] | None = None,
    ):
        self.entities = entities
        self.relationships = relationships
        self.synchronizer = synchronizer
        self.reconciler = reconciler
        self.epochs = epochs
        self.ledger = epochs.ledger
        self.corpus = epochs.corpus
        self.providers = providers or {}

    def execute(self, config: PipelineConfig) -> PipelineResult:
        """
        Run every stage not listed in ``config.skip_stages``.

        Starts an epoch when none is running and closes it at the end; an
        exception escaping a stage fails the epoch and is re-raised.

        Args:
            config: Pipeline options

        Returns:
            PipelineResult with per-stage results and graph statistics
        """
        started = time.perf_counter()
        project_id = config.project_id

        epoch = self.epochs.get_current_epoch()
        owns_epoch = epoch is None
        if epoch is None:
            epoch = self.epochs.start_epoch(project_id, repo_path=config.repo_path)
        elif epoch.project_id != project_id:
            raise EpochStateError(
                f"Running epoch {epoch.epoch_id} belongs to {epoch.project_id}, not {project_id}"
            )

        stages: list[StageResult] = []
        try:
            snapshot = create_snapshot(config, epoch.repo_sha)
            stages.append(
                StageResult(
                    stage=PipelineStage.SNAPSHOT, success=True, duration_ms=_elapsed_ms(started)
                )
            )
            self.ledger.log_decision(
                project_id,
                "PIPELINE_STARTED",
                f"fail_fast={config.fail_fast}",
                self.epochs.provenance(),
                target_id=snapshot.snapshot_id,
                details={
                    "skip_stages": [s.value for s in config.skip_stages],
                    "snapshot": snapshot.to_dict(),
                },
            )

            for stage in STAGE_ORDER[1:]:
                if stage in config.skip_stages:
                    stages.append(StageResult(stage=stage, success=True, skipped=True))
                    continue

                result = self._run_stage(stage, config, snapshot)
                stages.append(result)
                if not result.success:
                    logger.error("Stage %s failed: %s", stage.value, "; ".join(result.errors))
                    if config.fail_fast:
                        break

            success = all(s.success for s in stages)
            statistics = compute_statistics(self.entities.store, project_id).to_dict()
            integrity = evaluate_integrity(
                self.entities.store, project_id, config.required_entity_types
            )
            self.ledger.log_decision(
                project_id,
                "PIPELINE_COMPLETED",
                "success" if success else "completed with errors",
                self.epochs.provenance(),
                target_id=snapshot.snapshot_id,
                details={
                    "failed_stages": [s.stage.value for s in stages if not s.success],
                    "integrity": integrity.summary,
                },
            )
            if owns_epoch:
                self.epochs.complete_epoch()
        except Exception as e:
            if owns_epoch:
                self.epochs.fail_epoch(f"{type(e).__name__}: {e}")
            raise

        return PipelineResult(
            project_id=project_id,
            epoch_id=epoch.epoch_id,
            success=success,
            stages=stages,
            total_duration_ms=_elapsed_ms(started),
            statistics=statistics,
            snapshot=snapshot,
            integrity=integrity,
        )

    # --- Stage execution ---

    def _run_stage(
        self, stage: PipelineStage, config: PipelineConfig, snapshot: PipelineSnapshot
    ) -> StageResult:
        """Run one stage, retrying exactly once on a transient error."""
        result = StageResult(stage=stage)
        started = time.perf_counter()

        for attempt in (1, 2):
            warnings_before = len(result.warnings)
            try:
                self._execute_stage(stage, config, snapshot, result)
            except Exception as e:
                kind = classify_error(e)
                if kind is ErrorKind.TRANSIENT and attempt == 1:
                    logger.warning("Transient error in %s, retrying: %s", stage.value, e)
                    # the retry re-reports whatever the first attempt found
                    del result.warnings[warnings_before:]
                    result.errors.clear()
                    result.warnings.append(f"TRANSIENT_ERROR: {stage.value} {e} (retrying)")
                    continue
                if kind is ErrorKind.REFERENTIAL:
                    self._record_missing_entity(stage, e, config, result)
                else:
                    result.errors.append(f"{kind.value.upper()}_ERROR: stage={stage.value}, error={e}")
            else:
                if attempt == 2 and not result.errors:
                    result.warnings.append(f"RECOVERY: {stage.value} succeeded after retry")
            break

        result.success = not result.errors
        result.duration_ms = _elapsed_ms(started)
        return result

    def _execute_stage(
        self,
        stage: PipelineStage,
        config: PipelineConfig,
        snapshot: PipelineSnapshot,
        result: StageResult,
    ) -> None:
        if stage is PipelineStage.SYNC:
            self._sync(config, result)
        elif stage is PipelineStage.VALIDATE:
            self._validate(config, result)
        else:
            self._extract(stage, config, snapshot, result)

    def _extract(
        self,
        stage: PipelineStage,
        config: PipelineConfig,
        snapshot: PipelineSnapshot,
        result: StageResult,
    ) -> None:
        provider = self.providers.get(stage)
        if provider is None:
            result.skipped = True
            return

        batch = provider(config, snapshot)
        result.warnings.extend(batch.warnings)
        project_id = config.project_id

        if batch.entities:
            entities = self.entities.batch_upsert(project_id, batch.entities)
            result.entities_created += entities.created
            result.entities_updated += entities.updated
            self._record_failures(stage, entities, config, result)

        if batch.relationships:
            relationships = self.relationships.batch_upsert(project_id, batch.relationships)
            result.relationships_created += relationships.created
            result.relationships_updated += relationships.updated
            self._record_failures(stage, relationships, config, result)

        provenance = self.epochs.provenance()
        for signal in batch.signals:
            self.corpus.capture(project_id, signal, provenance)

    def _record_failures(
        self,
        stage: PipelineStage,
        batch: BatchUpsertResult,
        config: PipelineConfig,
        result: StageResult,
    ) -> None:
        for failure in batch.failures:
            if isinstance(failure.error, ReferentialError):
                self._record_missing_entity(stage, failure.error, config, result)
            else:
                result.errors.append(
                    f"VALIDATION_ERROR: stage={stage.value}, instance_id={failure.instance_id}, "
                    f"error={failure.error}"
                )

    @staticmethod
    def _record_missing_entity(
        stage: PipelineStage,
        error: Exception,
        config: PipelineConfig,
        result: StageResult,
    ) -> None:
        """Downgrade to a warning in optional stages, escalate everywhere else."""
        if stage in config.optional_reference_stages:
            result.warnings.append(f"MISSING_ENTITY_WARNING: stage={stage.value}, error={error}")
            return
        if isinstance(error, ReferentialError):
            result.errors.append(
                f"MISSING_ENTITY_CRITICAL: stage={stage.value}, "
                f"relationship_type={error.relationship_type}, "
                f"missing_entity_id={error.missing_instance_id}"
            )
        else:
            result.errors.append(f"MISSING_ENTITY_CRITICAL: stage={stage.value}, error={error}")

    def _sync(self, config: PipelineConfig, result: StageResult) -> None:
        project_id = config.project_id
        if config.replace_sync:
            nodes = self.synchronizer.sync_entities(
                project_id, self.entities.store.list_entities(project_id)
            )
            edges = self.synchronizer.replace_relationships(project_id)
            skipped = nodes.skipped + edges.skipped
        else:
            skipped = self.synchronizer.merge_sync(project_id).skipped

        if skipped:
            result.warnings.append(f"SYNC_SKIPPED: {skipped} records not written to graph store")
        self.synchronizer.assert_no_duplicate_relationships(project_id)

    def _validate(self, config: PipelineConfig, result: StageResult) -> None:
        if not config.validate_stores:
            result.skipped = True
            return

        report = self.reconciler.verify_cross_store_consistency(config.project_id)
        result.errors.extend(f"CONSISTENCY: {line}" for line in report.failures())
        if report.truncated:
            result.warnings.append("CONSISTENCY: report truncated")
        for mismatch in self.reconciler.verify_relationship_counts(config.project_id):
            result.errors.append(
                f"CONSISTENCY: relationship count mismatch {mismatch.type_code}: "
                f"primary={mismatch.primary_count} secondary={mismatch.secondary_count}"
            )


def execute_pipeline(
    config: PipelineConfig,
    providers: dict[PipelineStage, StageProvider] | None = None,
    settings: Settings | None = None,
    engine: Engine | None = None,
) -> PipelineResult:
    """Build the stores from settings (or use ``engine``) and run the pipeline."""
    if engine is not None:
        return engine.orchestrator(providers).execute(config)

    from ..engine import Engine

    with Engine.from_settings(settings) as built:
        return built.orchestrator(providers).execute(config)
