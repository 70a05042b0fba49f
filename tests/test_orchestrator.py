"""Tests for the pipeline orchestrator."""

from __future__ import annotations

import pytest

from tests.fakes import make_entity, make_relationship
from tracegraph.errors import TransientStoreError
from tracegraph.ledger import EpochStatus, LedgerOperation, SemanticSignal, SignalType
from tracegraph.ledger import epoch as epoch_module
from tracegraph.models import EntityType, RelationshipType
from tracegraph.pipeline import (
    ExtractionBatch,
    PipelineConfig,
    PipelineStage,
    execute_pipeline,
)
from tracegraph.pipeline import orchestrator as orchestrator_module
from tracegraph.pipeline.integrity import Severity


def filesystem(config, snapshot):
    return ExtractionBatch(
        entities=[
            make_entity("app"),
            make_entity("main", entity_type=EntityType.FUNCTION),
            make_entity("abc123", entity_type=EntityType.COMMIT),
        ],
        signals=[
            SemanticSignal(SignalType.CORRECT, "E12", "main", {"signal_instance_id": "sig-1"})
        ],
    )


def containment(config, snapshot):
    return ExtractionBatch(relationships=[make_relationship("app", "main")])


def missing_test_link(config, snapshot):
    return ExtractionBatch(
        relationships=[
            make_relationship("main", "test_main", relationship_type=RelationshipType.TESTED_BY)
        ]
    )


def missing_commit_link(config, snapshot):
    return ExtractionBatch(
        relationships=[
            make_relationship("app", "deadbeef", relationship_type=RelationshipType.INTRODUCED_IN)
        ]
    )


class FlakyProvider:
    """Raises a transient error on the first ``failures`` calls."""

    def __init__(self, inner, failures=1):
        self.inner = inner
        self.failures = failures
        self.calls = 0

    def __call__(self, config, snapshot):
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientStoreError("connection reset by peer")
        return self.inner(config, snapshot)


def decisions(engine, project):
    return [e for e in engine.ledger.read_all(project) if e.operation is LedgerOperation.DECISION]


class TestPipelineRun:
    def test_full_run(self, engine, graph, project):
        providers = {
            PipelineStage.FILESYSTEM: filesystem,
            PipelineStage.CONTAINMENT_REL: containment,
        }
        result = engine.orchestrator(providers).execute(PipelineConfig(project_id=project))

        assert result.success, result.errors
        assert [s.stage for s in result.stages][-2:] == [PipelineStage.SYNC, PipelineStage.VALIDATE]
        assert result.stage(PipelineStage.FILESYSTEM).entities_created == 3
        assert result.stage(PipelineStage.CONTAINMENT_REL).relationships_created == 1
        assert result.stage(PipelineStage.AST).skipped
        assert graph.count_relationships_by_type(project) == {"R05": 1}
        assert result.statistics["total_entities"] == 3
        assert result.statistics["orphan_entities"] == ["abc123"]

        assert [d.decision for d in decisions(engine, project)] == [
            "PIPELINE_STARTED",
            "PIPELINE_COMPLETED",
        ]
        assert decisions(engine, project)[-1].reason == "success"

        epoch = engine.epochs.get_epoch(project, result.epoch_id)
        assert epoch.status is EpochStatus.COMPLETED
        assert epoch.counts.entities_created == 3
        assert epoch.counts.relationships_created == 1
        assert epoch.counts.decisions_logged == 2
        assert epoch.counts.signals_captured == 1
        assert engine.epochs.get_current_epoch() is None

    def test_rerun_is_noop(self, engine, project):
        providers = {
            PipelineStage.FILESYSTEM: filesystem,
            PipelineStage.CONTAINMENT_REL: containment,
        }
        engine.orchestrator(providers).execute(PipelineConfig(project_id=project))
        second = engine.orchestrator(providers).execute(PipelineConfig(project_id=project))

        assert second.success
        assert second.stage(PipelineStage.FILESYSTEM).entities_created == 0
        counts = engine.epochs.get_epoch(project, second.epoch_id).counts
        assert counts.entities_created == counts.relationships_created == 0
        assert counts.signals_captured == 0

    def test_skip_stages(self, engine, project):
        result = engine.orchestrator({PipelineStage.FILESYSTEM: filesystem}).execute(
            PipelineConfig(project_id=project, skip_stages=[PipelineStage.FILESYSTEM])
        )
        assert result.stage(PipelineStage.FILESYSTEM).skipped
        assert engine.entities.get_all(project) == []

    def test_uses_running_epoch_without_closing_it(self, engine, project):
        epoch = engine.epochs.start_epoch(project)
        result = engine.orchestrator().execute(PipelineConfig(project_id=project))
        assert result.epoch_id == epoch.epoch_id
        assert engine.epochs.get_current_epoch() is epoch


class TestSnapshot:
    def test_snapshot_reaches_providers_and_decisions(self, engine, project):
        seen = []

        def capture(config, snapshot):
            seen.append(snapshot)
            return ExtractionBatch()

        result = engine.orchestrator({PipelineStage.FILESYSTEM: capture}).execute(
            PipelineConfig(project_id=project)
        )

        snapshot = result.snapshot
        assert seen == [snapshot]
        assert snapshot.snapshot_id.startswith("snapshot-")
        assert snapshot.snapshot_id.endswith("-abc123")
        assert snapshot.commit_sha == "abc123"
        assert snapshot.project_id == project

        first = result.stages[0]
        assert first.stage is PipelineStage.SNAPSHOT
        assert first.success and not first.skipped
        assert [d.target_id for d in decisions(engine, project)] == [snapshot.snapshot_id] * 2

    def test_epoch_revision_comes_from_config_repo_path(
        self, engine, project, tmp_path, monkeypatch
    ):
        monkeypatch.setattr(epoch_module, "git_head_sha", lambda path: f"sha-of:{path.name}")
        other = tmp_path / "other-repo"
        other.mkdir()

        result = engine.orchestrator().execute(PipelineConfig(project_id=project, repo_path=other))

        assert engine.epochs.get_epoch(project, result.epoch_id).repo_sha == "sha-of:other-repo"
        assert result.snapshot.root_path == other
        assert result.snapshot.commit_sha == "sha-of:other-repo"


class TestIntegrity:
    def test_findings_reported_without_failing_run(self, engine, project):
        providers = {
            PipelineStage.FILESYSTEM: filesystem,
            PipelineStage.CONTAINMENT_REL: containment,
        }
        result = engine.orchestrator(providers).execute(PipelineConfig(project_id=project))

        assert result.success
        integrity = result.integrity
        assert integrity.finding("relationship_integrity").severity is Severity.INFO
        assert integrity.finding("orphan_files").severity is Severity.INFO
        missing = integrity.finding("required_entity_types")
        assert missing.severity is Severity.WARNING
        assert missing.evidence["missing_types"] == ["E01", "E02", "E03", "E27", "E29"]
        assert integrity.finding("graph_connectivity").severity is Severity.WARNING
        assert decisions(engine, project)[-1].details["integrity"] == integrity.summary


class TestRetry:
    def test_transient_failure_retried_once(self, engine, project):
        flaky = FlakyProvider(filesystem)
        result = engine.orchestrator({PipelineStage.FILESYSTEM: flaky}).execute(
            PipelineConfig(project_id=project)
        )

        stage = result.stage(PipelineStage.FILESYSTEM)
        assert stage.success
        assert flaky.calls == 2
        assert stage.warnings[0].startswith("TRANSIENT_ERROR: FILESYSTEM")
        assert stage.warnings[0].endswith("(retrying)")
        assert stage.warnings[1] == "RECOVERY: FILESYSTEM succeeded after retry"

    def test_second_transient_failure_is_fatal(self, engine, project):
        flaky = FlakyProvider(filesystem, failures=2)
        result = engine.orchestrator({PipelineStage.FILESYSTEM: flaky}).execute(
            PipelineConfig(project_id=project)
        )

        assert not result.success
        assert flaky.calls == 2
        assert result.stages[-1].stage is PipelineStage.FILESYSTEM
        assert result.stages[-1].errors[0].startswith("TRANSIENT_ERROR: stage=FILESYSTEM")

    def test_non_transient_error_not_retried(self, engine, project):
        calls = []

        def broken(config, snapshot):
            calls.append(1)
            raise RuntimeError("parser crashed")

        result = engine.orchestrator({PipelineStage.AST: broken}).execute(
            PipelineConfig(project_id=project)
        )
        assert len(calls) == 1
        assert "parser crashed" in result.stage(PipelineStage.AST).errors[0]


class TestMissingEntities:
    def test_optional_stage_downgrades_to_warning(self, engine, project):
        result = engine.orchestrator(
            {PipelineStage.FILESYSTEM: filesystem, PipelineStage.TDD_REL: missing_test_link}
        ).execute(PipelineConfig(project_id=project))

        stage = result.stage(PipelineStage.TDD_REL)
        assert stage.success
        assert stage.warnings[0].startswith("MISSING_ENTITY_WARNING: stage=TDD_REL")
        assert result.success

    def test_critical_stage_fails(self, engine, project):
        result = engine.orchestrator(
            {PipelineStage.FILESYSTEM: filesystem, PipelineStage.GIT_REL: missing_commit_link}
        ).execute(PipelineConfig(project_id=project))

        stage = result.stage(PipelineStage.GIT_REL)
        assert not stage.success
        assert stage.errors == [
            "MISSING_ENTITY_CRITICAL: stage=GIT_REL, relationship_type=R63, "
            "missing_entity_id=deadbeef"
        ]
        # fail_fast stops before sync
        assert result.stage(PipelineStage.SYNC) is None
        assert not result.success

    def test_without_fail_fast_all_stages_run(self, engine, project):
        result = engine.orchestrator(
            {PipelineStage.FILESYSTEM: filesystem, PipelineStage.GIT_REL: missing_commit_link}
        ).execute(PipelineConfig(project_id=project, fail_fast=False))

        assert result.stage(PipelineStage.VALIDATE).success
        assert not result.success
        assert decisions(engine, project)[-1].reason == "completed with errors"
        assert engine.epochs.get_epoch(project, result.epoch_id).status is EpochStatus.COMPLETED


class TestValidationStage:
    def test_drift_fails_validation(self, engine, graph, project):
        def drift(config, snapshot):
            graph.put_node(project, "ghost", "E11")
            return ExtractionBatch()

        result = engine.orchestrator({PipelineStage.GIT_REL: drift}).execute(
            PipelineConfig(project_id=project, fail_fast=False)
        )
        validate = result.stage(PipelineStage.VALIDATE)
        assert not validate.success
        assert any("ghost" in e for e in validate.errors)


class TestEpochSafetyNet:
    def test_exception_fails_epoch(self, engine, project, monkeypatch):
        def explode(store, project_id):
            raise RuntimeError("statistics unavailable")

        monkeypatch.setattr(orchestrator_module, "compute_statistics", explode)

        with pytest.raises(RuntimeError):
            engine.orchestrator().execute(PipelineConfig(project_id=project))

        assert engine.epochs.get_current_epoch() is None
        latest = engine.epochs.list_epochs(project)[0]
        assert latest.status is EpochStatus.FAILED
        assert "statistics unavailable" in latest.failure_reason


class TestConfig:
    def test_from_yaml(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text(
            "project_id: demo\nfail_fast: false\nskip_stages: [GIT, GIT_REL]\n",
            encoding="utf-8",
        )
        config = PipelineConfig.from_yaml(path)
        assert config.project_id == "demo"
        assert not config.fail_fast
        assert config.skip_stages == [PipelineStage.GIT, PipelineStage.GIT_REL]
        assert PipelineStage.TDD_REL in config.optional_reference_stages

    def test_validate_key_in_yaml(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text("project_id: demo\nvalidate: false\n", encoding="utf-8")
        assert PipelineConfig.from_yaml(path).validate_stores is False
        assert PipelineConfig(project_id="demo", validate_stores=False).validate_stores is False

    def test_rejects_bad_project_id(self):
        with pytest.raises(ValueError):
            PipelineConfig(project_id="a/b")

    def test_execute_pipeline_with_engine(self, engine, project):
        result = execute_pipeline(
            PipelineConfig(project_id=project),
            {PipelineStage.FILESYSTEM: filesystem},
            engine=engine,
        )
        assert result.success
