"""Tests for the entity upsert service."""

from __future__ import annotations

import pytest

from tests.fakes import make_entity
from tracegraph.errors import DuplicateCreateError, InstanceIdFormatError, UnknownTypeCodeError
from tracegraph.ledger import LedgerKind, LedgerOperation
from tracegraph.models import EntityType, UpsertOperation


class TestEntityUpsert:
    def test_create_then_noop(self, engine, project):
        first = engine.entities.upsert(project, make_entity("app"))
        second = engine.entities.upsert(project, make_entity("app"))

        assert first.operation is UpsertOperation.CREATE
        assert first.record.instance_id == "app"
        assert second.operation is UpsertOperation.NOOP
        assert second.record is None

        entries = engine.ledger.read_all(project)
        assert len(entries) == 1
        assert entries[0].operation is LedgerOperation.CREATE
        assert entries[0].kind is LedgerKind.ENTITY
        assert entries[0].instance_id == "app"

    def test_changed_attributes_update(self, engine, project):
        engine.entities.upsert(project, make_entity("app", language="python"))
        result = engine.entities.upsert(project, make_entity("app", language="go"))

        assert result.operation is UpsertOperation.UPDATE
        assert [e.operation for e in engine.ledger.read_all(project)] == [
            LedgerOperation.CREATE,
            LedgerOperation.UPDATE,
        ]

    def test_moved_evidence_is_noop(self, engine, project):
        engine.entities.upsert(project, make_entity("app", line_start=1, line_end=10))
        result = engine.entities.upsert(project, make_entity("app", line_start=30, line_end=60))

        assert result.operation is UpsertOperation.NOOP
        assert len(engine.ledger.read_all(project)) == 1

    def test_unknown_type_fails_before_store(self, engine, primary, project):
        with pytest.raises(UnknownTypeCodeError):
            engine.entities.upsert(project, make_entity("app", entity_type="E99"))
        assert primary.upsert_calls == 0
        assert engine.ledger.read_all(project) == []

    def test_bad_instance_id_fails_before_store(self, engine, primary, project):
        with pytest.raises(InstanceIdFormatError):
            engine.entities.upsert(project, make_entity(""))
        assert primary.upsert_calls == 0

    def test_ledger_entry_carries_epoch_provenance(self, engine, project):
        epoch = engine.epochs.start_epoch(project)
        engine.entities.upsert(project, make_entity("app"))

        entry = engine.ledger.read_all(project)[0]
        assert entry.epoch_id == epoch.epoch_id
        assert entry.repo_sha == "abc123"
        assert entry.brd_hash == epoch.brd_hash
        assert entry.evidence["source_file"] == "src/app.py"
        assert entry.content_hash.startswith("sha256:")

    def test_projects_are_isolated(self, engine):
        engine.entities.upsert("p1", make_entity("app"))
        result = engine.entities.upsert("p2", make_entity("app"))
        assert result.operation is UpsertOperation.CREATE

    def test_duplicate_create_in_epoch_raises(self, engine, primary, project):
        engine.epochs.start_epoch(project)
        engine.entities.upsert(project, make_entity("app"))
        # row vanishes behind the service's back, so the next write is a second CREATE
        del primary.entities[(project, "app")]

        with pytest.raises(DuplicateCreateError):
            engine.entities.upsert(project, make_entity("app"))


class TestEntityBatchAndQueries:
    def test_batch_collects_validation_failures(self, engine, project):
        batch = engine.entities.batch_upsert(
            project,
            [make_entity("a"), make_entity("b", entity_type="E00"), make_entity("c")],
        )
        assert batch.created == 2
        assert [f.instance_id for f in batch.failures] == ["b"]

    def test_batch_rerun_is_all_noop(self, engine, project):
        candidates = [make_entity("a"), make_entity("b")]
        engine.entities.batch_upsert(project, candidates)
        rerun = engine.entities.batch_upsert(project, candidates)
        assert rerun.unchanged == 2
        assert rerun.created == rerun.updated == 0
        assert len(engine.ledger.read_all(project)) == 2

    def test_queries(self, engine, project):
        engine.entities.upsert(project, make_entity("app"))
        engine.entities.upsert(project, make_entity("main", entity_type=EntityType.FUNCTION))

        assert engine.entities.get_by_instance_id(project, "main").entity_type == "E12"
        assert [e.instance_id for e in engine.entities.query_by_type(project, "E11")] == ["app"]
        assert engine.entities.count_by_type(project) == {"E11": 1, "E12": 1}
        assert len(engine.entities.get_all(project)) == 2
