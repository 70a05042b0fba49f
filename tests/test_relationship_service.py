"""Tests for the relationship upsert service."""

from __future__ import annotations

import pytest

from tests.fakes import make_entity, make_relationship
from tracegraph.errors import InstanceIdFormatError, ReferentialError
from tracegraph.ledger import LedgerKind
from tracegraph.models import EntityType, RelationshipType, UpsertOperation


@pytest.fixture
def seeded(engine, project):
    engine.entities.upsert(project, make_entity("app"))
    engine.entities.upsert(project, make_entity("main", entity_type=EntityType.FUNCTION))
    return engine


def relationship_entries(engine, project):
    return [e for e in engine.ledger.read_all(project) if e.kind is LedgerKind.RELATIONSHIP]


class TestRelationshipUpsert:
    def test_create_then_noop(self, seeded, project):
        first = seeded.relationships.upsert(project, make_relationship("app", "main"))
        second = seeded.relationships.upsert(project, make_relationship("app", "main"))

        assert first.operation is UpsertOperation.CREATE
        assert first.record.from_instance_id == "app"
        assert second.operation is UpsertOperation.NOOP
        assert len(relationship_entries(seeded, project)) == 1

    def test_changed_line_start_is_update(self, seeded, project):
        seeded.relationships.upsert(project, make_relationship("app", "main", line_start=3))
        result = seeded.relationships.upsert(project, make_relationship("app", "main", line_start=4))

        assert result.operation is UpsertOperation.UPDATE
        assert result.record.line_start == 4
        entries = relationship_entries(seeded, project)
        assert len(entries) == 2
        assert entries[1].evidence["line_start"] == 4

    def test_missing_endpoint_is_referential_error(self, seeded, primary, project):
        with pytest.raises(ReferentialError) as excinfo:
            seeded.relationships.upsert(project, make_relationship("app", "ghost"))

        assert excinfo.value.missing_instance_id == "ghost"
        assert excinfo.value.relationship_type == "R05"
        assert "ghost" in str(excinfo.value)
        assert primary.relationships == {}
        assert relationship_entries(seeded, project) == []

    def test_endpoint_in_other_project_does_not_resolve(self, seeded):
        with pytest.raises(ReferentialError):
            seeded.relationships.upsert("other", make_relationship("app", "main"))

    def test_malformed_instance_id_fails_before_store(self, seeded, primary, project):
        calls = primary.upsert_calls
        with pytest.raises(InstanceIdFormatError):
            seeded.relationships.upsert(
                project, make_relationship("app", "main", instance_id="app->main")
            )
        assert primary.upsert_calls == calls


class TestRelationshipBatch:
    def test_batch_collects_referential_failures(self, seeded, project):
        batch = seeded.relationships.batch_upsert(
            project,
            [
                make_relationship("app", "main"),
                make_relationship("app", "ghost"),
                make_relationship("main", "app", relationship_type=RelationshipType.DEFINED_IN),
            ],
        )
        assert batch.created == 2
        assert len(batch.failures) == 1
        assert isinstance(batch.failures[0].error, ReferentialError)

    def test_batch_upsert_and_sync_on_empty_graph(self, seeded, graph, project):
        assert graph.nodes == {}
        batch, report = seeded.relationships.batch_upsert_and_sync(
            project, [make_relationship("app", "main")], seeded.synchronizer
        )
        assert batch.created == 1
        assert report.entities.synced == 2
        assert report.relationships.synced == 1
        assert report.skipped == 0
        assert graph.count_relationships_by_type(project) == {"R05": 1}

    def test_queries(self, seeded, project):
        seeded.relationships.upsert(project, make_relationship("app", "main"))
        assert seeded.relationships.get_by_instance_id(project, "R05:app:main").to_instance_id == "main"
        assert len(seeded.relationships.query_by_type(project, "R05")) == 1
        assert seeded.relationships.count_by_type(project) == {"R05": 1}
        assert len(seeded.relationships.get_all(project)) == 1
