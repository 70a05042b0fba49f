"""Tests for structural integrity evaluation."""

from __future__ import annotations

import pytest

from tests.fakes import make_entity, make_relationship
from tracegraph.models import EntityType, RelationshipType
from tracegraph.pipeline.integrity import IntegrityEvaluator, Severity, evaluate_integrity


@pytest.fixture
def traced(engine, project):
    """Epic -> story -> function, with the function contained in a source file."""
    engine.entities.batch_upsert(
        project,
        [
            make_entity("EPIC-1", entity_type=EntityType.EPIC),
            make_entity("STORY-1.1", entity_type=EntityType.STORY),
            make_entity("app", entity_type=EntityType.SOURCE_FILE),
            make_entity("main", entity_type=EntityType.FUNCTION),
        ],
    )
    engine.relationships.batch_upsert(
        project,
        [
            make_relationship("EPIC-1", "STORY-1.1", relationship_type=RelationshipType.HAS_STORY),
            make_relationship(
                "STORY-1.1", "main", relationship_type=RelationshipType.IMPLEMENTED_BY
            ),
            make_relationship("app", "main"),
        ],
    )
    return engine


class TestIntegrityEvaluator:
    def test_clean_graph_is_all_info(self, traced, primary, project):
        report = evaluate_integrity(primary, project, ["E01", "E02", "E11", "E12"])

        assert [f.name for f in report.findings] == [
            "relationship_integrity",
            "entity_uniqueness",
            "required_entity_types",
            "orphan_files",
            "graph_connectivity",
        ]
        assert all(f.severity is Severity.INFO for f in report.findings)
        assert report.summary == "5 findings (0 critical, 0 warnings)"
        assert report.finding("graph_connectivity").evidence == {"reachable_functions": 1}

    def test_dangling_relationship_is_critical(self, traced, primary, project):
        del primary.entities[(project, "STORY-1.1")]

        finding = evaluate_integrity(primary, project).finding("relationship_integrity")

        assert finding.severity is Severity.CRITICAL
        assert finding.evidence["instance_ids"] == ["R01:EPIC-1:STORY-1.1", "R14:STORY-1.1:main"]

    def test_file_without_contents_is_orphan(self, traced, primary, project):
        primary.put_entity(project, "empty.py", "E11")

        finding = evaluate_integrity(primary, project).finding("orphan_files")

        assert finding.severity is Severity.WARNING
        assert finding.evidence["instance_ids"] == ["empty.py"]

    def test_missing_required_types(self, traced, primary, project):
        finding = evaluate_integrity(primary, project, ["E01", "E27"]).finding(
            "required_entity_types"
        )
        assert finding.severity is Severity.WARNING
        assert finding.message == "Missing entity types: E27"

    def test_disconnected_epic(self, engine, primary, project):
        engine.entities.upsert(project, make_entity("EPIC-1", entity_type=EntityType.EPIC))
        engine.entities.upsert(project, make_entity("main", entity_type=EntityType.FUNCTION))

        finding = evaluate_integrity(primary, project).finding("graph_connectivity")
        assert finding.severity is Severity.WARNING

    def test_duplicate_instance_ids(self, primary):
        rows = [primary.put_entity("p", "dup", "E11"), primary.put_entity("q", "dup", "E11")]

        finding = IntegrityEvaluator.entity_uniqueness(rows)

        assert finding.severity is Severity.CRITICAL
        assert finding.evidence["instance_ids"] == ["dup"]

    def test_report_to_dict(self, traced, primary, project):
        data = evaluate_integrity(primary, project).to_dict()
        assert data["summary"].startswith("5 findings")
        assert data["findings"][0]["severity"] == "info"
