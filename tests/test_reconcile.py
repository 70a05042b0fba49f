"""Tests for cross-store reconciliation."""

from __future__ import annotations

import pytest

from tracegraph.reconcile import CrossStoreReconciler, compare_counts


@pytest.fixture
def reconciler(primary, graph) -> CrossStoreReconciler:
    return CrossStoreReconciler(primary, graph, sample_size=100, report_cap=50)


def seed(primary, graph, project, primary_ids: dict[str, list[str]], graph_ids: dict[str, list[str]]):
    for entity_type, ids in primary_ids.items():
        for instance_id in ids:
            primary.put_entity(project, instance_id, entity_type)
    for entity_type, ids in graph_ids.items():
        for instance_id in ids:
            graph.put_node(project, instance_id, entity_type)


class TestCountParity:
    def test_single_mismatching_type(self, reconciler, primary, graph, project):
        seed(
            primary, graph, project,
            {"E11": ["a1", "a2", "a3"], "E12": ["b1", "b2"]},
            {"E11": ["a1", "a2", "a3"], "E12": ["b1"]},
        )
        report = reconciler.verify_counts_only(project)

        assert not report.consistent
        assert len(report.count_mismatches) == 1
        mismatch = report.count_mismatches[0]
        assert (mismatch.type_code, mismatch.primary_count, mismatch.secondary_count) == ("E12", 2, 1)

    def test_type_missing_on_one_side_counts_as_zero(self):
        mismatches = compare_counts({"E11": 1}, {"E13": 2})
        assert [(m.type_code, m.primary_count, m.secondary_count) for m in mismatches] == [
            ("E11", 1, 0),
            ("E13", 0, 2),
        ]


class TestIdSetEquality:
    def test_swapped_ids_invisible_to_counts(self, reconciler, primary, graph, project):
        seed(primary, graph, project, {"E11": ["a1", "a2"]}, {"E11": ["a1", "a3"]})

        assert reconciler.verify_counts_only(project).consistent
        result = reconciler.verify_id_set_for_type(project, "E11")
        assert result.only_in_primary == ["a2"]
        assert result.only_in_secondary == ["a3"]

        report = reconciler.verify_cross_store_consistency(project)
        assert not report.consistent
        assert report.count_mismatches == []
        assert report.id_set_mismatches[0].only_in_primary == ["a2"]

    def test_equal_sets(self, reconciler, primary, graph, project):
        seed(primary, graph, project, {"E11": ["a1"]}, {"E11": ["a1"]})
        assert reconciler.verify_id_set_for_type(project, "E11").consistent


class TestTypeConsistency:
    def test_mistyped_id(self, reconciler, primary, graph, project):
        seed(
            primary, graph, project,
            {"E11": ["x"], "E12": ["y"]},
            {"E12": ["x"], "E11": ["y"]},
        )
        report = reconciler.verify_cross_store_consistency(project)

        assert report.count_mismatches == []
        assert {(m.instance_id, m.primary_type, m.secondary_type) for m in report.type_mismatches} == {
            ("x", "E11", "E12"),
            ("y", "E12", "E11"),
        }


class TestFullReport:
    def test_consistent_stores(self, reconciler, primary, graph, project):
        seed(primary, graph, project, {"E11": ["a"], "E12": ["b"]}, {"E11": ["a"], "E12": ["b"]})
        report = reconciler.verify_cross_store_consistency(project)
        assert report.consistent
        assert report.failures() == []
        assert report.checked_types == ["E11", "E12"]

    def test_every_failing_type_is_reported(self, reconciler, primary, graph, project):
        seed(
            primary, graph, project,
            {"E11": ["a1", "a2"], "E12": ["b1"], "E13": ["c1"]},
            {"E11": ["a1"], "E13": ["c1", "c2"]},
        )
        report = reconciler.verify_cross_store_consistency(project)

        assert {m.type_code for m in report.count_mismatches} == {"E11", "E12", "E13"}
        assert {m.type_code for m in report.id_set_mismatches} == {"E11", "E12", "E13"}
        failures = report.failures()
        assert "E12 b1 only in primary" in failures
        assert "E13 c2 only in secondary" in failures
        assert report.to_dict()["consistent"] is False

    def test_report_is_capped(self, primary, graph, project):
        seed(primary, graph, project, {"E11": [f"id{i:03d}" for i in range(20)]}, {})
        report = CrossStoreReconciler(primary, graph, report_cap=5).verify_cross_store_consistency(
            project
        )
        assert len(report.id_set_mismatches[0].only_in_primary) == 5
        assert report.truncated

    def test_relationship_counts(self, reconciler, graph, project):
        assert reconciler.verify_relationship_counts(project) == []
        graph.edges.append(
            {"project_id": project, "instance_id": "R22:f:g", "relationship_type": "R22",
             "from": "f", "to": "g"}
        )
        mismatches = reconciler.verify_relationship_counts(project)
        assert [(m.type_code, m.primary_count, m.secondary_count) for m in mismatches] == [
            ("R22", 0, 1)
        ]
