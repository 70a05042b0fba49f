"""Shared fixtures. No live PostgreSQL or Neo4j is needed: stores are in-memory fakes."""

from __future__ import annotations

import pytest

from tests.fakes import InMemoryGraphStore, InMemoryRelationalStore
from tracegraph.engine import Engine
from tracegraph.ledger import epoch as epoch_module
from tracegraph.settings import Settings

PROJECT = "proj-a"


@pytest.fixture(autouse=True)
def fixed_git_sha(monkeypatch):
    """Avoid shelling out to git; every checkout reports the same revision."""
    monkeypatch.setattr(epoch_module, "git_head_sha", lambda path: "abc123")


@pytest.fixture
def settings(tmp_path) -> Settings:
    brd = tmp_path / "BRD.md"
    brd.write_text("# Requirements\n\nThe system shall trace.\n", encoding="utf-8")
    return Settings(
        ledger_root=tmp_path / "ledger",
        repo_path=tmp_path,
        runner_path=tmp_path,
        governing_document=brd,
        sync_batch_size=2,
        reconcile_sample_size=100,
        report_cap=50,
    )


@pytest.fixture
def primary() -> InMemoryRelationalStore:
    return InMemoryRelationalStore()


@pytest.fixture
def graph() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def engine(settings, primary, graph) -> Engine:
    return Engine.build(settings, primary, graph)


@pytest.fixture
def project() -> str:
    return PROJECT
