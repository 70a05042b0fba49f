"""
Wires stores, ledger, epochs and services together.

Usage:
    with Engine.from_settings() as engine:
        engine.entities.upsert("my-project", candidate)
        report = engine.reconciler.verify_cross_store_consistency("my-project")
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .ledger import EpochService, ShadowLedger, SignalCorpus
from .pipeline.orchestrator import PipelineOrchestrator
from .pipeline.types import PipelineStage, StageProvider
from .reconcile import CrossStoreReconciler
from .services import EntityService, RelationshipService
from .settings import Settings, get_settings
from .stores.base import GraphStore, RelationalStore
from .sync import GraphSynchronizer


@dataclass
class Engine:
    settings: Settings
    primary: RelationalStore
    graph: GraphStore
    ledger: ShadowLedger
    corpus: SignalCorpus
    epochs: EpochService
    entities: EntityService
    relationships: RelationshipService
    synchronizer: GraphSynchronizer
    reconciler: CrossStoreReconciler

    @classmethod
    def build(
        cls, settings: Settings, primary: RelationalStore, graph: GraphStore
    ) -> Engine:
        """Assemble an engine around already-constructed stores."""
        root = Path(settings.ledger_root)
        ledger = ShadowLedger(root)
        corpus = SignalCorpus(root)
        epochs = EpochService(ledger, corpus, settings)
        return cls(
            settings=settings,
            primary=primary,
            graph=graph,
            ledger=ledger,
            corpus=corpus,
            epochs=epochs,
            entities=EntityService(primary, ledger, epochs),
            relationships=RelationshipService(primary, ledger, epochs),
            synchronizer=GraphSynchronizer(
                primary, graph, ledger, epochs, batch_size=settings.sync_batch_size
            ),
            reconciler=CrossStoreReconciler(
                primary,
                graph,
                sample_size=settings.reconcile_sample_size,
                report_cap=settings.report_cap,
            ),
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Engine:
        """Engine backed by PostgreSQL and Neo4j."""
        from .stores.neo4j_store import Neo4jGraphStore
        from .stores.postgres import PostgresStore

        settings = settings or get_settings()
        return cls.build(settings, PostgresStore(settings), Neo4jGraphStore(settings))

    def orchestrator(
        self, providers: dict[PipelineStage, StageProvider] | None = None
    ) -> PipelineOrchestrator:
        return PipelineOrchestrator(
            self.entities,
            self.relationships,
            self.synchronizer,
            self.reconciler,
            self.epochs,
            providers,
        )

    def close(self) -> None:
        self.primary.close()
        self.graph.close()

    def __enter__(self) -> Engine:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
