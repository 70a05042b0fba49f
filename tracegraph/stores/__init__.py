"""Primary and secondary store adapters."""

from .base import GraphStore, RelationalStore
from .neo4j_store import Neo4jGraphStore
from .postgres import PostgresStore

__all__ = [
    "GraphStore",
    "RelationalStore",
    "Neo4jGraphStore",
    "PostgresStore",
]
