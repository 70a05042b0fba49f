"""
Neo4j secondary store.

Nodes carry the ``Entity`` label and edges the ``RELATIONSHIP`` type; both
are keyed by ``(project_id, instance_id)``. Attributes are stored as a JSON
string since Neo4j properties cannot hold nested maps.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from neo4j import Driver, Query

from ..db import get_neo4j_driver
from ..models import Entity, Relationship
from ..settings import Settings
from .base import GraphStore

logger = logging.getLogger(__name__)

CONSTRAINTS = [
    "CREATE CONSTRAINT entity_project_instance IF NOT EXISTS "
    "FOR (n:Entity) REQUIRE (n.project_id, n.instance_id) IS UNIQUE",
]
INDEXES = [
    "CREATE INDEX entity_project_type IF NOT EXISTS FOR (n:Entity) ON (n.project_id, n.entity_type)",
    "CREATE INDEX relationship_project_instance IF NOT EXISTS "
    "FOR ()-[r:RELATIONSHIP]-() ON (r.project_id, r.instance_id)",
]

MERGE_ENTITIES = """
UNWIND $entities AS entity
MERGE (n:Entity {project_id: $projectId, instance_id: entity.instance_id})
SET n.entity_type = entity.entity_type,
    n.name = entity.name,
    n.attributes = entity.attributes,
    n.content_hash = entity.content_hash,
    n.synced_at = datetime()
RETURN n.instance_id AS instance_id
"""

_EDGE_WRITE = """
UNWIND $rels AS rel
MATCH (from:Entity {project_id: $projectId, instance_id: rel.from_instance_id})
MATCH (to:Entity {project_id: $projectId, instance_id: rel.to_instance_id})
%s (from)-[r:RELATIONSHIP {project_id: $projectId, instance_id: rel.instance_id}]->(to)
SET r.relationship_type = rel.relationship_type,
    r.name = rel.name,
    r.confidence = rel.confidence,
    r.source_file = rel.source_file,
    r.line_start = rel.line_start,
    r.line_end = rel.line_end,
    r.content_hash = rel.content_hash,
    r.synced_at = datetime()
RETURN r.instance_id AS instance_id
"""

MERGE_RELATIONSHIPS = _EDGE_WRITE % "MERGE"
CREATE_RELATIONSHIPS = _EDGE_WRITE % "CREATE"

DELETE_RELATIONSHIPS = """
MATCH ()-[r:RELATIONSHIP {project_id: $projectId}]->()
DELETE r
RETURN count(*) AS deleted
"""

ENTITY_COUNTS = """
MATCH (n:Entity {project_id: $projectId})
RETURN n.entity_type AS type, count(n) AS count
"""

RELATIONSHIP_COUNTS = """
MATCH ()-[r:RELATIONSHIP {project_id: $projectId}]->()
RETURN r.relationship_type AS type, count(r) AS count
"""

ENTITY_IDS = """
MATCH (n:Entity {project_id: $projectId, entity_type: $entityType})
RETURN n.instance_id AS instance_id
"""

ENTITY_TYPES_FOR = """
MATCH (n:Entity {project_id: $projectId})
WHERE n.instance_id IN $instanceIds
RETURN n.instance_id AS instance_id, n.entity_type AS entity_type
"""

DUPLICATE_RELATIONSHIPS = """
MATCH ()-[r:RELATIONSHIP {project_id: $projectId}]->()
WITH r.instance_id AS instance_id, count(r) AS copies
WHERE copies > 1
RETURN instance_id
ORDER BY instance_id
"""


def entity_params(entity: Entity) -> dict[str, Any]:
    return {
        "instance_id": entity.instance_id,
        "entity_type": entity.entity_type,
        "name": entity.name,
        "attributes": json.dumps(entity.attributes or {}, sort_keys=True),
        "content_hash": entity.content_hash,
    }


def relationship_params(rel: Relationship) -> dict[str, Any]:
    return {
        "instance_id": rel.instance_id,
        "relationship_type": rel.relationship_type,
        "name": rel.name,
        "from_instance_id": rel.from_instance_id,
        "to_instance_id": rel.to_instance_id,
        "confidence": rel.confidence,
        "source_file": rel.source_file,
        "line_start": rel.line_start,
        "line_end": rel.line_end,
        "content_hash": rel.content_hash,
    }


class Neo4jGraphStore(GraphStore):
    """Graph store backed by Neo4j."""

    def __init__(self, settings: Settings, driver: Driver | None = None):
        self.settings = settings
        self._driver = driver
        self._owns_driver = driver is None
        self._database = settings.neo4j_database
        self._timeout = settings.neo4j_query_timeout_s

    @property
    def driver(self) -> Driver:
        """Lazy Neo4j driver."""
        if self._driver is None:
            self._driver = get_neo4j_driver(self.settings)
        return self._driver

    def _run(self, cypher: str, **params: Any) -> list[dict[str, Any]]:
        """Execute a Cypher query and return results as list of dicts."""
        query = Query(cypher, timeout=self._timeout) if self._timeout else cypher
        with self.driver.session(database=self._database) as session:
            result = session.run(query, params)
            return [record.data() for record in result]

    def ensure_constraints(self) -> None:
        for statement in CONSTRAINTS + INDEXES:
            self._run(statement)
        logger.info("Ensured Neo4j constraints and indexes")

    def merge_entities(self, project_id: str, entities: list[Entity]) -> list[str]:
        if not entities:
            return []
        rows = self._run(
            MERGE_ENTITIES,
            projectId=project_id,
            entities=[entity_params(e) for e in entities],
        )
        return [r["instance_id"] for r in rows]

    def _write_relationships(
        self, cypher: str, project_id: str, relationships: list[Relationship]
    ) -> list[str]:
        if not relationships:
            return []
        rows = self._run(
            cypher,
            projectId=project_id,
            rels=[relationship_params(r) for r in relationships],
        )
        return [r["instance_id"] for r in rows]

    def merge_relationships(
        self, project_id: str, relationships: list[Relationship]
    ) -> list[str]:
        return self._write_relationships(MERGE_RELATIONSHIPS, project_id, relationships)

    def create_relationships(
        self, project_id: str, relationships: list[Relationship]
    ) -> list[str]:
        return self._write_relationships(CREATE_RELATIONSHIPS, project_id, relationships)

    def delete_relationships(self, project_id: str) -> int:
        rows = self._run(DELETE_RELATIONSHIPS, projectId=project_id)
        return int(rows[0]["deleted"]) if rows else 0

    def count_entities_by_type(self, project_id: str) -> dict[str, int]:
        rows = self._run(ENTITY_COUNTS, projectId=project_id)
        return {r["type"]: int(r["count"]) for r in rows}

    def count_relationships_by_type(self, project_id: str) -> dict[str, int]:
        rows = self._run(RELATIONSHIP_COUNTS, projectId=project_id)
        return {r["type"]: int(r["count"]) for r in rows}

    def entity_instance_ids(self, project_id: str, entity_type: str) -> set[str]:
        rows = self._run(ENTITY_IDS, projectId=project_id, entityType=entity_type)
        return {r["instance_id"] for r in rows}

    def entity_types_for(self, project_id: str, instance_ids: list[str]) -> dict[str, str]:
        if not instance_ids:
            return {}
        rows = self._run(ENTITY_TYPES_FOR, projectId=project_id, instanceIds=list(instance_ids))
        return {r["instance_id"]: r["entity_type"] for r in rows}

    def duplicate_relationship_ids(self, project_id: str) -> list[str]:
        rows = self._run(DUPLICATE_RELATIONSHIPS, projectId=project_id)
        return [r["instance_id"] for r in rows]

    def close(self) -> None:
        if self._owns_driver and self._driver is not None:
            self._driver.close()
            self._driver = None
