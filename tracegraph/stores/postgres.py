"""
PostgreSQL primary store.

Each upsert is one ``INSERT ... ON CONFLICT DO UPDATE ... WHERE`` statement:
the conflict branch only fires when the content hash changed, so an
unchanged record returns no row (NO-OP). ``xmax = 0`` on the returned row
distinguishes a fresh insert from an update.
"""

from __future__ import annotations

import logging
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..db import get_db_connection
from ..models import (
    Entity,
    ExtractedEntity,
    ExtractedRelationship,
    Relationship,
    UpsertOperation,
    parse_entity_type,
    parse_relationship_type,
)
from ..settings import Settings
from .base import RelationalStore

logger = logging.getLogger(__name__)

ENTITY_COLUMNS = """
    id::text AS id, project_id, entity_type, instance_id, name, attributes,
    source_file, line_start, line_end, extractor_version, content_hash,
    created_at, updated_at
"""

UPSERT_ENTITY_SQL = f"""
INSERT INTO entities (
    project_id, entity_type, instance_id, name, attributes,
    source_file, line_start, line_end, extractor_version, content_hash
) VALUES (
    %(project_id)s, %(entity_type)s, %(instance_id)s, %(name)s, %(attributes)s,
    %(source_file)s, %(line_start)s, %(line_end)s, %(extractor_version)s, %(content_hash)s
)
ON CONFLICT (project_id, instance_id) DO UPDATE SET
    entity_type = EXCLUDED.entity_type,
    name = EXCLUDED.name,
    attributes = EXCLUDED.attributes,
    source_file = EXCLUDED.source_file,
    line_start = EXCLUDED.line_start,
    line_end = EXCLUDED.line_end,
    extractor_version = EXCLUDED.extractor_version,
    content_hash = EXCLUDED.content_hash,
    updated_at = now()
WHERE entities.content_hash IS DISTINCT FROM EXCLUDED.content_hash
RETURNING {ENTITY_COLUMNS}, (xmax = 0) AS inserted
"""

UPSERT_RELATIONSHIP_SQL = """
WITH upserted AS (
    INSERT INTO relationships (
        project_id, relationship_type, instance_id, name,
        from_entity_id, to_entity_id, confidence,
        source_file, line_start, line_end, extractor_version, content_hash
    ) VALUES (
        %(project_id)s, %(relationship_type)s, %(instance_id)s, %(name)s,
        %(from_entity_id)s, %(to_entity_id)s, %(confidence)s,
        %(source_file)s, %(line_start)s, %(line_end)s, %(extractor_version)s, %(content_hash)s
    )
    ON CONFLICT (project_id, instance_id) DO UPDATE SET
        relationship_type = EXCLUDED.relationship_type,
        name = EXCLUDED.name,
        from_entity_id = EXCLUDED.from_entity_id,
        to_entity_id = EXCLUDED.to_entity_id,
        confidence = EXCLUDED.confidence,
        source_file = EXCLUDED.source_file,
        line_start = EXCLUDED.line_start,
        line_end = EXCLUDED.line_end,
        extractor_version = EXCLUDED.extractor_version,
        content_hash = EXCLUDED.content_hash,
        updated_at = now()
    WHERE relationships.content_hash IS DISTINCT FROM EXCLUDED.content_hash
    RETURNING *, (xmax = 0) AS inserted
)
SELECT u.id::text AS id, u.project_id, u.relationship_type, u.instance_id, u.name,
       u.from_entity_id::text AS from_entity_id, u.to_entity_id::text AS to_entity_id,
       f.instance_id AS from_instance_id, t.instance_id AS to_instance_id,
       u.confidence, u.source_file, u.line_start, u.line_end,
       u.extractor_version, u.content_hash, u.created_at, u.updated_at, u.inserted
FROM upserted u
JOIN entities f ON f.id = u.from_entity_id
JOIN entities t ON t.id = u.to_entity_id
"""

RELATIONSHIP_SELECT = """
SELECT r.id::text AS id, r.project_id, r.relationship_type, r.instance_id, r.name,
       r.from_entity_id::text AS from_entity_id, r.to_entity_id::text AS to_entity_id,
       f.instance_id AS from_instance_id, t.instance_id AS to_instance_id,
       r.confidence, r.source_file, r.line_start, r.line_end,
       r.extractor_version, r.content_hash, r.created_at, r.updated_at
FROM relationships r
JOIN entities f ON f.id = r.from_entity_id
JOIN entities t ON t.id = r.to_entity_id
"""


def _entity_from_row(row: dict[str, Any]) -> Entity:
    return Entity(
        id=row["id"],
        project_id=row["project_id"],
        entity_type=row["entity_type"],
        instance_id=row["instance_id"],
        name=row["name"],
        attributes=row["attributes"] or {},
        source_file=row["source_file"],
        line_start=row["line_start"],
        line_end=row["line_end"],
        content_hash=row["content_hash"],
        extractor_version=row["extractor_version"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _relationship_from_row(row: dict[str, Any]) -> Relationship:
    return Relationship(
        id=row["id"],
        project_id=row["project_id"],
        relationship_type=row["relationship_type"],
        instance_id=row["instance_id"],
        name=row["name"],
        from_entity_id=row["from_entity_id"],
        to_entity_id=row["to_entity_id"],
        from_instance_id=row["from_instance_id"],
        to_instance_id=row["to_instance_id"],
        source_file=row["source_file"],
        line_start=row["line_start"],
        line_end=row["line_end"],
        content_hash=row["content_hash"],
        confidence=row["confidence"],
        extractor_version=row["extractor_version"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _classify(row: dict[str, Any] | None) -> UpsertOperation:
    if row is None:
        return UpsertOperation.NOOP
    return UpsertOperation.CREATE if row["inserted"] else UpsertOperation.UPDATE


class PostgresStore(RelationalStore):
    """Primary store backed by PostgreSQL (psycopg 3)."""

    def __init__(self, settings: Settings, conn: psycopg.Connection | None = None):
        self.settings = settings
        self._conn = conn
        self._owns_conn = conn is None

    @property
    def conn(self) -> psycopg.Connection:
        """Lazy database connection."""
        if self._conn is None or self._conn.closed:
            self._conn = get_db_connection(self.settings)
        return self._conn

    def _fetchone(self, sql: str, params: dict[str, Any]) -> dict[str, Any] | None:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
        if not self.conn.autocommit:
            self.conn.commit()
        return row

    def _fetchall(self, sql: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            return cur.fetchall()

    def upsert_entity(
        self, project_id: str, candidate: ExtractedEntity, content_hash: str
    ) -> tuple[Entity | None, UpsertOperation]:
        row = self._fetchone(
            UPSERT_ENTITY_SQL,
            {
                "project_id": project_id,
                "entity_type": parse_entity_type(candidate.entity_type).value,
                "instance_id": candidate.instance_id,
                "name": candidate.name,
                "attributes": Jsonb(candidate.attributes or {}),
                "source_file": candidate.source_file,
                "line_start": candidate.line_start,
                "line_end": candidate.line_end,
                "extractor_version": candidate.extractor_version,
                "content_hash": content_hash,
            },
        )
        operation = _classify(row)
        logger.debug("entity %s %s", candidate.instance_id, operation.value)
        return (_entity_from_row(row) if row else None), operation

    def upsert_relationship(
        self,
        project_id: str,
        candidate: ExtractedRelationship,
        from_entity_id: str,
        to_entity_id: str,
        content_hash: str,
    ) -> tuple[Relationship | None, UpsertOperation]:
        row = self._fetchone(
            UPSERT_RELATIONSHIP_SQL,
            {
                "project_id": project_id,
                "relationship_type": parse_relationship_type(candidate.relationship_type).value,
                "instance_id": candidate.instance_id,
                "name": candidate.name,
                "from_entity_id": from_entity_id,
                "to_entity_id": to_entity_id,
                "confidence": 1.0 if candidate.confidence is None else candidate.confidence,
                "source_file": candidate.source_file,
                "line_start": candidate.line_start,
                "line_end": candidate.line_end,
                "extractor_version": candidate.extractor_version,
                "content_hash": content_hash,
            },
        )
        operation = _classify(row)
        logger.debug("relationship %s %s", candidate.instance_id, operation.value)
        return (_relationship_from_row(row) if row else None), operation

    def resolve_entity_id(self, project_id: str, instance_id: str) -> str | None:
        rows = self._fetchall(
            "SELECT id::text AS id FROM entities WHERE project_id = %(p)s AND instance_id = %(i)s",
            {"p": project_id, "i": instance_id},
        )
        return rows[0]["id"] if rows else None

    def get_entity(self, project_id: str, instance_id: str) -> Entity | None:
        rows = self._fetchall(
            f"SELECT {ENTITY_COLUMNS} FROM entities WHERE project_id = %(p)s AND instance_id = %(i)s",
            {"p": project_id, "i": instance_id},
        )
        return _entity_from_row(rows[0]) if rows else None

    def list_entities(self, project_id: str, entity_type: str | None = None) -> list[Entity]:
        sql = f"SELECT {ENTITY_COLUMNS} FROM entities WHERE project_id = %(p)s"
        if entity_type is not None:
            sql += " AND entity_type = %(t)s"
        sql += " ORDER BY instance_id"
        return [_entity_from_row(r) for r in self._fetchall(sql, {"p": project_id, "t": entity_type})]

    def count_entities_by_type(self, project_id: str) -> dict[str, int]:
        rows = self._fetchall(
            """
            SELECT entity_type AS type, count(*) AS count
            FROM entities WHERE project_id = %(p)s GROUP BY entity_type
            """,
            {"p": project_id},
        )
        return {r["type"]: r["count"] for r in rows}

    def entity_instance_ids(self, project_id: str, entity_type: str) -> set[str]:
        rows = self._fetchall(
            "SELECT instance_id FROM entities WHERE project_id = %(p)s AND entity_type = %(t)s",
            {"p": project_id, "t": entity_type},
        )
        return {r["instance_id"] for r in rows}

    def get_relationship(self, project_id: str, instance_id: str) -> Relationship | None:
        rows = self._fetchall(
            RELATIONSHIP_SELECT + " WHERE r.project_id = %(p)s AND r.instance_id = %(i)s",
            {"p": project_id, "i": instance_id},
        )
        return _relationship_from_row(rows[0]) if rows else None

    def list_relationships(
        self, project_id: str, relationship_type: str | None = None
    ) -> list[Relationship]:
        sql = RELATIONSHIP_SELECT + " WHERE r.project_id = %(p)s"
        if relationship_type is not None:
            sql += " AND r.relationship_type = %(t)s"
        sql += " ORDER BY r.instance_id"
        rows = self._fetchall(sql, {"p": project_id, "t": relationship_type})
        return [_relationship_from_row(r) for r in rows]

    def count_relationships_by_type(self, project_id: str) -> dict[str, int]:
        rows = self._fetchall(
            """
            SELECT relationship_type AS type, count(*) AS count
            FROM relationships WHERE project_id = %(p)s GROUP BY relationship_type
            """,
            {"p": project_id},
        )
        return {r["type"]: r["count"] for r in rows}

    def close(self) -> None:
        if self._owns_conn and self._conn is not None:
            self._conn.close()
            self._conn = None
