"""
Connection helpers and schema for the primary and secondary stores.

The .env file in the working directory is loaded via python-dotenv; env vars
already set in the environment take precedence.
"""

from __future__ import annotations

from typing import Any

import psycopg
from dotenv import load_dotenv
from neo4j import Driver, GraphDatabase

from .settings import Settings

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entities (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    project_id TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    instance_id TEXT NOT NULL,
    name TEXT NOT NULL,
    attributes JSONB NOT NULL DEFAULT '{}'::jsonb,
    source_file TEXT NOT NULL,
    line_start INTEGER NOT NULL CHECK (line_start >= 1),
    line_end INTEGER NOT NULL,
    extractor_version TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT entities_project_instance_key UNIQUE (project_id, instance_id),
    CONSTRAINT entities_line_range CHECK (line_end >= line_start)
);

CREATE INDEX IF NOT EXISTS entities_project_type_idx
    ON entities (project_id, entity_type);

CREATE TABLE IF NOT EXISTS relationships (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    project_id TEXT NOT NULL,
    relationship_type TEXT NOT NULL,
    instance_id TEXT NOT NULL,
    name TEXT NOT NULL,
    from_entity_id UUID NOT NULL REFERENCES entities (id),
    to_entity_id UUID NOT NULL REFERENCES entities (id),
    confidence DOUBLE PRECISION NOT NULL DEFAULT 1.0,
    source_file TEXT NOT NULL,
    line_start INTEGER NOT NULL CHECK (line_start >= 1),
    line_end INTEGER NOT NULL,
    extractor_version TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT relationships_project_instance_key UNIQUE (project_id, instance_id),
    CONSTRAINT relationships_line_range CHECK (line_end >= line_start)
);

CREATE INDEX IF NOT EXISTS relationships_project_type_idx
    ON relationships (project_id, relationship_type);
"""


def load_env() -> None:
    """Load .env into os.environ without overriding existing values."""
    load_dotenv(override=False)


def get_db_connection(
    settings: Settings,
    *,
    autocommit: bool = True,
    schema: str | None = None,
) -> psycopg.Connection:
    """
    Open a psycopg3 connection to the primary store.

    Args:
        settings: Connection settings
        autocommit: Each upsert is a single statement, so autocommit is the default
        schema: If provided (or configured and not 'public'), SET search_path

    Returns:
        Open connection with statement_timeout applied
    """
    conn = psycopg.connect(settings.postgres_dsn, autocommit=autocommit)

    target_schema = schema or settings.trace_db_schema
    if target_schema and target_schema != "public":
        conn.execute(f"SET search_path TO {target_schema}, public")

    if settings.pg_statement_timeout_ms > 0:
        conn.execute(f"SET statement_timeout = {int(settings.pg_statement_timeout_ms)}")

    return conn


def get_neo4j_driver(settings: Settings) -> Driver:
    """Create Neo4j driver."""
    auth: Any = None
    if settings.neo4j_user and settings.neo4j_password:
        auth = (settings.neo4j_user, settings.neo4j_password)
    return GraphDatabase.driver(settings.neo4j_uri, auth=auth)


def init_schema(conn: psycopg.Connection) -> None:
    """Create the entity and relationship tables if they do not exist."""
    with conn.cursor() as cur:
        cur.execute(SCHEMA_SQL)
    if not conn.autocommit:
        conn.commit()
