"""
Configuration from environment variables and ``.env``.

Usage:
    from tracegraph.settings import get_settings

    settings = get_settings()
    print(settings.neo4j_uri)
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration from environment variables."""

    # PostgreSQL (primary store)
    trace_db_host: str = "localhost"
    trace_db_port: int = 5432
    trace_db_name: str = "postgres"
    trace_db_user: str = "postgres"
    trace_db_password: str = "postgres"
    trace_db_schema: str = "public"
    pg_statement_timeout_ms: int = 30_000

    # Neo4j (secondary store)
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = ""  # Empty for no auth
    neo4j_password: str = ""
    neo4j_database: str = "neo4j"
    neo4j_query_timeout_s: float = 60.0

    # Ledger, epochs and provenance capture
    ledger_root: Path = Path(".tracegraph")
    repo_path: Path = Path(".")
    runner_path: Path = Path(__file__).resolve().parent.parent
    governing_document: Path = Path("docs/BRD.md")

    # Sync and reconciliation
    sync_batch_size: int = 500
    reconcile_sample_size: int = 100
    report_cap: int = 50

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def postgres_dsn(self) -> str:
        return (
            f"postgresql://{self.trace_db_user}:{self.trace_db_password}"
            f"@{self.trace_db_host}:{self.trace_db_port}/{self.trace_db_name}"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
