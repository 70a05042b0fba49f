#!/usr/bin/env python3
"""
Operator CLI for the traceability stores.

Usage:
    tracegraph init-schema                       # Create tables and graph constraints
    tracegraph sync my-project                   # Merge sync into Neo4j
    tracegraph sync my-project --replace         # Delete and recreate project edges
    tracegraph verify my-project                 # Full cross-store reconciliation
    tracegraph verify my-project --counts-only   # Count parity only
    tracegraph verify my-project --type E12      # ID-set equality for one type
    tracegraph epochs my-project                 # List extraction epochs
    tracegraph ledger-audit my-project           # Scan ledger and signals for corruption
    tracegraph run pipeline.yaml                 # Run snapshot, sync and validation
"""

from __future__ import annotations

import argparse
import logging
import sys

import psycopg
import pydantic
import yaml
from neo4j.exceptions import DriverError, Neo4jError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .db import get_db_connection, init_schema, load_env
from .engine import Engine
from .errors import TraceGraphError
from .models import parse_entity_type
from .pipeline import PipelineConfig
from .pipeline.integrity import Severity
from .reconcile import ReconciliationReport
from .settings import Settings

console = Console()

# Reported as one line instead of a traceback
OPERATOR_ERRORS = (
    TraceGraphError,
    psycopg.Error,
    Neo4jError,
    DriverError,
    OSError,
    yaml.YAMLError,
    pydantic.ValidationError,
)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=False, show_path=False)],
    )


def print_report(report: ReconciliationReport) -> None:
    if report.count_mismatches:
        table = Table(title="Count mismatches")
        table.add_column("Type")
        table.add_column("Primary", justify="right")
        table.add_column("Secondary", justify="right")
        for m in report.count_mismatches:
            table.add_row(m.type_code, str(m.primary_count), str(m.secondary_count))
        console.print(table)

    for m in report.id_set_mismatches:
        console.print(f"[yellow]{m.type_code}[/yellow]")
        for instance_id in m.only_in_primary:
            console.print(f"  only in primary:   {instance_id}")
        for instance_id in m.only_in_secondary:
            console.print(f"  only in secondary: {instance_id}")

    for m in report.type_mismatches:
        console.print(
            f"[yellow]{m.instance_id}[/yellow] primary={m.primary_type} secondary={m.secondary_type}"
        )

    if report.truncated:
        console.print("[dim]Report truncated[/dim]")

    if report.consistent:
        console.print(f"[green]Stores consistent[/green] ({len(report.checked_types)} types)")
    else:
        console.print("[red]Stores inconsistent[/red]")


def cmd_init_schema(engine: Engine, args: argparse.Namespace) -> int:
    with get_db_connection(engine.settings) as conn:
        init_schema(conn)
    engine.synchronizer.ensure_constraints()
    console.print("[green]Schema and graph constraints created[/green]")
    return 0


def cmd_sync(engine: Engine, args: argparse.Namespace) -> int:
    if args.replace:
        nodes = engine.synchronizer.sync_entities(
            args.project, engine.primary.list_entities(args.project)
        )
        report = engine.synchronizer.replace_relationships(args.project)
        console.print(f"[green]Nodes synced:[/green] {nodes.synced} (skipped {nodes.skipped})")
        console.print(f"[yellow]Edges deleted:[/yellow] {report.deleted}")
        console.print(f"[green]Edges created:[/green] {report.synced} (skipped {report.skipped})")
    else:
        merged = engine.synchronizer.merge_sync(args.project)
        console.print(
            f"[green]Nodes synced:[/green] {merged.entities.synced} (skipped {merged.entities.skipped})"
        )
        console.print(
            f"[green]Edges synced:[/green] {merged.relationships.synced} "
            f"(skipped {merged.relationships.skipped})"
        )
    engine.synchronizer.assert_no_duplicate_relationships(args.project)
    return 0


def cmd_verify(engine: Engine, args: argparse.Namespace) -> int:
    if args.type:
        result = engine.reconciler.verify_id_set_for_type(
            args.project, parse_entity_type(args.type).value
        )
        report = ReconciliationReport(project_id=args.project, checked_types=[args.type])
        if not result.consistent:
            report.id_set_mismatches.append(result)
    elif args.counts_only:
        report = engine.reconciler.verify_counts_only(args.project)
    else:
        report = engine.reconciler.verify_cross_store_consistency(args.project)
        for m in engine.reconciler.verify_relationship_counts(args.project):
            console.print(
                f"[red]Relationship count mismatch {m.type_code}:[/red] "
                f"primary={m.primary_count} secondary={m.secondary_count}"
            )
            report.count_mismatches.append(m)

    print_report(report)
    return 0 if report.consistent else 1


def cmd_epochs(engine: Engine, args: argparse.Namespace) -> int:
    epochs = engine.epochs.list_epochs(args.project)
    table = Table(title=f"Epochs for {args.project}")
    table.add_column("Epoch")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Repo SHA")
    table.add_column("E+/E~", justify="right")
    table.add_column("R+/R~", justify="right")
    table.add_column("Decisions", justify="right")
    table.add_column("Signals", justify="right")
    for epoch in epochs:
        c = epoch.counts
        table.add_row(
            epoch.epoch_id,
            epoch.status.value,
            epoch.started_at,
            epoch.repo_sha[:12],
            f"{c.entities_created}/{c.entities_updated}" if c else "-",
            f"{c.relationships_created}/{c.relationships_updated}" if c else "-",
            str(c.decisions_logged) if c else "-",
            str(c.signals_captured) if c else "-",
        )
    console.print(table)
    return 0


def cmd_ledger_audit(engine: Engine, args: argparse.Namespace) -> int:
    ledger = engine.ledger.scan(args.project)
    signals = engine.corpus.scan(args.project)
    console.print(f"Ledger entries:  {len(ledger.records)}")
    console.print(f"Signals:         {len(signals.records)}")
    if ledger.corrupt_lines or signals.corrupt_lines:
        console.print(f"[red]Corrupt ledger lines:[/red] {ledger.corrupt_lines}")
        console.print(f"[red]Corrupt signal lines:[/red] {signals.corrupt_lines}")
        return 1
    console.print("[green]No corrupt lines[/green]")
    return 0


def cmd_run(engine: Engine, args: argparse.Namespace) -> int:
    config = PipelineConfig.from_yaml(args.config)
    result = engine.orchestrator().execute(config)

    table = Table(title=f"Pipeline {config.project_id} (epoch {result.epoch_id})")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("ms", justify="right")
    table.add_column("E+", justify="right")
    table.add_column("R+", justify="right")
    for stage in result.stages:
        status = "[dim]skipped[/dim]" if stage.skipped else (
            "[green]ok[/green]" if stage.success else "[red]failed[/red]"
        )
        table.add_row(
            stage.stage.value,
            status,
            f"{stage.duration_ms:.0f}",
            str(stage.entities_created),
            str(stage.relationships_created),
        )
    console.print(table)
    if result.integrity is not None:
        console.print(f"[bold]Integrity:[/bold] {result.integrity.summary}")
        for finding in result.integrity.findings:
            if finding.severity is not Severity.INFO:
                console.print(f"  [yellow]{finding.severity.value}[/yellow] {finding.message}")
    for warning in result.warnings:
        console.print(f"[yellow]{warning}[/yellow]")
    for error in result.errors:
        console.print(f"[red]{error}[/red]")
    return 0 if result.success else 1


COMMANDS = {
    "init-schema": cmd_init_schema,
    "sync": cmd_sync,
    "verify": cmd_verify,
    "epochs": cmd_epochs,
    "ledger-audit": cmd_ledger_audit,
    "run": cmd_run,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Traceability graph store maintenance")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-schema", help="Create tables and graph constraints")

    sync = sub.add_parser("sync", help="Sync a project into Neo4j")
    sync.add_argument("project")
    sync.add_argument("--replace", action="store_true", help="Delete and recreate all project edges")

    verify = sub.add_parser("verify", help="Reconcile PostgreSQL and Neo4j")
    verify.add_argument("project")
    mode = verify.add_mutually_exclusive_group()
    mode.add_argument("--counts-only", action="store_true", help="Per-type count parity only")
    mode.add_argument("--type", help="ID-set equality for one entity type code")

    epochs = sub.add_parser("epochs", help="List extraction epochs")
    epochs.add_argument("project")

    audit = sub.add_parser("ledger-audit", help="Scan the ledger for corrupt lines")
    audit.add_argument("project")

    run = sub.add_parser("run", help="Run the pipeline from a YAML config")
    run.add_argument("config")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    load_env()
    configure_logging(args.verbose)

    try:
        with Engine.from_settings(Settings()) as engine:
            return COMMANDS[args.command](engine, args)
    except OPERATOR_ERRORS as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
