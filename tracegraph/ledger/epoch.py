"""
Epoch service: brackets one extraction run.

An epoch stamps every ledger entry and signal with its id and the revisions
it ran against, catches duplicate CREATEs inside the run, and on completion
derives its counts by re-scanning the ledger and signal corpus.

Usage:
    epochs = EpochService(ledger, corpus, settings)
    epoch = epochs.start_epoch("my-project")
    try:
        ...  # upserts stamped via epochs.provenance()
        epochs.complete_epoch()
    except Exception as e:
        epochs.fail_epoch(str(e))
        raise
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import subprocess
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import ulid

from ..errors import DuplicateCreateError, EpochStateError
from ..settings import Settings
from .entry import NO_PROVENANCE, LedgerKind, LedgerOperation, Provenance
from .shadow_ledger import ShadowLedger
from .signals import SignalCorpus

logger = logging.getLogger(__name__)

UNKNOWN_SHA = "unknown"
BRD_NOT_FOUND = "brd-not-found"


class EpochStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class EpochCounts:
    """Counts derived from the ledger and corpus at completion."""

    entities_created: int = 0
    entities_updated: int = 0
    relationships_created: int = 0
    relationships_updated: int = 0
    decisions_logged: int = 0
    signals_captured: int = 0


@dataclass
class Epoch:
    """One extraction run."""

    epoch_id: str
    project_id: str
    repo_sha: str
    runner_sha: str
    brd_hash: str
    started_at: str
    completed_at: str | None = None
    status: EpochStatus = EpochStatus.RUNNING
    counts: EpochCounts | None = None
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "epoch_id": self.epoch_id,
            "project_id": self.project_id,
            "repo_sha": self.repo_sha,
            "runner_sha": self.runner_sha,
            "brd_hash": self.brd_hash,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "status": self.status.value,
            "counts": asdict(self.counts) if self.counts else None,
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Epoch:
        counts = data.get("counts")
        return cls(
            epoch_id=data["epoch_id"],
            project_id=data["project_id"],
            repo_sha=data["repo_sha"],
            runner_sha=data["runner_sha"],
            brd_hash=data["brd_hash"],
            started_at=data["started_at"],
            completed_at=data.get("completed_at"),
            status=EpochStatus(data["status"]),
            counts=EpochCounts(**counts) if counts else None,
            failure_reason=data.get("failure_reason"),
        )


def git_head_sha(path: Path) -> str:
    """``git rev-parse HEAD`` in ``path``, or 'unknown' when unavailable."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=path,
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        logger.warning("Could not read git revision in %s: %s", path, e)
        return UNKNOWN_SHA
    return result.stdout.strip() or UNKNOWN_SHA


def canonicalize_document(content: str) -> str:
    """Normalize line endings and strip trailing whitespace per line."""
    return "\n".join(line.rstrip() for line in content.replace("\r\n", "\n").split("\n"))


def compute_brd_hash(path: Path) -> str:
    """Hash of the canonicalized governing document, or 'brd-not-found'."""
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return BRD_NOT_FOUND
    canonical = canonicalize_document(content)
    return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EpochService:
    """
    Owns the single running epoch of this process.

    Only one epoch may be running per service instance; starting another
    before completing or failing the first raises EpochStateError.
    """

    def __init__(
        self,
        ledger: ShadowLedger,
        corpus: SignalCorpus,
        settings: Settings,
    ):
        self.ledger = ledger
        self.corpus = corpus
        self.settings = settings
        self._current: Epoch | None = None
        self._creates: set[str] = set()

    # --- Persistence ---

    def _epochs_dir(self, project_id: str) -> Path:
        return Path(self.settings.ledger_root) / project_id / "epochs"

    def _write_epoch(self, epoch: Epoch) -> None:
        """Write the epoch record atomically (temp file + rename)."""
        directory = self._epochs_dir(epoch.project_id)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / f"{epoch.epoch_id}.json"
        tmp = target.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(epoch.to_dict(), f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target)

    # --- Lifecycle ---

    def start_epoch(self, project_id: str, repo_path: Path | str | None = None) -> Epoch:
        """
        Start a new epoch for a project.

        Args:
            project_id: Project the extraction run belongs to
            repo_path: Repository being extracted; defaults to settings.repo_path

        Returns:
            The running Epoch

        Raises:
            EpochStateError: If an epoch is already running
        """
        if self._current is not None:
            raise EpochStateError(
                f"Epoch {self._current.epoch_id} is already running for "
                f"project {self._current.project_id}; complete or fail it first"
            )

        if repo_path is None:
            repo_path = self.settings.repo_path
        epoch = Epoch(
            epoch_id=str(ulid.new()),
            project_id=project_id,
            repo_sha=git_head_sha(Path(repo_path)),
            runner_sha=git_head_sha(Path(self.settings.runner_path)),
            brd_hash=compute_brd_hash(Path(self.settings.governing_document)),
            started_at=_now(),
        )
        self._write_epoch(epoch)
        self._current = epoch
        self._creates = set()
        logger.info("Started epoch %s for %s (repo %s)", epoch.epoch_id, project_id, epoch.repo_sha)
        return epoch

    def complete_epoch(self) -> Epoch:
        """
        Complete the running epoch with counts derived from the ledger.

        The ledger and corpus are read strictly: a corrupt line aborts
        completion with LedgerCorruptionError and the epoch stays running.
        """
        epoch = self._require_current()
        epoch.counts = self.derive_counts(epoch.project_id, epoch.epoch_id)
        epoch.completed_at = _now()
        epoch.status = EpochStatus.COMPLETED
        self._write_epoch(epoch)
        self._clear()
        logger.info("Completed epoch %s: %s", epoch.epoch_id, asdict(epoch.counts))
        return epoch

    def fail_epoch(self, reason: str) -> Epoch | None:
        """Mark the running epoch failed. No-op when nothing is running."""
        epoch = self._current
        if epoch is None:
            return None
        epoch.completed_at = _now()
        epoch.status = EpochStatus.FAILED
        epoch.failure_reason = reason
        self._write_epoch(epoch)
        self._clear()
        logger.warning("Failed epoch %s: %s", epoch.epoch_id, reason)
        return epoch

    def get_current_epoch(self) -> Epoch | None:
        return self._current

    def provenance(self) -> Provenance:
        """Stamp for ledger entries and signals; empty when no epoch is running."""
        epoch = self._current
        if epoch is None:
            return NO_PROVENANCE
        return Provenance(
            epoch_id=epoch.epoch_id,
            repo_sha=epoch.repo_sha,
            runner_sha=epoch.runner_sha,
            brd_hash=epoch.brd_hash,
        )

    def _require_current(self) -> Epoch:
        if self._current is None:
            raise EpochStateError("No epoch is running")
        return self._current

    def _clear(self) -> None:
        self._current = None
        self._creates = set()

    # --- Duplicate CREATE detection ---

    @staticmethod
    def _create_key(kind: LedgerKind | str, type_code: str, instance_id: str) -> str:
        kind_value = kind.value if isinstance(kind, LedgerKind) else kind
        return f"{kind_value}:{type_code}:{instance_id}"

    def is_duplicate_create(self, kind: LedgerKind | str, type_code: str, instance_id: str) -> bool:
        return self._create_key(kind, type_code, instance_id) in self._creates

    def record_create(self, kind: LedgerKind | str, type_code: str, instance_id: str) -> None:
        """
        Remember a CREATE in the running epoch.

        Raises:
            DuplicateCreateError: If the same record was already created in this epoch
        """
        epoch = self._require_current()
        key = self._create_key(kind, type_code, instance_id)
        if key in self._creates:
            kind_value = kind.value if isinstance(kind, LedgerKind) else kind
            raise DuplicateCreateError(kind_value, type_code, instance_id, epoch.epoch_id)
        self._creates.add(key)

    # --- Derived counts ---

    def derive_counts(self, project_id: str, epoch_id: str) -> EpochCounts:
        """Count ledger entries and signals stamped with ``epoch_id``."""
        counts = EpochCounts()
        for entry in self.ledger.read_all(project_id, strict=True):
            if entry.epoch_id != epoch_id:
                continue
            if entry.operation is LedgerOperation.DECISION:
                counts.decisions_logged += 1
            elif entry.kind is LedgerKind.ENTITY:
                if entry.operation is LedgerOperation.CREATE:
                    counts.entities_created += 1
                else:
                    counts.entities_updated += 1
            elif entry.kind is LedgerKind.RELATIONSHIP:
                if entry.operation is LedgerOperation.CREATE:
                    counts.relationships_created += 1
                else:
                    counts.relationships_updated += 1

        counts.signals_captured = sum(
            1 for s in self.corpus.read_all(project_id, strict=True) if s.epoch_id == epoch_id
        )
        return counts

    # --- Queries ---

    def get_epoch(self, project_id: str, epoch_id: str) -> Epoch | None:
        path = self._epochs_dir(project_id) / f"{epoch_id}.json"
        if not path.exists():
            return None
        return Epoch.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def list_epochs(self, project_id: str) -> list[Epoch]:
        """All epochs of a project, newest first."""
        directory = self._epochs_dir(project_id)
        if not directory.exists():
            return []
        epochs = [
            Epoch.from_dict(json.loads(p.read_text(encoding="utf-8")))
            for p in directory.glob("*.json")
        ]
        return sorted(epochs, key=lambda e: e.started_at, reverse=True)

    def get_latest_epoch(self, project_id: str) -> Epoch | None:
        """Most recent completed epoch."""
        for epoch in self.list_epochs(project_id):
            if epoch.status is EpochStatus.COMPLETED:
                return epoch
        return None
