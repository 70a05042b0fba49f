"""
Semantic signal corpus.

Signals are judgements about extracted records (correct, orphaned marker,
test/design mismatch, ...). They live next to the ledger in a per-project
JSON-lines file and are counted into the epoch that captured them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

from .entry import NO_PROVENANCE, Provenance, utc_now
from .jsonl import JsonlScan, append_record, scan_records

logger = logging.getLogger(__name__)

SIGNALS_FILENAME = "signals.jsonl"
DEDUP_KEY = "signal_instance_id"


class SignalType(str, Enum):
    CORRECT = "CORRECT"
    INCORRECT = "INCORRECT"
    PARTIAL = "PARTIAL"
    ORPHAN_MARKER = "ORPHAN_MARKER"
    TDD_COHERENCE_MISMATCH = "TDD_COHERENCE_MISMATCH"
    AMBIGUOUS = "AMBIGUOUS"


@dataclass(frozen=True)
class SemanticSignal:
    """One captured signal."""

    signal_type: SignalType
    entity_type: str
    instance_id: str
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)
    project_id: str | None = None
    repo_sha: str | None = None
    epoch_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal_type": self.signal_type.value,
            "entity_type": self.entity_type,
            "instance_id": self.instance_id,
            "context": self.context,
            "timestamp": self.timestamp,
            "project_id": self.project_id,
            "repo_sha": self.repo_sha,
            "epoch_id": self.epoch_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SemanticSignal:
        return cls(
            signal_type=SignalType(data["signal_type"]),
            entity_type=data["entity_type"],
            instance_id=data["instance_id"],
            context=data.get("context") or {},
            timestamp=data["timestamp"],
            project_id=data.get("project_id"),
            repo_sha=data.get("repo_sha"),
            epoch_id=data.get("epoch_id"),
        )


class SignalCorpus:
    """Per-project append-only signal store."""

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self._seen: dict[str, set[str]] = {}

    def path_for(self, project_id: str) -> Path:
        return self.root / project_id / SIGNALS_FILENAME

    def _seen_ids(self, project_id: str) -> set[str]:
        if project_id not in self._seen:
            self._seen[project_id] = {
                s.context[DEDUP_KEY]
                for s in self.read_all(project_id)
                if DEDUP_KEY in s.context
            }
        return self._seen[project_id]

    def capture(
        self,
        project_id: str,
        signal: SemanticSignal,
        provenance: Provenance = NO_PROVENANCE,
    ) -> bool:
        """
        Stamp and append a signal.

        Returns:
            False when a signal with the same ``signal_instance_id`` was already captured
        """
        dedup_id = signal.context.get(DEDUP_KEY)
        seen = self._seen_ids(project_id)
        if dedup_id is not None and dedup_id in seen:
            logger.debug("Skipping duplicate signal %s", dedup_id)
            return False

        stamped = replace(
            signal,
            project_id=project_id,
            repo_sha=provenance.repo_sha,
            epoch_id=provenance.epoch_id,
        )
        append_record(self.path_for(project_id), stamped.to_dict())
        if dedup_id is not None:
            seen.add(dedup_id)
        return True

    def scan(self, project_id: str, *, strict: bool = False) -> JsonlScan[SemanticSignal]:
        return scan_records(self.path_for(project_id), SemanticSignal.from_dict, strict=strict)

    def read_all(self, project_id: str, *, strict: bool = False) -> list[SemanticSignal]:
        return self.scan(project_id, strict=strict).records
