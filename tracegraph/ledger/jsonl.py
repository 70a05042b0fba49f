"""Append-only JSON-lines files shared by the ledger and the signal corpus."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Generic, TypeVar

from ..errors import LedgerCorruptionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class JsonlScan(Generic[T]):
    """Parsed records plus the line numbers that could not be parsed."""

    records: list[T] = field(default_factory=list)
    corrupt_lines: list[int] = field(default_factory=list)


def append_record(path: Path, record: dict[str, Any]) -> None:
    """
    Append one record as a single line.

    The line is written with one write() call and fsynced before returning;
    OSError propagates to the caller.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(record, ensure_ascii=False, default=str) + "\n"
    with open(path, "a", encoding="utf-8") as f:
        f.write(line)
        f.flush()
        os.fsync(f.fileno())


def scan_records(
    path: Path,
    parse: Callable[[dict[str, Any]], T],
    *,
    strict: bool = False,
) -> JsonlScan[T]:
    """
    Read every record in a JSON-lines file.

    Args:
        path: File to read; a missing file yields an empty scan
        parse: Converts a decoded dict into a record
        strict: Raise LedgerCorruptionError on the first bad line instead of skipping

    Returns:
        JsonlScan with records in file order
    """
    scan: JsonlScan[T] = JsonlScan()
    if not path.exists():
        return scan

    with open(path, encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                if not isinstance(data, dict):
                    raise ValueError("record is not an object")
                scan.records.append(parse(data))
            except (ValueError, KeyError, TypeError) as e:
                if strict:
                    raise LedgerCorruptionError(str(path), line_number, str(e)) from e
                logger.warning("Skipping corrupt line %d in %s: %s", line_number, path, e)
                scan.corrupt_lines.append(line_number)
    return scan
