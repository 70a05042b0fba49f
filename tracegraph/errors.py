"""
Error taxonomy for the traceability engine.

Every fatal condition names the offending record (type, instance id and
reason). ``classify_error`` maps an exception onto an ``ErrorKind`` so that
retry and escalation policy can dispatch on structure instead of message text.
"""

from __future__ import annotations

from enum import Enum

import psycopg
from neo4j.exceptions import ServiceUnavailable, SessionExpired, TransientError


class TraceGraphError(Exception):
    """Base class for all engine errors."""


class ValidationError(TraceGraphError):
    """A record failed validation before any store access."""


class InstanceIdFormatError(ValidationError):
    """An instance_id does not match its required format."""

    def __init__(self, instance_id: str, expected: str):
        self.instance_id = instance_id
        self.expected = expected
        super().__init__(f"Invalid instance_id {instance_id!r}: expected {expected}")


class UnknownTypeCodeError(ValidationError):
    """A type code is not part of the closed enumeration."""

    def __init__(self, code: str, family: str):
        self.code = code
        self.family = family
        super().__init__(f"Unknown {family} type code {code!r}")


class ReferentialError(TraceGraphError):
    """A relationship endpoint does not exist in the project."""

    def __init__(
        self,
        relationship_type: str,
        relationship_id: str,
        missing_instance_id: str,
        project_id: str,
        endpoint: str = "to",
    ):
        self.relationship_type = relationship_type
        self.relationship_id = relationship_id
        self.missing_instance_id = missing_instance_id
        self.project_id = project_id
        self.endpoint = endpoint
        super().__init__(
            f"Cannot resolve {endpoint}_entity_id for relationship {relationship_id}: "
            f'entity "{missing_instance_id}" not found in project {project_id}'
        )


class TransientStoreError(TraceGraphError):
    """A store operation failed for a reason expected to clear on retry."""


class DuplicateCreateError(TraceGraphError):
    """The same record was CREATEd twice inside one epoch."""

    def __init__(self, kind: str, type_code: str, instance_id: str, epoch_id: str):
        self.kind = kind
        self.type_code = type_code
        self.instance_id = instance_id
        self.epoch_id = epoch_id
        super().__init__(
            f"Duplicate CREATE in epoch {epoch_id}: {kind} {type_code} {instance_id}"
        )


class EpochStateError(TraceGraphError):
    """An epoch lifecycle call was made in the wrong state."""


class LedgerCorruptionError(TraceGraphError):
    """A ledger or signal file contains a line that cannot be parsed."""

    def __init__(self, path: str, line_number: int, reason: str):
        self.path = path
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"Corrupt record in {path} at line {line_number}: {reason}")


class ConsistencyError(TraceGraphError):
    """Cross-store drift or a duplicate found by a post-sync gate."""

    def __init__(self, message: str, items: list[str] | None = None):
        self.items = items or []
        super().__init__(message)


class ErrorKind(str, Enum):
    """Structured classification used by the orchestrator."""

    VALIDATION = "validation"
    REFERENTIAL = "referential"
    TRANSIENT = "transient"
    CONSISTENCY = "consistency"
    CORRUPTION = "corruption"
    FATAL = "fatal"


TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TransientStoreError,
    psycopg.OperationalError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
    TimeoutError,
    ConnectionError,
)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception onto an ErrorKind."""
    if isinstance(exc, ValidationError):
        return ErrorKind.VALIDATION
    if isinstance(exc, ReferentialError):
        return ErrorKind.REFERENTIAL
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return ErrorKind.TRANSIENT
    if isinstance(exc, (ConsistencyError, DuplicateCreateError)):
        return ErrorKind.CONSISTENCY
    if isinstance(exc, LedgerCorruptionError):
        return ErrorKind.CORRUPTION
    return ErrorKind.FATAL
