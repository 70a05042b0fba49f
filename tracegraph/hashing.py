"""
Content hashing for idempotent upserts.

Entity hashes cover semantic fields only; a moved evidence anchor leaves the
entity unchanged. Relationship hashes fold in the evidence location so that
an evidence-only correction is written as an UPDATE rather than dropped.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from .models import (
    ExtractedEntity,
    ExtractedRelationship,
    parse_entity_type,
    parse_relationship_type,
)

HASH_PREFIX = "sha256:"


def canonical_json(payload: Any) -> str:
    """Serialize with sorted keys and no insignificant whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def sha256_digest(content: str) -> str:
    return f"{HASH_PREFIX}{hashlib.sha256(content.encode('utf-8')).hexdigest()}"


def compute_entity_hash(entity: ExtractedEntity) -> str:
    """
    Hash an entity candidate.

    Args:
        entity: Candidate with a valid type code

    Returns:
        ``sha256:<hex>`` digest of type, instance id, name and attributes
    """
    payload = {
        "entity_type": parse_entity_type(entity.entity_type).value,
        "instance_id": entity.instance_id,
        "name": entity.name,
        "attributes": entity.attributes or {},
    }
    return sha256_digest(canonical_json(payload))


def compute_relationship_hash(relationship: ExtractedRelationship) -> str:
    """
    Hash a relationship candidate, evidence location included.

    Args:
        relationship: Candidate with a valid type code

    Returns:
        ``sha256:<hex>`` digest
    """
    confidence = relationship.confidence if relationship.confidence is not None else 1.0
    payload = {
        "relationship_type": parse_relationship_type(relationship.relationship_type).value,
        "instance_id": relationship.instance_id,
        "name": relationship.name,
        "from_instance_id": relationship.from_instance_id,
        "to_instance_id": relationship.to_instance_id,
        "confidence": float(confidence),
        "source_file": relationship.source_file,
        "line_start": relationship.line_start,
        "line_end": relationship.line_end,
    }
    return sha256_digest(canonical_json(payload))
