"""Abstract interfaces for the primary (relational) and secondary (graph) stores."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import (
    Entity,
    ExtractedEntity,
    ExtractedRelationship,
    Relationship,
    UpsertOperation,
)


class RelationalStore(ABC):
    """Primary store of record, keyed on (project_id, instance_id)."""

    @abstractmethod
    def upsert_entity(
        self, project_id: str, candidate: ExtractedEntity, content_hash: str
    ) -> tuple[Entity | None, UpsertOperation]:
        """
        Insert, or update only when the stored hash differs.

        Returns:
            (row, CREATE|UPDATE) when written, (None, NO-OP) otherwise
        """

    @abstractmethod
    def upsert_relationship(
        self,
        project_id: str,
        candidate: ExtractedRelationship,
        from_entity_id: str,
        to_entity_id: str,
        content_hash: str,
    ) -> tuple[Relationship | None, UpsertOperation]:
        """Same contract as upsert_entity, with endpoints already resolved."""

    @abstractmethod
    def resolve_entity_id(self, project_id: str, instance_id: str) -> str | None:
        """Internal id of an entity in the project, or None."""

    @abstractmethod
    def get_entity(self, project_id: str, instance_id: str) -> Entity | None: ...

    @abstractmethod
    def list_entities(
        self, project_id: str, entity_type: str | None = None
    ) -> list[Entity]: ...

    @abstractmethod
    def count_entities_by_type(self, project_id: str) -> dict[str, int]: ...

    @abstractmethod
    def entity_instance_ids(self, project_id: str, entity_type: str) -> set[str]: ...

    @abstractmethod
    def get_relationship(self, project_id: str, instance_id: str) -> Relationship | None: ...

    @abstractmethod
    def list_relationships(
        self, project_id: str, relationship_type: str | None = None
    ) -> list[Relationship]: ...

    @abstractmethod
    def count_relationships_by_type(self, project_id: str) -> dict[str, int]: ...

    def close(self) -> None:
        """Release connections."""


class GraphStore(ABC):
    """Secondary store projected from the primary one."""

    @abstractmethod
    def ensure_constraints(self) -> None: ...

    @abstractmethod
    def merge_entities(self, project_id: str, entities: list[Entity]) -> list[str]:
        """MERGE nodes by natural key; return the instance_ids written."""

    @abstractmethod
    def merge_relationships(
        self, project_id: str, relationships: list[Relationship]
    ) -> list[str]:
        """MERGE edges whose endpoints exist; return the instance_ids written."""

    @abstractmethod
    def create_relationships(
        self, project_id: str, relationships: list[Relationship]
    ) -> list[str]:
        """CREATE edges whose endpoints exist; return the instance_ids written."""

    @abstractmethod
    def delete_relationships(self, project_id: str) -> int:
        """Delete every edge of the project; return how many were removed."""

    @abstractmethod
    def count_entities_by_type(self, project_id: str) -> dict[str, int]: ...

    @abstractmethod
    def count_relationships_by_type(self, project_id: str) -> dict[str, int]: ...

    @abstractmethod
    def entity_instance_ids(self, project_id: str, entity_type: str) -> set[str]: ...

    @abstractmethod
    def entity_types_for(
        self, project_id: str, instance_ids: list[str]
    ) -> dict[str, str]:
        """Map of instance_id -> entity_type for the ids present in the graph."""

    @abstractmethod
    def duplicate_relationship_ids(self, project_id: str) -> list[str]: ...

    def close(self) -> None:
        """Release the driver."""
