from .entity_service import EntityService
from .relationship_service import RelationshipService

__all__ = ["EntityService", "RelationshipService"]
