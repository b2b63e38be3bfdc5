"""Contracts for the external services PairTalk consumes."""

from pairtalk.collaborators.base import MediaProvider, PersistenceService, RelationshipService
from pairtalk.collaborators.mock import (
    InMemoryPersistence,
    MockMediaProvider,
    MockRelationshipService,
)

__all__ = [
    "InMemoryPersistence",
    "MediaProvider",
    "MockMediaProvider",
    "MockRelationshipService",
    "PersistenceService",
    "RelationshipService",
]
