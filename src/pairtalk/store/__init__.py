"""Storage backends for call and quota state."""

from pairtalk.store.base import CallStore, QuotaStore
from pairtalk.store.memory import InMemoryCallStore, InMemoryQuotaStore

__all__ = ["CallStore", "InMemoryCallStore", "InMemoryQuotaStore", "QuotaStore"]
