from kairos.store.base import ObjectStore
from kairos.store.memory import InMemoryStore

__all__ = [
    "InMemoryStore",
    "ObjectStore",
]
