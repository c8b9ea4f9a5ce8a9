"""
The store module provides the interface to the cluster state that the
reconcilers read and write, keyed by NamedResource.

- Stores values as Resource dataclass instances from manifest.py.
- Provides get/create/update/delete/list APIs for the reconcilers.
- Lets callers observe writes through event listeners.

This abstract interface allows for various implementations (in-memory, a real
API server client, etc.).
"""

from .store import Store, StoreEvent, matches_selector
from .in_memory import InMemoryStore

__all__ = [
    "Store",
    "StoreEvent",
    "InMemoryStore",
    "matches_selector",
]
