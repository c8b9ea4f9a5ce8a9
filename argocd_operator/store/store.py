"""Store module for the cluster state the reconcilers converge."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from argocd_operator.manifest import NamedResource, Resource

T = TypeVar("T", bound=Resource)


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_CREATED = "object_created"
    OBJECT_UPDATED = "object_updated"
    OBJECT_DELETED = "object_deleted"


def matches_selector(labels: dict[str, str], selector: dict[str, str] | None) -> bool:
    """Return True if the labels contain every key/value pair of the selector."""
    return all(labels.get(key) == value for key, value in (selector or {}).items())


class Store(ABC):
    """Abstract base class for the object store holding child resources.

    Lookups and deletes of missing objects raise `ObjectNotFoundError`; updates
    carrying a stale resource version raise `ConflictError`. Nothing here
    retries: errors surface to the caller, which is expected to try again on
    the next reconcile.
    """

    @abstractmethod
    async def get_object(self, resource_id: NamedResource, cls: type[T]) -> T:
        """Retrieve a copy of an object by resource identity and type."""

    @abstractmethod
    async def create_object(self, obj: T) -> T:
        """Create a new object, returning the stored copy."""

    @abstractmethod
    async def update_object(self, obj: T) -> T:
        """Replace an existing object, returning the stored copy."""

    @abstractmethod
    async def delete_object(self, resource_id: NamedResource) -> None:
        """Delete an object."""

    @abstractmethod
    async def list_objects(
        self,
        cls: type[T],
        namespace: str | None = None,
        selector: dict[str, str] | None = None,
    ) -> list[T]:
        """List objects of a kind, optionally filtered by namespace and labels."""

    @abstractmethod
    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, Resource], None],
    ) -> Callable[[], None]:
        """Register a callback for a specific event (created, updated, deleted).

        Returns a callable that can be called to remove the listener.
        """
