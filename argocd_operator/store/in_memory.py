"""Module for in memory object store."""

import copy
import itertools
import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from typing import Any, DefaultDict, TypeVar

from argocd_operator.exceptions import (
    AlreadyExistsError,
    ConflictError,
    ObjectNotFoundError,
)
from argocd_operator.manifest import NamedResource, Resource

from .store import Store, StoreEvent, matches_selector

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=Resource)


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Objects are copied on the way in and out, so callers may freely mutate
    what they get back. Every write assigns a new resource version, and
    deleting an object also deletes the objects that reference it as their
    owner, like the cluster garbage collector.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, Resource] = {}
        self._listeners: DefaultDict[StoreEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )
        self._versions = itertools.count(1)

    def _next_version(self) -> str:
        return str(next(self._versions))

    async def get_object(self, resource_id: NamedResource, cls: type[T]) -> T:
        """Retrieve a copy of an object by resource identity and type."""
        obj = self._objects.get(resource_id)
        if obj is None:
            raise ObjectNotFoundError(resource_id)
        if not isinstance(obj, cls):
            raise ValueError(
                f"Object {resource_id.namespaced_name} is not of type {cls.__name__} (was {obj.__class__.__name__})"
            )
        return copy.deepcopy(obj)

    async def create_object(self, obj: T) -> T:
        """Create a new object, returning the stored copy."""
        resource_id = obj.resource_id
        if resource_id in self._objects:
            raise AlreadyExistsError(resource_id)
        stored = copy.deepcopy(obj)
        stored.metadata.uid = str(uuid.uuid4())
        stored.metadata.resource_version = self._next_version()
        _LOGGER.debug("Creating object %s in store", resource_id)
        self._objects[resource_id] = stored
        self._fire_event(StoreEvent.OBJECT_CREATED, resource_id, stored)
        return copy.deepcopy(stored)

    async def update_object(self, obj: T) -> T:
        """Replace an existing object, returning the stored copy."""
        resource_id = obj.resource_id
        if (existing := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(resource_id)
        version = obj.metadata.resource_version
        if version is not None and version != existing.metadata.resource_version:
            raise ConflictError(
                resource_id,
                f"resource version {version} is stale "
                f"(current {existing.metadata.resource_version})",
            )
        stored = copy.deepcopy(obj)
        stored.metadata.uid = existing.metadata.uid
        stored.metadata.resource_version = self._next_version()
        _LOGGER.debug("Updating existing object %s in store", resource_id)
        self._objects[resource_id] = stored
        self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id, stored)
        return copy.deepcopy(stored)

    async def delete_object(self, resource_id: NamedResource) -> None:
        """Delete an object and, transitively, the objects it owns."""
        if (obj := self._objects.pop(resource_id, None)) is None:
            raise ObjectNotFoundError(resource_id)
        _LOGGER.debug("Deleted object %s from store", resource_id)
        self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, obj)
        self._collect_garbage(obj)

    def _collect_garbage(self, owner: Resource) -> None:
        if (uid := owner.metadata.uid) is None:
            return
        dependents = [
            obj
            for obj in self._objects.values()
            if any(ref.uid == uid for ref in obj.metadata.owner_references)
        ]
        for obj in dependents:
            resource_id = obj.resource_id
            if self._objects.pop(resource_id, None) is None:
                continue
            _LOGGER.debug(
                "Garbage collecting %s owned by %s", resource_id, owner.resource_id
            )
            self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, obj)
            self._collect_garbage(obj)

    async def list_objects(
        self,
        cls: type[T],
        namespace: str | None = None,
        selector: dict[str, str] | None = None,
    ) -> list[T]:
        """List objects of a kind, optionally filtered by namespace and labels."""
        return [
            copy.deepcopy(obj)
            for resource_id, obj in sorted(self._objects.items())
            if isinstance(obj, cls)
            and (namespace is None or resource_id.namespace == namespace)
            and matches_selector(obj.metadata.labels, selector)
        ]

    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, Resource], None],
    ) -> Callable[[], None]:
        """Register a callback for a specific event (created, updated, deleted)."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)
        return remove

    def _fire_event(self, event: StoreEvent, *args: Any) -> None:
        for cb in list(self._listeners[event]):  # Iterate over a copy for safe removal
            try:
                cb(*args)
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)
