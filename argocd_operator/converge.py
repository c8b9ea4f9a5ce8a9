"""Converge a single child resource towards its desired state.

This is the algorithm every per-kind reconciler applies:

- Look up the live object by the identity of the desired object.
- When present and no longer wanted, delete it. When present and wanted,
  run the drift check on the live object and write it back only if the
  check changed something. A found object with no drift is left alone, so a
  repeated pass performs no writes.
- When absent and not wanted, do nothing. When absent and wanted, attach
  the owner reference and create it.

Lookup errors other than not found are propagated unchanged, and a delete of
an object that is already gone counts as success.
"""

from collections.abc import Callable, Iterable
from enum import StrEnum
import logging
from typing import TypeVar

from .config import OwnerReferencePolicy
from .exceptions import (
    ObjectNotFoundError,
    OperatorException,
    OwnerReferenceError,
    ResourceDeletionError,
)
from .manifest import (
    NAMESPACE_KIND,
    NamedResource,
    Namespace,
    OwnerReference,
    Resource,
)
from .store import Store

__all__ = [
    "Topology",
    "Action",
    "converge",
    "delete_resource",
    "ensure_absent",
    "delete_each",
    "set_owner_reference",
    "attach_owner_reference",
    "namespace_terminating",
]

_LOGGER = logging.getLogger(__name__)

R = TypeVar("R", bound=Resource)

Mutate = Callable[[R], bool]
"""Drift check: edits the object towards the desired state, True if changed."""


class Topology(StrEnum):
    """The shape of a component, computed once per reconcile pass."""

    DISABLED = "Disabled"
    STANDALONE = "Standalone"
    HIGH_AVAILABILITY = "HighAvailability"


class Action(StrEnum):
    """The outcome of converging one resource."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    ABSENT = "absent"


def set_owner_reference(owner: Resource, child: Resource) -> None:
    """Point the child at its owner so it is garbage collected with it."""
    if owner.metadata.uid is None:
        raise OwnerReferenceError(
            f"Owner {owner.resource_id} has no uid, it has not been stored"
        )
    if child.namespace is None and owner.namespace is not None:
        raise OwnerReferenceError(
            f"Cluster scoped {child.resource_id} cannot be owned by namespaced "
            f"{owner.resource_id}"
        )
    if child.namespace is not None and child.namespace != owner.namespace:
        raise OwnerReferenceError(
            f"Cross-namespace owner references are disallowed: owner {owner.resource_id}, "
            f"child {child.resource_id}"
        )
    if any(ref.uid == owner.metadata.uid for ref in child.metadata.owner_references):
        return
    child.metadata.owner_references.append(
        OwnerReference(
            api_version=owner.api_version,
            kind=owner.kind,
            name=owner.name,
            uid=owner.metadata.uid,
        )
    )


def attach_owner_reference(
    owner: Resource, child: Resource, policy: OwnerReferencePolicy
) -> None:
    """Set the owner reference, applying the policy when that fails."""
    try:
        set_owner_reference(owner, child)
    except OwnerReferenceError as err:
        if policy == OwnerReferencePolicy.REQUIRED:
            raise
        _LOGGER.error(
            "Failed to set owner reference on %s, continuing: %s",
            child.resource_id,
            err,
        )


async def delete_resource(store: Store, resource_id: NamedResource) -> bool:
    """Delete an object, returning False if it was already gone."""
    try:
        await store.delete_object(resource_id)
    except ObjectNotFoundError:
        _LOGGER.debug("%s already deleted", resource_id)
        return False
    _LOGGER.info("Deleted %s", resource_id)
    return True


async def ensure_absent(store: Store, resource_id: NamedResource) -> Action:
    """Delete an object that is no longer wanted, by identity alone."""
    if await delete_resource(store, resource_id):
        return Action.DELETED
    return Action.ABSENT


async def delete_each(
    store: Store, resource_ids: Iterable[NamedResource], component: str
) -> list[Action]:
    """Delete every object, continuing past failures.

    All failures are raised together as one `ResourceDeletionError` once
    every object has been attempted.
    """
    actions: list[Action] = []
    errors: list[Exception] = []
    for resource_id in resource_ids:
        try:
            deleted = await delete_resource(store, resource_id)
        except OperatorException as err:
            _LOGGER.error("Failed to delete %s: %s", resource_id, err)
            errors.append(err)
            continue
        actions.append(Action.DELETED if deleted else Action.ABSENT)
    if errors:
        raise ResourceDeletionError(component, errors)
    return actions


async def converge(
    store: Store,
    owner: Resource,
    desired: R,
    *,
    wanted: bool,
    mutate: Mutate | None = None,
    owner_policy: OwnerReferencePolicy = OwnerReferencePolicy.BEST_EFFORT,
) -> Action:
    """Converge the live object with the identity of `desired`.

    The `mutate` drift check is applied to the live object when it exists
    and to the desired object before it is created, so managed fields such
    as toggle annotations are always set the same way.
    """
    resource_id = desired.resource_id
    try:
        live = await store.get_object(resource_id, type(desired))
    except ObjectNotFoundError:
        live = None

    if live is not None:
        if not wanted:
            return await ensure_absent(store, resource_id)
        if mutate is None or not mutate(live):
            _LOGGER.debug("%s is up to date", resource_id)
            return Action.UNCHANGED
        await store.update_object(live)
        _LOGGER.info("Updated %s", resource_id)
        return Action.UPDATED

    if not wanted:
        return Action.ABSENT
    if mutate is not None:
        mutate(desired)
    attach_owner_reference(owner, desired, owner_policy)
    await store.create_object(desired)
    _LOGGER.info("Created %s", resource_id)
    return Action.CREATED


async def namespace_terminating(store: Store, namespace: str) -> bool:
    """Return True if the namespace has been marked for deletion.

    A namespace the store does not know about is not terminating.
    """
    try:
        obj = await store.get_object(
            NamedResource(NAMESPACE_KIND, None, namespace), Namespace
        )
    except ObjectNotFoundError:
        return False
    return obj.terminating
