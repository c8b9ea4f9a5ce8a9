"""Replicated peer sets: one child resource per replica index.

Index `n` of a set named `base` is the object `base-<n>`. Indices are never
renumbered. Shrinking the set deletes the indices at or above the new size,
growing it creates the missing ones, and the others are converged in place.
Every object of a set carries the set name, its index and the discovery
labels of its component, so the live members can be discovered without
knowing the previous size.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
from typing import Generic, TypeVar

from .config import OwnerReferencePolicy
from .converge import Action, Mutate, converge, delete_each
from .exceptions import InputException
from .manifest import Resource
from .naming import name_with_suffix
from .store import Store

__all__ = [
    "PeerSet",
    "reconcile_peer_set",
    "delete_peer_set",
]

_LOGGER = logging.getLogger(__name__)

PEER_SET_LABEL = "argocd-operator.argoproj.io/peer-set"
PEER_INDEX_LABEL = "argocd-operator.argoproj.io/peer-index"

R = TypeVar("R", bound=Resource)


@dataclass
class PeerSet(Generic[R]):
    """A set of indexed objects of one kind."""

    name: str
    """Base name of the set, index n is named `<name>-<n>`."""

    kind: type[R]
    namespace: str

    template: Callable[[str, int], R]
    """Builds the desired object for a (name, index) pair."""

    discovery: dict[str, str] = field(default_factory=dict)
    """Labels of the owning component, stamped on members and selected on."""

    def peer_name(self, index: int) -> str:
        return name_with_suffix(self.name, str(index))

    @property
    def selector(self) -> dict[str, str]:
        return {**self.discovery, PEER_SET_LABEL: self.name}

    def build(self, index: int) -> R:
        """Return the desired object for an index, labeled as a member."""
        obj = self.template(self.peer_name(index), index)
        obj.metadata.labels.update(self.selector)
        obj.metadata.labels[PEER_INDEX_LABEL] = str(index)
        return obj


def _peer_index(obj: Resource) -> int | None:
    value = obj.metadata.labels.get(PEER_INDEX_LABEL)
    if value is None or not value.isdigit():
        return None
    return int(value)


async def reconcile_peer_set(
    store: Store,
    owner: Resource,
    peers: PeerSet[R],
    replicas: int,
    *,
    mutate: Mutate | None = None,
    owner_policy: OwnerReferencePolicy = OwnerReferencePolicy.BEST_EFFORT,
) -> list[Action]:
    """Converge indices 0..replicas-1 and delete every live index above."""
    if replicas < 0:
        raise InputException(
            f"Peer set {peers.name} replica count must not be negative: {replicas}"
        )
    actions = [
        await converge(
            store,
            owner,
            peers.build(index),
            wanted=True,
            mutate=mutate,
            owner_policy=owner_policy,
        )
        for index in range(replicas)
    ]
    live = await store.list_objects(peers.kind, peers.namespace, peers.selector)
    extra = [
        obj.resource_id
        for obj in live
        if (index := _peer_index(obj)) is None or index >= replicas
    ]
    if extra:
        _LOGGER.info(
            "Scaling peer set %s down to %d, removing %d", peers.name, replicas, len(extra)
        )
        actions.extend(await delete_each(store, extra, peers.name))
    return actions


async def delete_peer_set(store: Store, peers: PeerSet[R]) -> list[Action]:
    """Delete every live member of the set."""
    live = await store.list_objects(peers.kind, peers.namespace, peers.selector)
    return await delete_each(store, [obj.resource_id for obj in live], peers.name)
