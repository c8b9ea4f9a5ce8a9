"""Shared fixtures for argocd-operator tests."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import pytest

from argocd_operator.config import OperatorConfig
from argocd_operator.exceptions import ObjectNotFoundError, StoreException
from argocd_operator.instance import ArgoCD, ArgoCDSpec
from argocd_operator.manifest import (
    NamedResource,
    Namespace,
    ObjectMeta,
    Resource,
)
from argocd_operator.store import InMemoryStore, StoreEvent

INSTANCE_NAME = "demo"
NAMESPACE = "ns1"


class FaultInjectingStore(InMemoryStore):
    """In memory store that fails operations on selected objects."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_get: set[NamedResource] = set()
        self.fail_delete: set[NamedResource] = set()
        self.latency = 0.0

    async def get_object(self, resource_id: NamedResource, cls: Any) -> Any:
        if self.latency:
            await asyncio.sleep(self.latency)
        if resource_id in self.fail_get:
            raise StoreException(resource_id, "injected lookup failure")
        return await super().get_object(resource_id, cls)

    async def delete_object(self, resource_id: NamedResource) -> None:
        if resource_id in self.fail_delete:
            raise StoreException(resource_id, "injected delete failure")
        await super().delete_object(resource_id)


class WriteRecorder:
    """Records every write made to a store."""

    def __init__(self, store: InMemoryStore) -> None:
        self.writes: list[tuple[StoreEvent, NamedResource]] = []
        for event in StoreEvent:
            store.add_listener(event, self._callback(event))

    def _callback(self, event: StoreEvent) -> Callable[[NamedResource, Resource], None]:
        def record(resource_id: NamedResource, obj: Resource) -> None:
            self.writes.append((event, resource_id))

        return record

    def clear(self) -> None:
        self.writes.clear()

    def ids(self, event: StoreEvent) -> list[NamedResource]:
        return [resource_id for kind, resource_id in self.writes if kind == event]

    @property
    def created(self) -> list[NamedResource]:
        return self.ids(StoreEvent.OBJECT_CREATED)

    @property
    def updated(self) -> list[NamedResource]:
        return self.ids(StoreEvent.OBJECT_UPDATED)

    @property
    def deleted(self) -> list[NamedResource]:
        return self.ids(StoreEvent.OBJECT_DELETED)


@pytest.fixture(name="store")
def store_fixture() -> FaultInjectingStore:
    return FaultInjectingStore()


@pytest.fixture(name="recorder")
def recorder_fixture(store: FaultInjectingStore) -> WriteRecorder:
    return WriteRecorder(store)


@pytest.fixture(name="config")
def config_fixture() -> OperatorConfig:
    return OperatorConfig(route_api_available=True)


@pytest.fixture(name="make_instance")
def make_instance_fixture() -> Callable[..., ArgoCD]:
    """Return a factory for instances named demo in namespace ns1."""

    def make(
        name: str = INSTANCE_NAME, namespace: str = NAMESPACE, **spec: Any
    ) -> ArgoCD:
        return ArgoCD(
            metadata=ObjectMeta(name=name, namespace=namespace),
            spec=ArgoCDSpec.from_dict(spec),
        )

    return make


@pytest.fixture(name="add_instance")
def add_instance_fixture(
    store: FaultInjectingStore,
) -> Callable[..., Awaitable[ArgoCD]]:
    """Return a function storing an instance and its namespace."""

    async def add(instance: ArgoCD, terminating: bool = False) -> ArgoCD:
        namespace = instance.namespace or ""
        namespace_id = NamedResource("Namespace", None, namespace)
        try:
            await store.get_object(namespace_id, Namespace)
        except ObjectNotFoundError:
            await store.create_object(
                Namespace(
                    metadata=ObjectMeta(
                        name=namespace,
                        deletion_timestamp=(
                            datetime.now(timezone.utc).isoformat()
                            if terminating
                            else None
                        ),
                    )
                )
            )
        return await store.create_object(instance)

    return add


async def mark_namespace_terminating(store: InMemoryStore, namespace: str) -> None:
    obj = await store.get_object(NamedResource("Namespace", None, namespace), Namespace)
    obj.metadata.deletion_timestamp = datetime.now(timezone.utc).isoformat()
    await store.update_object(obj)


@pytest.fixture(name="terminate_namespace")
def terminate_namespace_fixture(
    store: FaultInjectingStore,
) -> Callable[[str], Awaitable[None]]:
    """Return a function marking a namespace for deletion."""

    async def terminate(namespace: str = NAMESPACE) -> None:
        await mark_namespace_terminating(store, namespace)

    return terminate
