import logging

import pytest

from argocd_operator.exceptions import (
    AlreadyExistsError,
    ConflictError,
    ObjectNotFoundError,
)
from argocd_operator.manifest import (
    ConfigMap,
    NamedResource,
    ObjectMeta,
    OwnerReference,
    Resource,
    Service,
)
from argocd_operator.store import InMemoryStore, StoreEvent


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


def config_map(name: str, namespace: str = "ns", **labels: str) -> ConfigMap:
    return ConfigMap(
        metadata=ObjectMeta(name=name, namespace=namespace, labels=labels),
        data={"key": name},
    )


async def test_create_and_get_object(store: InMemoryStore) -> None:
    """Test creating and retrieving an object."""
    created = await store.create_object(config_map("foo"))
    assert created.metadata.uid
    assert created.metadata.resource_version == "1"

    rid = NamedResource("ConfigMap", "ns", "foo")
    result = await store.get_object(rid, ConfigMap)
    assert result == created

    with pytest.raises(
        ValueError, match=r"Object ns/foo is not of type Service \(was ConfigMap\)"
    ):
        await store.get_object(rid, Service)

    with pytest.raises(ObjectNotFoundError, match="ConfigMap/ns/bar: not found"):
        await store.get_object(NamedResource("ConfigMap", "ns", "bar"), ConfigMap)


async def test_objects_are_copied(store: InMemoryStore) -> None:
    """Test callers cannot change stored objects without a write."""
    obj = config_map("foo")
    created = await store.create_object(obj)
    obj.data["key"] = "changed"
    created.data["key"] = "changed"

    rid = NamedResource("ConfigMap", "ns", "foo")
    result = await store.get_object(rid, ConfigMap)
    assert result.data == {"key": "foo"}
    result.data["key"] = "changed"
    assert (await store.get_object(rid, ConfigMap)).data == {"key": "foo"}


async def test_create_existing_object(store: InMemoryStore) -> None:
    """Test names are unique per kind and namespace."""
    await store.create_object(config_map("foo"))
    with pytest.raises(AlreadyExistsError):
        await store.create_object(config_map("foo"))
    await store.create_object(config_map("foo", namespace="other"))


async def test_update_object(store: InMemoryStore) -> None:
    """Test updates check the resource version."""
    created = await store.create_object(config_map("foo"))
    created.data["key"] = "bar"
    updated = await store.update_object(created)
    assert updated.metadata.uid == created.metadata.uid
    assert updated.metadata.resource_version != created.metadata.resource_version

    # A second writer holding the old version loses
    created.data["key"] = "baz"
    with pytest.raises(ConflictError, match="is stale"):
        await store.update_object(created)

    rid = NamedResource("ConfigMap", "ns", "foo")
    assert (await store.get_object(rid, ConfigMap)).data == {"key": "bar"}

    with pytest.raises(ObjectNotFoundError):
        await store.update_object(config_map("missing"))


async def test_delete_object(store: InMemoryStore) -> None:
    """Test deleting an object."""
    await store.create_object(config_map("foo"))
    rid = NamedResource("ConfigMap", "ns", "foo")
    await store.delete_object(rid)
    with pytest.raises(ObjectNotFoundError):
        await store.get_object(rid, ConfigMap)
    with pytest.raises(ObjectNotFoundError):
        await store.delete_object(rid)


async def test_delete_cascades_to_owned_objects(store: InMemoryStore) -> None:
    """Test objects are garbage collected with their owner."""
    owner = await store.create_object(config_map("owner"))
    assert owner.metadata.uid

    def owned(name: str, uid: str) -> ConfigMap:
        obj = config_map(name)
        obj.metadata.owner_references.append(
            OwnerReference(api_version="v1", kind="ConfigMap", name="x", uid=uid)
        )
        return obj

    child = await store.create_object(owned("child", owner.metadata.uid))
    assert child.metadata.uid
    await store.create_object(owned("grandchild", child.metadata.uid))
    await store.create_object(config_map("unrelated"))

    await store.delete_object(owner.resource_id)
    assert [obj.name for obj in await store.list_objects(ConfigMap)] == ["unrelated"]


async def test_list_objects(store: InMemoryStore) -> None:
    """Test listing objects by kind, namespace and labels."""
    await store.create_object(config_map("b", component="redis"))
    await store.create_object(config_map("a", component="redis", extra="1"))
    await store.create_object(config_map("c", component="server"))
    await store.create_object(config_map("d", namespace="other", component="redis"))
    await store.create_object(
        Service(metadata=ObjectMeta(name="e", namespace="ns", labels={"component": "redis"}))
    )

    assert [obj.name for obj in await store.list_objects(ConfigMap)] == [
        "a",
        "b",
        "c",
        "d",
    ]
    assert [obj.name for obj in await store.list_objects(ConfigMap, "ns")] == [
        "a",
        "b",
        "c",
    ]
    assert [
        obj.name
        for obj in await store.list_objects(ConfigMap, "ns", {"component": "redis"})
    ] == ["a", "b"]
    assert [
        obj.name
        for obj in await store.list_objects(
            ConfigMap, selector={"component": "redis", "extra": "1"}
        )
    ] == ["a"]
    assert [obj.name for obj in await store.list_objects(Service)] == ["e"]


async def test_listeners(store: InMemoryStore) -> None:
    """Test listeners observe every write until removed."""
    events: list[tuple[StoreEvent, NamedResource]] = []

    def listener(event: StoreEvent):  # type: ignore[no-untyped-def]
        def on_event(resource_id: NamedResource, obj: Resource) -> None:
            events.append((event, resource_id))

        return on_event

    removers = [store.add_listener(event, listener(event)) for event in StoreEvent]
    created = await store.create_object(config_map("foo"))
    await store.update_object(created)
    await store.delete_object(created.resource_id)
    rid = NamedResource("ConfigMap", "ns", "foo")
    assert events == [
        (StoreEvent.OBJECT_CREATED, rid),
        (StoreEvent.OBJECT_UPDATED, rid),
        (StoreEvent.OBJECT_DELETED, rid),
    ]

    for remove in removers:
        remove()
    await store.create_object(config_map("bar"))
    # Listener should not be called after removal
    assert len(events) == 3


async def test_listener_failure(
    store: InMemoryStore, caplog: pytest.LogCaptureFixture
) -> None:
    """Test a failing listener does not fail the write."""

    def broken(resource_id: NamedResource, obj: Resource) -> None:
        raise RuntimeError("listener failed")

    store.add_listener(StoreEvent.OBJECT_CREATED, broken)
    with caplog.at_level(logging.ERROR):
        await store.create_object(config_map("foo"))
    assert "Store listener callback failed" in caplog.text
    assert await store.get_object(NamedResource("ConfigMap", "ns", "foo"), ConfigMap)
