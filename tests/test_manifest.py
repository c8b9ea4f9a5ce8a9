"""Tests for manifest and instance parsing."""

from pathlib import Path
from typing import Any

import pytest
import yaml

from argocd_operator.exceptions import InputException
from argocd_operator.instance import ArgoCD, read_instance
from argocd_operator.manifest import (
    NamedResource,
    ObjectMeta,
    OwnerReference,
    Service,
    ServicePort,
    ServiceSpec,
    parse_raw_obj,
)

INSTANCE_DOC: dict[str, Any] = {
    "apiVersion": "argoproj.io/v1alpha1",
    "kind": "ArgoCD",
    "metadata": {"name": "demo", "namespace": "ns1"},
    "spec": {
        "ha": {"enabled": True, "replicas": 3},
        "redis": {"autotls": "openshift"},
        "server": {"route": {"enabled": True, "tls": {"termination": "reencrypt"}}},
        "applicationSet": {"logLevel": "debug"},
    },
}


def test_named_resource() -> None:
    """Test resource identifiers."""
    rid = NamedResource("Service", "ns1", "demo-redis")
    assert rid.namespaced_name == "ns1/demo-redis"
    assert str(rid) == "Service/ns1/demo-redis"
    assert NamedResource("Namespace", None, "ns1").namespaced_name == "ns1"


def test_service_doc() -> None:
    """Test objects serialize to kubernetes shaped documents."""
    service = Service(
        metadata=ObjectMeta(
            name="demo-redis",
            namespace="ns1",
            owner_references=[
                OwnerReference(
                    api_version="argoproj.io/v1alpha1", kind="ArgoCD", name="demo", uid="1"
                )
            ],
        ),
        spec=ServiceSpec(
            ports=[ServicePort(name="tcp-redis", port=6379, target_port=6379)],
            publish_not_ready_addresses=True,
        ),
    )
    doc = service.to_doc()
    assert doc["apiVersion"] == "v1"
    assert doc["kind"] == "Service"
    assert doc["metadata"]["ownerReferences"] == [
        {
            "apiVersion": "argoproj.io/v1alpha1",
            "kind": "ArgoCD",
            "name": "demo",
            "uid": "1",
            "controller": True,
            "blockOwnerDeletion": True,
        }
    ]
    assert "uid" not in doc["metadata"]
    assert doc["spec"]["publishNotReadyAddresses"] is True
    assert doc["spec"]["ports"] == [
        {"name": "tcp-redis", "port": 6379, "protocol": "TCP", "targetPort": 6379}
    ]
    assert parse_raw_obj(doc) == service
    assert yaml.safe_load(service.yaml()) == doc


@pytest.mark.parametrize(
    ("doc", "message"),
    [
        ({"metadata": {"name": "x"}}, "missing kind"),
        ({"kind": "Secret", "metadata": {"name": "x"}}, "Unsupported object kind"),
        ({"kind": "Service"}, "missing metadata"),
        ({"kind": "Service", "metadata": {"namespace": "ns1"}}, "missing metadata.name"),
        (
            {"kind": "Service", "metadata": {"name": "x"}, "spec": {"ports": [{"name": "a"}]}},
            "Invalid Service x",
        ),
    ],
)
def test_parse_raw_obj_invalid(doc: dict[str, Any], message: str) -> None:
    """Test invalid documents are rejected."""
    with pytest.raises(InputException, match=message):
        parse_raw_obj(doc)


def test_parse_instance() -> None:
    """Test parsing an instance and its component predicates."""
    instance = ArgoCD.parse_doc(INSTANCE_DOC)
    assert instance.resource_id == NamedResource("ArgoCD", "ns1", "demo")
    spec = instance.spec
    assert spec.ha.enabled
    assert spec.ha.replicas == 3
    assert spec.ha.proxy_image == "haproxy:2.0.4"
    assert spec.redis.container_image == "redis:5.0.3"
    assert spec.redis.wants_auto_tls()
    assert spec.repo.is_enabled()
    assert not spec.repo.wants_auto_tls()
    assert spec.server.is_enabled()
    assert spec.server.wants_auto_tls()
    assert spec.application_set is not None
    assert spec.application_set.is_enabled()
    assert spec.application_set.log_level == "debug"
    assert spec.argo_image == "argoproj/argocd:v1.4.1"
    assert spec.component_image("quay.io/argoproj/argocd", None) == (
        "quay.io/argoproj/argocd:v1.4.1"
    )
    assert instance.status.phase == "Unknown"


def test_instance_defaults() -> None:
    """Test a minimal instance enables the implicit components only."""
    instance = ArgoCD.parse_doc(
        {
            "apiVersion": "argoproj.io/v1alpha1",
            "kind": "ArgoCD",
            "metadata": {"name": "demo", "namespace": "ns1"},
        }
    )
    assert not instance.spec.ha.enabled
    assert instance.spec.ha.replicas == 3
    assert instance.spec.application_set is None
    assert not instance.spec.server.wants_auto_tls()


@pytest.mark.parametrize(
    ("changes", "message"),
    [
        ({"apiVersion": None}, "missing apiVersion"),
        ({"apiVersion": "example.com/v1"}, "expected 'argoproj.io'"),
        ({"metadata": {"name": "demo"}}, "missing metadata.namespace"),
        ({"metadata": None}, "missing metadata"),
        ({"spec": {"ha": {"enabled": True, "replicas": -1}}}, "must not be negative"),
    ],
)
def test_parse_instance_invalid(changes: dict[str, Any], message: str) -> None:
    """Test invalid instances are rejected."""
    doc = {**INSTANCE_DOC, **changes}
    with pytest.raises(InputException, match=message):
        ArgoCD.parse_doc(doc)


async def test_read_instance(tmp_path: Path) -> None:
    """Test reading an instance from a file."""
    path = tmp_path / "argocd.yaml"
    path.write_text(yaml.dump(INSTANCE_DOC))
    instance = await read_instance(path)
    assert instance.name == "demo"
    assert instance.spec.ha.enabled


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("", "is empty"),
        ("- a\n- b\n", "does not contain an object"),
        ("kind: [", "is not valid YAML"),
    ],
)
async def test_read_instance_invalid(tmp_path: Path, content: str, message: str) -> None:
    """Test unreadable instance files."""
    path = tmp_path / "argocd.yaml"
    path.write_text(content)
    with pytest.raises(InputException, match=message):
        await read_instance(path)
