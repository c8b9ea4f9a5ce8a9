"""Tests for the resource request builders."""

from typing import Any

import pytest

from argocd_operator import builder
from argocd_operator.exceptions import ResourceRequestError
from argocd_operator.manifest import (
    ConfigMapVolumeSource,
    Container,
    NamedResource,
    PolicyRule,
    RoleRef,
    Service,
    ServicePort,
    Subject,
    Volume,
    VolumeMount,
)
from argocd_operator.naming import LABEL_COMPONENT, LABEL_NAME

COMMON: dict[str, Any] = {
    "instance_name": "demo",
    "instance_namespace": "ns1",
    "component": "applicationset-controller",
}

PORTS = [ServicePort(name="webhook", port=7000, target_port=7000)]


def test_default_name() -> None:
    """Test the deterministic name is used when no name is requested."""
    service = builder.request_service(builder.ServiceRequest(**COMMON, ports=PORTS))
    assert service.name == "demo-ns1-applicationset-controller"
    assert service.namespace == "ns1"
    assert service.metadata.labels[LABEL_NAME] == service.name
    assert service.metadata.labels[LABEL_COMPONENT] == "applicationset-controller"
    assert service.spec.ports == PORTS


def test_user_labels_and_annotations_win() -> None:
    """Test user supplied values are merged over the defaults."""
    service = builder.request_service(
        builder.ServiceRequest(
            **COMMON,
            name="demo-server",
            ports=PORTS,
            labels={LABEL_COMPONENT: "custom", "team": "a"},
            annotations={"argocds.argoproj.io/name": "other", "note": "x"},
        )
    )
    assert service.name == "demo-server"
    assert service.metadata.labels[LABEL_COMPONENT] == "custom"
    assert service.metadata.labels["team"] == "a"
    assert service.metadata.labels[LABEL_NAME] == "demo-server"
    assert service.metadata.annotations == {
        "argocds.argoproj.io/name": "other",
        "argocds.argoproj.io/namespace": "ns1",
        "note": "x",
    }


@pytest.mark.parametrize(
    ("ports", "message"),
    [
        ([], "service needs at least one port"),
        ([ServicePort(name="http", port=70000)], "port 70000 is out of range"),
        ([ServicePort(name="http", port=0)], "port 0 is out of range"),
        (
            [ServicePort(name="http", port=80), ServicePort(name="http", port=443)],
            "duplicate port name 'http'",
        ),
    ],
)
def test_invalid_service(ports: list[ServicePort], message: str) -> None:
    """Test invalid service requests report the resource and operation."""
    with pytest.raises(ResourceRequestError, match=message) as exc_info:
        builder.request_service(
            builder.ServiceRequest(**COMMON, name="demo-redis", ports=ports)
        )
    err = exc_info.value
    assert err.operation == "request_service"
    assert err.name == "demo-redis"
    assert err.namespace == "ns1"
    assert str(err).startswith("request_service: ns1/demo-redis: ")


def test_role() -> None:
    """Test building a role and rejecting rules without verbs."""
    rule = PolicyRule(api_groups=[""], resources=["endpoints"], verbs=["get"])
    role = builder.request_role(builder.RoleRequest(**COMMON, rules=[rule]))
    assert role.rules == [rule]

    with pytest.raises(ResourceRequestError, match="need resources and verbs"):
        builder.request_role(
            builder.RoleRequest(**COMMON, rules=[PolicyRule(resources=["pods"])])
        )


def test_role_binding() -> None:
    """Test role bindings need a role and named subjects."""
    binding = builder.request_role_binding(
        builder.RoleBindingRequest(
            **COMMON,
            role_ref=RoleRef(name="demo-server"),
            subjects=[Subject(kind="ServiceAccount", name="demo-server", namespace="ns1")],
        )
    )
    assert binding.role_ref == RoleRef(name="demo-server")

    with pytest.raises(ResourceRequestError, match="needs a role reference"):
        builder.request_role_binding(builder.RoleBindingRequest(**COMMON))
    with pytest.raises(ResourceRequestError, match="ServiceAccount subject has no name"):
        builder.request_role_binding(
            builder.RoleBindingRequest(
                **COMMON,
                role_ref=RoleRef(name="demo-server"),
                subjects=[Subject(kind="ServiceAccount", name="")],
            )
        )


def test_cluster_role_binding() -> None:
    """Test cluster scoped permissions carry no namespace."""
    rule = PolicyRule(api_groups=[""], resources=["secrets"], verbs=["get"])
    role = builder.request_cluster_role(builder.ClusterRoleRequest(**COMMON, rules=[rule]))
    assert role.name == "demo-ns1-applicationset-controller"
    assert role.namespace is None
    assert role.resource_id == NamedResource("ClusterRole", None, role.name)
    assert role.metadata.annotations["argocds.argoproj.io/namespace"] == "ns1"

    role_ref = RoleRef(name=role.name, kind="ClusterRole")
    binding = builder.request_cluster_role_binding(
        builder.ClusterRoleBindingRequest(
            **COMMON,
            role_ref=role_ref,
            subjects=[Subject(kind="ServiceAccount", name=role.name, namespace="ns1")],
        )
    )
    assert binding.namespace is None
    assert binding.role_ref == role_ref
    assert binding.to_doc()["apiVersion"] == "rbac.authorization.k8s.io/v1"

    with pytest.raises(ResourceRequestError, match="needs a namespace"):
        builder.request_cluster_role_binding(
            builder.ClusterRoleBindingRequest(
                **COMMON,
                role_ref=role_ref,
                subjects=[Subject(kind="ServiceAccount", name=role.name)],
            )
        )
    with pytest.raises(ResourceRequestError, match="need resources and verbs"):
        builder.request_cluster_role(
            builder.ClusterRoleRequest(**COMMON, rules=[PolicyRule(verbs=["get"])])
        )


def test_config_map_values_must_be_strings() -> None:
    """Test config map values are validated."""
    config_map = builder.request_config_map(
        builder.ConfigMapRequest(**COMMON, data={"redis.conf": "port 6379"})
    )
    assert config_map.data == {"redis.conf": "port 6379"}

    with pytest.raises(ResourceRequestError, match="value for key 'replicas'"):
        builder.request_config_map(
            builder.ConfigMapRequest(**COMMON, data={"replicas": 3})  # type: ignore[dict-item]
        )


def test_workloads() -> None:
    """Test deployments and stateful sets share the workload checks."""
    request = builder.WorkloadRequest(
        **COMMON,
        replicas=3,
        pod_labels={LABEL_NAME: "demo-redis-ha"},
        containers=[Container(name="redis", image="redis:5.0.3")],
        service_account_name="demo-redis",
        service_name="demo-redis-ha",
    )
    stateful_set = builder.request_stateful_set(request)
    assert stateful_set.spec.replicas == 3
    assert stateful_set.spec.selector.match_labels == {LABEL_NAME: "demo-redis-ha"}
    assert stateful_set.spec.template.metadata.labels == {LABEL_NAME: "demo-redis-ha"}
    assert stateful_set.spec.template.spec.service_account_name == "demo-redis"
    assert stateful_set.spec.service_name == "demo-redis-ha"

    deployment = builder.request_deployment(request)
    assert deployment.kind == "Deployment"
    assert deployment.spec.template.spec.containers[0].image == "redis:5.0.3"

    request.replicas = -1
    with pytest.raises(ResourceRequestError, match="replicas must not be negative"):
        builder.request_deployment(request)

    request.replicas = 1
    request.containers = [Container(name="redis", image="")]
    with pytest.raises(ResourceRequestError, match="need a name and an image"):
        builder.request_stateful_set(request)

    request.containers = [
        Container(
            name="redis",
            image="redis:5.0.3",
            volume_mounts=[VolumeMount(name="config", mount_path="/readonly-config")],
        )
    ]
    with pytest.raises(ResourceRequestError, match="mounts unknown volume .config."):
        builder.request_stateful_set(request)

    request.volumes = [
        Volume(name="config", config_map=ConfigMapVolumeSource(name="demo-redis-ha-configmap"))
    ]
    stateful_set = builder.request_stateful_set(request)
    assert stateful_set.spec.template.spec.volumes == request.volumes


def test_mutations() -> None:
    """Test mutations are applied in order and failures carry context."""

    def set_type(obj: Service) -> None:
        obj.spec.type = "NodePort"

    def annotate(obj: Service) -> None:
        obj.metadata.annotations["type"] = obj.spec.type

    service = builder.request_service(
        builder.ServiceRequest(**COMMON, ports=PORTS, mutations=[set_type, annotate])
    )
    assert service.spec.type == "NodePort"
    assert service.metadata.annotations["type"] == "NodePort"

    def broken(obj: Service) -> None:
        raise KeyError("missing")

    with pytest.raises(ResourceRequestError, match="mutation failed") as exc_info:
        builder.request_service(
            builder.ServiceRequest(**COMMON, ports=PORTS, mutations=[broken])
        )
    assert isinstance(exc_info.value.__cause__, KeyError)
