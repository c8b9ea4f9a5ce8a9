"""Request builders for the child resources of an instance.

Each kind has a request dataclass and a `request_<kind>` function that turns
the request into the desired in-memory object. Builders do no I/O. They fill
in the deterministic name when the request does not carry an explicit one,
merge user supplied labels and annotations over the defaults, and then apply
any mutations on the built object.

Example usage:
```
from argocd_operator import builder

service = builder.request_service(
    builder.ServiceRequest(
        instance_name="demo",
        instance_namespace="ns1",
        component="redis",
        name="demo-redis",
        ports=[ServicePort(name="tcp-redis", port=6379, target_port=6379)],
    )
)
```
"""

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
from typing import Any, TypeVar

from .exceptions import InputException, ResourceRequestError
from .manifest import (
    ClusterRole,
    ClusterRoleBinding,
    ConfigMap,
    Container,
    Deployment,
    LabelSelector,
    ObjectMeta,
    PodSpec,
    PodTemplateSpec,
    PolicyRule,
    Resource,
    Role,
    RoleBinding,
    RoleRef,
    Service,
    ServiceAccount,
    ServicePort,
    ServiceSpec,
    SERVICE_ACCOUNT_KIND,
    SERVICE_TYPE_CLUSTER_IP,
    StatefulSet,
    Subject,
    TemplateMeta,
    Volume,
    WorkloadSpec,
)
from .naming import (
    default_annotations,
    default_labels,
    deterministic_name,
    merge_maps,
)

__all__ = [
    "ServiceAccountRequest",
    "RoleRequest",
    "RoleBindingRequest",
    "ClusterRoleRequest",
    "ClusterRoleBindingRequest",
    "ConfigMapRequest",
    "ServiceRequest",
    "WorkloadRequest",
    "request_service_account",
    "request_role",
    "request_role_binding",
    "request_cluster_role",
    "request_cluster_role_binding",
    "request_config_map",
    "request_service",
    "request_deployment",
    "request_stateful_set",
]

_LOGGER = logging.getLogger(__name__)

MAX_PORT = 65535

R = TypeVar("R", bound=Resource)

Mutation = Callable[[Any], None]


@dataclass(kw_only=True)
class ResourceRequest:
    """Fields shared by every request."""

    instance_name: str
    """Name of the owning instance."""

    instance_namespace: str
    """Namespace of the owning instance, also the namespace of the object."""

    component: str
    """The component the object belongs to."""

    name: str = ""
    """Explicit object name; the deterministic name is used when empty."""

    labels: dict[str, str] = field(default_factory=dict)
    """User labels, merged over the default labels."""

    annotations: dict[str, str] = field(default_factory=dict)
    """User annotations, merged over the default annotations."""

    mutations: list[Mutation] = field(default_factory=list)
    """Functions applied to the built object, in order."""

    @property
    def resource_name(self) -> str:
        return self.name or deterministic_name(
            self.instance_name, self.instance_namespace, self.component
        )

    def object_meta(self, namespaced: bool = True) -> ObjectMeta:
        """Return the metadata for the requested object.

        Cluster scoped objects carry no namespace, the instance namespace is
        still recorded in the default annotations.
        """
        name = self.resource_name
        return ObjectMeta(
            name=name,
            namespace=self.instance_namespace if namespaced else None,
            labels=merge_maps(
                default_labels(name, self.instance_name, self.component), self.labels
            ),
            annotations=merge_maps(
                default_annotations(self.instance_name, self.instance_namespace),
                self.annotations,
            ),
        )

    def error(self, operation: str, message: str) -> ResourceRequestError:
        return ResourceRequestError(
            self.resource_name, self.instance_namespace, operation, message
        )


@dataclass(kw_only=True)
class ServiceAccountRequest(ResourceRequest):
    """Request for a service account."""


@dataclass(kw_only=True)
class RoleRequest(ResourceRequest):
    """Request for a role."""

    rules: list[PolicyRule] = field(default_factory=list)


@dataclass(kw_only=True)
class RoleBindingRequest(ResourceRequest):
    """Request for a role binding."""

    role_ref: RoleRef | None = None
    subjects: list[Subject] = field(default_factory=list)


@dataclass(kw_only=True)
class ClusterRoleRequest(RoleRequest):
    """Request for a cluster role."""


@dataclass(kw_only=True)
class ClusterRoleBindingRequest(RoleBindingRequest):
    """Request for a cluster role binding."""


@dataclass(kw_only=True)
class ConfigMapRequest(ResourceRequest):
    """Request for a config map."""

    data: dict[str, str] = field(default_factory=dict)


@dataclass(kw_only=True)
class ServiceRequest(ResourceRequest):
    """Request for a service."""

    selector: dict[str, str] = field(default_factory=dict)
    ports: list[ServicePort] = field(default_factory=list)
    service_type: str = SERVICE_TYPE_CLUSTER_IP
    publish_not_ready_addresses: bool = False


@dataclass(kw_only=True)
class WorkloadRequest(ResourceRequest):
    """Request for a Deployment or StatefulSet."""

    replicas: int = 1
    pod_labels: dict[str, str] = field(default_factory=dict)
    """Labels stamped on the pods and used as the workload selector."""

    containers: list[Container] = field(default_factory=list)
    service_account_name: str | None = None
    service_name: str | None = None
    """Governing service, only used by stateful sets."""

    volumes: list[Volume] = field(default_factory=list)


def _apply_mutations(obj: R, request: ResourceRequest, operation: str) -> R:
    """Apply the request mutations, reporting failures with context."""
    for mutation in request.mutations:
        try:
            mutation(obj)
        except (InputException, ValueError, KeyError) as err:
            _LOGGER.debug("%s: one or more mutations could not be applied", operation)
            raise request.error(operation, f"mutation failed: {err}") from err
    return obj


def request_service_account(request: ServiceAccountRequest) -> ServiceAccount:
    """Build the desired service account."""
    return _apply_mutations(
        ServiceAccount(metadata=request.object_meta()),
        request,
        "request_service_account",
    )


def _check_rules(request: RoleRequest, operation: str) -> None:
    for rule in request.rules:
        if not rule.verbs or not rule.resources:
            raise request.error(operation, "policy rules need resources and verbs")


def _check_binding(request: RoleBindingRequest, operation: str) -> None:
    if request.role_ref is None or not request.role_ref.name:
        raise request.error(operation, "role binding needs a role reference")
    for subject in request.subjects:
        if not subject.name:
            raise request.error(operation, f"{subject.kind} subject has no name")


def request_role(request: RoleRequest) -> Role:
    """Build the desired role."""
    operation = "request_role"
    _check_rules(request, operation)
    return _apply_mutations(
        Role(metadata=request.object_meta(), rules=list(request.rules)),
        request,
        operation,
    )


def request_role_binding(request: RoleBindingRequest) -> RoleBinding:
    """Build the desired role binding."""
    operation = "request_role_binding"
    _check_binding(request, operation)
    return _apply_mutations(
        RoleBinding(
            metadata=request.object_meta(),
            role_ref=request.role_ref,
            subjects=list(request.subjects),
        ),
        request,
        operation,
    )


def request_cluster_role(request: ClusterRoleRequest) -> ClusterRole:
    """Build the desired cluster role."""
    operation = "request_cluster_role"
    _check_rules(request, operation)
    return _apply_mutations(
        ClusterRole(
            metadata=request.object_meta(namespaced=False), rules=list(request.rules)
        ),
        request,
        operation,
    )


def request_cluster_role_binding(
    request: ClusterRoleBindingRequest,
) -> ClusterRoleBinding:
    """Build the desired cluster role binding.

    Subjects keep their namespace, which is how a cluster scoped binding
    grants permissions to a service account of the instance namespace.
    """
    operation = "request_cluster_role_binding"
    _check_binding(request, operation)
    for subject in request.subjects:
        if subject.kind == SERVICE_ACCOUNT_KIND and not subject.namespace:
            raise request.error(
                operation, f"service account subject {subject.name} needs a namespace"
            )
    return _apply_mutations(
        ClusterRoleBinding(
            metadata=request.object_meta(namespaced=False),
            role_ref=request.role_ref,
            subjects=list(request.subjects),
        ),
        request,
        operation,
    )


def request_config_map(request: ConfigMapRequest) -> ConfigMap:
    """Build the desired config map."""
    operation = "request_config_map"
    for key, value in request.data.items():
        if not isinstance(value, str):
            raise request.error(operation, f"value for key '{key}' is not a string")
    return _apply_mutations(
        ConfigMap(metadata=request.object_meta(), data=dict(request.data)),
        request,
        operation,
    )


def request_service(request: ServiceRequest) -> Service:
    """Build the desired service."""
    operation = "request_service"
    if not request.ports:
        raise request.error(operation, "service needs at least one port")
    names: set[str] = set()
    for port in request.ports:
        if not 0 < port.port <= MAX_PORT:
            raise request.error(operation, f"port {port.port} is out of range")
        if port.name in names:
            raise request.error(operation, f"duplicate port name '{port.name}'")
        names.add(port.name)
    return _apply_mutations(
        Service(
            metadata=request.object_meta(),
            spec=ServiceSpec(
                type=request.service_type,
                selector=dict(request.selector),
                ports=list(request.ports),
                publish_not_ready_addresses=request.publish_not_ready_addresses,
            ),
        ),
        request,
        operation,
    )


def _workload_spec(request: WorkloadRequest, operation: str) -> WorkloadSpec:
    if request.replicas < 0:
        raise request.error(operation, "replicas must not be negative")
    if not request.containers:
        raise request.error(operation, "workload needs at least one container")
    volumes = {volume.name for volume in request.volumes}
    for container in request.containers:
        if not container.name or not container.image:
            raise request.error(operation, "containers need a name and an image")
        for mount in container.volume_mounts:
            if mount.name not in volumes:
                raise request.error(
                    operation,
                    f"container {container.name} mounts unknown volume '{mount.name}'",
                )
    return WorkloadSpec(
        replicas=request.replicas,
        selector=LabelSelector(match_labels=dict(request.pod_labels)),
        template=PodTemplateSpec(
            metadata=TemplateMeta(labels=dict(request.pod_labels)),
            spec=PodSpec(
                containers=list(request.containers),
                service_account_name=request.service_account_name,
                volumes=list(request.volumes),
            ),
        ),
        service_name=request.service_name,
    )


def request_deployment(request: WorkloadRequest) -> Deployment:
    """Build the desired deployment."""
    operation = "request_deployment"
    return _apply_mutations(
        Deployment(
            metadata=request.object_meta(),
            spec=_workload_spec(request, operation),
        ),
        request,
        operation,
    )


def request_stateful_set(request: WorkloadRequest) -> StatefulSet:
    """Build the desired stateful set."""
    operation = "request_stateful_set"
    return _apply_mutations(
        StatefulSet(
            metadata=request.object_meta(),
            spec=_workload_spec(request, operation),
        ),
        request,
        operation,
    )
