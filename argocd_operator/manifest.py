"""Representation of the child resources managed for an ArgoCD instance.

These are typed, in-memory versions of the cluster objects the reconcilers
build and compare. They serialize to the same shape as the Kubernetes API
objects (camelCase keys, `apiVersion`/`kind`/`metadata`) so that they can be
printed or parsed from YAML documents.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, TypeVar

import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField

from .exceptions import InputException

__all__ = [
    "NamedResource",
    "ObjectMeta",
    "OwnerReference",
    "Resource",
    "Namespace",
    "ServiceAccount",
    "Role",
    "RoleBinding",
    "ClusterRole",
    "ClusterRoleBinding",
    "ConfigMap",
    "Service",
    "Deployment",
    "StatefulSet",
    "parse_raw_obj",
]

CORE_API_VERSION = "v1"
APPS_API_VERSION = "apps/v1"
RBAC_API_GROUP = "rbac.authorization.k8s.io"
RBAC_API_VERSION = f"{RBAC_API_GROUP}/v1"

NAMESPACE_KIND = "Namespace"
SERVICE_ACCOUNT_KIND = "ServiceAccount"
ROLE_KIND = "Role"
ROLE_BINDING_KIND = "RoleBinding"
CLUSTER_ROLE_KIND = "ClusterRole"
CLUSTER_ROLE_BINDING_KIND = "ClusterRoleBinding"
CONFIG_MAP_KIND = "ConfigMap"
SERVICE_KIND = "Service"
DEPLOYMENT_KIND = "Deployment"
STATEFUL_SET_KIND = "StatefulSet"

SERVICE_TYPE_CLUSTER_IP = "ClusterIP"
PROTOCOL_TCP = "TCP"

R = TypeVar("R", bound="Resource")


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass
class OwnerReference(BaseManifest):
    """A reference from a child object back to the object that owns it."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    """The apiVersion of the owner."""

    kind: str
    """The kind of the owner."""

    name: str
    """The name of the owner."""

    uid: str
    """The unique id of the owner, used by garbage collection."""

    controller: bool = True
    """Whether the owner is the managing controller of the child."""

    block_owner_deletion: bool = field(
        metadata=field_options(alias="blockOwnerDeletion"), default=True
    )
    """Whether the owner can only be removed after the child is removed."""


@dataclass
class ObjectMeta(BaseManifest):
    """Standard object metadata."""

    name: str
    """The name of the object, unique per kind and namespace."""

    namespace: str | None = None
    """The namespace of the object, or None when cluster scoped."""

    labels: dict[str, str] = field(default_factory=dict)
    """Labels used for selection and discovery."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Annotations, including toggle annotations managed by reconcilers."""

    owner_references: list[OwnerReference] = field(
        metadata=field_options(alias="ownerReferences"), default_factory=list
    )
    """References to the owners of this object."""

    uid: str | None = None
    """Unique id assigned by the store on creation."""

    resource_version: str | None = field(
        metadata=field_options(alias="resourceVersion"), default=None
    )
    """Version assigned by the store, checked on update."""

    deletion_timestamp: str | None = field(
        metadata=field_options(alias="deletionTimestamp"), default=None
    )
    """Set when the object has been marked for deletion."""


@dataclass
class Resource(BaseManifest):
    """Base class for objects that live in the store."""

    kind: ClassVar[str] = ""
    """The kind of the object."""

    api_version: ClassVar[str] = CORE_API_VERSION
    """The apiVersion of the object."""

    namespaced: ClassVar[bool] = True
    """False for cluster scoped kinds, which are stored without a namespace."""

    metadata: ObjectMeta
    """The object metadata."""

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str | None:
        return self.metadata.namespace

    @property
    def resource_id(self) -> NamedResource:
        """Identity of the object in the store."""
        return NamedResource(self.kind, self.metadata.namespace, self.metadata.name)

    def to_doc(self) -> dict[str, Any]:
        """Return the kubernetes shaped document for this object."""
        return {"apiVersion": self.api_version, "kind": self.kind, **self.to_dict()}

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml.dump(self.to_doc(), sort_keys=False, explicit_start=True)

    @classmethod
    def parse_doc(cls: type[R], doc: dict[str, Any]) -> R:
        """Parse an object of this kind from a kubernetes resource document."""
        if doc.get("kind") != cls.kind:
            raise InputException(f"Invalid {cls.__name__} kind: {doc}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls.__name__} missing metadata: {doc}")
        if not metadata.get("name"):
            raise InputException(
                f"Invalid {cls.__name__} missing metadata.name: {doc}"
            )
        try:
            return cls.from_dict(doc)
        except (MissingField, InvalidFieldValue) as err:
            raise InputException(
                f"Invalid {cls.__name__} {metadata['name']}: {err}"
            ) from err


@dataclass
class Namespace(Resource):
    """A cluster scoped namespace."""

    kind: ClassVar[str] = NAMESPACE_KIND
    namespaced: ClassVar[bool] = False

    @property
    def terminating(self) -> bool:
        """Return True when the namespace has been marked for deletion."""
        return self.metadata.deletion_timestamp is not None


@dataclass
class ServiceAccount(Resource):
    """An identity for the pods of a workload."""

    kind: ClassVar[str] = SERVICE_ACCOUNT_KIND


@dataclass
class PolicyRule(BaseManifest):
    """A set of verbs allowed on a set of resources."""

    api_groups: list[str] = field(
        metadata=field_options(alias="apiGroups"), default_factory=list
    )
    resources: list[str] = field(default_factory=list)
    verbs: list[str] = field(default_factory=list)


@dataclass
class Role(Resource):
    """A namespaced set of permissions."""

    kind: ClassVar[str] = ROLE_KIND
    api_version: ClassVar[str] = RBAC_API_VERSION

    rules: list[PolicyRule] = field(default_factory=list)


@dataclass
class RoleRef(BaseManifest):
    """The role granted by a role binding."""

    name: str
    kind: str = ROLE_KIND
    api_group: str = field(
        metadata=field_options(alias="apiGroup"), default=RBAC_API_GROUP
    )


@dataclass
class Subject(BaseManifest):
    """An identity a role binding grants a role to."""

    kind: str
    name: str
    namespace: str | None = None


@dataclass
class RoleBinding(Resource):
    """Grants a role to a list of subjects."""

    kind: ClassVar[str] = ROLE_BINDING_KIND
    api_version: ClassVar[str] = RBAC_API_VERSION

    role_ref: RoleRef | None = field(
        metadata=field_options(alias="roleRef"), default=None
    )
    subjects: list[Subject] = field(default_factory=list)


@dataclass
class ClusterRole(Resource):
    """A cluster scoped set of permissions."""

    kind: ClassVar[str] = CLUSTER_ROLE_KIND
    api_version: ClassVar[str] = RBAC_API_VERSION
    namespaced: ClassVar[bool] = False

    rules: list[PolicyRule] = field(default_factory=list)


@dataclass
class ClusterRoleBinding(Resource):
    """Grants a cluster role to a list of subjects in any namespace."""

    kind: ClassVar[str] = CLUSTER_ROLE_BINDING_KIND
    api_version: ClassVar[str] = RBAC_API_VERSION
    namespaced: ClassVar[bool] = False

    role_ref: RoleRef | None = field(
        metadata=field_options(alias="roleRef"), default=None
    )
    subjects: list[Subject] = field(default_factory=list)


@dataclass
class ConfigMap(Resource):
    """A ConfigMap is an API object used to store data in key-value pairs."""

    kind: ClassVar[str] = CONFIG_MAP_KIND

    data: dict[str, str] = field(default_factory=dict)


@dataclass
class ServicePort(BaseManifest):
    """A port exposed by a service."""

    name: str
    port: int
    protocol: str = PROTOCOL_TCP
    target_port: int | str | None = field(
        metadata=field_options(alias="targetPort"), default=None
    )


@dataclass
class ServiceSpec(BaseManifest):
    """The desired behavior of a service."""

    type: str = SERVICE_TYPE_CLUSTER_IP
    selector: dict[str, str] = field(default_factory=dict)
    ports: list[ServicePort] = field(default_factory=list)
    publish_not_ready_addresses: bool = field(
        metadata=field_options(alias="publishNotReadyAddresses"), default=False
    )


@dataclass
class Service(Resource):
    """A stable network endpoint in front of a set of pods."""

    kind: ClassVar[str] = SERVICE_KIND

    spec: ServiceSpec = field(default_factory=ServiceSpec)


@dataclass
class ResourceRequirements(BaseManifest):
    """Compute resources requested and limited for a container."""

    limits: dict[str, str] | None = None
    requests: dict[str, str] | None = None


@dataclass
class ContainerPort(BaseManifest):
    """A port opened by a container."""

    name: str
    container_port: int = field(metadata=field_options(alias="containerPort"))
    protocol: str = PROTOCOL_TCP


@dataclass
class EnvVar(BaseManifest):
    """An environment variable set on a container."""

    name: str
    value: str = ""


@dataclass
class VolumeMount(BaseManifest):
    """Mounts a pod volume into a container."""

    name: str
    mount_path: str = field(metadata=field_options(alias="mountPath"))


@dataclass
class Container(BaseManifest):
    """A single container in a pod."""

    name: str
    image: str
    args: list[str] = field(default_factory=list)
    ports: list[ContainerPort] = field(default_factory=list)
    env: list[EnvVar] = field(default_factory=list)
    resources: ResourceRequirements | None = None
    volume_mounts: list[VolumeMount] = field(
        metadata=field_options(alias="volumeMounts"), default_factory=list
    )


@dataclass
class ConfigMapVolumeSource(BaseManifest):
    """Projects the keys of a config map as files."""

    name: str


@dataclass
class Volume(BaseManifest):
    """A volume available to the containers of a pod."""

    name: str
    config_map: ConfigMapVolumeSource | None = field(
        metadata=field_options(alias="configMap"), default=None
    )


@dataclass
class PodSpec(BaseManifest):
    """The pod part of a workload template."""

    containers: list[Container] = field(default_factory=list)
    service_account_name: str | None = field(
        metadata=field_options(alias="serviceAccountName"), default=None
    )
    volumes: list[Volume] = field(default_factory=list)


@dataclass
class TemplateMeta(BaseManifest):
    """Metadata stamped on the pods of a workload."""

    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class PodTemplateSpec(BaseManifest):
    """The pod template of a workload."""

    metadata: TemplateMeta = field(default_factory=TemplateMeta)
    spec: PodSpec = field(default_factory=PodSpec)


@dataclass
class LabelSelector(BaseManifest):
    """Selects the pods that belong to a workload."""

    match_labels: dict[str, str] = field(
        metadata=field_options(alias="matchLabels"), default_factory=dict
    )


@dataclass
class WorkloadSpec(BaseManifest):
    """The spec shared by Deployments and StatefulSets."""

    replicas: int = 1
    selector: LabelSelector = field(default_factory=LabelSelector)
    template: PodTemplateSpec = field(default_factory=PodTemplateSpec)
    service_name: str | None = field(
        metadata=field_options(alias="serviceName"), default=None
    )


@dataclass
class Deployment(Resource):
    """A replicated, stateless workload."""

    kind: ClassVar[str] = DEPLOYMENT_KIND
    api_version: ClassVar[str] = APPS_API_VERSION

    spec: WorkloadSpec = field(default_factory=WorkloadSpec)


@dataclass
class StatefulSet(Resource):
    """A workload whose pods have stable, ordinal identities."""

    kind: ClassVar[str] = STATEFUL_SET_KIND
    api_version: ClassVar[str] = APPS_API_VERSION

    spec: WorkloadSpec = field(default_factory=WorkloadSpec)


KINDS: dict[str, type[Resource]] = {
    cls.kind: cls
    for cls in (
        Namespace,
        ServiceAccount,
        Role,
        RoleBinding,
        ClusterRole,
        ClusterRoleBinding,
        ConfigMap,
        Service,
        Deployment,
        StatefulSet,
    )
}


def parse_raw_obj(doc: dict[str, Any]) -> Resource:
    """Parse a raw kubernetes object into one of the supported kinds."""
    if not (kind := doc.get("kind")):
        raise InputException(f"Invalid object missing kind: {doc}")
    if (cls := KINDS.get(kind)) is None:
        raise InputException(f"Unsupported object kind '{kind}'")
    return cls.parse_doc(doc)
