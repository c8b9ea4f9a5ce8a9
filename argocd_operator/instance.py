"""The ArgoCD instance: the top level object that governs child resources.

An instance carries one sub-spec per component. The reconcilers only read the
spec; the only field they ever write is the status.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

import aiofiles
import yaml
from mashumaro import field_options

from .exceptions import InputException
from .manifest import BaseManifest, Resource, ResourceRequirements

__all__ = [
    "ArgoCD",
    "ArgoCDSpec",
    "ArgoCDStatus",
    "ApplicationSetSpec",
    "HASpec",
    "RedisSpec",
    "RepoSpec",
    "ServerSpec",
    "read_instance",
]

ARGOCD_KIND = "ArgoCD"
ARGOCD_API_GROUP = "argoproj.io"
ARGOCD_API_VERSION = f"{ARGOCD_API_GROUP}/v1alpha1"

AUTO_TLS_OPENSHIFT = "openshift"
TLS_TERMINATION_REENCRYPT = "reencrypt"

DEFAULT_ARGO_IMAGE = "argoproj/argocd"
DEFAULT_ARGO_VERSION = "v1.4.1"
DEFAULT_REDIS_IMAGE = "redis"
DEFAULT_REDIS_VERSION = "5.0.3"
DEFAULT_REDIS_HA_PROXY_IMAGE = "haproxy"
DEFAULT_REDIS_HA_PROXY_VERSION = "2.0.4"
DEFAULT_REDIS_HA_REPLICAS = 3
DEFAULT_LOG_LEVEL = "info"

STATUS_UNKNOWN = "Unknown"


def _image(
    image: str | None, version: str | None, default_image: str, default_version: str
) -> str:
    return f"{image or default_image}:{version or default_version}"


@dataclass
class HASpec(BaseManifest):
    """High availability options, applied to the cache tier."""

    enabled: bool = False
    """Toggles HA support globally."""

    redis_proxy_image: str | None = field(
        metadata=field_options(alias="redisProxyImage"), default=None
    )
    redis_proxy_version: str | None = field(
        metadata=field_options(alias="redisProxyVersion"), default=None
    )
    replicas: int = DEFAULT_REDIS_HA_REPLICAS
    """Number of redis servers (and peer announce endpoints) in HA mode."""

    resources: ResourceRequirements | None = None

    @property
    def proxy_image(self) -> str:
        return _image(
            self.redis_proxy_image,
            self.redis_proxy_version,
            DEFAULT_REDIS_HA_PROXY_IMAGE,
            DEFAULT_REDIS_HA_PROXY_VERSION,
        )


@dataclass
class RedisSpec(BaseManifest):
    """The cache tier."""

    image: str | None = None
    version: str | None = None
    resources: ResourceRequirements | None = None
    auto_tls: str | None = field(metadata=field_options(alias="autotls"), default=None)
    """Provider used for automatic TLS; only `openshift` is supported."""

    disable_tls_verification: bool = field(
        metadata=field_options(alias="disableTLSVerification"), default=False
    )

    @property
    def container_image(self) -> str:
        return _image(
            self.image, self.version, DEFAULT_REDIS_IMAGE, DEFAULT_REDIS_VERSION
        )

    def wants_auto_tls(self) -> bool:
        """Return True if a supported automatic TLS provider is configured."""
        return self.auto_tls == AUTO_TLS_OPENSHIFT


@dataclass
class RepoSpec(BaseManifest):
    """The repository server."""

    enabled: bool | None = None
    """Unset means enabled."""

    image: str | None = None
    version: str | None = None
    replicas: int | None = None
    resources: ResourceRequirements | None = None
    auto_tls: str | None = field(metadata=field_options(alias="autotls"), default=None)
    log_level: str | None = field(
        metadata=field_options(alias="logLevel"), default=None
    )

    def is_enabled(self) -> bool:
        return self.enabled is None or self.enabled

    def wants_auto_tls(self) -> bool:
        """Return True if a supported automatic TLS provider is configured."""
        return self.auto_tls == AUTO_TLS_OPENSHIFT


@dataclass
class RouteTLSSpec(BaseManifest):
    """TLS options of a route."""

    termination: str | None = None


@dataclass
class RouteSpec(BaseManifest):
    """An externally reachable route in front of a service."""

    enabled: bool = False
    tls: RouteTLSSpec | None = None


@dataclass
class ServerServiceSpec(BaseManifest):
    """Options for the service in front of the API server."""

    type: str | None = None


@dataclass
class ServerSpec(BaseManifest):
    """The API server."""

    enabled: bool | None = None
    """Unset means enabled."""

    replicas: int | None = None
    resources: ResourceRequirements | None = None
    insecure: bool = False
    log_level: str | None = field(
        metadata=field_options(alias="logLevel"), default=None
    )
    route: RouteSpec = field(default_factory=RouteSpec)
    service: ServerServiceSpec = field(default_factory=ServerServiceSpec)

    def is_enabled(self) -> bool:
        return self.enabled is None or self.enabled

    def wants_auto_tls(self) -> bool:
        """Return True if the route re-encrypts traffic to the server."""
        return (
            self.route.tls is not None
            and self.route.tls.termination == TLS_TERMINATION_REENCRYPT
        )


@dataclass
class ApplicationSetSpec(BaseManifest):
    """The applicationset controller, installed only when configured."""

    enabled: bool | None = None
    """Unset means enabled once the section is present."""

    image: str | None = None
    version: str | None = None
    resources: ResourceRequirements | None = None
    log_level: str | None = field(
        metadata=field_options(alias="logLevel"), default=None
    )

    def is_enabled(self) -> bool:
        return self.enabled is None or self.enabled


@dataclass
class ArgoCDSpec(BaseManifest):
    """The desired state of an ArgoCD instance."""

    image: str | None = None
    version: str | None = None
    application_set: ApplicationSetSpec | None = field(
        metadata=field_options(alias="applicationSet"), default=None
    )
    ha: HASpec = field(default_factory=HASpec)
    redis: RedisSpec = field(default_factory=RedisSpec)
    repo: RepoSpec = field(default_factory=RepoSpec)
    server: ServerSpec = field(default_factory=ServerSpec)

    @property
    def argo_image(self) -> str:
        return self.component_image(None, None)

    def component_image(self, image: str | None, version: str | None) -> str:
        """Return the image of a component, falling back to the global image."""
        return _image(
            image or self.image,
            version or self.version,
            DEFAULT_ARGO_IMAGE,
            DEFAULT_ARGO_VERSION,
        )


@dataclass
class ArgoCDStatus(BaseManifest):
    """The observed state of an ArgoCD instance."""

    application_set_controller: str = field(
        metadata=field_options(alias="applicationSetController"),
        default=STATUS_UNKNOWN,
    )
    redis: str = STATUS_UNKNOWN
    repo: str = STATUS_UNKNOWN
    server: str = STATUS_UNKNOWN
    phase: str = STATUS_UNKNOWN


@dataclass
class ArgoCD(Resource):
    """A representation of an ArgoCD instance."""

    kind: ClassVar[str] = ARGOCD_KIND
    api_version: ClassVar[str] = ARGOCD_API_VERSION

    spec: ArgoCDSpec = field(default_factory=ArgoCDSpec)
    status: ArgoCDStatus = field(default_factory=ArgoCDStatus)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ArgoCD":
        """Parse an ArgoCD instance from a kubernetes resource document."""
        if not (api_version := doc.get("apiVersion")):
            raise InputException(f"Invalid {cls.__name__} missing apiVersion: {doc}")
        if not api_version.startswith(ARGOCD_API_GROUP):
            raise InputException(
                f"Invalid {cls.__name__} expected '{ARGOCD_API_GROUP}': {doc}"
            )
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls.__name__} missing metadata: {doc}")
        if not metadata.get("namespace"):
            raise InputException(
                f"Invalid {cls.__name__} missing metadata.namespace: {doc}"
            )
        instance = super().parse_doc(doc)
        if instance.spec.ha.replicas < 0:
            raise InputException(
                f"Invalid {cls.__name__} {instance.resource_id.namespaced_name}: "
                f"spec.ha.replicas must not be negative"
            )
        return instance


async def read_instance(path: Path) -> ArgoCD:
    """Return the ArgoCD instance serialized in a YAML file."""
    async with aiofiles.open(str(path)) as instance_file:
        content = await instance_file.read()
    if not content:
        raise InputException(f"Instance file {path} is empty")
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise InputException(f"Instance file {path} is not valid YAML: {err}") from err
    if not isinstance(doc, dict):
        raise InputException(f"Instance file {path} does not contain an object")
    return ArgoCD.parse_doc(doc)
