"""Reconciler for the redis cache tier.

The cache tier is always installed. Without HA it is a single redis
Deployment behind one Service. With HA it is a StatefulSet of redis servers
with sentinels, one announce Service per server (the peer set), an
aggregating Service, and an haproxy Deployment and Service in front that
always routes to the elected master. Toggling HA deletes the resources of
the other variant on the next pass.
"""

import logging

from argocd_operator import builder
from argocd_operator.annotations import (
    TOLERATE_UNREADY_ENDPOINTS_ANNOTATION,
    apply_toggle,
    ensure_auto_tls_annotation,
)
from argocd_operator.component import (
    ComponentReconciler,
    ReconcileContext,
    ReconcileStep,
    resource_step,
    when_high_availability,
    when_standalone,
)
from argocd_operator.converge import Action, Mutate, Topology
from argocd_operator.manifest import (
    ConfigMap,
    ConfigMapVolumeSource,
    Container,
    ContainerPort,
    Deployment,
    PolicyRule,
    Role,
    RoleBinding,
    RoleRef,
    Service,
    ServiceAccount,
    ServicePort,
    SERVICE_ACCOUNT_KIND,
    StatefulSet,
    Subject,
    Volume,
    VolumeMount,
)
from argocd_operator.naming import LABEL_NAME, component_selector, name_with_suffix
from argocd_operator.peers import PeerSet, delete_peer_set, reconcile_peer_set

from .redis_config import (
    REDIS_PORT,
    SENTINEL_PORT,
    ha_config_data,
    ha_health_data,
)

_LOGGER = logging.getLogger(__name__)

COMPONENT = "redis"

REDIS_TLS_SECRET = "argocd-operator-redis-tls"
POD_NAME_LABEL = "statefulset.kubernetes.io/pod-name"

CONFIG_VOLUME = "config"
HEALTH_VOLUME = "health"
SERVER_CONFIG_PATH = "/readonly-config"
PROXY_CONFIG_PATH = "/readonly"
HEALTH_PATH = "/health"

REDIS_CONTAINER_PORT = "redis"
SENTINEL_CONTAINER_PORT = "sentinel"


def redis_name(instance_name: str) -> str:
    """Name of the standalone workload and service, and of the service account."""
    return name_with_suffix(instance_name, "redis")


def ha_name(instance_name: str) -> str:
    """Name of the HA aggregator service and of the HA role."""
    return name_with_suffix(instance_name, "redis-ha")


def ha_server_name(instance_name: str) -> str:
    return name_with_suffix(instance_name, "redis-ha-server")


def ha_proxy_name(instance_name: str) -> str:
    return name_with_suffix(instance_name, "redis-ha-haproxy")


def ha_announce_name(instance_name: str) -> str:
    return name_with_suffix(instance_name, "redis-ha-announce")


def ha_config_map_name(instance_name: str) -> str:
    """The HA configuration lists the announce services of one instance."""
    return name_with_suffix(instance_name, "redis-ha-configmap")


def ha_health_config_map_name(instance_name: str) -> str:
    return name_with_suffix(instance_name, "redis-ha-health-configmap")


def redis_address(ctx: ReconcileContext) -> str:
    """Address other components use to reach the cache tier."""
    if ctx.instance.spec.ha.enabled:
        service = ha_proxy_name(ctx.instance_name)
    else:
        service = redis_name(ctx.instance_name)
    return f"{service}.{ctx.namespace}.svc.cluster.local:{REDIS_PORT}"


def redis_uses_tls(ctx: ReconcileContext) -> bool:
    """Whether the cache tier serves an automatically issued certificate."""
    return ctx.config.route_api_available and ctx.instance.spec.redis.wants_auto_tls()


def redis_tls_args(ctx: ReconcileContext, ca_certificate: str) -> list[str]:
    """Return the arguments clients of the cache tier need to connect."""
    if not redis_uses_tls(ctx):
        return []
    if ctx.instance.spec.redis.disable_tls_verification:
        return ["--redis-use-tls", "--redis-insecure-skip-tls-verify"]
    return ["--redis-use-tls", "--redis-ca-certificate", ca_certificate]


def _service_account(ctx: ReconcileContext) -> ServiceAccount:
    return builder.request_service_account(
        builder.ServiceAccountRequest(
            **ctx.request_args(COMPONENT, redis_name(ctx.instance_name))
        )
    )


def _role(ctx: ReconcileContext) -> Role:
    # Sentinels discover their peers through the endpoints of the HA service
    return builder.request_role(
        builder.RoleRequest(
            **ctx.request_args(COMPONENT, ha_name(ctx.instance_name)),
            rules=[PolicyRule(api_groups=[""], resources=["endpoints"], verbs=["get"])],
        )
    )


def _role_binding(ctx: ReconcileContext) -> RoleBinding:
    name = ha_name(ctx.instance_name)
    return builder.request_role_binding(
        builder.RoleBindingRequest(
            **ctx.request_args(COMPONENT, name),
            role_ref=RoleRef(name=name),
            subjects=[
                Subject(
                    kind=SERVICE_ACCOUNT_KIND,
                    name=redis_name(ctx.instance_name),
                    namespace=ctx.namespace,
                )
            ],
        )
    )


def _announce_peers(ctx: ReconcileContext) -> PeerSet[Service]:
    server = ha_server_name(ctx.instance_name)
    selector_name = ha_name(ctx.instance_name)

    def template(name: str, index: int) -> Service:
        return builder.request_service(
            builder.ServiceRequest(
                **ctx.request_args(COMPONENT, name),
                selector={LABEL_NAME: selector_name, POD_NAME_LABEL: f"{server}-{index}"},
                ports=_ha_ports(),
                publish_not_ready_addresses=True,
            )
        )

    return PeerSet(
        name=ha_announce_name(ctx.instance_name),
        kind=Service,
        namespace=ctx.namespace,
        template=template,
        discovery=component_selector(ctx.instance_name, COMPONENT),
    )


def _ha_config_map(ctx: ReconcileContext) -> ConfigMap:
    peers = _announce_peers(ctx)
    announce = [peers.peer_name(index) for index in range(ctx.instance.spec.ha.replicas)]
    return builder.request_config_map(
        builder.ConfigMapRequest(
            **ctx.request_args(COMPONENT, ha_config_map_name(ctx.instance_name)),
            data=ha_config_data(
                ha_name(ctx.instance_name), peers.name, announce, ctx.namespace
            ),
        )
    )


def _ha_config_drift(ctx: ReconcileContext) -> Mutate:
    """The HA configuration lists every announce service, so it follows replicas."""
    data = _ha_config_map(ctx).data

    def mutate(obj: ConfigMap) -> bool:
        if obj.data == data:
            return False
        obj.data = dict(data)
        return True

    return mutate


def _ha_health_config_map(ctx: ReconcileContext) -> ConfigMap:
    return builder.request_config_map(
        builder.ConfigMapRequest(
            **ctx.request_args(
                COMPONENT, ha_health_config_map_name(ctx.instance_name)
            ),
            data=ha_health_data(),
        )
    )


def _deployment(ctx: ReconcileContext) -> Deployment:
    name = redis_name(ctx.instance_name)
    spec = ctx.instance.spec.redis
    return builder.request_deployment(
        builder.WorkloadRequest(
            **ctx.request_args(COMPONENT, name),
            pod_labels={LABEL_NAME: name},
            service_account_name=name,
            containers=[
                Container(
                    name="redis",
                    image=spec.container_image,
                    args=["--save", "", "--appendonly", "no"],
                    ports=[
                        ContainerPort(
                            name=REDIS_CONTAINER_PORT, container_port=REDIS_PORT
                        )
                    ],
                    resources=spec.resources,
                )
            ],
        )
    )


def _config_volumes(ctx: ReconcileContext) -> list[Volume]:
    return [
        Volume(
            name=CONFIG_VOLUME,
            config_map=ConfigMapVolumeSource(name=ha_config_map_name(ctx.instance_name)),
        ),
        Volume(
            name=HEALTH_VOLUME,
            config_map=ConfigMapVolumeSource(
                name=ha_health_config_map_name(ctx.instance_name)
            ),
        ),
    ]


def _server_mounts() -> list[VolumeMount]:
    return [
        VolumeMount(name=CONFIG_VOLUME, mount_path=SERVER_CONFIG_PATH),
        VolumeMount(name=HEALTH_VOLUME, mount_path=HEALTH_PATH),
    ]


def _ha_server(ctx: ReconcileContext) -> StatefulSet:
    redis = ctx.instance.spec.redis
    ha = ctx.instance.spec.ha
    resources = ha.resources or redis.resources
    return builder.request_stateful_set(
        builder.WorkloadRequest(
            **ctx.request_args(COMPONENT, ha_server_name(ctx.instance_name)),
            replicas=ha.replicas,
            pod_labels={LABEL_NAME: ha_name(ctx.instance_name)},
            service_account_name=redis_name(ctx.instance_name),
            service_name=ha_name(ctx.instance_name),
            volumes=_config_volumes(ctx),
            containers=[
                Container(
                    name="redis",
                    image=redis.container_image,
                    args=["/data/conf/redis.conf"],
                    ports=[
                        ContainerPort(
                            name=REDIS_CONTAINER_PORT, container_port=REDIS_PORT
                        )
                    ],
                    resources=resources,
                    volume_mounts=_server_mounts(),
                ),
                Container(
                    name="sentinel",
                    image=redis.container_image,
                    args=["/data/conf/sentinel.conf", "--sentinel"],
                    ports=[
                        ContainerPort(
                            name=SENTINEL_CONTAINER_PORT, container_port=SENTINEL_PORT
                        )
                    ],
                    resources=resources,
                    volume_mounts=_server_mounts(),
                ),
            ],
        )
    )


def _replicas_drift(ctx: ReconcileContext) -> Mutate:
    replicas = ctx.instance.spec.ha.replicas

    def mutate(obj: StatefulSet) -> bool:
        if obj.spec.replicas == replicas:
            return False
        _LOGGER.info(
            "Scaling %s from %d to %d replicas",
            obj.resource_id,
            obj.spec.replicas,
            replicas,
        )
        obj.spec.replicas = replicas
        return True

    return mutate


def _ha_proxy(ctx: ReconcileContext) -> Deployment:
    name = ha_proxy_name(ctx.instance_name)
    ha = ctx.instance.spec.ha
    return builder.request_deployment(
        builder.WorkloadRequest(
            **ctx.request_args(COMPONENT, name),
            pod_labels={LABEL_NAME: name},
            service_account_name=redis_name(ctx.instance_name),
            containers=[
                Container(
                    name="haproxy",
                    image=ha.proxy_image,
                    ports=[
                        ContainerPort(
                            name=REDIS_CONTAINER_PORT, container_port=REDIS_PORT
                        )
                    ],
                    resources=ha.resources,
                    volume_mounts=[
                        VolumeMount(name=CONFIG_VOLUME, mount_path=PROXY_CONFIG_PATH)
                    ],
                )
            ],
            volumes=_config_volumes(ctx)[:1],
        )
    )


def _ha_ports() -> list[ServicePort]:
    return [
        ServicePort(name="server", port=REDIS_PORT, target_port=REDIS_CONTAINER_PORT),
        ServicePort(
            name="sentinel", port=SENTINEL_PORT, target_port=SENTINEL_CONTAINER_PORT
        ),
    ]


def _service(ctx: ReconcileContext) -> Service:
    name = redis_name(ctx.instance_name)
    return builder.request_service(
        builder.ServiceRequest(
            **ctx.request_args(COMPONENT, name),
            selector={LABEL_NAME: name},
            ports=[ServicePort(name="tcp-redis", port=REDIS_PORT, target_port=REDIS_PORT)],
        )
    )


def _ha_service(ctx: ReconcileContext) -> Service:
    name = ha_name(ctx.instance_name)
    return builder.request_service(
        builder.ServiceRequest(
            **ctx.request_args(COMPONENT, name),
            selector={LABEL_NAME: name},
            ports=_ha_ports(),
        )
    )


def _ha_proxy_service(ctx: ReconcileContext) -> Service:
    name = ha_proxy_name(ctx.instance_name)
    return builder.request_service(
        builder.ServiceRequest(
            **ctx.request_args(COMPONENT, name),
            selector={LABEL_NAME: name},
            ports=[
                ServicePort(
                    name="haproxy", port=REDIS_PORT, target_port=REDIS_CONTAINER_PORT
                )
            ],
        )
    )


def _auto_tls(ctx: ReconcileContext) -> Mutate:
    enabled = ctx.instance.spec.redis.wants_auto_tls()

    def mutate(obj: Service) -> bool:
        return ensure_auto_tls_annotation(obj, REDIS_TLS_SECRET, enabled, ctx.config)

    return mutate


def _tolerate_unready(obj: Service) -> bool:
    return apply_toggle(obj, TOLERATE_UNREADY_ENDPOINTS_ANNOTATION, "true", True)


async def _reconcile_announce(
    ctx: ReconcileContext, topology: Topology
) -> list[Action]:
    peers = _announce_peers(ctx)
    if topology != Topology.HIGH_AVAILABILITY:
        return await delete_peer_set(ctx.store, peers)
    return await reconcile_peer_set(
        ctx.store,
        ctx.instance,
        peers,
        ctx.instance.spec.ha.replicas,
        mutate=_tolerate_unready,
        owner_policy=ctx.config.owner_reference_policy,
    )


async def _delete_announce(ctx: ReconcileContext) -> list[Action]:
    return await delete_peer_set(ctx.store, _announce_peers(ctx))


def _redis_name(ctx: ReconcileContext) -> str:
    return redis_name(ctx.instance_name)


def _ha_name(ctx: ReconcileContext) -> str:
    return ha_name(ctx.instance_name)


def _ha_server_name(ctx: ReconcileContext) -> str:
    return ha_server_name(ctx.instance_name)


def _ha_proxy_name(ctx: ReconcileContext) -> str:
    return ha_proxy_name(ctx.instance_name)


def _ha_config_map_name(ctx: ReconcileContext) -> str:
    return ha_config_map_name(ctx.instance_name)


def _ha_health_config_map_name(ctx: ReconcileContext) -> str:
    return ha_health_config_map_name(ctx.instance_name)


class RedisReconciler(ComponentReconciler):
    """Reconciles the cache tier in its standalone or HA variant."""

    component = COMPONENT

    def topology(self) -> Topology:
        if self._ctx.instance.spec.ha.enabled:
            return Topology.HIGH_AVAILABILITY
        return Topology.STANDALONE

    def steps(self) -> list[ReconcileStep]:
        return [
            resource_step(
                "service-account", ServiceAccount, _redis_name, _service_account
            ),
            resource_step("role", Role, _ha_name, _role, wanted=when_high_availability),
            resource_step(
                "role-binding",
                RoleBinding,
                _ha_name,
                _role_binding,
                wanted=when_high_availability,
            ),
            resource_step(
                "ha-config-map",
                ConfigMap,
                _ha_config_map_name,
                _ha_config_map,
                wanted=when_high_availability,
                mutate=_ha_config_drift,
                guard_namespace=True,
            ),
            resource_step(
                "ha-health-config-map",
                ConfigMap,
                _ha_health_config_map_name,
                _ha_health_config_map,
                wanted=when_high_availability,
                guard_namespace=True,
            ),
            resource_step(
                "deployment", Deployment, _redis_name, _deployment, wanted=when_standalone
            ),
            resource_step(
                "ha-server",
                StatefulSet,
                _ha_server_name,
                _ha_server,
                wanted=when_high_availability,
                mutate=_replicas_drift,
            ),
            resource_step(
                "ha-proxy",
                Deployment,
                _ha_proxy_name,
                _ha_proxy,
                wanted=when_high_availability,
            ),
            resource_step(
                "service",
                Service,
                _redis_name,
                _service,
                wanted=when_standalone,
                mutate=_auto_tls,
            ),
            ReconcileStep("ha-announce-services", _reconcile_announce, _delete_announce),
            resource_step(
                "ha-service", Service, _ha_name, _ha_service, wanted=when_high_availability
            ),
            resource_step(
                "ha-proxy-service",
                Service,
                _ha_proxy_name,
                _ha_proxy_service,
                wanted=when_high_availability,
                mutate=_auto_tls,
            ),
        ]
