"""Reconciler for the API server.

The server is enabled unless explicitly disabled. Its service requests an
automatically issued certificate when the route in front of it re-encrypts
traffic.
"""

from argocd_operator import builder
from argocd_operator.annotations import ensure_auto_tls_annotation
from argocd_operator.component import (
    ComponentReconciler,
    ReconcileContext,
    ReconcileStep,
    resource_step,
)
from argocd_operator.converge import Mutate, Topology
from argocd_operator.instance import ARGOCD_API_GROUP, DEFAULT_LOG_LEVEL
from argocd_operator.manifest import (
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
    SERVICE_TYPE_CLUSTER_IP,
    Subject,
)
from argocd_operator.naming import LABEL_NAME, name_with_suffix

from .redis import redis_address, redis_tls_args
from .repo_server import repo_server_address

COMPONENT = "server"

SERVER_TLS_SECRET = "argocd-server-tls"
SERVER_CONTAINER_PORT = 8080
SERVER_METRICS_PORT = 8083
HTTP_PORT = 80
HTTPS_PORT = 443
REDIS_CA_CERTIFICATE = "/app/config/server/tls/redis/tls.crt"


def server_name(instance_name: str) -> str:
    return name_with_suffix(instance_name, "server")


def server_metrics_name(instance_name: str) -> str:
    return name_with_suffix(instance_name, "server-metrics")


def _server_name(ctx: ReconcileContext) -> str:
    return server_name(ctx.instance_name)


def _server_metrics_name(ctx: ReconcileContext) -> str:
    return server_metrics_name(ctx.instance_name)


def _service_account(ctx: ReconcileContext) -> ServiceAccount:
    return builder.request_service_account(
        builder.ServiceAccountRequest(
            **ctx.request_args(COMPONENT, server_name(ctx.instance_name))
        )
    )


def _role(ctx: ReconcileContext) -> Role:
    return builder.request_role(
        builder.RoleRequest(
            **ctx.request_args(COMPONENT, server_name(ctx.instance_name)),
            rules=[
                PolicyRule(
                    api_groups=[""],
                    resources=["secrets", "configmaps"],
                    verbs=["create", "get", "list", "watch", "update", "patch", "delete"],
                ),
                PolicyRule(
                    api_groups=[ARGOCD_API_GROUP],
                    resources=["applications", "appprojects"],
                    verbs=["create", "get", "list", "watch", "update", "patch", "delete"],
                ),
                PolicyRule(
                    api_groups=[""],
                    resources=["events"],
                    verbs=["create", "list"],
                ),
            ],
        )
    )


def _role_binding(ctx: ReconcileContext) -> RoleBinding:
    name = server_name(ctx.instance_name)
    return builder.request_role_binding(
        builder.RoleBindingRequest(
            **ctx.request_args(COMPONENT, name),
            role_ref=RoleRef(name=name),
            subjects=[
                Subject(kind=SERVICE_ACCOUNT_KIND, name=name, namespace=ctx.namespace)
            ],
        )
    )


def _deployment(ctx: ReconcileContext) -> Deployment:
    name = server_name(ctx.instance_name)
    spec = ctx.instance.spec
    args = [
        "argocd-server",
        "--staticassets",
        "/shared/app",
        "--repo-server",
        repo_server_address(ctx),
        "--redis",
        redis_address(ctx),
        "--loglevel",
        spec.server.log_level or DEFAULT_LOG_LEVEL,
    ]
    if spec.server.insecure:
        args.append("--insecure")
    args.extend(redis_tls_args(ctx, REDIS_CA_CERTIFICATE))
    return builder.request_deployment(
        builder.WorkloadRequest(
            **ctx.request_args(COMPONENT, name),
            replicas=spec.server.replicas if spec.server.replicas is not None else 1,
            pod_labels={LABEL_NAME: name},
            service_account_name=name,
            containers=[
                Container(
                    name="argocd-server",
                    image=spec.argo_image,
                    args=args,
                    ports=[
                        ContainerPort(
                            name="server", container_port=SERVER_CONTAINER_PORT
                        ),
                        ContainerPort(
                            name="metrics", container_port=SERVER_METRICS_PORT
                        ),
                    ],
                    resources=spec.server.resources,
                )
            ],
        )
    )


def _service(ctx: ReconcileContext) -> Service:
    name = server_name(ctx.instance_name)
    return builder.request_service(
        builder.ServiceRequest(
            **ctx.request_args(COMPONENT, name),
            selector={LABEL_NAME: name},
            service_type=ctx.instance.spec.server.service.type
            or SERVICE_TYPE_CLUSTER_IP,
            ports=[
                ServicePort(
                    name="http", port=HTTP_PORT, target_port=SERVER_CONTAINER_PORT
                ),
                ServicePort(
                    name="https", port=HTTPS_PORT, target_port=SERVER_CONTAINER_PORT
                ),
            ],
        )
    )


def _metrics_service(ctx: ReconcileContext) -> Service:
    return builder.request_service(
        builder.ServiceRequest(
            **ctx.request_args(COMPONENT, server_metrics_name(ctx.instance_name)),
            selector={LABEL_NAME: server_name(ctx.instance_name)},
            ports=[
                ServicePort(
                    name="metrics",
                    port=SERVER_METRICS_PORT,
                    target_port=SERVER_METRICS_PORT,
                )
            ],
        )
    )


def _auto_tls(ctx: ReconcileContext) -> Mutate:
    enabled = ctx.instance.spec.server.wants_auto_tls()

    def mutate(obj: Service) -> bool:
        return ensure_auto_tls_annotation(obj, SERVER_TLS_SECRET, enabled, ctx.config)

    return mutate


class ServerReconciler(ComponentReconciler):
    """Reconciles the API server."""

    component = COMPONENT

    def topology(self) -> Topology:
        if self._ctx.instance.spec.server.is_enabled():
            return Topology.STANDALONE
        return Topology.DISABLED

    def steps(self) -> list[ReconcileStep]:
        return [
            resource_step(
                "service-account", ServiceAccount, _server_name, _service_account
            ),
            resource_step("role", Role, _server_name, _role),
            resource_step("role-binding", RoleBinding, _server_name, _role_binding),
            resource_step("deployment", Deployment, _server_name, _deployment),
            resource_step(
                "service", Service, _server_name, _service, mutate=_auto_tls
            ),
            resource_step(
                "metrics-service", Service, _server_metrics_name, _metrics_service
            ),
        ]
