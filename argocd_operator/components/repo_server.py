"""Reconciler for the repository server."""

from argocd_operator import builder
from argocd_operator.annotations import ensure_auto_tls_annotation
from argocd_operator.component import (
    ComponentReconciler,
    ReconcileContext,
    ReconcileStep,
    resource_step,
)
from argocd_operator.converge import Mutate, Topology
from argocd_operator.instance import DEFAULT_LOG_LEVEL
from argocd_operator.manifest import (
    Container,
    ContainerPort,
    Deployment,
    Service,
    ServiceAccount,
    ServicePort,
)
from argocd_operator.naming import LABEL_NAME, name_with_suffix

from .redis import redis_address, redis_tls_args

COMPONENT = "repo-server"

REPO_SERVER_TLS_SECRET = "argocd-repo-server-tls"
REPO_SERVER_PORT = 8081
REPO_SERVER_METRICS_PORT = 8084
REDIS_CA_CERTIFICATE = "/app/config/reposerver/tls/redis/tls.crt"


def repo_server_name(instance_name: str) -> str:
    return name_with_suffix(instance_name, "repo-server")


def repo_server_address(ctx: ReconcileContext) -> str:
    """Address other components use to reach the repository server."""
    service = repo_server_name(ctx.instance_name)
    return f"{service}.{ctx.namespace}.svc.cluster.local:{REPO_SERVER_PORT}"


def _repo_server_name(ctx: ReconcileContext) -> str:
    return repo_server_name(ctx.instance_name)


def _service_account(ctx: ReconcileContext) -> ServiceAccount:
    return builder.request_service_account(
        builder.ServiceAccountRequest(
            **ctx.request_args(COMPONENT, repo_server_name(ctx.instance_name))
        )
    )


def _deployment(ctx: ReconcileContext) -> Deployment:
    name = repo_server_name(ctx.instance_name)
    spec = ctx.instance.spec
    return builder.request_deployment(
        builder.WorkloadRequest(
            **ctx.request_args(COMPONENT, name),
            replicas=spec.repo.replicas if spec.repo.replicas is not None else 1,
            pod_labels={LABEL_NAME: name},
            service_account_name=name,
            containers=[
                Container(
                    name="argocd-repo-server",
                    image=spec.component_image(spec.repo.image, spec.repo.version),
                    args=[
                        "uid_entrypoint.sh",
                        "argocd-repo-server",
                        "--redis",
                        redis_address(ctx),
                        "--loglevel",
                        spec.repo.log_level or DEFAULT_LOG_LEVEL,
                        *redis_tls_args(ctx, REDIS_CA_CERTIFICATE),
                    ],
                    ports=[
                        ContainerPort(name="server", container_port=REPO_SERVER_PORT),
                        ContainerPort(
                            name="metrics", container_port=REPO_SERVER_METRICS_PORT
                        ),
                    ],
                    resources=spec.repo.resources,
                )
            ],
        )
    )


def _service(ctx: ReconcileContext) -> Service:
    name = repo_server_name(ctx.instance_name)
    return builder.request_service(
        builder.ServiceRequest(
            **ctx.request_args(COMPONENT, name),
            selector={LABEL_NAME: name},
            ports=[
                ServicePort(
                    name="server", port=REPO_SERVER_PORT, target_port=REPO_SERVER_PORT
                ),
                ServicePort(
                    name="metrics",
                    port=REPO_SERVER_METRICS_PORT,
                    target_port=REPO_SERVER_METRICS_PORT,
                ),
            ],
        )
    )


def _auto_tls(ctx: ReconcileContext) -> Mutate:
    enabled = ctx.instance.spec.repo.wants_auto_tls()

    def mutate(obj: Service) -> bool:
        return ensure_auto_tls_annotation(
            obj, REPO_SERVER_TLS_SECRET, enabled, ctx.config
        )

    return mutate


class RepoServerReconciler(ComponentReconciler):
    """Reconciles the repository server, enabled unless explicitly disabled."""

    component = COMPONENT

    def topology(self) -> Topology:
        if self._ctx.instance.spec.repo.is_enabled():
            return Topology.STANDALONE
        return Topology.DISABLED

    def steps(self) -> list[ReconcileStep]:
        return [
            resource_step(
                "service-account", ServiceAccount, _repo_server_name, _service_account
            ),
            resource_step("deployment", Deployment, _repo_server_name, _deployment),
            resource_step(
                "service", Service, _repo_server_name, _service, mutate=_auto_tls
            ),
        ]
