"""Reconciler for the applicationset controller.

The controller is installed only when the instance has an applicationSet
section that is not explicitly disabled. All of its resources share one
name, unique to the (instance, namespace, component) triple. Instances in
one of the cluster configuration namespaces also get a cluster role and
binding; being cluster scoped, those carry no owner reference and are only
removed by an explicit teardown.
"""

from argocd_operator import builder
from argocd_operator.component import (
    ComponentReconciler,
    ReconcileContext,
    ReconcileStep,
    resource_step,
)
from argocd_operator.converge import Topology
from argocd_operator.instance import (
    ARGOCD_API_GROUP,
    DEFAULT_LOG_LEVEL,
    ApplicationSetSpec,
)
from argocd_operator.manifest import (
    CLUSTER_ROLE_KIND,
    ClusterRole,
    ClusterRoleBinding,
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
    Subject,
)
from argocd_operator.naming import LABEL_NAME, deterministic_name

from .repo_server import repo_server_address

COMPONENT = "applicationset-controller"

WEBHOOK_PORT = 7000
METRICS_PORT = 8080


def applicationset_name(ctx: ReconcileContext) -> str:
    return deterministic_name(ctx.instance_name, ctx.namespace, COMPONENT)


def _spec(ctx: ReconcileContext) -> ApplicationSetSpec:
    return ctx.instance.spec.application_set or ApplicationSetSpec()


def _service_account(ctx: ReconcileContext) -> ServiceAccount:
    return builder.request_service_account(
        builder.ServiceAccountRequest(**ctx.request_args(COMPONENT))
    )


def _rules() -> list[PolicyRule]:
    return [
        PolicyRule(
            api_groups=[ARGOCD_API_GROUP],
            resources=[
                "applications",
                "applicationsets",
                "applicationsets/finalizers",
            ],
            verbs=["create", "delete", "get", "list", "patch", "update", "watch"],
        ),
        PolicyRule(
            api_groups=[ARGOCD_API_GROUP],
            resources=["appprojects"],
            verbs=["get"],
        ),
        PolicyRule(
            api_groups=[ARGOCD_API_GROUP],
            resources=["applicationsets/status"],
            verbs=["get", "patch", "update"],
        ),
        PolicyRule(
            api_groups=[""],
            resources=["events"],
            verbs=["create", "delete", "get", "list", "patch", "update", "watch"],
        ),
        PolicyRule(
            api_groups=[""],
            resources=["secrets", "configmaps"],
            verbs=["get", "list", "watch"],
        ),
    ]


def _role(ctx: ReconcileContext) -> Role:
    return builder.request_role(
        builder.RoleRequest(**ctx.request_args(COMPONENT), rules=_rules())
    )


def _role_binding(ctx: ReconcileContext) -> RoleBinding:
    name = applicationset_name(ctx)
    return builder.request_role_binding(
        builder.RoleBindingRequest(
            **ctx.request_args(COMPONENT),
            role_ref=RoleRef(name=name),
            subjects=[
                Subject(kind=SERVICE_ACCOUNT_KIND, name=name, namespace=ctx.namespace)
            ],
        )
    )


def _cluster_role(ctx: ReconcileContext) -> ClusterRole:
    # The same permissions, granted in every namespace
    return builder.request_cluster_role(
        builder.ClusterRoleRequest(**ctx.request_args(COMPONENT), rules=_rules())
    )


def _cluster_role_binding(ctx: ReconcileContext) -> ClusterRoleBinding:
    name = applicationset_name(ctx)
    return builder.request_cluster_role_binding(
        builder.ClusterRoleBindingRequest(
            **ctx.request_args(COMPONENT),
            role_ref=RoleRef(name=name, kind=CLUSTER_ROLE_KIND),
            subjects=[
                Subject(kind=SERVICE_ACCOUNT_KIND, name=name, namespace=ctx.namespace)
            ],
        )
    )


def _cluster_scoped(ctx: ReconcileContext) -> bool:
    return ctx.cluster_scoped


def _deployment(ctx: ReconcileContext) -> Deployment:
    name = applicationset_name(ctx)
    spec = _spec(ctx)
    return builder.request_deployment(
        builder.WorkloadRequest(
            **ctx.request_args(COMPONENT),
            pod_labels={LABEL_NAME: name},
            service_account_name=name,
            containers=[
                Container(
                    name="argocd-applicationset-controller",
                    image=ctx.instance.spec.component_image(spec.image, spec.version),
                    args=[
                        "entrypoint.sh",
                        "argocd-applicationset-controller",
                        "--argocd-repo-server",
                        repo_server_address(ctx),
                        "--loglevel",
                        spec.log_level or DEFAULT_LOG_LEVEL,
                    ],
                    ports=[
                        ContainerPort(name="webhook", container_port=WEBHOOK_PORT),
                        ContainerPort(name="metrics", container_port=METRICS_PORT),
                    ],
                    resources=spec.resources,
                )
            ],
        )
    )


def _service(ctx: ReconcileContext) -> Service:
    return builder.request_service(
        builder.ServiceRequest(
            **ctx.request_args(COMPONENT),
            selector={LABEL_NAME: applicationset_name(ctx)},
            ports=[
                ServicePort(name="webhook", port=WEBHOOK_PORT, target_port=WEBHOOK_PORT),
                ServicePort(name="metrics", port=METRICS_PORT, target_port=METRICS_PORT),
            ],
        )
    )


class ApplicationSetReconciler(ComponentReconciler):
    """Reconciles the applicationset controller."""

    component = COMPONENT

    def topology(self) -> Topology:
        spec = self._ctx.instance.spec.application_set
        if spec is not None and spec.is_enabled():
            return Topology.STANDALONE
        return Topology.DISABLED

    def steps(self) -> list[ReconcileStep]:
        return [
            resource_step(
                "service-account", ServiceAccount, applicationset_name, _service_account
            ),
            resource_step("role", Role, applicationset_name, _role),
            resource_step("role-binding", RoleBinding, applicationset_name, _role_binding),
            resource_step(
                "cluster-role",
                ClusterRole,
                applicationset_name,
                _cluster_role,
                condition=_cluster_scoped,
            ),
            resource_step(
                "cluster-role-binding",
                ClusterRoleBinding,
                applicationset_name,
                _cluster_role_binding,
                condition=_cluster_scoped,
            ),
            resource_step("deployment", Deployment, applicationset_name, _deployment),
            resource_step("service", Service, applicationset_name, _service),
        ]
