"""argocd-operator build action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
    BooleanOptionalAction,
)
from datetime import datetime, timezone
import logging
import pathlib
from typing import Any, cast

import yaml

from argocd_operator.config import OperatorConfig
from argocd_operator.controller import ArgoCDController
from argocd_operator.instance import read_instance
from argocd_operator.manifest import (
    ClusterRole,
    ClusterRoleBinding,
    ConfigMap,
    Deployment,
    Namespace,
    ObjectMeta,
    Resource,
    Role,
    RoleBinding,
    Service,
    ServiceAccount,
    StatefulSet,
)
from argocd_operator.store import InMemoryStore

_LOGGER = logging.getLogger(__name__)

CHILD_KINDS: list[type[Resource]] = [
    ServiceAccount,
    Role,
    RoleBinding,
    ConfigMap,
    Deployment,
    StatefulSet,
    Service,
]

CLUSTER_KINDS: list[type[Resource]] = [ClusterRole, ClusterRoleBinding]

# Assigned by the store, so they differ on every run
SERVER_FIELDS = ("uid", "resourceVersion")


def _output_doc(obj: Resource) -> dict[str, Any]:
    doc = obj.to_doc()
    metadata = doc["metadata"]
    for key in SERVER_FIELDS:
        metadata.pop(key, None)
    for ref in metadata.get("ownerReferences", ()):
        ref.pop("uid", None)
    return doc


async def build_resources(
    path: pathlib.Path, config: OperatorConfig, namespace_terminating: bool = False
) -> list[Resource]:
    """Reconcile the instance in the file and return its child resources."""
    instance = await read_instance(path)
    store = InMemoryStore()
    namespace = instance.namespace or ""
    await store.create_object(
        Namespace(
            metadata=ObjectMeta(
                name=namespace,
                deletion_timestamp=(
                    datetime.now(timezone.utc).isoformat()
                    if namespace_terminating
                    else None
                ),
            )
        )
    )
    stored = await store.create_object(instance)
    controller = ArgoCDController(store, config)
    status = await controller.reconcile(stored.resource_id)
    if status is not None:
        _LOGGER.info("ArgoCD %s phase %s", stored.resource_id, status.phase)

    resources: list[Resource] = []
    for cls in CHILD_KINDS:
        resources.extend(await store.list_objects(cls, namespace))
    for cls in CLUSTER_KINDS:
        resources.extend(await store.list_objects(cls))
    resources.sort(key=lambda obj: (obj.kind, obj.name))
    return resources


class BuildAction:
    """argocd-operator build action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "build",
                help="Build the child resources of an ArgoCD instance",
                description="""Reconciles the ArgoCD instance in the file against
                    an empty cluster and prints every child resource that the
                    operator would create, sorted by kind and name.""",
            ),
        )
        args.add_argument(
            "path", type=pathlib.Path, help="Path to the ArgoCD instance YAML file"
        )
        args.add_argument(
            "--route-api",
            action=BooleanOptionalAction,
            help="Whether the platform issues serving certificates (enables AutoTLS)",
        )
        args.add_argument(
            "--namespace-terminating",
            action="store_true",
            help="Reconcile as if the instance namespace is being deleted",
        )
        args.add_argument(
            "--cluster-config-namespace",
            action="append",
            default=[],
            dest="cluster_config_namespaces",
            help="Namespace whose instances get cluster scoped permissions, may be repeated",
        )
        args.add_argument(
            "--output-file",
            type=str,
            default="/dev/stdout",
            help="Output file for the results of the command",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: pathlib.Path,
        route_api: bool | None,
        namespace_terminating: bool,
        output_file: str,
        cluster_config_namespaces: list[str] | None = None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        config = OperatorConfig(
            route_api_available=bool(route_api),
            cluster_config_namespaces=set(cluster_config_namespaces or ()),
        )
        resources = await build_resources(path, config, namespace_terminating)
        with open(output_file, "w") as file:
            yaml.dump_all(
                [_output_doc(obj) for obj in resources],
                file,
                sort_keys=False,
                explicit_start=True,
            )
