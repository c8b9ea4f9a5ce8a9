"""Component reconcilers: ordered steps converging the resources of a component.

A component (the cache tier, the API server, ...) is a list of steps in
dependency order: identities and permissions first, then configuration, the
workload and finally the services in front of it. `reconcile` walks the
steps in order and stops at the first error, leaving the steps already
applied in place. `delete_resources` walks them in reverse and keeps going
past failures, raising every failure at once at the end.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
import logging
from typing import Any, ClassVar, TypeVar

from .config import OperatorConfig
from .converge import Action, Mutate, Topology, converge, delete_each, ensure_absent
from .exceptions import InputException, OperatorException, ResourceDeletionError
from .instance import ArgoCD
from .manifest import NamedResource, Resource
from .store import Store

__all__ = [
    "ComponentState",
    "ReconcileContext",
    "ReconcileStep",
    "ComponentReconciler",
    "resource_step",
    "when_enabled",
    "when_standalone",
    "when_high_availability",
]

_LOGGER = logging.getLogger(__name__)

R = TypeVar("R", bound=Resource)


class ComponentState(StrEnum):
    """The state of a component after its last reconcile."""

    DISABLED = "Disabled"
    CONVERGING = "Converging"
    CONVERGED = "Converged"
    DELETION_PENDING = "DeletionPending"


@dataclass
class ReconcileContext:
    """Everything a reconcile step needs, passed explicitly to each step."""

    store: Store
    instance: ArgoCD
    config: OperatorConfig
    namespace_terminating: bool = False

    @property
    def instance_name(self) -> str:
        return self.instance.name

    @property
    def namespace(self) -> str:
        return self.instance.namespace or ""

    @property
    def labels(self) -> dict[str, str]:
        """User labels, merged over the default labels of every child."""
        return dict(self.instance.metadata.labels)

    @property
    def annotations(self) -> dict[str, str]:
        """User annotations, merged over the default annotations of every child."""
        return dict(self.instance.metadata.annotations)

    @property
    def cluster_scoped(self) -> bool:
        """Whether the instance manages cluster scoped permissions."""
        return self.namespace in self.config.cluster_config_namespaces

    def resource_id(self, kind: type[Resource], name: str) -> NamedResource:
        """Return the identity of a child of the instance."""
        return NamedResource(kind.kind, self.namespace if kind.namespaced else None, name)

    def request_args(self, component: str, name: str = "") -> dict[str, Any]:
        """Return the fields shared by every resource request of a component."""
        return {
            "instance_name": self.instance_name,
            "instance_namespace": self.namespace,
            "component": component,
            "name": name,
            "labels": self.labels,
            "annotations": self.annotations,
        }

    async def converge(
        self, desired: R, *, wanted: bool, mutate: Mutate | None = None
    ) -> Action:
        """Converge a child of the instance, see `converge.converge`."""
        return await converge(
            self.store,
            self.instance,
            desired,
            wanted=wanted,
            mutate=mutate,
            owner_policy=self.config.owner_reference_policy,
        )


ReconcileFn = Callable[[ReconcileContext, Topology], Awaitable[list[Action]]]
DeleteFn = Callable[[ReconcileContext], Awaitable[list[Action]]]


@dataclass
class ReconcileStep:
    """One step of a component, usually one resource kind."""

    name: str

    reconcile: ReconcileFn
    """Converge the resources of the step for the topology of this pass."""

    delete: DeleteFn
    """Delete the resources of the step, tolerating ones already gone."""

    guard_namespace: bool = False
    """Delete instead of reconcile while the namespace is terminating."""


def when_enabled(topology: Topology) -> bool:
    return topology != Topology.DISABLED


def when_standalone(topology: Topology) -> bool:
    return topology == Topology.STANDALONE


def when_high_availability(topology: Topology) -> bool:
    return topology == Topology.HIGH_AVAILABILITY


def resource_step(
    name: str,
    kind: type[R],
    resource_name: Callable[[ReconcileContext], str],
    build: Callable[[ReconcileContext], R],
    *,
    wanted: Callable[[Topology], bool] = when_enabled,
    mutate: Callable[[ReconcileContext], Mutate] | None = None,
    guard_namespace: bool = False,
    condition: Callable[[ReconcileContext], bool] | None = None,
) -> ReconcileStep:
    """Return a step converging the single resource returned by `build`.

    The resource exists for the topologies accepted by `wanted` when the
    optional `condition` also holds, and `mutate` returns the drift check of
    its managed fields for the current pass. The object is identified by
    `kind` and `resource_name`, so removing it never runs `build` and an
    invalid spec cannot block a teardown.
    """

    def resource_id(ctx: ReconcileContext) -> NamedResource:
        return ctx.resource_id(kind, resource_name(ctx))

    async def reconcile(ctx: ReconcileContext, topology: Topology) -> list[Action]:
        if not wanted(topology) or (condition is not None and not condition(ctx)):
            return [await ensure_absent(ctx.store, resource_id(ctx))]
        desired = build(ctx)
        if desired.resource_id != resource_id(ctx):
            raise InputException(
                f"Step {name} built {desired.resource_id}, expected {resource_id(ctx)}"
            )
        action = await ctx.converge(
            desired,
            wanted=True,
            mutate=mutate(ctx) if mutate is not None else None,
        )
        return [action]

    async def delete(ctx: ReconcileContext) -> list[Action]:
        return await delete_each(ctx.store, [resource_id(ctx)], name)

    return ReconcileStep(name, reconcile, delete, guard_namespace)


class ComponentReconciler(ABC):
    """Reconciles all resources of one component of an instance."""

    component: ClassVar[str]
    """The component name, used in names, labels and the discovery selector."""

    def __init__(self, ctx: ReconcileContext) -> None:
        """Initialize the ComponentReconciler."""
        self._ctx = ctx
        self.state = ComponentState.CONVERGING

    @abstractmethod
    def topology(self) -> Topology:
        """Return the topology of the component for the current instance spec."""

    @abstractmethod
    def steps(self) -> list[ReconcileStep]:
        """Return the steps of the component in dependency order."""

    async def reconcile(self) -> ComponentState:
        """Converge every step in order, aborting on the first failure."""
        topology = self.topology()
        _LOGGER.debug(
            "Reconciling %s for %s as %s",
            self.component,
            self._ctx.instance.resource_id,
            topology,
        )
        self.state = ComponentState.CONVERGING
        for step in self.steps():
            if step.guard_namespace and self._ctx.namespace_terminating:
                _LOGGER.info(
                    "Namespace %s is terminating, deleting %s of %s",
                    self._ctx.namespace,
                    step.name,
                    self.component,
                )
                await step.delete(self._ctx)
                continue
            await step.reconcile(self._ctx, topology)
        if self._ctx.namespace_terminating:
            self.state = ComponentState.DELETION_PENDING
        elif topology == Topology.DISABLED:
            self.state = ComponentState.DISABLED
        else:
            self.state = ComponentState.CONVERGED
        return self.state

    async def delete_resources(self) -> list[Action]:
        """Delete every resource of the component in reverse step order."""
        self.state = ComponentState.DELETION_PENDING
        actions: list[Action] = []
        errors: list[Exception] = []
        for step in reversed(self.steps()):
            try:
                actions.extend(await step.delete(self._ctx))
            except ResourceDeletionError as err:
                errors.extend(err.errors)
            except OperatorException as err:
                _LOGGER.error(
                    "Failed to delete %s of %s: %s", step.name, self.component, err
                )
                errors.append(err)
        if errors:
            raise ResourceDeletionError(self.component, errors)
        return actions
