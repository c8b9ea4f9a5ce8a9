"""
ArgoCD Controller implementation.

This controller drives the reconciliation of one ArgoCD instance at a time:
it loads the instance from the store, runs every component reconciler in
order and records the resulting component states in the instance status.

Key Concepts:
    - Instance: The ArgoCD object whose spec declares the desired components.
    - Component: One logical sub-system (cache tier, repository server, API
      server, applicationset controller) with its own set of child resources.
    - Store: The cluster state holding the instance and its child resources.

A reconcile pass is bounded by `OperatorConfig.reconcile_timeout`. When the
deadline expires (or the calling task is cancelled) the remaining steps are
abandoned and the next pass resumes from whatever was already applied.
Distinct instances share no state and may be reconciled concurrently.
"""

import asyncio
from collections.abc import Iterable
import logging

from .component import ComponentReconciler, ComponentState, ReconcileContext
from .components import (
    ApplicationSetReconciler,
    RedisReconciler,
    RepoServerReconciler,
    ServerReconciler,
    component_reconcilers,
)
from .config import OperatorConfig
from .converge import namespace_terminating
from .exceptions import (
    ObjectNotFoundError,
    OperatorException,
    ResourceDeletionError,
)
from .instance import ArgoCD, ArgoCDStatus, STATUS_UNKNOWN
from .manifest import NamedResource
from .store import Store

__all__ = [
    "ArgoCDController",
]

_LOGGER = logging.getLogger(__name__)

PHASE_AVAILABLE = "Available"
PHASE_PENDING = "Pending"
PHASE_TERMINATING = "Terminating"


def _phase(states: Iterable[ComponentState]) -> str:
    states = list(states)
    if ComponentState.DELETION_PENDING in states:
        return PHASE_TERMINATING
    if all(
        state in (ComponentState.CONVERGED, ComponentState.DISABLED)
        for state in states
    ):
        return PHASE_AVAILABLE
    return PHASE_PENDING


def _status(reconcilers: list[ComponentReconciler]) -> ArgoCDStatus:
    states = {reconciler.component: reconciler.state for reconciler in reconcilers}

    def state(component: str) -> str:
        return str(states.get(component, STATUS_UNKNOWN))

    return ArgoCDStatus(
        redis=state(RedisReconciler.component),
        repo=state(RepoServerReconciler.component),
        server=state(ServerReconciler.component),
        application_set_controller=state(ApplicationSetReconciler.component),
        phase=_phase(states.values()),
    )


class ArgoCDController:
    """Controller for reconciling ArgoCD instances."""

    def __init__(self, store: Store, config: OperatorConfig | None = None) -> None:
        """Initialize the controller with a store and its configuration."""
        self._store = store
        self._config = config or OperatorConfig()

    async def reconcile(self, resource_id: NamedResource) -> ArgoCDStatus | None:
        """Reconcile the instance with the given identity.

        Returns the status of the instance, or None when the instance no
        longer exists or is being deleted.
        """
        try:
            instance = await self._store.get_object(resource_id, ArgoCD)
        except ObjectNotFoundError:
            _LOGGER.info("ArgoCD %s not found, nothing to reconcile", resource_id)
            return None

        async with asyncio.timeout(self._config.reconcile_timeout):
            if instance.metadata.deletion_timestamp is not None:
                _LOGGER.info("ArgoCD %s is being deleted", resource_id)
                await self.delete_resources(instance)
                return None
            return await self._reconcile(instance)

    async def _reconcile(self, instance: ArgoCD) -> ArgoCDStatus:
        _LOGGER.info("Reconciling ArgoCD %s", instance.resource_id)
        terminating = await namespace_terminating(self._store, instance.namespace or "")
        ctx = ReconcileContext(self._store, instance, self._config, terminating)
        reconcilers = component_reconcilers(ctx)
        try:
            for reconciler in reconcilers:
                await reconciler.reconcile()
        except OperatorException as err:
            _LOGGER.error("Failed to reconcile ArgoCD %s: %s", instance.resource_id, err)
            try:
                await self._update_status(instance, _status(reconcilers))
            except OperatorException as status_err:
                _LOGGER.error(
                    "Failed to update status of ArgoCD %s: %s",
                    instance.resource_id,
                    status_err,
                )
            raise
        status = _status(reconcilers)
        await self._update_status(instance, status)
        return status

    async def _update_status(self, instance: ArgoCD, status: ArgoCDStatus) -> None:
        if instance.status == status:
            _LOGGER.debug("Status of ArgoCD %s is unchanged", instance.resource_id)
            return
        instance.status = status
        await self._store.update_object(instance)
        _LOGGER.info(
            "Updated status of ArgoCD %s: phase %s", instance.resource_id, status.phase
        )

    async def delete_resources(self, instance: ArgoCD) -> None:
        """Delete the child resources of every component, in reverse order.

        Every component is attempted even when an earlier one fails; the
        failures are raised together as one `ResourceDeletionError`.
        """
        ctx = ReconcileContext(self._store, instance, self._config)
        errors: list[Exception] = []
        for reconciler in reversed(component_reconcilers(ctx)):
            try:
                await reconciler.delete_resources()
            except ResourceDeletionError as err:
                _LOGGER.error(
                    "Failed to delete resources of %s: %s", reconciler.component, err
                )
                errors.extend(err.errors)
        if errors:
            raise ResourceDeletionError(instance.name, errors)
