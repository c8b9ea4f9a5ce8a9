"""Reconcilers for each component of an ArgoCD instance."""

from argocd_operator.component import ComponentReconciler, ReconcileContext

from .applicationset import ApplicationSetReconciler
from .redis import RedisReconciler
from .repo_server import RepoServerReconciler
from .server import ServerReconciler

__all__ = [
    "ApplicationSetReconciler",
    "RedisReconciler",
    "RepoServerReconciler",
    "ServerReconciler",
    "COMPONENT_RECONCILERS",
    "component_reconcilers",
]

COMPONENT_RECONCILERS: list[type[ComponentReconciler]] = [
    RedisReconciler,
    RepoServerReconciler,
    ServerReconciler,
    ApplicationSetReconciler,
]
"""Component reconcilers in the order they are reconciled."""


def component_reconcilers(ctx: ReconcileContext) -> list[ComponentReconciler]:
    """Return a reconciler for every component, in reconcile order."""
    return [cls(ctx) for cls in COMPONENT_RECONCILERS]
