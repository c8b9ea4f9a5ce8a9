"""Configuration objects for argocd-operator."""

from dataclasses import dataclass, field
from enum import StrEnum

DEFAULT_RECONCILE_TIMEOUT = 60.0


class OwnerReferencePolicy(StrEnum):
    """What to do when an owner reference cannot be attached to a child."""

    BEST_EFFORT = "best-effort"
    """Log the failure and create the child anyway.

    A missing owner reference only degrades cascading garbage collection, so
    it must not block the resource from being available.
    """

    REQUIRED = "required"
    """Fail the reconciliation of the child."""


@dataclass
class OperatorConfig:
    """Configuration for the reconcilers of an ArgoCD instance."""

    route_api_available: bool = False
    """Whether the platform issues serving certificates for annotated services."""

    owner_reference_policy: OwnerReferencePolicy = OwnerReferencePolicy.BEST_EFFORT
    """Handling of owner reference failures."""

    reconcile_timeout: float | None = DEFAULT_RECONCILE_TIMEOUT
    """Deadline in seconds for one reconcile pass of an instance, or None."""

    cluster_config_namespaces: set[str] = field(default_factory=set)
    """Namespaces whose instances are granted cluster scoped permissions."""
