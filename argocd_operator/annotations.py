"""Toggle annotations whose presence encodes a boolean feature state.

A toggle annotation is reconciled on every pass, so removing it by hand (or
adding it when the feature is off) is corrected on the next reconcile.
"""

import logging

from .config import OperatorConfig
from .manifest import Resource

__all__ = [
    "apply_toggle",
    "ensure_auto_tls_annotation",
]

_LOGGER = logging.getLogger(__name__)

AUTO_TLS_ANNOTATION = "service.beta.openshift.io/serving-cert-secret-name"
TOLERATE_UNREADY_ENDPOINTS_ANNOTATION = (
    "service.alpha.kubernetes.io/tolerate-unready-endpoints"
)


def apply_toggle(obj: Resource, key: str, value: str, enabled: bool) -> bool:
    """Set or remove a toggle annotation on the in-memory object.

    Returns True when the object was changed, in which case the caller is
    responsible for writing it back to the store.
    """
    annotations = obj.metadata.annotations
    if enabled:
        if annotations.get(key) != value:
            annotations[key] = value
            return True
        return False
    if key in annotations:
        del annotations[key]
        return True
    return False


def ensure_auto_tls_annotation(
    obj: Resource, secret_name: str, enabled: bool, config: OperatorConfig
) -> bool:
    """Request (or stop requesting) an automatically issued serving certificate.

    Only platforms with the route API issue these certificates; elsewhere the
    annotation is not managed at all and this never reports a change.
    """
    if not config.route_api_available:
        return False
    changed = apply_toggle(obj, AUTO_TLS_ANNOTATION, secret_name, enabled)
    if changed:
        if enabled:
            _LOGGER.info("Requesting AutoTLS on %s", obj.resource_id)
        else:
            _LOGGER.info("Removing AutoTLS from %s", obj.resource_id)
    return changed
