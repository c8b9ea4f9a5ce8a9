"""Naming and labeling helpers for child resources.

Every child resource name is recomputed from the instance on each pass, so
these functions must be pure: the same inputs always give the same name,
label set and annotation set, across processes.
"""

import hashlib

from slugify import slugify

__all__ = [
    "deterministic_name",
    "name_with_suffix",
    "default_labels",
    "default_annotations",
    "merge_maps",
    "component_selector",
]

# Kubernetes object names used as DNS labels are limited to 63 characters
MAX_NAME_LENGTH = 63
HASH_LENGTH = 8

LABEL_NAME = "app.kubernetes.io/name"
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_PART_OF = "app.kubernetes.io/part-of"
LABEL_COMPONENT = "app.kubernetes.io/component"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"

PART_OF = "argocd"
MANAGED_BY = "argocd-operator"

ANNOTATION_INSTANCE_NAME = "argocds.argoproj.io/name"
ANNOTATION_INSTANCE_NAMESPACE = "argocds.argoproj.io/namespace"


def _shorten(name: str) -> str:
    """Truncate a name to the length limit, keeping it unique with a hash."""
    if len(name) <= MAX_NAME_LENGTH:
        return name
    digest = hashlib.sha256(name.encode()).hexdigest()[:HASH_LENGTH]
    prefix = name[: MAX_NAME_LENGTH - HASH_LENGTH - 1].rstrip("-")
    return f"{prefix}-{digest}"


def deterministic_name(
    instance_name: str, instance_namespace: str, component: str
) -> str:
    """Return the name of a component of an instance in a namespace.

    The parts are joined with `-`, the separator the names themselves may
    contain, so triples that only differ in where a `-` falls share a name:
    `("a-b", "c", x)` and `("a", "b-c", x)` both give `a-b-c-x`. Only names
    longer than the limit are hashed, so the collision is not resolved; for
    cluster scoped children it means two such instances share one object.
    """
    name = slugify(
        f"{instance_name}-{instance_namespace}-{component}",
        lowercase=True,
        separator="-",
    )
    return _shorten(name)


def name_with_suffix(name: str, suffix: str) -> str:
    """Return a fixed suffix name for a resource of the given instance."""
    return _shorten(f"{name}-{suffix}")


def default_labels(name: str, instance_name: str, component: str) -> dict[str, str]:
    """Return the labels every child resource of a component carries."""
    return {
        LABEL_NAME: name,
        LABEL_INSTANCE: instance_name,
        LABEL_PART_OF: PART_OF,
        LABEL_COMPONENT: component,
        LABEL_MANAGED_BY: MANAGED_BY,
    }


def default_annotations(
    instance_name: str, instance_namespace: str
) -> dict[str, str]:
    """Return the annotations tying a child resource back to its instance."""
    return {
        ANNOTATION_INSTANCE_NAME: instance_name,
        ANNOTATION_INSTANCE_NAMESPACE: instance_namespace,
    }


def merge_maps(*maps: dict[str, str] | None) -> dict[str, str]:
    """Merge the maps in order, values of later maps win on key collision."""
    merged: dict[str, str] = {}
    for values in maps:
        merged.update(values or {})
    return merged


def component_selector(instance_name: str, component: str) -> dict[str, str]:
    """Return the label selector that discovers the children of a component."""
    return {LABEL_COMPONENT: component, LABEL_INSTANCE: instance_name}
