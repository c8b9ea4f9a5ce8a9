"""Exceptions related to argocd-operator."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .manifest import NamedResource

__all__ = [
    "OperatorException",
    "InputException",
    "ResourceRequestError",
    "StoreException",
    "ObjectNotFoundError",
    "AlreadyExistsError",
    "ConflictError",
    "OwnerReferenceError",
    "ResourceDeletionError",
]


class OperatorException(Exception):
    """Generic base exception used for this library."""


class InputException(OperatorException):
    """Raised when the input documents or specs are not formatted as expected."""


class ResourceRequestError(InputException):
    """Raised when a desired object could not be built from its request."""

    def __init__(
        self, name: str, namespace: str | None, operation: str, message: str
    ) -> None:
        location = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{operation}: {location}: {message}")
        self.name = name
        self.namespace = namespace
        self.operation = operation
        self.message = message


class StoreException(OperatorException):
    """Raised by a Store when an operation on an object fails."""

    def __init__(self, resource_id: "NamedResource", message: str) -> None:
        super().__init__(f"{resource_id}: {message}")
        self.resource_id = resource_id


class ObjectNotFoundError(StoreException):
    """Raised when an object is not found in the store."""

    def __init__(self, resource_id: "NamedResource") -> None:
        super().__init__(resource_id, "not found")


class AlreadyExistsError(StoreException):
    """Raised when creating an object whose name is already taken."""

    def __init__(self, resource_id: "NamedResource") -> None:
        super().__init__(resource_id, "already exists")


class ConflictError(StoreException):
    """Raised when an update was based on a stale resource version."""


class OwnerReferenceError(OperatorException):
    """Raised when an owner reference cannot be attached to a child object."""


class ResourceDeletionError(OperatorException):
    """Raised when one or more resources could not be deleted during teardown.

    Teardown keeps going after an individual failure, so this carries every
    failure that happened rather than just the first one.
    """

    def __init__(self, component: str, errors: list[Exception]) -> None:
        details = "; ".join(str(err) for err in errors)
        super().__init__(
            f"Failed to delete {len(errors)} resource(s) for {component}: {details}"
        )
        self.component = component
        self.errors = errors
