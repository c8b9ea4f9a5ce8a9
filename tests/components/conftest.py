"""Test fixtures for the component reconcilers."""

from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from argocd_operator.component import ReconcileContext
from argocd_operator.config import OperatorConfig
from argocd_operator.store import InMemoryStore


@pytest.fixture(name="make_context")
def make_context_fixture(
    store: InMemoryStore,
    config: OperatorConfig,
    make_instance: Callable[..., Any],
    add_instance: Callable[..., Awaitable[Any]],
) -> Callable[..., Awaitable[ReconcileContext]]:
    """Return a function storing an instance and returning its context."""

    async def make(**spec: Any) -> ReconcileContext:
        instance = await add_instance(make_instance(**spec))
        return ReconcileContext(store, instance, config)

    return make
