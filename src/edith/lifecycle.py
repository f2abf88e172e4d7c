"""Shutdown and reset for the lazily built server components.

Created: 2026-02-14

``get_resource_store()``, ``get_event_broadcaster()`` and
``get_resource_manager()`` each enlist their instance here when they first
build it. Dependencies are built before their users (the store before the
manager, the broadcaster before the manager), so closing in reverse
enlistment order never leaves a live manager pointing at a closed store.

``shutdown_all()`` is the server's shutdown hook; ``reset_all()`` is what
tests call to start from nothing.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class Component:
    """A singleton enlisted for shutdown/reset."""

    name: str
    close: Callable[[], Any] | None = None  # sync or async
    forget: Callable[[], None] | None = None  # drops the cached instance


# Insertion order is build order
_components: dict[str, Component] = {}


def register(
    name: str,
    *,
    shutdown: Callable[[], Any] | None = None,
    reset: Callable[[], None] | None = None,
) -> None:
    """Enlist a component. Enlisting a name again replaces its callbacks
    but keeps its original place in the shutdown order."""
    _components[name] = Component(name=name, close=shutdown, forget=reset)


def registered() -> list[str]:
    """Enlisted component names, in build order."""
    return list(_components)


async def shutdown_all() -> list[str]:
    """Close every component, newest first, then forget them all.

    A component that fails to close is logged and the rest still close.

    Returns:
        Names of the components whose close callback raised.
    """
    failed = []
    for component in reversed(list(_components.values())):
        if component.close is None:
            continue
        try:
            result = component.close()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning(f"Failed to close {component.name}", exc_info=True)
            failed.append(component.name)
        else:
            logger.debug(f"Closed {component.name}")

    reset_all()
    return failed


def reset_all() -> None:
    """Forget every component so the next ``get_*()`` builds a fresh one."""
    for component in list(_components.values()):
        if component.forget is not None:
            component.forget()
    _components.clear()
