"""Keyed regions — a list-valued piece of view kept in sync by an effect.

``keyed_region`` couples the two halves of keyflow: an effect renders a
keyed item list (tracking whatever it reads), and each re-run reconciles the
previous list against the new one and applies the operations to a host.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Sequence

from keyflow.effect import ReactiveEffect, Scheduler, effect
from keyflow.reconcile import Host, apply, reconcile

if TYPE_CHECKING:
    from keyflow._tracking import Runtime

logger = logging.getLogger("keyflow.region")


def keyed_region(
    rt: Runtime,
    render: Callable[[], Sequence[Any]],
    host: Host,
    *,
    scheduler: Scheduler | None = None,
) -> ReactiveEffect:
    """Render ``render()`` into ``host`` now, and re-reconcile whenever its inputs change.

    Returns the driving effect; stop it to freeze the region.

    Usage:
        todos = rt.reactive([{"id": 1, "text": "write tests"}])
        region = rt.keyed_region(
            lambda: [KeyedItem(t["id"], t["text"]) for t in todos],
            host,
            scheduler=rt.queue_job,
        )
    """
    previous: list[Any] = []

    def update() -> None:
        nonlocal previous
        items = list(render())
        # Host primitives are not reads of reactive state.
        with rt.pause_tracking():
            ops = reconcile(previous, items)
            apply(ops, host)
        logger.debug("region patched: %d items, %d operations", len(items), len(ops))
        previous = items

    return effect(rt, update, scheduler=scheduler)
