"""Idempotent get-or-create for provider resources.

The existence check and the creation are two separate provider calls, so two
operators running concurrently can both observe "absent" and both create.
This race is accepted: deployments are run by a single operator at a time and
callers serialize their invocations.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .resources import ResourceDescriptor, ResourceKind

logger = logging.getLogger(__name__)


def ensure(
    lookup: Callable[[], ResourceDescriptor | None],
    create: Callable[[], ResourceDescriptor],
    *,
    kind: ResourceKind | None = None,
    name: str | None = None,
) -> ResourceDescriptor:
    """Return the existing resource, creating it only if confirmed absent.

    Lookup failures propagate to the caller unchanged; they are never retried
    and never treated as "absent".

    Args:
        lookup: Returns the descriptor, or None when the resource does not exist.
        create: Creates the resource and returns its descriptor. Called at most once.
        kind: Resource kind, for logging.
        name: Resource name, for logging.

    Returns:
        The existing descriptor unchanged, or the one returned by ``create``.
    """
    log_extra = {
        "resource_kind": kind.value if kind else None,
        "resource_name": name,
    }

    existing = lookup()
    if existing is not None:
        logger.info("Resource already present, skipping creation", extra=log_extra)
        return existing

    created = create()
    logger.info("Resource created", extra=log_extra)
    return created
