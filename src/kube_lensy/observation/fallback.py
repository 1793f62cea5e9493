"""Two-step fallback policy: try a primary fetch, fall back on a known failure."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from kube_lensy.errors import CLIError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class FallbackPolicy(Generic[T]):
    """Run ``primary``; if it raises an error matching ``fallback_on``, run ``fallback``.

    Errors that do not match propagate unchanged, as do errors from the fallback.
    """

    primary: Callable[[], Awaitable[T]]
    fallback_on: Callable[[CLIError], bool]
    fallback: Callable[[], Awaitable[T]]

    async def run(self) -> T:
        try:
            return await self.primary()
        except CLIError as e:
            if not self.fallback_on(e):
                raise
            logger.debug("primary fetch failed (%s); using fallback", e)
            return await self.fallback()


def container_not_running(error: CLIError) -> bool:
    """True when kubectl refused current logs because the container is not running."""
    text = error.text.lower()
    return (
        "is terminated" in text
        or "waiting to start" in text
        or "crashloopbackoff" in text
    )
