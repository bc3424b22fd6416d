"""Single-slot guards for operations that must not overlap.

Everything runs on one event loop, so a plain flag is enough to detect an
overlapping call at an ``await`` point. A second caller does not wait: it is
told the slot is taken and is expected to return without doing anything.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class SingleFlight:
    """Non-reentrant, non-queueing guard owned by one store."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._busy = False
        self.dropped = 0

    @property
    def busy(self) -> bool:
        return self._busy

    @contextmanager
    def try_acquire(self) -> Iterator[bool]:
        """Yield True if the slot was free (and hold it), False otherwise.

        Example:
            >>> guard = SingleFlight("save")
            >>> with guard.try_acquire() as ok:
            ...     with guard.try_acquire() as nested:
            ...         (ok, nested)
            (True, False)
        """
        if self._busy:
            self.dropped += 1
            logger.debug("%s already in progress; dropping call", self.name)
            yield False
            return
        self._busy = True
        try:
            yield True
        finally:
            self._busy = False


__all__ = ["SingleFlight"]
