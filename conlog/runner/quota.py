"""Cumulative byte quota applied to the log sink."""

from __future__ import annotations

import logging
from dataclasses import dataclass

__all__ = ["UNBOUNDED", "LogQuota"]

UNBOUNDED = -1

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LogQuota:
    """Decide, chunk by chunk, whether output still fits in the log.

    Chunks are admitted or rejected whole. The first rejection logs
    ``Stopping log`` and pins ``written`` one past the limit, so every later
    chunk is rejected without another diagnostic.
    """

    limit: int | None = None
    written: int = 0

    @property
    def unbounded(self) -> bool:
        return self.limit is None or self.limit < 0

    def admit(self, size: int) -> bool:
        """Return ``True`` and account for ``size`` bytes if they fit."""

        if self.unbounded:
            self.written += size
            return True
        assert self.limit is not None
        if self.written + size > self.limit:
            if self.written <= self.limit:
                logger.warning("Stopping log")
                self.written = self.limit + 1
            return False
        self.written += size
        return True
