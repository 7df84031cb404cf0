"""Activity-based cooldown for leaderboard requests from voiced users."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# Scoring thresholds; the gate opens at THRESHOLD.
QUIET_LINES = 10
QUIET_MINUTES = 5
CHANGED_FACTOR = 6
UNCHANGED_FACTOR = 1
THRESHOLD = 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityCooldown:
    """Gate that opens with elapsed time plus chat activity since the last display.

    When the ladder's top entries changed since the last display, only lines
    written by other users count, but they count six times as much.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self.last_allowed: Optional[datetime] = None
        self.lines_total = 0
        self.lines_from_others = 0
        self.shown: Optional[Tuple[str, ...]] = None

    def record_line(self, *, from_self: bool = False) -> None:
        self.lines_total += 1
        if not from_self:
            self.lines_from_others += 1

    def changed(self, composition: Optional[Sequence[str]]) -> bool:
        if composition is None or self.shown is None:
            return False
        return tuple(composition) != self.shown

    def check(self, composition: Optional[Sequence[str]] = None) -> bool:
        """True if a request may go through now. Does not consume the gate."""
        if self.last_allowed is None:
            return True
        wait = (self._clock() - self.last_allowed).total_seconds() / 60
        if self.changed(composition):
            lines, factor = self.lines_from_others, CHANGED_FACTOR
        else:
            lines, factor = self.lines_total, UNCHANGED_FACTOR
        if lines < QUIET_LINES and wait < QUIET_MINUTES:
            return False
        return factor * (wait + lines) >= THRESHOLD

    def try_acquire(self, composition: Optional[Sequence[str]] = None) -> bool:
        if not self.check(composition):
            logger.debug(
                "Leaderboard request throttled (%d lines, %d from others)",
                self.lines_total,
                self.lines_from_others,
            )
            return False
        self.last_allowed = self._clock()
        self.reset_lines()
        return True

    def reset_lines(self) -> None:
        self.lines_total = 0
        self.lines_from_others = 0

    def mark_shown(self, composition: Sequence[str]) -> None:
        """Remember what the room last saw and restart the activity count."""
        self.shown = tuple(composition)
        self.reset_lines()


__all__ = ["ActivityCooldown"]
