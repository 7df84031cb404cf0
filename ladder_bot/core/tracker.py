"""
Room-level ladder tracker.

Owns the tracking configuration, the last two ladder snapshots and the two
timers (poll tick and deadline). Every command entry point and every timer
callback runs on the one event loop, so no state here is locked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Set

from . import reports
from .classifier import RoomWatermark, classify, fresh_battles
from .cooldown import ActivityCooldown
from .identifiers import to_id
from .leaderboard import LeaderboardSnapshot, build_snapshot, diff_report_changes
from .timers import OneShotTimer, RepeatingTimer

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.0
DEFAULT_LEADERBOARD_SIZE = 10
DEADLINE_LEAD = 1.0
DEADLINE_RECHECK = 0.05

Emit = Callable[[str], None]
RequestBattles = Callable[[str, int], None]
FetchLadder = Callable[[str], Awaitable[Optional[List[Mapping[str, Any]]]]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TrackingConfig:
    format_id: str = ""
    prefix: str = ""
    rating: int = 0
    users: Set[str] = field(default_factory=set)
    cutoff: Optional[int] = None
    show_diffs: bool = False
    diff_limit: int = DEFAULT_LEADERBOARD_SIZE
    deadline: Optional[datetime] = None


class LadderTracker:
    """Classifies new battles and reports ladder movement for one room."""

    def __init__(
        self,
        config: TrackingConfig,
        *,
        request_battles: RequestBattles,
        fetch_ladder: FetchLadder,
        emit: Emit,
        clock: Clock = _utcnow,
        poll_interval: float = POLL_INTERVAL,
        error_engine: Optional[Any] = None,
    ) -> None:
        self.config = config
        self._request_battles = request_battles
        self._fetch_ladder = fetch_ladder
        self._emit = emit
        self._clock = clock
        self._error_engine = error_engine

        self.current: Optional[LeaderboardSnapshot] = None
        self.last: Optional[LeaderboardSnapshot] = None
        self.watermark = RoomWatermark()
        self.cooldown = ActivityCooldown(clock)

        self._ticker = RepeatingTimer("ladder-poll", poll_interval, on_error=self._log_error)
        self._deadline_timer = OneShotTimer("ladder-deadline", on_error=self._log_error)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._ticker.running

    def start(self) -> None:
        if self.running:
            return
        self._emit(f"/status {self.config.rating}")
        self._ticker.start(self.tick)
        logger.info("Tracking started for %s (prefix %r)", self.config.format_id, self.config.prefix)

    def stop(self) -> None:
        if not self.running:
            return
        self._ticker.cancel()
        self.clear_snapshots()
        self._emit(f"/status (STOPPED) {self.config.rating}")
        logger.info("Tracking stopped")

    def leave(self) -> None:
        self.stop()
        self._emit("/leave")

    def clear_snapshots(self) -> None:
        self.current = None
        self.last = None

    # ------------------------------------------------------------------
    # Poll tick
    # ------------------------------------------------------------------
    async def tick(self) -> None:
        config = self.config
        rating_filter = config.rating if config.rating and not config.users else 0
        self._request_battles(config.format_id, rating_filter)

        snapshot = await self.pull()
        if snapshot is None:
            return
        self.last, self.current = self.current, snapshot
        if self.last is not None and config.show_diffs:
            self.report_diff(self.last, self.current)

    async def pull(self) -> Optional[LeaderboardSnapshot]:
        """Fetch and build a snapshot for the current format; None if the pull failed."""
        format_id, prefix = self.config.format_id, self.config.prefix
        rows = await self._fetch_ladder(format_id)
        if rows is None:
            return None
        if (format_id, prefix) != (self.config.format_id, self.config.prefix):
            logger.debug("Discarding ladder pull for %s: filter changed mid-pull", format_id)
            return None
        return build_snapshot(rows, prefix, pulled_at=self._clock())

    def report_diff(self, previous: LeaderboardSnapshot, current: LeaderboardSnapshot) -> None:
        limit = self.config.diff_limit
        changes = diff_report_changes(previous.ranked, current.ranked, limit)
        if changes:
            self._emit(reports.rank_changes(changes, limit))

    def on_battle_list(self, rooms: Mapping[str, Any]) -> None:
        """Handle a ``roomlist`` reply: announce every new battle worth watching."""
        lookup = self.current.lookup if self.current is not None else {}
        for battle in fresh_battles(self.watermark, rooms):
            result = classify(battle, self.config, lookup)
            if result.report:
                self._emit(reports.battle_started(battle, result))

    # ------------------------------------------------------------------
    # Configuration entry points
    # ------------------------------------------------------------------
    def set_format(self, value: str) -> str:
        format_id = to_id(value)
        if format_id and format_id != self.config.format_id:
            self.config.format_id = format_id
            self.clear_snapshots()
            self.watermark.reset()
        self._emit(f"**Format:** {self.config.format_id}")
        return self.config.format_id

    def set_prefix(self, value: str) -> str:
        prefix = to_id(value)
        if prefix and prefix != self.config.prefix:
            self.config.prefix = prefix
            self.clear_snapshots()
        self._emit(f"**Prefix:** {self.config.prefix}")
        return self.config.prefix

    def set_rating(self, value: Optional[int]) -> int:
        """Set the minimum rating; 0 unsets it, None only echoes the current value."""
        if value is not None:
            self.config.rating = max(0, value)
            self._emit(f"/status {self.config.rating}")
        self._emit(f"**Rating:** {self.config.rating}")
        return self.config.rating

    def set_cutoff(self, value: Optional[int]) -> Optional[int]:
        if value is not None:
            self.config.cutoff = value if value > 0 else None
        self._emit(f"**Cutoff:** {self.config.cutoff or 'none'}")
        return self.config.cutoff

    def track(self, names: Iterable[str]) -> None:
        for name in names:
            userid = to_id(name)
            if userid:
                self.config.users.add(userid)
        self.tracked()

    def untrack(self, names: Iterable[str]) -> None:
        for name in names:
            self.config.users.discard(to_id(name))
        self.tracked()

    def tracked(self) -> str:
        text = reports.tracked_users(sorted(self.config.users))
        self._emit(text)
        return text

    def show_diffs(self, limit: Optional[int] = None) -> None:
        self.config.show_diffs = True
        if limit:
            self.config.diff_limit = limit
        n = abs(self.config.diff_limit)
        if self.config.diff_limit < 0:
            self._emit(f"Showing players crossing the top **{n}**.")
        else:
            self._emit(f"Showing rank changes in the top **{n}**.")

    def hide_diffs(self) -> None:
        self.config.show_diffs = False
        self._emit("No longer showing rank changes.")

    # ------------------------------------------------------------------
    # Leaderboard display
    # ------------------------------------------------------------------
    def record_chat_line(self, *, from_self: bool = False) -> None:
        self.cooldown.record_line(from_self=from_self)

    async def request_leaderboard(self, n: int = DEFAULT_LEADERBOARD_SIZE, *, voiced: bool = False) -> bool:
        """Display the top ``n``; voiced users go through the activity cooldown.

        The gate compares against a fresh pull, so a changed top ``n`` is seen
        whether or not tracking is running. The same pull is what gets shown.
        """
        snapshot = await self.pull()
        if snapshot is None:
            self._emit(f"Unable to fetch the leaderboard for {self.config.prefix}.")
            return False
        if voiced and not self.cooldown.try_acquire(snapshot.composition(n)):
            self._emit("``.leaderboard`` is on cooldown until the room has been more active.")
            return False
        self._emit(reports.leaderboard_table(snapshot.top(n)))
        self.cooldown.mark_shown(snapshot.composition(n))
        return True

    async def show_leaderboard(self, n: int = DEFAULT_LEADERBOARD_SIZE) -> bool:
        return await self.request_leaderboard(n)

    # ------------------------------------------------------------------
    # Deadline
    # ------------------------------------------------------------------
    def set_deadline(self, when: datetime) -> None:
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        self.config.deadline = when
        delay = (when - self._clock()).total_seconds() - DEADLINE_LEAD
        self._deadline_timer.arm(delay, self._check_deadline)
        self._emit(f"**Deadline:** {self.deadline_text()}")

    def clear_deadline(self) -> None:
        self._deadline_timer.cancel()
        self.config.deadline = None

    def deadline_status(self) -> str:
        text = f"**Deadline:** {self.deadline_text()}"
        self._emit(text)
        return text

    def deadline_text(self) -> str:
        deadline = self.config.deadline
        if deadline is None:
            return "none"
        return deadline.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    @property
    def deadline_armed(self) -> bool:
        return self._deadline_timer.armed

    async def _check_deadline(self) -> None:
        deadline = self.config.deadline
        if deadline is None:
            return
        remaining = (deadline - self._clock()).total_seconds()
        if remaining > 0:
            self._deadline_timer.arm(min(remaining, DEADLINE_RECHECK), self._check_deadline)
            return
        await self._finalize()

    async def _finalize(self) -> None:
        logger.info("Deadline reached, posting final standings")
        self.stop()
        try:
            await self.show_leaderboard(self.config.cutoff or DEFAULT_LEADERBOARD_SIZE)
        finally:
            self.config.deadline = None

    def _log_error(self, exc: BaseException, context: str) -> None:
        if self._error_engine is not None:
            self._error_engine.log_exception(exc, context=context)


__all__ = [
    "DEFAULT_LEADERBOARD_SIZE",
    "LadderTracker",
    "POLL_INTERVAL",
    "TrackingConfig",
]
