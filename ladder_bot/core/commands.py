"""Chat command parsing and routing onto the tracker."""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Set

from .identifiers import to_id
from .tracker import DEFAULT_LEADERBOARD_SIZE, LadderTracker

logger = logging.getLogger(__name__)

COMMAND_CHAR = "."
STAFF_RANKS = frozenset("~&#@%")
VOICE_RANK = "+"
OFF_WORDS = frozenset({"off", "none", "clear", "reset"})

_RELATIVE = re.compile(r"^(?:in\s+)?\+?(\d+)\s*(m|min|mins|minutes?|h|hrs?|hours?)$")


@dataclass(frozen=True)
class Command:
    name: str
    argument: str


def parse_command(message: str) -> Optional[Command]:
    if not message.startswith(COMMAND_CHAR):
        return None
    parts = message[len(COMMAND_CHAR):].split(" ")
    name = to_id(parts[0])
    if not name:
        return None
    return Command(name, " ".join(parts[1:]).lower().strip())


def parse_int(argument: str) -> Optional[int]:
    try:
        return int(argument)
    except (TypeError, ValueError):
        return None


def parse_deadline(argument: str, now: datetime) -> Optional[datetime]:
    """Absolute ISO 8601 time (UTC unless an offset is given) or ``in 90m`` / ``+2h``.

    Returns None for anything unparsable or not in the future.
    """
    text = argument.strip()
    match = _RELATIVE.match(text)
    if match:
        amount, unit = int(match.group(1)), match.group(2)
        delta = timedelta(hours=amount) if unit.startswith("h") else timedelta(minutes=amount)
        when = now + delta
    else:
        iso = text.upper()
        if iso.endswith(" UTC"):
            iso = iso[:-4]
        if iso.endswith("Z"):
            iso = iso[:-1] + "+00:00"
        try:
            when = datetime.fromisoformat(iso)
        except ValueError:
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
    if when <= now:
        return None
    return when


def _split_names(argument: str) -> Iterable[str]:
    return [name for name in argument.split(",") if name.strip()]


class CommandDispatcher:
    """Routes ``.command argument`` lines from staff and voiced users."""

    def __init__(
        self,
        tracker: LadderTracker,
        *,
        nickname: str = "",
        room: str = "",
        owner_ids: FrozenSet[str] = frozenset(),
        clock: Optional[Callable[[], datetime]] = None,
        error_engine: Optional[Any] = None,
    ) -> None:
        self.tracker = tracker
        self.error_engine = error_engine
        self._pending: Set[asyncio.Task] = set()
        self.self_id = to_id(nickname)
        self.room = to_id(room)
        self.owner_ids = frozenset(to_id(owner) for owner in owner_ids)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._handlers: Dict[str, Callable[[str], Any]] = {}
        self._register()

    def _register(self) -> None:
        tracker = self.tracker
        aliases = {
            ("format",): lambda arg: tracker.set_format(arg),
            ("prefix",): lambda arg: tracker.set_prefix(arg),
            ("elo", "rating"): lambda arg: tracker.set_rating(parse_int(arg)),
            ("cutoff",): self._cutoff,
            ("add", "track", "watch", "follow"): lambda arg: tracker.track(_split_names(arg)),
            ("remove", "untrack", "unwatch", "unfollow"): lambda arg: tracker.untrack(_split_names(arg)),
            (
                "list",
                "tracked",
                "tracking",
                "watched",
                "watching",
                "followed",
                "following",
            ): lambda arg: tracker.tracked(),
            ("leaderboard",): lambda arg: tracker.show_leaderboard(parse_int(arg) or DEFAULT_LEADERBOARD_SIZE),
            ("showdiffs", "startdiffs", "unhidediffs"): lambda arg: tracker.show_diffs(parse_int(arg)),
            ("unshowdiffs", "stopdiffs", "hidediffs"): lambda arg: tracker.hide_diffs(),
            ("deadline",): self._deadline,
            ("start",): lambda arg: tracker.start(),
            ("stop",): lambda arg: tracker.stop(),
            ("leave",): lambda arg: tracker.leave(),
        }
        for names, handler in aliases.items():
            for name in names:
                self._handlers[name] = handler

    @property
    def commands(self) -> FrozenSet[str]:
        return frozenset(self._handlers)

    def _cutoff(self, argument: str) -> Optional[int]:
        value = 0 if argument in OFF_WORDS else parse_int(argument)
        return self.tracker.set_cutoff(value)

    def _deadline(self, argument: str) -> None:
        if not argument:
            self.tracker.deadline_status()
            return
        if argument in OFF_WORDS:
            self.tracker.clear_deadline()
            self.tracker.deadline_status()
            return
        when = parse_deadline(argument, self._clock())
        if when is None:
            logger.info("Ignoring unparsable deadline %r", argument)
            self.tracker.deadline_status()
            return
        self.tracker.set_deadline(when)

    async def handle(self, room: str, user: str, message: str) -> None:
        """Entry point for every chat line seen in the tracked room."""
        if self.room and to_id(room) not in ("", self.room):
            return
        userid = to_id(user)
        from_self = bool(self.self_id) and userid == self.self_id
        self.tracker.record_chat_line(from_self=from_self)
        if from_self:
            return

        command = parse_command(message)
        if command is None:
            return
        rank = user[:1]
        authed = rank in STAFF_RANKS or userid in self.owner_ids
        voiced = rank == VOICE_RANK
        if not (authed or voiced):
            return
        logger.info("[%s] %s: %s", datetime.now().strftime("%H:%M:%S"), user, message.strip())

        if not authed:
            if command.name == "leaderboard":
                n = parse_int(command.argument) or DEFAULT_LEADERBOARD_SIZE
                self._spawn(command.name, self.tracker.request_leaderboard(n, voiced=True))
            return

        handler = self._handlers.get(command.name)
        if handler is None:
            return
        result = handler(command.argument)
        if inspect.isawaitable(result):
            # ladder pulls run beside the reader instead of stalling it
            self._spawn(command.name, result)

    def _spawn(self, name: str, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        task.add_done_callback(functools.partial(self._finished, name))

    def _finished(self, name: str, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("Command .%s failed: %s", name, exc, exc_info=exc)
        if self.error_engine is not None:
            self.error_engine.log_exception(exc, context=f"command:{name}")

    async def wait_pending(self) -> None:
        """Wait until every command still running in the background has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def cancel_pending(self) -> None:
        for task in list(self._pending):
            task.cancel()


__all__ = [
    "Command",
    "CommandDispatcher",
    "parse_command",
    "parse_deadline",
    "parse_int",
]
