"""Decide which newly started battles are worth announcing."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterator, List, Mapping, Optional, Tuple

from .identifiers import to_id
from .leaderboard import LeaderboardEntry

if TYPE_CHECKING:
    from .tracker import TrackingConfig

logger = logging.getLogger(__name__)

# Battles between two prefix players ranked within cutoff * slack are reported
# even when they miss the rating threshold.
CUTOFF_SLACK = 1.5

_ROOM_NUMBER = re.compile(r"^(.*?)(\d+)$")


@dataclass(frozen=True)
class Battle:
    room_id: str
    p1: str
    p2: str
    min_elo: int

    @classmethod
    def from_payload(cls, room_id: str, payload: Any) -> Optional["Battle"]:
        """Build a battle from one ``roomlist`` entry, or None when malformed."""
        if not isinstance(payload, Mapping):
            return None
        try:
            p1, p2 = payload["p1"], payload["p2"]
            if not isinstance(p1, str) or not isinstance(p2, str):
                return None
            min_elo = payload.get("minElo") or 0
            return cls(room_id=str(room_id), p1=p1, p2=p2, min_elo=int(min_elo))
        except (KeyError, TypeError, ValueError):
            return None


@dataclass(frozen=True)
class Classification:
    report: bool
    rating: int
    average: bool

    @property
    def note(self) -> str:
        label = "average rating" if self.average else "minimum rating"
        return f"{label}: {self.rating}"


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def battle_rating(battle: Battle, lookup: Mapping[str, LeaderboardEntry]) -> Tuple[int, bool]:
    """Return ``(rating, is_average)`` for a battle.

    Falls back to the server's minimum rating when neither player is on the
    ladder, or when the only known player is rated below that floor.
    """
    e1 = lookup.get(to_id(battle.p1))
    e2 = lookup.get(to_id(battle.p2))
    if e1 and e2:
        return _round_half_up((e1.elo + e2.elo) / 2), True
    known = e1 or e2
    if known and known.elo > battle.min_elo:
        return _round_half_up((known.elo + battle.min_elo) / 2), True
    return battle.min_elo, False


def _near_cutoff(entry: Optional[LeaderboardEntry], cutoff: int) -> bool:
    return entry is not None and entry.rank is not None and entry.rank <= cutoff * CUTOFF_SLACK


def classify(
    battle: Battle,
    config: "TrackingConfig",
    lookup: Mapping[str, LeaderboardEntry],
) -> Classification:
    p1, p2 = to_id(battle.p1), to_id(battle.p2)
    rating, average = battle_rating(battle, lookup)

    if config.users and (p1 in config.users or p2 in config.users):
        return Classification(True, rating, average)

    prefix = config.prefix
    if (p1.startswith(prefix) or p2.startswith(prefix)) and (not config.rating or rating >= config.rating):
        return Classification(True, rating, average)

    if config.cutoff and p1.startswith(prefix) and p2.startswith(prefix):
        if _near_cutoff(lookup.get(p1), config.cutoff) and _near_cutoff(lookup.get(p2), config.cutoff):
            return Classification(True, rating, average)

    return Classification(False, rating, average)


def room_key(room_id: str) -> Tuple[str, int, str]:
    """Sort key for battle rooms: numeric on the trailing battle number."""
    match = _ROOM_NUMBER.match(room_id)
    if not match:
        return (room_id, -1, room_id)
    return (match.group(1), int(match.group(2)), room_id)


def room_after(room_id: str, mark: str) -> bool:
    a, b = _ROOM_NUMBER.match(room_id), _ROOM_NUMBER.match(mark)
    if a and b:
        return int(a.group(2)) > int(b.group(2))
    return room_id > mark


class RoomWatermark:
    """Remembers the newest battle room seen so a room is classified once."""

    def __init__(self) -> None:
        self.mark: Optional[str] = None

    def reset(self) -> None:
        self.mark = None

    def fresh(self, rooms: Mapping[str, Any]) -> Iterator[Tuple[str, Any]]:
        skip = self.mark
        newest = skip
        for room_id in sorted(rooms, key=room_key):
            if newest is None or room_after(room_id, newest):
                newest = room_id
            if skip is not None and not room_after(room_id, skip):
                continue
            yield room_id, rooms[room_id]
        self.mark = newest


def fresh_battles(watermark: RoomWatermark, rooms: Mapping[str, Any]) -> List[Battle]:
    battles: List[Battle] = []
    for room_id, payload in watermark.fresh(rooms):
        battle = Battle.from_payload(room_id, payload)
        if battle is None:
            logger.debug("Skipping malformed room entry %s", room_id)
            continue
        battles.append(battle)
    return battles


__all__ = [
    "Battle",
    "CUTOFF_SLACK",
    "Classification",
    "RoomWatermark",
    "battle_rating",
    "classify",
    "fresh_battles",
    "room_after",
    "room_key",
]
