"""
Ladder snapshots and rank diffs.

A snapshot is one pull of the ladder: the prefix-filtered ranking plus a
lookup table of every player returned by the pull. Two consecutive snapshots
are compared by ``compute_rank_diff`` to find players whose position in the
filtered ranking moved.
"""

from __future__ import annotations

import functools
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .identifiers import to_id

logger = logging.getLogger(__name__)


class SnapshotInvariantError(RuntimeError):
    """Raised when a built snapshot does not rank its entries 1..n."""


@functools.total_ordering
@dataclass(frozen=True)
class Rank:
    """A 1-based ladder position, or ``UNRANKED`` when off the filtered list.

    ``UNRANKED`` sorts after every ranked value.
    """

    position: Optional[int] = None

    @classmethod
    def ranked(cls, position: int) -> "Rank":
        if position < 1:
            raise ValueError(f"rank must be positive, got {position}")
        return cls(position)

    @property
    def is_ranked(self) -> bool:
        return self.position is not None

    def _key(self) -> Tuple[int, int]:
        return (0, self.position) if self.position is not None else (1, 0)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Rank):
            return NotImplemented
        return self._key() < other._key()

    def within(self, n: int) -> bool:
        return self.position is not None and self.position <= n

    def __str__(self) -> str:
        return str(self.position) if self.position is not None else "?"


UNRANKED = Rank()


@dataclass(frozen=True)
class LeaderboardEntry:
    name: str
    userid: str
    elo: int
    gxe: float
    glicko: int
    glicko_dev: int
    rank: Optional[int] = None


@dataclass(frozen=True)
class LeaderboardSnapshot:
    ranked: Tuple[LeaderboardEntry, ...]
    lookup: Mapping[str, LeaderboardEntry]
    prefix: str = ""
    pulled_at: Optional[datetime] = None
    _positions: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        for index, entry in enumerate(self.ranked):
            if entry.rank != index + 1:
                raise SnapshotInvariantError(
                    f"entry {entry.userid!r} at position {index + 1} carries rank {entry.rank}"
                )
            self._positions[entry.userid] = index + 1

    def rank_of(self, userid: str) -> Rank:
        """Position of ``userid`` in the filtered ranking."""
        position = self._positions.get(userid)
        return Rank(position) if position is not None else UNRANKED

    def top(self, n: Optional[int] = None) -> Tuple[LeaderboardEntry, ...]:
        return self.ranked if n is None else self.ranked[:n]

    def composition(self, n: int) -> Tuple[str, ...]:
        """Identifiers of the top ``n`` entries, in order."""
        return tuple(entry.userid for entry in self.ranked[:n])

    def __len__(self) -> int:
        return len(self.ranked)


def _parse_entry(raw: Mapping[str, Any]) -> Optional[LeaderboardEntry]:
    try:
        name = str(raw.get("username") or raw.get("userid") or "")
        userid = to_id(raw.get("userid") or name)
        if not userid:
            return None
        return LeaderboardEntry(
            name=name,
            userid=userid,
            elo=math.floor(float(raw["elo"])),
            gxe=float(raw.get("gxe") or 0.0),
            glicko=math.floor(float(raw.get("rpr") or 0)),
            glicko_dev=math.floor(float(raw.get("rprd") or 0)),
        )
    except (AttributeError, KeyError, TypeError, ValueError, OverflowError):
        return None


def build_snapshot(
    raw_entries: Iterable[Mapping[str, Any]],
    prefix: str = "",
    *,
    pulled_at: Optional[datetime] = None,
) -> LeaderboardSnapshot:
    """Build a snapshot from the ladder's ``toplist`` rows (already sorted)."""
    ranked: List[LeaderboardEntry] = []
    lookup: Dict[str, LeaderboardEntry] = {}
    skipped = 0
    for raw in raw_entries:
        entry = _parse_entry(raw) if isinstance(raw, Mapping) else None
        if entry is None:
            skipped += 1
            continue
        # rows arrive best-first, so a repeated id keeps its higher row
        if entry.userid in lookup:
            skipped += 1
            continue
        if entry.userid.startswith(prefix):
            entry = LeaderboardEntry(
                name=entry.name,
                userid=entry.userid,
                elo=entry.elo,
                gxe=entry.gxe,
                glicko=entry.glicko,
                glicko_dev=entry.glicko_dev,
                rank=len(ranked) + 1,
            )
            ranked.append(entry)
        lookup[entry.userid] = entry
    if skipped:
        logger.debug("Skipped %d malformed or duplicate ladder rows", skipped)
    return LeaderboardSnapshot(ranked=tuple(ranked), lookup=lookup, prefix=prefix, pulled_at=pulled_at)


@dataclass(frozen=True)
class RankChange:
    name: str
    elo: int
    old_rank: Rank
    new_rank: Rank

    @property
    def fell(self) -> bool:
        return self.old_rank < self.new_rank

    def crossed(self, n: int) -> bool:
        """True when the player moved across the top-``n`` boundary."""
        return self.old_rank.within(n) != self.new_rank.within(n)


def _positions(entries: Sequence[LeaderboardEntry]) -> Dict[str, int]:
    return {entry.userid: index + 1 for index, entry in enumerate(entries)}


def compute_rank_diff(
    previous: Sequence[LeaderboardEntry],
    current: Sequence[LeaderboardEntry],
    limit: Optional[int] = None,
) -> Dict[str, RankChange]:
    """Players whose filtered rank differs between two rankings.

    Only the first ``abs(limit)`` rows of each ranking are walked, but ranks
    are looked up in the whole of the other ranking. A player missing from
    ``current`` is reported with elo 0 since their live rating is unknown.
    The walk over ``current`` runs second and overwrites the first.
    """
    n = abs(limit) if limit is not None else None
    old_positions = _positions(previous)
    new_positions = _positions(current)
    changes: Dict[str, RankChange] = {}

    for index, entry in enumerate(previous[:n]):
        old_rank = Rank(index + 1)
        position = new_positions.get(entry.userid)
        if position is None:
            new_rank, elo = UNRANKED, 0
        else:
            new_rank, elo = Rank(position), current[position - 1].elo
        if old_rank != new_rank:
            changes[entry.userid] = RankChange(entry.name, elo, old_rank, new_rank)

    for index, entry in enumerate(current[:n]):
        new_rank = Rank(index + 1)
        position = old_positions.get(entry.userid)
        old_rank = Rank(position) if position is not None else UNRANKED
        if old_rank != new_rank:
            changes[entry.userid] = RankChange(entry.name, entry.elo, old_rank, new_rank)

    return changes


def sort_changes(changes: Iterable[RankChange]) -> List[RankChange]:
    return sorted(changes, key=lambda change: change.new_rank)


def boundary_crossings(changes: Iterable[RankChange], n: int) -> List[RankChange]:
    return [change for change in changes if change.crossed(n)]


def diff_report_changes(
    previous: Sequence[LeaderboardEntry],
    current: Sequence[LeaderboardEntry],
    limit: Optional[int] = None,
) -> List[RankChange]:
    """Sorted changes ready for display; a negative limit keeps only cutoff crossings."""
    changes: Iterable[RankChange] = compute_rank_diff(previous, current, limit).values()
    if limit is not None and limit < 0:
        changes = boundary_crossings(changes, abs(limit))
    return sort_changes(changes)


__all__ = [
    "LeaderboardEntry",
    "LeaderboardSnapshot",
    "Rank",
    "RankChange",
    "SnapshotInvariantError",
    "UNRANKED",
    "boundary_crossings",
    "build_snapshot",
    "compute_rank_diff",
    "diff_report_changes",
    "sort_changes",
]
