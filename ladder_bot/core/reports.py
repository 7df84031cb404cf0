"""Chat-ready text and HTML for everything the bot announces."""

from __future__ import annotations

import hashlib
from typing import Iterable, List, NamedTuple, Optional, Sequence
from urllib.parse import quote

from .classifier import Battle, Classification
from .identifiers import to_id
from .leaderboard import LeaderboardEntry, RankChange

FELL = "▼"
ROSE = "▲"


class HSL(NamedTuple):
    h: int
    s: int
    l: float


def name_color(name: str) -> HSL:
    """Username colour as the Showdown client derives it from the user id."""
    digest = hashlib.md5(to_id(name).encode("utf-8")).hexdigest()
    h = int(digest[4:8], 16) % 360
    s = int(digest[0:4], 16) % 50 + 40
    l = float(int(digest[8:12], 16) % 20 + 30)

    c = (100 - abs(2 * l - 100)) * s / 100 / 100
    x = c * (1 - abs((h / 60) % 2 - 1))
    m = l / 100 - c / 2

    sector = h // 60
    if sector == 1:
        r1, g1, b1 = x, c, 0.0
    elif sector == 2:
        r1, g1, b1 = 0.0, c, x
    elif sector == 3:
        r1, g1, b1 = 0.0, x, c
    elif sector == 4:
        r1, g1, b1 = x, 0.0, c
    elif sector == 5:
        r1, g1, b1 = c, 0.0, x
    else:
        r1, g1, b1 = c, x, 0.0
    r, g, b = r1 + m, g1 + m, b1 + m
    lum = r ** 3 * 0.2126 + g ** 3 * 0.7152 + b ** 3 * 0.0722

    hl_mod = (lum - 0.2) * -150
    if hl_mod > 18:
        hl_mod = (hl_mod - 18) * 2.5
    elif hl_mod < 0:
        hl_mod = hl_mod / 3
    else:
        hl_mod = 0
    h_dist = min(abs(180 - h), abs(240 - h))
    if h_dist < 15:
        hl_mod += (15 - h_dist) / 3

    return HSL(h, s, l + hl_mod)


def _css(color: HSL) -> str:
    return f"hsl({color.h},{color.s}%,{color.l:g}%)"


def style_player(name: str) -> str:
    return f'<strong style="color: {_css(name_color(name))}">{name}</strong>'


def battle_started(battle: Battle, result: Classification) -> str:
    message = f"Battle started between {style_player(battle.p1)} and {style_player(battle.p2)}"
    return f'/addhtmlbox <a href="/{battle.room_id}" class="ilink">{message}. ({result.note})</a>'


def rank_changes(changes: Sequence[RankChange], limit: Optional[int] = None) -> str:
    """One line per diff: ``▲**3.** name (elo)``; players past the limit are underlined."""
    n = abs(limit) if limit is not None else None
    parts: List[str] = []
    for change in changes:
        symbol = FELL if change.fell else ROSE
        rating = change.elo or "?"
        label = f"{change.name} ({rating})"
        if n is not None and not change.new_rank.within(n):
            label = f"__{label}__"
        parts.append(f"{symbol}**{change.new_rank}.** {label}")
    return " ".join(parts)


def leaderboard_table(entries: Iterable[LeaderboardEntry]) -> str:
    buf = ['<center><div class="ladder" style="max-height: 250px; overflow-y: auto"><table>']
    buf.append(
        '<tr><th></th><th>Name</th><th><abbr title="Elo rating">Elo</abbr></th>'
        "<th><abbr title=\"user's percentage chance of winning a random battle (aka GLIXARE)\">GXE</abbr></th>"
        '<th><abbr title="Glicko-1 rating system: rating&plusmn;deviation (provisional if deviation>100)">'
        "Glicko-1</abbr></th></tr>"
    )
    for index, entry in enumerate(entries, start=1):
        link = f'https://www.smogon.com/forums/search/1/?q="{quote(entry.name, safe="")}"'
        buf.append(
            f"<tr><td><a href='{link}' style=\"text-decoration: none; color: black;\">{index}</a></td>"
            f"<td><strong class='username' style=\"color: {_css(name_color(entry.name))}\">{entry.name}</strong></td>"
            f"<td><strong>{entry.elo}</strong></td><td>{entry.gxe:.1f}%</td>"
            f"<td>{entry.glicko} &plusmn; {entry.glicko_dev}</td></tr>"
        )
    buf.append("</table></div></center>")
    return "/addhtmlbox " + "".join(buf)


def tracked_users(users: Iterable[str]) -> str:
    users = list(users)
    if not users:
        return "Not currently tracking any users."
    return f"Currently tracking **{len(users)}** users: {', '.join(users)}"


__all__ = [
    "FELL",
    "HSL",
    "ROSE",
    "battle_started",
    "leaderboard_table",
    "name_color",
    "rank_changes",
    "style_player",
    "tracked_users",
]
