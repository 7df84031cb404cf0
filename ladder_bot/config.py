"""Environment-backed configuration helpers for LadderBot."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Set

from ladder_bot.core.identifiers import to_id
from ladder_bot.core.tracker import POLL_INTERVAL, TrackingConfig


def _split_ids(value: str) -> Set[str]:
    ids: Set[str] = set()
    for chunk in (value or "").replace(";", ",").split(","):
        userid = to_id(chunk)
        if userid:
            ids.add(userid)
    return ids


def _int(value: Optional[str], default: int) -> int:
    try:
        return int((value or "").strip())
    except ValueError:
        return default


def _float(value: Optional[str], default: float) -> float:
    try:
        return float((value or "").strip())
    except ValueError:
        return default


@dataclass(slots=True)
class LadderBotConfig:
    nickname: str
    room: str
    password: str = ""
    server: str = "sim3.psim.us"
    port: int = 8000
    server_id: str = "showdown"
    avatar: str = "oak-gen1rb"
    format_id: str = ""
    prefix: str = ""
    rating: int = 0
    cutoff: Optional[int] = None
    owner_ids: Set[str] = field(default_factory=set)
    poll_interval: float = POLL_INTERVAL
    send_delay: float = 0.1
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "LadderBotConfig":
        nickname = os.getenv("SHOWDOWN_NICKNAME", "").strip()
        if not nickname:
            raise RuntimeError("SHOWDOWN_NICKNAME is required to run the bot")
        room = to_id(os.getenv("SHOWDOWN_ROOM", ""))
        if not room:
            raise RuntimeError("SHOWDOWN_ROOM is required to run the bot")

        cutoff = _int(os.getenv("LADDER_CUTOFF"), 0)

        return cls(
            nickname=nickname,
            room=room,
            password=os.getenv("SHOWDOWN_PASSWORD", ""),
            server=os.getenv("SHOWDOWN_SERVER", "sim3.psim.us").strip() or "sim3.psim.us",
            port=_int(os.getenv("SHOWDOWN_PORT"), 8000),
            server_id=os.getenv("SHOWDOWN_SERVER_ID", "showdown").strip() or "showdown",
            avatar=os.getenv("SHOWDOWN_AVATAR", "oak-gen1rb").strip(),
            format_id=to_id(os.getenv("LADDER_FORMAT", "")),
            prefix=to_id(os.getenv("LADDER_PREFIX", "")),
            rating=_int(os.getenv("LADDER_RATING"), 0),
            cutoff=cutoff if cutoff > 0 else None,
            owner_ids=_split_ids(os.getenv("OWNER_IDS", "")),
            poll_interval=max(0.1, _float(os.getenv("POLL_INTERVAL"), POLL_INTERVAL)),
            send_delay=max(0.0, _float(os.getenv("SEND_DELAY"), 0.1)),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )

    def tracking(self) -> TrackingConfig:
        """Initial tracking state for the room."""
        return TrackingConfig(
            format_id=self.format_id,
            prefix=self.prefix,
            rating=self.rating,
            cutoff=self.cutoff,
        )


__all__ = ["LadderBotConfig"]
