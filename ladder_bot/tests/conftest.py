from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys
from typing import Any, Dict, List, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ladder_bot.core.tracker import LadderTracker, TrackingConfig  # noqa: E402


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeLadder:
    """Serves queued ladder pulls; ``None`` in the queue simulates a failed pull."""

    def __init__(self) -> None:
        self.pulls: List[Optional[List[Dict[str, Any]]]] = []
        self.requested: List[str] = []

    def queue(self, *pulls: Optional[List[Dict[str, Any]]]) -> None:
        self.pulls.extend(pulls)

    async def fetch(self, format_id: str) -> Optional[List[Dict[str, Any]]]:
        self.requested.append(format_id)
        if not self.pulls:
            return None
        return self.pulls.pop(0)


class Transport:
    def __init__(self) -> None:
        self.sent: List[str] = []
        self.battle_requests: List[Tuple[str, int]] = []

    def send(self, message: str) -> None:
        self.sent.append(message)

    def request_battles(self, format_id: str, rating: int) -> None:
        self.battle_requests.append((format_id, rating))


def row(name: str, elo: float, gxe: float = 75.0, rpr: float = 1700.0, rprd: float = 30.0) -> Dict[str, Any]:
    return {
        "userid": "".join(ch for ch in name.lower() if ch.isalnum()),
        "username": name,
        "elo": elo,
        "gxe": gxe,
        "rpr": rpr,
        "rprd": rprd,
    }


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def ladder() -> FakeLadder:
    return FakeLadder()


@pytest.fixture()
def transport() -> Transport:
    return Transport()


@pytest.fixture()
def tracking_config() -> TrackingConfig:
    return TrackingConfig(format_id="gen1ou", prefix="lt", rating=1500)


@pytest.fixture()
def tracker(tracking_config, ladder, transport, clock) -> LadderTracker:
    return LadderTracker(
        tracking_config,
        request_battles=transport.request_battles,
        fetch_ladder=ladder.fetch,
        emit=transport.send,
        clock=clock,
        poll_interval=0.01,
    )


__all__ = ["FakeClock", "FakeLadder", "Transport", "row"]
