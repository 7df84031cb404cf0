import asyncio
import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from conftest import row
from ladder_bot.core.commands import Command, CommandDispatcher, parse_command, parse_deadline, parse_int
from ladder_bot.core.error_engine import ErrorEngine
from ladder_bot.core.showdown_client import ShowdownClient
from ladder_bot.core.tracker import LadderTracker


@pytest.fixture()
def dispatcher(tracker, clock):
    return CommandDispatcher(
        tracker,
        nickname="Ladder Bot",
        room="Lobby",
        owner_ids=frozenset({"Owner One"}),
        clock=clock,
    )


def test_parse_command():
    assert parse_command(".Format Gen 2 OU") == Command("format", "gen 2 ou")
    assert parse_command(".leaderboard  5") == Command("leaderboard", "5")
    assert parse_command("hello there") is None
    assert parse_command(".") is None


def test_parse_int():
    assert parse_int("12") == 12
    assert parse_int("twelve") is None
    assert parse_int("") is None


class TestParseDeadline:
    now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

    def test_relative_forms(self):
        assert parse_deadline("in 90m", self.now) == self.now + timedelta(minutes=90)
        assert parse_deadline("+2h", self.now) == self.now + timedelta(hours=2)

    def test_absolute_defaults_to_utc(self):
        expected = datetime(2026, 10, 19, 0, 0, tzinfo=timezone.utc)
        assert parse_deadline("2026-10-19T00:00:00Z", self.now) == expected
        assert parse_deadline("2026-10-19 00:00", self.now) == expected
        assert parse_deadline("2026-10-19 00:00 utc", self.now) == expected

    def test_offsets_are_honoured(self):
        when = parse_deadline("2026-10-19T02:00:00+02:00", self.now)
        assert when == datetime(2026, 10, 19, 0, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("text", ["garbage", "2026-10-18T11:00:00Z", "in 0m", ""])
    def test_rejects_unparsable_or_past(self, text):
        assert parse_deadline(text, self.now) is None


def test_command_table_has_aliases(dispatcher):
    for name in ("elo", "rating", "watch", "unfollow", "following", "startdiffs", "hidediffs", "deadline"):
        assert name in dispatcher.commands


@pytest.mark.asyncio
async def test_staff_can_configure(dispatcher, tracker):
    await dispatcher.handle("lobby", "@Mod", ".format Gen 2 OU")
    await dispatcher.handle("lobby", "%Driver", ".add Alice, Bob")
    await dispatcher.handle("lobby", "#Owner", ".elo 1600")
    assert tracker.config.format_id == "gen2ou"
    assert tracker.config.users == {"alice", "bob"}
    assert tracker.config.rating == 1600


@pytest.mark.asyncio
async def test_owner_without_rank_is_authorised(dispatcher, tracker):
    await dispatcher.handle("lobby", " Owner One", ".prefix xy")
    assert tracker.config.prefix == "xy"


@pytest.mark.asyncio
async def test_regular_users_are_ignored(dispatcher, tracker, transport):
    await dispatcher.handle("lobby", " Random", ".format gen3ou")
    assert tracker.config.format_id == "gen1ou"
    assert transport.sent == []


@pytest.mark.asyncio
async def test_other_rooms_are_ignored(dispatcher, tracker, transport):
    await dispatcher.handle("otherroom", "@Mod", ".format gen3ou")
    assert tracker.config.format_id == "gen1ou"
    assert tracker.cooldown.lines_total == 0


@pytest.mark.asyncio
async def test_voiced_users_only_get_leaderboard(dispatcher, tracker, ladder, transport):
    ladder.queue([row("lta", 1800), row("ltb", 1700)], [row("lta", 1800), row("ltb", 1700)])
    await dispatcher.handle("lobby", "+Voice", ".format gen3ou")
    assert tracker.config.format_id == "gen1ou"

    await dispatcher.handle("lobby", "+Voice", ".leaderboard 2")
    await dispatcher.wait_pending()
    assert transport.sent[-1].startswith("/addhtmlbox <center>")

    await dispatcher.handle("lobby", "+Voice", ".leaderboard 2")
    await dispatcher.wait_pending()
    assert "cooldown" in transport.sent[-1]


@pytest.mark.asyncio
async def test_own_lines_count_as_self(dispatcher, tracker):
    await dispatcher.handle("lobby", "*Ladder Bot", ".stop")
    await dispatcher.handle("lobby", " someone", "hi")
    assert tracker.cooldown.lines_total == 2
    assert tracker.cooldown.lines_from_others == 1


@pytest.mark.asyncio
async def test_cutoff_can_be_switched_off(dispatcher, tracker, transport):
    await dispatcher.handle("lobby", "@Mod", ".cutoff 50")
    assert tracker.config.cutoff == 50
    await dispatcher.handle("lobby", "@Mod", ".cutoff off")
    assert tracker.config.cutoff is None
    assert transport.sent[-1] == "**Cutoff:** none"


@pytest.mark.asyncio
async def test_staff_leaderboard_bypasses_cooldown(dispatcher, tracker, ladder, transport):
    ladder.queue([row("lta", 1800)], [row("lta", 1800)])
    await dispatcher.handle("lobby", "@Mod", ".leaderboard")
    await dispatcher.handle("lobby", "@Mod", ".leaderboard")
    await dispatcher.wait_pending()
    tables = [m for m in transport.sent if m.startswith("/addhtmlbox")]
    assert len(tables) == 2


@pytest.mark.asyncio
async def test_deadline_commands(dispatcher, tracker, clock, transport):
    await dispatcher.handle("lobby", "@Mod", ".deadline in 30m")
    assert tracker.config.deadline == clock.now + timedelta(minutes=30)
    assert tracker.deadline_armed
    assert transport.sent[-1] == "**Deadline:** 2026-10-18 12:30:00 UTC"

    await dispatcher.handle("lobby", "@Mod", ".deadline off")
    assert tracker.config.deadline is None
    assert not tracker.deadline_armed
    assert transport.sent[-1] == "**Deadline:** none"


@pytest.mark.asyncio
async def test_unparsable_deadline_reports_current_state(dispatcher, tracker, transport):
    await dispatcher.handle("lobby", "@Mod", ".deadline next tuesday")
    assert tracker.config.deadline is None
    assert transport.sent[-1] == "**Deadline:** none"


@pytest.mark.asyncio
async def test_start_and_stop(dispatcher, tracker, transport):
    await dispatcher.handle("lobby", "@Mod", ".start")
    assert tracker.running
    await dispatcher.handle("lobby", "@Mod", ".stop")
    assert not tracker.running
    assert transport.sent == ["/status 1500", "/status (STOPPED) 1500"]


@pytest.mark.asyncio
async def test_rating_zero_unsets_minimum(dispatcher, tracker, transport):
    await dispatcher.handle("lobby", "@Mod", ".rating 0")
    assert tracker.config.rating == 0
    assert transport.sent[-2:] == ["/status 0", "**Rating:** 0"]
    await dispatcher.handle("lobby", "@Mod", ".rating")
    assert tracker.config.rating == 0


class HeldLadder:
    """Ladder whose fetch stays open until released."""

    def __init__(self, rows):
        self.rows = rows
        self.release = asyncio.Event()

    async def fetch(self, format_id):
        await self.release.wait()
        return self.rows


@pytest.mark.asyncio
async def test_leaderboard_pull_does_not_stall_other_messages(tracking_config, transport, clock):
    ladder = HeldLadder([row("lta", 1800)])
    tracker = LadderTracker(
        tracking_config,
        request_battles=transport.request_battles,
        fetch_ladder=ladder.fetch,
        emit=transport.send,
        clock=clock,
    )
    dispatcher = CommandDispatcher(tracker, nickname="Ladder Bot", room="lobby", clock=clock)
    client = ShowdownClient(SimpleNamespace(room="lobby", send_delay=0.0))
    client.on_chat = dispatcher.handle
    client.on_battle_list = tracker.on_battle_list

    rooms = json.dumps({"rooms": {"battle-gen1ou-7": {"p1": "ltfoo", "p2": "bar", "minElo": 1600}}})
    await client.handle_frame(f">lobby\n|c|@Mod|.leaderboard\n|queryresponse|roomlist|{rooms}")
    await dispatcher.handle("lobby", " someone", "still talking")

    assert any('href="/battle-gen1ou-7"' in m for m in transport.sent)
    assert tracker.cooldown.lines_total == 2
    assert not any("<table>" in m for m in transport.sent)

    ladder.release.set()
    await dispatcher.wait_pending()
    assert transport.sent[-1].startswith("/addhtmlbox <center>")


@pytest.mark.asyncio
async def test_failing_background_command_is_reported(tracker, clock, monkeypatch):
    engine = ErrorEngine(log_file=None)
    dispatcher = CommandDispatcher(tracker, room="lobby", clock=clock, error_engine=engine)

    async def broken(n=10):
        raise RuntimeError("ladder exploded")

    monkeypatch.setattr(tracker, "show_leaderboard", broken)
    await dispatcher.handle("lobby", "@Mod", ".leaderboard")
    await dispatcher.wait_pending()
    assert engine.recent()[0]["context"] == "command:leaderboard"
