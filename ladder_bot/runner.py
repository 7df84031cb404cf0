"""Async bootstrapper for LadderBot."""

from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp
from dotenv import load_dotenv

from ladder_bot.config import LadderBotConfig
from ladder_bot.core.commands import CommandDispatcher
from ladder_bot.core.error_engine import ErrorEngine
from ladder_bot.core.ladder_client import LadderClient
from ladder_bot.core.logging_utils import get_logger
from ladder_bot.core.showdown_client import ShowdownClient
from ladder_bot.core.tracker import LadderTracker


logger = get_logger("runner")


class LadderBotRunner:
    """Full lifecycle manager: one connection, one tracked room."""

    def __init__(self, config: Optional[LadderBotConfig] = None, *, error_engine: Optional[ErrorEngine] = None) -> None:
        if config is None:
            load_dotenv()
            config = LadderBotConfig.from_env()
        self.config = config
        self.error_engine = error_engine or ErrorEngine()
        self.session: Optional[aiohttp.ClientSession] = None
        self.client: Optional[ShowdownClient] = None
        self.tracker: Optional[LadderTracker] = None
        self.dispatcher: Optional[CommandDispatcher] = None

    def build(self, session: aiohttp.ClientSession) -> None:
        """Wire transport, ladder client, tracker and dispatcher together."""
        self.session = session
        client = ShowdownClient(self.config, session=session, error_engine=self.error_engine)
        ladder = LadderClient(session=session)
        tracker = LadderTracker(
            self.config.tracking(),
            request_battles=client.request_battles,
            fetch_ladder=ladder.fetch,
            emit=client.send,
            poll_interval=self.config.poll_interval,
            error_engine=self.error_engine,
        )
        dispatcher = CommandDispatcher(
            tracker,
            nickname=self.config.nickname,
            room=self.config.room,
            owner_ids=frozenset(self.config.owner_ids),
            error_engine=self.error_engine,
        )
        client.on_battle_list = tracker.on_battle_list
        client.on_chat = dispatcher.handle

        self.client, self.tracker, self.dispatcher = client, tracker, dispatcher

    async def start(self) -> None:
        async with aiohttp.ClientSession() as session:
            self.build(session)
            assert self.client is not None
            try:
                await self.client.run()
            finally:
                await self.close()

    async def close(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.cancel_pending()
        if self.tracker is not None:
            self.tracker.stop()
            self.tracker.clear_deadline()
        if self.client is not None:
            await self.client.close()


def run_ladder_bot(
    config: Optional[LadderBotConfig] = None,
    error_engine: Optional[ErrorEngine] = None,
) -> None:
    runner = LadderBotRunner(config, error_engine=error_engine)
    try:
        asyncio.run(runner.start())
    except KeyboardInterrupt:
        logger.info("LadderBot interrupted by user")


__all__ = ["LadderBotRunner", "run_ladder_bot"]
