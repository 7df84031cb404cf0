"""
Websocket transport for a Pokemon Showdown server.

Handles the login handshake, splits server frames into messages, routes room
list replies and chat lines to the bot, and drains an outbound queue with a
fixed delay between sends to stay under the server's rate limit.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Mapping, Optional, Tuple, Union

import aiohttp

if TYPE_CHECKING:
    from ladder_bot.config import LadderBotConfig

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 60.0
LOGIN_URL = "https://play.pokemonshowdown.com/~~{server_id}/action.php"
CHAT_KINDS = frozenset({"chat", "c", "c:"})

ChatHandler = Callable[[str, str, str], Union[None, Awaitable[None]]]
RoomListHandler = Callable[[Mapping[str, Any]], None]


@dataclass(frozen=True)
class ServerMessage:
    room: str
    kind: str
    args: Tuple[str, ...]


def parse_frame(data: str) -> List[ServerMessage]:
    """Split one websocket frame into messages.

    A frame may start with ``>roomid``; every following ``|kind|arg|...``
    line belongs to that room. Plain text lines are dropped.
    """
    lines = data.split("\n")
    room = ""
    if lines and lines[0].startswith(">"):
        room = lines[0][1:].strip()
        lines = lines[1:]
    messages: List[ServerMessage] = []
    for line in lines:
        if not line.startswith("|"):
            continue
        kind, *args = line[1:].split("|")
        messages.append(ServerMessage(room, kind, tuple(args)))
    return messages


def chat_parts(message: ServerMessage) -> Optional[Tuple[str, str]]:
    """Return ``(user, text)`` for a chat message; text may itself contain ``|``."""
    args = message.args[1:] if message.kind == "c:" else message.args
    if len(args) < 2:
        return None
    return args[0], "|".join(args[1:])


def parse_assertion(body: str) -> Optional[str]:
    """Pull the login assertion out of an ``action.php`` reply (prefixed with ``]``)."""
    if body.startswith("]"):
        body = body[1:]
    try:
        result = json.loads(body)
    except json.JSONDecodeError:
        return None
    if not isinstance(result, dict):
        return None
    assertion = result.get("assertion")
    if not isinstance(assertion, str) or not assertion or assertion.startswith(";;"):
        return None
    return assertion


class ShowdownClient:
    """Long-lived connection; ``send`` is fire-and-forget and safe to call any time."""

    def __init__(
        self,
        config: "LadderBotConfig",
        *,
        session: Optional[aiohttp.ClientSession] = None,
        login_retries: int = 3,
        initial_backoff_s: float = 1.0,
        error_engine: Optional[Any] = None,
    ) -> None:
        self.config = config
        self.error_engine = error_engine
        self.on_chat: Optional[ChatHandler] = None
        self.on_battle_list: Optional[RoomListHandler] = None
        self._session = session
        self._owns_session = session is None
        self._queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._closing = False
        self._login_task: Optional[asyncio.Task] = None
        self.login_retries = max(0, int(login_retries))
        self.initial_backoff_s = max(0.05, float(initial_backoff_s))

    @property
    def url(self) -> str:
        return f"ws://{self.config.server}:{self.config.port}/showdown/websocket"

    # ------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------
    def send(self, message: str, *, room: Optional[str] = None) -> None:
        target = self.config.room if room is None else room
        self._queue.put_nowait(f"{target}|{message}".replace("\n", ""))

    def request_battles(self, format_id: str, rating: int = 0) -> None:
        suffix = f", {rating}" if rating else ""
        self.send(f"/cmd roomlist {format_id}{suffix}")

    async def _sender(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            frame = await self._queue.get()
            try:
                await ws.send_str(frame)
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
                logger.warning("Dropping outbound message after send failure: %s", exc)
                return
            await asyncio.sleep(self.config.send_delay)

    # ------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------
    async def run(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        while not self._closing:
            try:
                await self._connect_once()
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
                logger.error("Error occurred (%s), will attempt to reconnect in a minute", exc)
            else:
                if self._closing:
                    break
                logger.error("Connection closed, will attempt to reconnect in a minute")
            await asyncio.sleep(RECONNECT_DELAY)

    async def _connect_once(self) -> None:
        assert self._session is not None
        async with self._session.ws_connect(self.url) as ws:
            self._ws = ws
            logger.info("Connected to Showdown server %s", self.config.server)
            sender = asyncio.create_task(self._sender(ws))
            try:
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        await self.handle_frame(msg.data)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        logger.error("Websocket error: %s", ws.exception())
                        break
            finally:
                sender.cancel()
                self._ws = None

    async def close(self) -> None:
        self._closing = True
        if self._login_task is not None:
            self._login_task.cancel()
        if self._ws is not None:
            await self._ws.close()
        if self._owns_session and self._session is not None:
            await self._session.close()

    # ------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------
    async def handle_frame(self, data: str) -> None:
        """Dispatch every message in a frame; one failing handler does not drop the connection."""
        for message in parse_frame(data):
            try:
                await self.dispatch(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Failed to handle %s message: %s", message.kind, exc)
                if self.error_engine is not None:
                    self.error_engine.log_exception(exc, context=f"showdown:{message.kind}")

    async def dispatch(self, message: ServerMessage) -> None:
        kind = message.kind
        if kind == "challstr":
            self.start_login("|".join(message.args))
        elif kind == "queryresponse":
            self._on_queryresponse(message)
        elif kind == "error":
            logger.error("Server error: %s", "|".join(message.args))
        elif kind in CHAT_KINDS:
            parts = chat_parts(message)
            if parts and self.on_chat is not None:
                result = self.on_chat(message.room, *parts)
                if inspect.isawaitable(result):
                    await result

    def _on_queryresponse(self, message: ServerMessage) -> None:
        if len(message.args) < 2 or message.args[0] != "roomlist":
            return
        try:
            payload = json.loads("|".join(message.args[1:]))
        except json.JSONDecodeError:
            logger.warning("Malformed roomlist reply dropped")
            return
        rooms = payload.get("rooms") if isinstance(payload, dict) else None
        if isinstance(rooms, dict) and self.on_battle_list is not None:
            self.on_battle_list(rooms)

    def start_login(self, challstr: str) -> asyncio.Task:
        """Run the login handshake beside the reader; a newer challenge replaces an older one."""
        if self._login_task is not None and not self._login_task.done():
            self._login_task.cancel()
        task = asyncio.get_running_loop().create_task(self.login(challstr))
        task.add_done_callback(self._login_finished)
        self._login_task = task
        return task

    def _login_finished(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        logger.error("Login handshake crashed: %s", exc, exc_info=exc)
        if self.error_engine is not None:
            self.error_engine.log_exception(exc, context="showdown:login")

    async def login(self, challstr: str) -> bool:
        """Trade the challenge string for an assertion, then rename and join."""
        assert self._session is not None
        challengekeyid, _, challenge = challstr.partition("|")
        data = {
            "act": "login",
            "challengekeyid": challengekeyid,
            "challenge": challenge,
            "name": self.config.nickname,
            "pass": self.config.password,
        }
        url = LOGIN_URL.format(server_id=self.config.server_id)
        backoff = self.initial_backoff_s
        for attempt in range(self.login_retries + 1):
            try:
                async with self._session.post(url, data=data) as resp:
                    assertion = parse_assertion(await resp.text())
                if assertion:
                    self.send(f"/trn {self.config.nickname},0,{assertion}", room="")
                    self.send(f"/join {self.config.room}", room="")
                    if self.config.avatar:
                        self.send(f"/avatar {self.config.avatar}", room="")
                    logger.info("Logged in as %s", self.config.nickname)
                    return True
                logger.warning("Login attempt %d rejected", attempt + 1)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.warning("Login attempt %d failed: %s", attempt + 1, exc)
            if attempt < self.login_retries:
                await asyncio.sleep(backoff + random.uniform(0, min(backoff, 0.5)))
                backoff *= 2.0
        logger.error("Giving up on login as %s", self.config.nickname)
        return False


__all__ = [
    "ServerMessage",
    "ShowdownClient",
    "chat_parts",
    "parse_assertion",
    "parse_frame",
]
