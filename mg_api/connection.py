"""Client side of the game room socket.

The connection only matters to the rest of the service at its edges: frames
are handed to the live parsers, and close codes decide whether to reconnect
and whether sprites need re-syncing.
"""

import asyncio
import enum
import json
import random
import secrets
from typing import Any, Callable
from urllib.parse import urlencode

import tenacity
import websockets
from loguru import logger
from websockets.asyncio.client import connect

from mg_api.errors import FetchError
from mg_api.version import GameVersion


class CloseCode(enum.IntEnum):
    RECONNECT_INITIATED = 4100
    PLAYER_LEFT_VOLUNTARILY = 4200
    USER_SESSION_SUPERSEDED = 4250
    CONNECTION_SUPERSEDED = 4300
    SERVER_DISPOSED = 4310
    HEARTBEAT_EXPIRED = 4400
    PLAYER_KICKED = 4500
    VERSION_MISMATCH = 4700
    VERSION_EXPIRED = 4710
    AUTHENTICATION_FAILURE = 4800


NO_RECONNECT_CODES = frozenset(
    {CloseCode.AUTHENTICATION_FAILURE, CloseCode.PLAYER_KICKED, CloseCode.VERSION_EXPIRED}
)
VERSION_MISMATCH_CODES = frozenset({CloseCode.VERSION_MISMATCH, CloseCode.VERSION_EXPIRED})

_CLOSE_MESSAGES = {
    CloseCode.RECONNECT_INITIATED: "Reconnect initiated",
    CloseCode.PLAYER_LEFT_VOLUNTARILY: "Player left voluntarily",
    CloseCode.USER_SESSION_SUPERSEDED: "User session superseded",
    CloseCode.CONNECTION_SUPERSEDED: "Connection superseded",
    CloseCode.SERVER_DISPOSED: "Server disposed",
    CloseCode.HEARTBEAT_EXPIRED: "Heartbeat expired",
    CloseCode.PLAYER_KICKED: "Player kicked",
    CloseCode.VERSION_MISMATCH: "Version mismatch",
    CloseCode.VERSION_EXPIRED: "Version expired",
    CloseCode.AUTHENTICATION_FAILURE: "Authentication failure",
}

DEFAULT_ANONYMOUS_USER_STYLE = {
    "avatarBottom": "Bottom_DefaultGray.png",
    "avatarExpression": "Expression_Default.png",
    "avatarMid": "Mid_DefaultGray.png",
    "avatarTop": "Top_DefaultGray.png",
    "color": "Orange",
    "name": "Arie API",
}

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def close_code_message(code: int) -> str:
    try:
        return _CLOSE_MESSAGES[CloseCode(code)]
    except ValueError:
        return f"Unknown close code: {code}"


def should_reconnect(code: int | None, auto_reconnect: bool = True, stopped: bool = False) -> bool:
    return auto_reconnect and not stopped and code not in NO_RECONNECT_CODES


def reconnect_delay(
    attempt: int, min_delay: float = 0.5, max_delay: float = 8.0, rand: Callable[[], float] = random.random
) -> float:
    """Exponential backoff from min_delay, capped at max_delay, with +/-20% jitter."""
    base = min(min_delay * 2 ** (attempt - 1), max_delay)
    return base + base * 0.2 * (rand() * 2 - 1)


def random_base58(length: int) -> str:
    out = []
    while len(out) < length:
        b = secrets.randbits(8)
        # 232 = 58 * 4, rejecting the rest keeps the distribution uniform
        if b < 232:
            out.append(BASE58_ALPHABET[b % 58])
    return "".join(out)


def generate_player_id() -> str:
    return "p_" + random_base58(16)


def generate_room_id() -> str:
    return secrets.token_hex(4)


def build_ws_url(
    origin: str,
    version: str,
    room_id: str,
    player_id: str,
    anonymous_user_style: dict | str | None = None,
) -> str:
    """Room socket URL. Query values are JSON-encoded, as the game client sends them."""
    ws_base = "ws" + origin[len("http") :] if origin.startswith("http") else origin
    params = {
        "surface": json.dumps("web"),
        "platform": json.dumps("desktop"),
        "playerId": json.dumps(player_id),
        "version": json.dumps(version),
        "source": json.dumps("manualUrl"),
        "capabilities": json.dumps("fbo_mipmap_unsupported"),
    }
    if anonymous_user_style:
        params["anonymousUserStyle"] = (
            anonymous_user_style
            if isinstance(anonymous_user_style, str)
            else json.dumps(anonymous_user_style, separators=(",", ":"))
        )
    return f"{ws_base.rstrip('/')}/version/{version}/api/rooms/{room_id}/connect?{urlencode(params)}"


class SessionClosed(Exception):
    def __init__(self, code: int | None, reason: str = "", opened: bool = False):
        self.code = code
        self.reason = reason
        self.opened = opened
        super().__init__(f"Socket closed with code {code}: {close_code_message(code) if code else reason}")


class GameConnection:
    """Anonymous spectator connection to one game room.

    Hooks are plain lists of callables: on_open(), on_message(text) and
    on_close(code, reason). Text "ping" frames are answered with "pong" and
    not forwarded.

    Args:
        version: Game version source
        origin: Game origin
        room_id: Room to join; random when omitted
        auto_reconnect: Reconnect after reconnectable closes
        max_retries: Consecutive failed attempts before giving up
        min_delay: First reconnect delay in seconds
        max_delay: Reconnect delay cap in seconds
        anonymous_user_style: Avatar sent with the connection
    """

    def __init__(
        self,
        version: GameVersion,
        origin: str,
        room_id: str | None = None,
        auto_reconnect: bool = True,
        max_retries: int = 999,
        min_delay: float = 0.5,
        max_delay: float = 8.0,
        anonymous_user_style: dict | None = None,
    ):
        self.game_version = version
        self.origin = origin
        self.auto_reconnect = auto_reconnect
        self.max_retries = max_retries
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.anonymous_user_style = anonymous_user_style or dict(DEFAULT_ANONYMOUS_USER_STYLE)

        self.player_id = generate_player_id()
        self.room_id = room_id or generate_room_id()
        self.version: str | None = None
        self.url: str | None = None
        self.retry_count = 0

        self.on_open: list[Callable[[], Any]] = []
        self.on_message: list[Callable[[str], Any]] = []
        self.on_close: list[Callable[[int, str], Any]] = []

        self._ws = None
        self._connecting = False
        self._stopped = False
        self._queue: list[str] = []

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def status(self) -> dict:
        return {
            "connected": self.connected,
            "connecting": self._connecting,
            "retryCount": self.retry_count,
            "origin": self.origin,
            "url": self.url,
            "version": self.version,
            "roomId": self.room_id,
            "playerId": self.player_id,
        }

    def _emit(self, hooks: list[Callable], *args):
        for hook in list(hooks):
            try:
                hook(*args)
            except Exception:
                logger.exception("Connection hook failed", hook=getattr(hook, "__name__", repr(hook)))

    async def send(self, data: str | dict) -> bool:
        """Send now if connected, otherwise queue until the next open."""
        payload = data if isinstance(data, str) else json.dumps(data)
        if self._ws is not None:
            await self._ws.send(payload)
            return True
        self._queue.append(payload)
        return False

    def _is_retryable(self, e: BaseException) -> bool:
        if self._stopped:
            return False
        if isinstance(e, SessionClosed):
            return should_reconnect(e.code, self.auto_reconnect, self._stopped)
        return self.auto_reconnect and isinstance(
            e, (OSError, asyncio.TimeoutError, websockets.exceptions.InvalidHandshake, FetchError)
        )

    def _before_sleep(self, retry_state: tenacity.RetryCallState):
        self.retry_count = retry_state.attempt_number
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            "Scheduling reconnect",
            attempt=retry_state.attempt_number,
            delay=round(retry_state.upcoming_sleep, 3),
            close_code=getattr(error, "code", None),
            error=str(error),
        )

    def _retrying(self) -> tenacity.AsyncRetrying:
        return tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self.max_retries + 1),
            wait=lambda rs: reconnect_delay(rs.attempt_number, self.min_delay, self.max_delay),
            retry=tenacity.retry_if_exception(self._is_retryable),
            before_sleep=self._before_sleep,
            reraise=True,
        )

    async def _session(self):
        """One connection lifetime. Returns only after a clean, reconnectable close of an open socket."""
        self._connecting = True
        try:
            self.version = await self.game_version.get()
            self.url = build_ws_url(
                self.origin, self.version, self.room_id, self.player_id, self.anonymous_user_style
            )
            logger.info("Connecting to WebSocket", url=self.url)
            ws = await connect(self.url, ping_interval=None, max_size=None)
        finally:
            self._connecting = False

        self._ws = ws
        self.retry_count = 0
        logger.info("WebSocket connected", room_id=self.room_id)
        self._emit(self.on_open)
        while self._queue:
            await ws.send(self._queue.pop(0))

        try:
            async for message in ws:
                text = message.decode() if isinstance(message, bytes) else message
                if text == "ping":
                    await ws.send("pong")
                    continue
                self._emit(self.on_message, text)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self._ws = None

        code = ws.close_code
        reason = ws.close_reason or ""
        logger.info("WebSocket closed", code=code, reason=reason, message=close_code_message(code) if code else None)
        self._emit(self.on_close, code, reason)
        if not should_reconnect(code, self.auto_reconnect, self._stopped):
            raise SessionClosed(code, reason, opened=True)

    async def run(self):
        """Connect and keep reconnecting until stopped or told not to come back."""
        self._stopped = False
        while not self._stopped:
            try:
                async for attempt in self._retrying():
                    with attempt:
                        await self._session()
            except SessionClosed as e:
                if not self._stopped:
                    logger.warning("Not reconnecting", code=e.code, reason=e.reason)
                return
            except (OSError, asyncio.TimeoutError, websockets.exceptions.InvalidHandshake, FetchError) as e:
                logger.error("Giving up on WebSocket connection", error=str(e), attempts=self.retry_count)
                return
            if not self._stopped:
                await asyncio.sleep(reconnect_delay(1, self.min_delay, self.max_delay))

    async def stop(self, code: int = 1000, reason: str = "Client stop"):
        self._stopped = True
        if self._ws is not None:
            await self._ws.close(code, reason)
        logger.info("WebSocket stopped")
