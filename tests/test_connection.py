import json
import re
from unittest import mock
from urllib.parse import parse_qs, urlparse

import pytest

from mg_api import connection
from mg_api.connection import CloseCode


class TestCloseCodes:
    def test_messages(self):
        assert connection.close_code_message(4700) == "Version mismatch"
        assert connection.close_code_message(1006) == "Unknown close code: 1006"

    @pytest.mark.parametrize(
        "code,expected",
        [
            (None, True),
            (1006, True),
            (CloseCode.VERSION_MISMATCH, True),
            (CloseCode.HEARTBEAT_EXPIRED, True),
            (CloseCode.AUTHENTICATION_FAILURE, False),
            (CloseCode.PLAYER_KICKED, False),
            (CloseCode.VERSION_EXPIRED, False),
        ],
    )
    def test_should_reconnect(self, code, expected):
        assert connection.should_reconnect(code) is expected

    def test_should_reconnect_flags(self):
        assert not connection.should_reconnect(1006, auto_reconnect=False)
        assert not connection.should_reconnect(1006, stopped=True)


@pytest.mark.parametrize(
    "attempt,rand,expected",
    [
        (1, lambda: 0.5, 0.5),
        (2, lambda: 0.5, 1.0),
        (4, lambda: 0.5, 4.0),
        (10, lambda: 0.5, 8.0),
        (1, lambda: 0.0, 0.4),
        (1, lambda: 1.0, 0.6),
    ],
)
def test_reconnect_delay(attempt, rand, expected):
    assert connection.reconnect_delay(attempt, 0.5, 8.0, rand) == pytest.approx(expected)


class TestIds:
    def test_player_id(self):
        player_id = connection.generate_player_id()
        assert re.fullmatch(r"p_[1-9A-HJ-NP-Za-km-z]{16}", player_id)
        assert player_id != connection.generate_player_id()

    def test_room_id(self):
        assert re.fullmatch(r"[0-9a-f]{8}", connection.generate_room_id())


class TestBuildWsUrl:
    def test_url_shape(self):
        url = connection.build_ws_url("https://magicgarden.gg", "42", "abcd1234", "p_x")
        parsed = urlparse(url)
        assert parsed.scheme == "wss"
        assert parsed.netloc == "magicgarden.gg"
        assert parsed.path == "/version/42/api/rooms/abcd1234/connect"
        query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert query == {
            "surface": '"web"',
            "platform": '"desktop"',
            "playerId": '"p_x"',
            "version": '"42"',
            "source": '"manualUrl"',
            "capabilities": '"fbo_mipmap_unsupported"',
        }

    def test_plain_http_and_style(self):
        url = connection.build_ws_url("http://localhost:8080/", "1", "r", "p", {"color": "Orange"})
        assert url.startswith("ws://localhost:8080/version/1/api/rooms/r/connect?")
        query = parse_qs(urlparse(url).query)
        assert json.loads(query["anonymousUserStyle"][0]) == {"color": "Orange"}


class TestGameConnection:
    def make(self, **kwargs) -> connection.GameConnection:
        version = mock.Mock()
        version.get = mock.AsyncMock(return_value="42")
        return connection.GameConnection(version, "https://magicgarden.gg", **kwargs)

    def test_status(self):
        conn = self.make(room_id="deadbeef")
        status = conn.status()
        assert status["connected"] is False
        assert status["roomId"] == "deadbeef"
        assert status["playerId"].startswith("p_")
        assert status["retryCount"] == 0

    def test_random_room(self):
        assert re.fullmatch(r"[0-9a-f]{8}", self.make().room_id)

    @pytest.mark.asyncio
    async def test_send_queues_while_disconnected(self):
        conn = self.make()
        assert await conn.send({"type": "Ping"}) is False
        assert await conn.send("raw") is False
        assert conn._queue == ['{"type": "Ping"}', "raw"]

    @pytest.mark.asyncio
    async def test_send_when_connected(self):
        conn = self.make()
        conn._ws = mock.Mock(send=mock.AsyncMock())
        assert await conn.send("hello") is True
        conn._ws.send.assert_awaited_once_with("hello")

    def test_retryable(self):
        conn = self.make()
        assert conn._is_retryable(OSError("refused"))
        assert conn._is_retryable(connection.SessionClosed(1006))
        assert not conn._is_retryable(connection.SessionClosed(CloseCode.PLAYER_KICKED))
        assert not conn._is_retryable(ValueError("bug"))
        assert not self.make(auto_reconnect=False)._is_retryable(OSError("refused"))

    def test_hook_failures_are_contained(self):
        conn = self.make()
        seen = []

        def boom(*args):
            raise RuntimeError("boom")

        conn.on_close.extend([boom, lambda code, reason: seen.append((code, reason))])
        conn._emit(conn.on_close, 4700, "old")
        assert seen == [(4700, "old")]

    @pytest.mark.asyncio
    async def test_run_stops_on_non_reconnectable_close(self):
        conn = self.make(min_delay=0.001, max_delay=0.002)
        session = mock.AsyncMock(side_effect=connection.SessionClosed(CloseCode.PLAYER_KICKED, opened=True))
        with mock.patch.object(conn, "_session", new=session):
            await conn.run()
        session.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_gives_up_after_max_retries(self):
        conn = self.make(min_delay=0.001, max_delay=0.002, max_retries=2)
        session = mock.AsyncMock(side_effect=OSError("refused"))
        with mock.patch.object(conn, "_session", new=session):
            await conn.run()
        assert session.await_count == 3
        assert conn.retry_count == 2

    @pytest.mark.asyncio
    async def test_run_reconnects_after_clean_session(self):
        conn = self.make(min_delay=0.001, max_delay=0.002)
        calls = []

        async def session():
            calls.append(1)
            if len(calls) == 2:
                conn._stopped = True

        with mock.patch.object(conn, "_session", new=session):
            await conn.run()
        assert len(calls) == 2
