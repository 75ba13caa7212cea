# Test Stream Transport
"""
トランスポートの単体テスト
"""

import asyncio

import aiohttp
import pytest
from unittest.mock import AsyncMock, MagicMock

from flightquery.errors import TransportError
from flightquery.stream.transport import (
    SSETransport,
    ScriptedTransport,
    TransportConfig,
    answer_event,
    done_event,
    error_event,
    iter_server_events,
    sql_event,
)
from flightquery.stream.types import ServerEvent


async def lines_of(*lines: bytes):
    for line in lines:
        yield line


async def collect(iterator):
    return [item async for item in iterator]


def mock_session(response=None, error=None) -> MagicMock:
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    if error is not None:
        session.get = AsyncMock(side_effect=error)
    else:
        session.get = AsyncMock(return_value=response)
    return session


def mock_response(status=200, lines=(), body="") -> MagicMock:
    response = MagicMock()
    response.status = status
    response.content = lines_of(*lines)
    response.text = AsyncMock(return_value=body)
    return response


# =============================================================================
# Configuration
# =============================================================================


class TestTransportConfig:
    """TransportConfigのテスト"""

    def test_defaults(self):
        config = TransportConfig()

        assert config.base_url == "http://localhost:8000"
        assert config.endpoint == "/stream"
        assert config.query_param == "question"

    def test_build_url_encodes_query(self):
        config = TransportConfig()
        url = config.build_url("cheapest flight to Hanoi?")

        assert url == "http://localhost:8000/stream?question=cheapest%20flight%20to%20Hanoi%3F"

    def test_build_url_normalizes_slashes(self):
        config = TransportConfig(base_url="http://example.com/", endpoint="api/stream")
        assert config.build_url("q").startswith("http://example.com/api/stream?")

    def test_build_url_custom_param(self):
        config = TransportConfig(query_param="q")
        assert config.build_url("a&b=c").endswith("?q=a%26b%3Dc")


# =============================================================================
# SSE Parsing
# =============================================================================


class TestIterServerEvents:
    """SSEパーサーのテスト"""

    @pytest.mark.asyncio
    async def test_data_event(self):
        events = await collect(iter_server_events(lines_of(
            b'data: {"type":"answer","content":"Hi"}\n',
            b"\n",
        )))

        assert events == [ServerEvent(data=b'{"type":"answer","content":"Hi"}')]

    @pytest.mark.asyncio
    async def test_named_event(self):
        events = await collect(iter_server_events(lines_of(
            b"event: done\n",
            b"data:\n",
            b"\n",
        )))

        assert len(events) == 1
        assert events[0].event == "done"
        assert events[0].data == b""

    @pytest.mark.asyncio
    async def test_comments_skipped(self):
        events = await collect(iter_server_events(lines_of(
            b": keep-alive\n",
            b"\n",
            b"data: x\n",
            b"\n",
        )))

        assert [e.data for e in events] == [b"x"]

    @pytest.mark.asyncio
    async def test_multiline_data(self):
        events = await collect(iter_server_events(lines_of(
            b"data: a\n",
            b"data: b\n",
            b"\n",
        )))

        assert events[0].data == b"a\nb"

    @pytest.mark.asyncio
    async def test_crlf(self):
        events = await collect(iter_server_events(lines_of(
            b"data: x\r\n",
            b"\r\n",
        )))

        assert events[0].data == b"x"

    @pytest.mark.asyncio
    async def test_event_id(self):
        events = await collect(iter_server_events(lines_of(
            b"id: 7\n",
            b"data: x\n",
            b"\n",
        )))

        assert events[0].event_id == "7"

    @pytest.mark.asyncio
    async def test_trailing_event_without_blank_line(self):
        events = await collect(iter_server_events(lines_of(b"data: last\n")))
        assert [e.data for e in events] == [b"last"]

    @pytest.mark.asyncio
    async def test_invalid_utf8_passed_through(self):
        """デコードはエンベロープ解析側で行う"""
        events = await collect(iter_server_events(lines_of(b"data: \xff\xfe\n", b"\n")))
        assert events[0].data == b"\xff\xfe"


# =============================================================================
# SSE Transport
# =============================================================================


class TestSSETransport:
    """SSETransportのテスト"""

    @pytest.mark.asyncio
    async def test_streams_events(self):
        response = mock_response(lines=(
            b'data: {"type":"answer","content":"Hi"}\n',
            b"\n",
            b"event: done\n",
            b"\n",
        ))
        session = mock_session(response)

        transport = SSETransport()
        transport._session = session

        events = await collect(transport.events("cheapest flight"))

        assert [e.event for e in events] == ["message", "done"]
        url = session.get.call_args.args[0]
        assert url == "http://localhost:8000/stream?question=cheapest%20flight"
        assert session.get.call_args.kwargs["headers"]["Accept"] == "text/event-stream"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        transport = SSETransport()
        transport._session = mock_session(error=aiohttp.ClientConnectionError("refused"))

        with pytest.raises(TransportError) as exc_info:
            await collect(transport.events("q"))

        assert exc_info.value.context.operation == "open"
        assert "refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout(self):
        transport = SSETransport()
        transport._session = mock_session(error=asyncio.TimeoutError())

        with pytest.raises(TransportError) as exc_info:
            await collect(transport.events("q"))

        assert "TimeoutError" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        response = mock_response(status=503, body="unavailable")
        transport = SSETransport()
        transport._session = mock_session(response)

        with pytest.raises(TransportError) as exc_info:
            await collect(transport.events("q"))

        assert exc_info.value.status_code == 503
        assert exc_info.value.context.details["response_body"] == "unavailable"
        response.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_interrupted_stream(self):
        async def broken_lines():
            yield b"data: x\n"
            yield b"\n"
            raise aiohttp.ClientPayloadError("connection reset")

        response = mock_response()
        response.content = broken_lines()
        transport = SSETransport()
        transport._session = mock_session(response)

        received = []
        with pytest.raises(TransportError) as exc_info:
            async for event in transport.events("q"):
                received.append(event)

        assert [e.data for e in received] == [b"x"]
        assert exc_info.value.context.operation == "receive"

    @pytest.mark.asyncio
    async def test_close(self):
        response = mock_response(lines=(b"data: x\n", b"\n"))
        session = mock_session(response)
        transport = SSETransport()
        transport._session = session

        await collect(transport.events("q"))
        await transport.close()

        assert transport.is_closed
        response.close.assert_called_once()
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_closed_transport_rejects_open(self):
        transport = SSETransport()
        await transport.close()

        with pytest.raises(TransportError):
            await collect(transport.events("q"))

    @pytest.mark.asyncio
    async def test_context_manager(self):
        async with SSETransport() as transport:
            assert not transport.is_closed
        assert transport.is_closed


# =============================================================================
# Scripted Transport
# =============================================================================


class TestScriptedTransport:
    """ScriptedTransportのテスト"""

    @pytest.mark.asyncio
    async def test_replays_script(self):
        transport = ScriptedTransport([answer_event("Hi"), b"raw", "text", done_event()])

        events = await collect(transport.events("q"))

        assert transport.opened
        assert transport.requested_query == "q"
        assert transport.delivered == 4
        assert events[1] == ServerEvent(data=b"raw")
        assert events[2] == ServerEvent(data=b"text")
        assert events[3].event == "done"

    @pytest.mark.asyncio
    async def test_raises_scripted_error(self):
        transport = ScriptedTransport([answer_event("Hi"), TransportError("lost")])

        with pytest.raises(TransportError):
            await collect(transport.events("q"))

    @pytest.mark.asyncio
    async def test_stops_after_close(self):
        transport = ScriptedTransport([answer_event("a"), answer_event("b")])
        received = []

        async for event in transport.events("q"):
            received.append(event)
            await transport.close()

        assert len(received) == 1
        assert transport.is_closed


class TestEventHelpers:
    """イベント生成ヘルパーのテスト"""

    def test_answer_event(self):
        assert answer_event("Hi").data == b'{"type": "answer", "content": "Hi"}'

    def test_prefixed(self):
        assert sql_event("SELECT", prefixed=True).data.startswith(b"data: {")

    def test_non_ascii_kept(self):
        assert "✈".encode("utf-8") in answer_event("✈ A").data

    def test_error_event(self):
        event = error_event("boom")
        assert event.event == "error"
        assert event.data == b"boom"
