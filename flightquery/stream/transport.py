"""Stream Transport.

サーバー送信イベント（SSE）を受信するトランスポート。

- SSETransport: aiohttp による長時間接続
- ScriptedTransport: 決められたイベント列を返すテスト/デモ用
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Optional, Union
from urllib.parse import quote, urlencode

import aiohttp

from flightquery.errors import TransportError
from flightquery.stream.types import ServerEvent

__all__ = [
    "TransportConfig",
    "TransportProtocol",
    "SSETransport",
    "ScriptedTransport",
    "iter_server_events",
    "answer_event",
    "sql_event",
    "done_event",
    "error_event",
]

logger = logging.getLogger(__name__)


# ============================================================
# Configuration
# ============================================================


@dataclass
class TransportConfig:
    """トランスポート設定

    Attributes:
        base_url: サーバーのベースURL
        endpoint: ストリームのエンドポイントパス
        query_param: 質問を載せるクエリパラメータ名
        timeout_seconds: 接続全体のタイムアウト（None で無制限）
        read_timeout_seconds: イベント間のアイドルタイムアウト
        user_agent: User-Agentヘッダー
    """

    base_url: str = "http://localhost:8000"
    endpoint: str = "/stream"
    query_param: str = "question"
    timeout_seconds: Optional[float] = None
    read_timeout_seconds: Optional[float] = 60.0
    user_agent: str = "FlightQuery/0.1"

    def build_url(self, query: str) -> str:
        """質問文をURLエンコードしてストリームURLを組み立て"""
        base = self.base_url.rstrip("/")
        endpoint = self.endpoint if self.endpoint.startswith("/") else f"/{self.endpoint}"
        params = urlencode({self.query_param: query}, quote_via=quote)
        return f"{base}{endpoint}?{params}"


# ============================================================
# SSE parsing
# ============================================================


async def iter_server_events(lines: AsyncIterable[bytes]) -> AsyncIterator[ServerEvent]:
    """行単位のバイト列から SSE イベントを組み立て

    空行でイベントを確定する。``:`` で始まる行はコメント（ハートビート）。
    ストリームが空行なしで終わった場合も残りのデータを1イベントとして返す。
    """
    data_lines: list[bytes] = []
    event = "message"
    event_id: Optional[str] = None

    async for raw_line in lines:
        line = raw_line.rstrip(b"\r\n")

        if not line:
            if data_lines or event != "message":
                yield ServerEvent(data=b"\n".join(data_lines), event=event, event_id=event_id)
            data_lines = []
            event = "message"
            continue

        if line.startswith(b":"):
            continue

        name, _, value = line.partition(b":")
        if value.startswith(b" "):
            value = value[1:]

        if name == b"data":
            data_lines.append(value)
        elif name == b"event":
            event = value.decode("utf-8", "replace").strip() or "message"
        elif name == b"id":
            event_id = value.decode("utf-8", "replace")

    if data_lines or event != "message":
        yield ServerEvent(data=b"\n".join(data_lines), event=event, event_id=event_id)


# ============================================================
# Protocol
# ============================================================


class TransportProtocol(ABC):
    """トランスポートプロトコル

    1セッションにつき1インスタンス。``events`` は到着順にイベントを返し、
    接続エラーは TransportError として送出する。
    """

    @abstractmethod
    def events(self, query: str) -> AsyncIterator[ServerEvent]:
        """質問に対するイベントストリームを開く"""
        ...

    @abstractmethod
    async def close(self) -> None:
        """接続を解放"""
        ...

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """解放済みか"""
        ...


# ============================================================
# SSE Transport
# ============================================================


class SSETransport(TransportProtocol):
    """aiohttp によるサーバー送信イベントのクライアント

    Example:
        transport = SSETransport(TransportConfig(base_url="http://localhost:8000"))
        try:
            async for event in transport.events("cheapest flight to Hanoi"):
                print(event.event, event.data)
        finally:
            await transport.close()
    """

    def __init__(self, config: Optional[TransportConfig] = None):
        self.config = config or TransportConfig()
        self._session: Optional[aiohttp.ClientSession] = None
        self._response: Optional[aiohttp.ClientResponse] = None
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def _get_session(self) -> aiohttp.ClientSession:
        """HTTPセッションを取得"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(
                    total=self.config.timeout_seconds,
                    sock_read=self.config.read_timeout_seconds,
                ),
                headers={"User-Agent": self.config.user_agent},
            )
        return self._session

    async def events(self, query: str) -> AsyncIterator[ServerEvent]:
        if self._closed:
            raise TransportError("Transport already closed", operation="open")

        url = self.config.build_url(query)
        session = await self._get_session()

        try:
            response = await session.get(url, headers={"Accept": "text/event-stream"})
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"Failed to connect: {str(e) or type(e).__name__}",
                url=url,
                cause=e,
                operation="open",
            ) from e

        self._response = response
        if response.status >= 400:
            body = await response.text()
            response.release()
            raise TransportError(
                f"Server returned HTTP {response.status}",
                url=url,
                status_code=response.status,
                operation="open",
                response_body=body[:500],
            )

        logger.debug("Stream opened: %s", url)
        try:
            async for event in iter_server_events(response.content):
                yield event
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportError(
                f"Stream interrupted: {str(e) or type(e).__name__}",
                url=url,
                cause=e,
                operation="receive",
            ) from e

    async def close(self) -> None:
        """レスポンスとセッションをクローズ"""
        self._closed = True
        if self._response is not None:
            self._response.close()
            self._response = None
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "SSETransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# ============================================================
# Scripted Transport (tests / demos)
# ============================================================


ScriptItem = Union[ServerEvent, bytes, str, BaseException]


class ScriptedTransport(TransportProtocol):
    """スクリプト化されたトランスポート（テスト用）

    Args:
        script: 返すイベント列。bytes/str はデータのみのイベントに変換し、
            例外インスタンスはその位置で送出する
        delay_ms: イベント間の遅延
        hold_open: スクリプトを返し終えた後も接続を保持する
            （キャンセルされるまで待機）
    """

    def __init__(
        self,
        script: Iterable[ScriptItem] = (),
        delay_ms: float = 0.0,
        hold_open: bool = False,
    ):
        self.script = list(script)
        self.delay_ms = delay_ms
        self.hold_open = hold_open

        self.requested_query: Optional[str] = None
        self.opened = False
        self.delivered = 0
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def events(self, query: str) -> AsyncIterator[ServerEvent]:
        self.opened = True
        self.requested_query = query

        for item in self.script:
            await asyncio.sleep(self.delay_ms / 1000)
            if self._closed:
                return
            if isinstance(item, BaseException):
                raise item
            self.delivered += 1
            if isinstance(item, ServerEvent):
                yield item
            elif isinstance(item, bytes):
                yield ServerEvent(data=item)
            else:
                yield ServerEvent(data=item.encode("utf-8"))

        if self.hold_open:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self._closed = True


# ============================================================
# Event helpers
# ============================================================


def _envelope(kind: str, content: Any) -> bytes:
    return json.dumps({"type": kind, "content": content}, ensure_ascii=False).encode("utf-8")


def answer_event(content: str, prefixed: bool = False) -> ServerEvent:
    """回答フラグメントのイベントを生成"""
    data = _envelope("answer", content)
    return ServerEvent(data=b"data: " + data if prefixed else data)


def sql_event(content: str, prefixed: bool = False) -> ServerEvent:
    """SQLフラグメントのイベントを生成"""
    data = _envelope("sql", content)
    return ServerEvent(data=b"data: " + data if prefixed else data)


def done_event() -> ServerEvent:
    """完了イベントを生成"""
    return ServerEvent(data=b"", event="done")


def error_event(message: str) -> ServerEvent:
    """エラーイベントを生成"""
    return ServerEvent(data=message.encode("utf-8"), event="error")
