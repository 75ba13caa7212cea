# FlightQuery Client
"""
flightquery.api.client - クライアントFacade

質問の送信とキャンセルを受け付け、同時に1つのアクティブセッションだけを保持する。
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable

from flightquery.api.base import FlightQueryConfig
from flightquery.api.config import ConfigManager
from flightquery.errors import ErrorHandler, TransportError
from flightquery.observability import Observability, get_observability, timed
from flightquery.stream.segmenter import segment
from flightquery.stream.session import (
    ErrorListener,
    SnapshotListener,
    StreamSession,
    validate_query,
)
from flightquery.stream.transport import SSETransport, TransportProtocol
from flightquery.stream.types import Segments, Snapshot

TransportFactory = Callable[[FlightQueryConfig], TransportProtocol]


def default_transport_factory(config: FlightQueryConfig) -> TransportProtocol:
    """設定から SSE トランスポートを生成"""
    return SSETransport(config.transport_config())


class FlightQueryClient:
    """FlightQuery クライアント (Facade)

    Example:
        client = FlightQueryClient("flightquery.yaml")
        client.subscribe(lambda snapshot: render(snapshot))
        final = await client.ask("What is the cheapest flight from New Delhi to Hanoi?")
        print(client.segments(final).title)
    """

    def __init__(
        self,
        config: str | Path | dict[str, Any] | FlightQueryConfig | None = None,
        transport_factory: TransportFactory | None = None,
        observability: Observability | None = None,
        error_handler: ErrorHandler | None = None,
    ):
        """
        クライアントを初期化

        Args:
            config: 設定ファイルパス、辞書、またはFlightQueryConfigオブジェクト
            transport_factory: セッションごとにトランスポートを生成する関数
            observability: ログ・メトリクス
            error_handler: エラーハンドラ
        """
        if config is None:
            self._config_manager = ConfigManager()
        elif isinstance(config, (str, Path)):
            self._config_manager = ConfigManager.from_yaml(config)
        elif isinstance(config, dict):
            self._config_manager = ConfigManager.from_dict(config)
        elif isinstance(config, FlightQueryConfig):
            self._config_manager = ConfigManager.from_config(config)
        else:
            raise ValueError(f"Invalid config type: {type(config)}")

        self._transport_factory = transport_factory or default_transport_factory
        self._observability = observability or get_observability()
        self._error_handler = error_handler
        self._logger = self._observability.logger.child("client")

        self._current: StreamSession | None = None
        self._listeners: list[SnapshotListener] = []
        self._error_listeners: list[ErrorListener] = []
        self._lock = asyncio.Lock()

    @property
    def config(self) -> FlightQueryConfig:
        """設定を取得"""
        return self._config_manager.config

    @property
    def current(self) -> StreamSession | None:
        """現在（または直前）のセッション"""
        return self._current

    @property
    def snapshot(self) -> Snapshot:
        """最新のスナップショット"""
        if self._current is None:
            return Snapshot()
        return self._current.snapshot

    # ========== 購読 ==========

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """以降のすべてのセッションのスナップショットを購読

        Returns:
            購読解除関数
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_error(self, listener: ErrorListener) -> None:
        """失敗通知の購読を登録"""
        self._error_listeners.append(listener)

    def _dispatch(self, snapshot: Snapshot) -> None:
        for listener in list(self._listeners):
            listener(snapshot)

    def _dispatch_error(self, error: TransportError) -> None:
        for listener in list(self._error_listeners):
            listener(error)

    # ========== 送信 / キャンセル ==========

    async def start(self, text: str) -> StreamSession:
        """質問を送信して新しいセッションを開始

        アクティブなセッションがあればキャンセルし、その解放を待ってから開始する。

        Raises:
            ValidationError: 空または空白のみの質問（トランスポートは開かない）
        """
        validate_query(text)

        async with self._lock:
            previous = self._current
            if previous is not None and previous.is_active:
                self._logger.info(
                    "Superseding active session",
                    session_id=previous.session_id,
                )
                previous.cancel()
                await previous.wait()

            config = self.config
            session = StreamSession(
                text,
                self._transport_factory(config),
                sql_indent=config.sql_indent,
                sql_dialect=config.sql_dialect,
                observability=self._observability,
                error_handler=self._error_handler,
            )
            session.subscribe(self._dispatch)
            session.on_error(self._dispatch_error)

            self._current = session
            session.start()
            return session

    def cancel(self) -> bool:
        """アクティブなセッションをキャンセル"""
        if self._current is None:
            return False
        return self._current.cancel()

    @timed("client.ask")
    async def ask(self, text: str) -> Snapshot:
        """質問を送信して終了まで待機し、最後のスナップショットを返す"""
        session = await self.start(text)
        return await session.wait()

    def segments(self, snapshot: Snapshot | None = None) -> Segments:
        """設定のマーカーで回答をセグメント化"""
        snapshot = snapshot or self.snapshot
        return segment(snapshot.answer, self.config.segmenter_config())

    async def close(self) -> None:
        """アクティブなセッションを終了"""
        session = self._current
        if session is not None and session.is_active:
            session.cancel()
            await session.wait()

    async def __aenter__(self) -> "FlightQueryClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def create_client(
    config: str | Path | dict[str, Any] | FlightQueryConfig | None = None,
    **kwargs: Any,
) -> FlightQueryClient:
    """FlightQueryClient を作成するファクトリ関数

    config 省略時は設定ファイルを探索する。
    """
    if config is None:
        from flightquery.api.config import find_config_path

        config = find_config_path()
    return FlightQueryClient(config, **kwargs)
