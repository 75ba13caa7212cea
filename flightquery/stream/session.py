"""Stream Session.

1回の質問送信に対応するストリーミングセッション。

トランスポートのイベントを到着順に1件ずつ処理し、チャネルごとのバッファへ
振り分け、変換を適用し、スナップショットを購読者へ公開する。

状態遷移:
    idle → active → (completed | failed | cancelled)
"""

from __future__ import annotations

import asyncio
import functools
import time
from typing import Callable, Optional

from flightquery.errors import (
    ErrorHandler,
    MalformedFragmentError,
    TransportError,
    ValidationError,
    get_error_handler,
)
from flightquery.observability import Observability, get_observability
from flightquery.stream.envelope import parse_envelope
from flightquery.stream.formatter import DEFAULT_INDENT, format_query
from flightquery.stream.normalizer import normalize
from flightquery.stream.transport import TransportProtocol
from flightquery.stream.types import (
    Channel,
    ChannelBuffer,
    ControlSignal,
    Fragment,
    ServerEvent,
    SessionStatus,
    Snapshot,
    new_session_id,
)

__all__ = [
    "SnapshotListener",
    "ErrorListener",
    "StreamSession",
    "validate_query",
]

SnapshotListener = Callable[[Snapshot], None]
ErrorListener = Callable[[TransportError], None]


def validate_query(query: Optional[str]) -> str:
    """送信前の質問文を検証

    Raises:
        ValidationError: 空または空白のみの場合
    """
    if query is None or not query.strip():
        raise ValidationError(
            "Please enter a question",
            field="query",
            value=query,
            component="session",
            operation="start",
        )
    return query


class StreamSession:
    """ストリーミングセッション

    Example:
        session = StreamSession(question, SSETransport(config))
        session.subscribe(lambda snapshot: print(snapshot.answer))
        session.start()
        final = await session.wait()
    """

    def __init__(
        self,
        query: str,
        transport: TransportProtocol,
        sql_indent: int = DEFAULT_INDENT,
        sql_dialect: Optional[str] = None,
        observability: Optional[Observability] = None,
        error_handler: Optional[ErrorHandler] = None,
        session_id: Optional[str] = None,
    ):
        """初期化

        Args:
            query: 質問文（空白のみは不可）
            transport: このセッションが専有するトランスポート
            sql_indent: SQL整形のインデント幅
            sql_dialect: SQL整形に使う sqlglot の方言
            observability: ログ・メトリクス
            error_handler: フラグメント単位のエラーの記録先
            session_id: セッションID（省略時は自動生成）
        """
        self.query = validate_query(query)
        self.session_id = session_id or new_session_id()

        self._transport = transport
        self._status = SessionStatus.IDLE
        self._error: Optional[TransportError] = None

        self.answer_buffer = ChannelBuffer(Channel.ANSWER, normalize)
        self.query_buffer = ChannelBuffer(
            Channel.QUERY,
            functools.partial(format_query, indent=sql_indent, dialect=sql_dialect),
        )

        self._listeners: list[SnapshotListener] = []
        self._error_listeners: list[ErrorListener] = []
        self._sequence = 0
        self._snapshot = Snapshot(session_id=self.session_id)
        self._task: Optional[asyncio.Task[Snapshot]] = None
        self._receiving = False

        obs = observability or get_observability()
        self._logger = obs.logger.child("session")
        self._metrics = obs.metrics
        self._errors = error_handler or get_error_handler()

        # 統計
        self.fragments_accepted = 0
        self.fragments_malformed = 0
        self.fragments_ignored = 0
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None

    # ========== 状態 ==========

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_active(self) -> bool:
        return self._status is SessionStatus.ACTIVE

    @property
    def error(self) -> Optional[TransportError]:
        """失敗時のトランスポートエラー"""
        return self._error

    @property
    def snapshot(self) -> Snapshot:
        """最新のスナップショット"""
        return self._snapshot

    @property
    def transport(self) -> TransportProtocol:
        return self._transport

    @property
    def duration_ms(self) -> float:
        """処理時間(ms)"""
        if self.started_at is None:
            return 0.0
        end = self.finished_at or time.time()
        return (end - self.started_at) * 1000

    # ========== 購読 ==========

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """スナップショットの購読を登録

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

    # ========== ライフサイクル ==========

    def start(self) -> asyncio.Task[Snapshot]:
        """トランスポートを開いて受信タスクを起動

        実行中のイベントループが必要。
        """
        if self._status is not SessionStatus.IDLE:
            raise RuntimeError(f"Session {self.session_id} already {self._status.value}")

        self._status = SessionStatus.ACTIVE
        self.started_at = time.time()
        self._snapshot = self._make_snapshot()
        self._metrics.increment("session.started")
        self._logger.info("Session started", session_id=self.session_id, query=self.query)

        self._task = asyncio.get_running_loop().create_task(
            self._run(),
            name=f"flightquery-session-{self.session_id}",
        )
        return self._task

    async def run(self) -> Snapshot:
        """開始して終了まで待機"""
        self.start()
        return await self.wait()

    async def wait(self) -> Snapshot:
        """受信タスクの終了を待ち、最後のスナップショットを返す"""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        return self._snapshot

    def cancel(self) -> bool:
        """セッションをキャンセル

        以降に届いたイベントは適用されず、スナップショットも公開されない。

        Returns:
            キャンセルしたかどうか（終端状態なら False）
        """
        if self._status.is_terminal:
            return False

        self._mark_cancelled()

        # 受信タスク自身（購読者のコールバック内）からの呼び出しでは
        # ループ側の状態チェックで抜ける
        if (
            self._receiving
            and self._task is not None
            and not self._task.done()
            and not self._in_own_task()
        ):
            self._task.cancel()
        return True

    def _mark_cancelled(self) -> None:
        self._status = SessionStatus.CANCELLED
        self.finished_at = time.time()
        self._snapshot = self._make_snapshot()
        self._metrics.increment("session.cancelled")
        self._logger.info("Session cancelled", session_id=self.session_id)

    def _in_own_task(self) -> bool:
        try:
            return asyncio.current_task() is self._task
        except RuntimeError:
            return False

    # ========== 受信ループ ==========

    async def _run(self) -> Snapshot:
        # 受信開始前にキャンセルされた場合は接続しない
        if self._status is not SessionStatus.ACTIVE:
            await self._transport.close()
            return self._snapshot

        self._receiving = True
        events = self._transport.events(self.query)
        try:
            async for event in events:
                if self._status is not SessionStatus.ACTIVE:
                    break
                self._handle_event(event)
                if self._status is not SessionStatus.ACTIVE:
                    break

            if self._status is SessionStatus.ACTIVE:
                raise TransportError(
                    "Stream closed before completion",
                    operation="receive",
                    session_id=self.session_id,
                )
        except TransportError as e:
            if self._status is SessionStatus.ACTIVE:
                self._fail(e)
        except asyncio.CancelledError:
            if self._status is SessionStatus.ACTIVE:
                self._mark_cancelled()
            raise
        except Exception as e:
            if self._status is not SessionStatus.ACTIVE:
                raise
            self._fail(TransportError.from_exception(
                e,
                message=f"Unexpected stream failure: {e}",
                operation="receive",
                session_id=self.session_id,
            ))
        finally:
            await self._release(events)

        return self._snapshot

    async def _release(self, events) -> None:
        """イベントジェネレータとトランスポートを解放"""
        try:
            await events.aclose()
        finally:
            await self._transport.close()
            self._metrics.timer("session.duration_ms", self.duration_ms)
            self._metrics.gauge("session.answer_chars", len(self.answer_buffer))
            self._metrics.flush()

    def _handle_event(self, event: ServerEvent) -> None:
        """イベント1件を処理"""
        try:
            fragment = parse_envelope(event.data, event.event)
        except MalformedFragmentError as e:
            self.fragments_malformed += 1
            self._metrics.increment("fragment.malformed")
            self._errors.handle(
                e,
                component="session",
                operation="parse_envelope",
                reraise=False,
                session_id=self.session_id,
            )
            return

        if fragment is None:
            self.fragments_ignored += 1
            self._metrics.increment("fragment.ignored")
            self._logger.debug("Ignored fragment of unknown type", session_id=self.session_id)
            return

        if fragment.is_control:
            self._handle_control(fragment)
            return

        self._apply(fragment)

    def _handle_control(self, fragment: Fragment) -> None:
        signal = fragment.signal
        if signal is ControlSignal.DONE:
            self._complete()
        elif signal is ControlSignal.ERROR:
            raise TransportError(
                f"Server reported an error: {fragment.signal_message}",
                operation="receive",
                session_id=self.session_id,
            )

    def _apply(self, fragment: Fragment) -> None:
        """フラグメントをバッファに追加して公開"""
        buffer = self.answer_buffer if fragment.channel is Channel.ANSWER else self.query_buffer
        buffer.append(fragment.payload)

        self._sequence += 1
        self.fragments_accepted += 1
        self._metrics.increment("fragment.accepted", tags={"channel": fragment.channel.value})
        self._publish()

    # ========== 終端処理 ==========

    def _complete(self) -> None:
        self._status = SessionStatus.COMPLETED
        self.finished_at = time.time()
        self._metrics.increment("session.completed")
        self._logger.info(
            "Session completed",
            session_id=self.session_id,
            fragments=self.fragments_accepted,
            duration_ms=round(self.duration_ms, 1),
        )
        self._publish()

    def _fail(self, error: TransportError) -> None:
        self._status = SessionStatus.FAILED
        self._error = error
        self.finished_at = time.time()
        self._metrics.increment("session.failed")
        self._errors.handle(
            error,
            component="session",
            reraise=False,
            session_id=self.session_id,
        )
        self._publish()

        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception as e:
                self._logger.error("Error listener raised", exception=e, session_id=self.session_id)

    # ========== 公開 ==========

    def _make_snapshot(self) -> Snapshot:
        return Snapshot(
            answer=self.answer_buffer.rendered,
            query=self.query_buffer.rendered,
            status=self._status,
            sequence=self._sequence,
            session_id=self.session_id,
        )

    def _publish(self) -> None:
        """スナップショットを購読者へ公開"""
        snapshot = self._make_snapshot()
        self._snapshot = snapshot

        for listener in list(self._listeners):
            if self._status is SessionStatus.CANCELLED:
                return
            try:
                listener(snapshot)
            except Exception as e:
                self._logger.error("Snapshot listener raised", exception=e, session_id=self.session_id)

    def __repr__(self) -> str:
        return (
            f"StreamSession(id={self.session_id!r}, status={self._status.value!r}, "
            f"fragments={self.fragments_accepted})"
        )
