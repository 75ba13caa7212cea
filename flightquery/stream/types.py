"""Stream Types.

ストリーム処理の型定義。
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional


class Channel(Enum):
    """フラグメントのチャネル"""

    ANSWER = "answer"       # 回答（Markdown）
    QUERY = "query"         # クエリ（SQL）
    CONTROL = "control"     # 制御（完了・エラー通知）


class ControlSignal(str, Enum):
    """制御フラグメントのペイロード"""

    DONE = "done"
    ERROR = "error"


class SessionStatus(Enum):
    """セッションの状態"""

    IDLE = "idle"               # 開始前
    ACTIVE = "active"           # ストリーミング中
    COMPLETED = "completed"     # 正常完了
    FAILED = "failed"           # トランスポートエラー
    CANCELLED = "cancelled"     # キャンセル

    @property
    def is_terminal(self) -> bool:
        """終端状態か"""
        return self in (
            SessionStatus.COMPLETED,
            SessionStatus.FAILED,
            SessionStatus.CANCELLED,
        )


@dataclass(frozen=True)
class Fragment:
    """フラグメント

    トランスポートから届いた1メッセージ。受信後は不変。
    """

    channel: Channel
    payload: str
    received_at: float = field(default_factory=time.time, compare=False)

    @property
    def is_control(self) -> bool:
        """制御フラグメントか"""
        return self.channel == Channel.CONTROL

    @classmethod
    def answer(cls, payload: str) -> "Fragment":
        """回答フラグメントを生成"""
        return cls(channel=Channel.ANSWER, payload=payload)

    @classmethod
    def query(cls, payload: str) -> "Fragment":
        """クエリフラグメントを生成"""
        return cls(channel=Channel.QUERY, payload=payload)

    @classmethod
    def control(cls, signal: ControlSignal, message: str = "") -> "Fragment":
        """制御フラグメントを生成

        ERROR の場合、メッセージは ``error:`` の後に続く。
        """
        payload = signal.value if not message else f"{signal.value}:{message}"
        return cls(channel=Channel.CONTROL, payload=payload)

    @property
    def signal(self) -> ControlSignal | None:
        """制御シグナルを取得（制御フラグメント以外は None）"""
        if not self.is_control:
            return None
        name = self.payload.split(":", 1)[0]
        try:
            return ControlSignal(name)
        except ValueError:
            return None

    @property
    def signal_message(self) -> str:
        """制御シグナルに付随するメッセージ"""
        if ":" not in self.payload:
            return ""
        return self.payload.split(":", 1)[1]


class ChannelBuffer:
    """チャネルバッファ

    受信したペイロードを順に連結した ``raw`` と、
    そのチャネルの変換を ``raw`` 全体に適用した ``rendered`` を保持する。
    ``rendered`` は常に ``transform(raw)`` と等しい。
    """

    def __init__(self, channel: Channel, transform: Callable[[str], str]):
        self.channel = channel
        self._transform = transform
        self._parts: list[str] = []
        self._raw = ""
        self._rendered = transform("")

    @property
    def raw(self) -> str:
        return self._raw

    @property
    def rendered(self) -> str:
        return self._rendered

    @property
    def fragment_count(self) -> int:
        """追加されたペイロード数"""
        return len(self._parts)

    def append(self, payload: str) -> str:
        """ペイロードを追加して再レンダリング

        Returns:
            新しい rendered
        """
        self._parts.append(payload)
        self._raw += payload
        self._rendered = self._transform(self._raw)
        return self._rendered

    def rerender(self) -> str:
        """raw から rendered を再計算"""
        return self._transform(self._raw)

    def __len__(self) -> int:
        return len(self._raw)

    def __repr__(self) -> str:
        return (
            f"ChannelBuffer(channel={self.channel.value!r}, "
            f"fragments={len(self._parts)}, chars={len(self._raw)})"
        )


@dataclass(frozen=True)
class Snapshot:
    """スナップショット

    ある時点の両チャネルの表示用状態。購読者へ公開される。
    """

    answer: str = ""
    query: str = ""
    status: SessionStatus = SessionStatus.IDLE
    sequence: int = 0
    session_id: str = ""

    @property
    def is_final(self) -> bool:
        """終端状態のスナップショットか"""
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "answer": self.answer,
            "query": self.query,
            "status": self.status.value,
            "sequence": self.sequence,
            "session_id": self.session_id,
        }


@dataclass(frozen=True)
class Segments:
    """回答のセグメント化結果"""

    title: Optional[str] = None
    items: tuple[str, ...] = ()
    summary: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        """何も分類されなかったか"""
        return self.title is None and not self.items and self.summary is None

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "title": self.title,
            "items": list(self.items),
            "summary": self.summary,
        }


@dataclass(frozen=True)
class ServerEvent:
    """サーバー送信イベント（SSE）1件"""

    data: bytes = b""
    event: str = "message"
    event_id: Optional[str] = None


def new_session_id() -> str:
    """セッションIDを生成"""
    return str(uuid.uuid4())[:8]
