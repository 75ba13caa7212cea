# FlightQuery API Base Types
"""
flightquery.api.base - 基本型定義
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flightquery.stream.formatter import DEFAULT_INDENT
from flightquery.stream.segmenter import (
    DEFAULT_ITEM_MARKER,
    DEFAULT_SEPARATOR,
    DEFAULT_SUMMARY_MARKER,
    SegmenterConfig,
)
from flightquery.stream.transport import TransportConfig


# 定型の質問
PREDEFINED_PROMPTS: tuple[str, ...] = (
    "What is the cheapest flight from New Delhi to Hanoi?",
    "Find the cheapest round trip from New Delhi to Hanoi?",
    "Find the cheapest return flight between New Delhi and Hanoi with at least 7 days gap?",
    "List round trip flights between Mumbai and Phu Quoc?",
)

# 回答が空のまま完了したときの表示
NO_ANSWER_TEXT = "No answer found."


@dataclass
class FlightQueryConfig:
    """FlightQuery設定"""

    # 接続設定
    base_url: str = "http://localhost:8000"
    endpoint: str = "/stream"
    query_param: str = "question"
    timeout_seconds: float | None = None
    read_timeout_seconds: float | None = 60.0

    # SQL整形
    sql_dialect: str | None = None
    sql_indent: int = DEFAULT_INDENT

    # セグメント分割
    separator: str = DEFAULT_SEPARATOR
    item_marker: str = DEFAULT_ITEM_MARKER
    summary_marker: str = DEFAULT_SUMMARY_MARKER

    # ログ
    log_level: str = "warning"

    def transport_config(self) -> TransportConfig:
        """トランスポート設定を生成"""
        return TransportConfig(
            base_url=self.base_url,
            endpoint=self.endpoint,
            query_param=self.query_param,
            timeout_seconds=self.timeout_seconds,
            read_timeout_seconds=self.read_timeout_seconds,
        )

    def segmenter_config(self) -> SegmenterConfig:
        """セグメント分割設定を生成"""
        return SegmenterConfig(
            separator=self.separator,
            item_marker=self.item_marker,
            summary_marker=self.summary_marker,
        )

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "base_url": self.base_url,
            "endpoint": self.endpoint,
            "query_param": self.query_param,
            "timeout_seconds": self.timeout_seconds,
            "read_timeout_seconds": self.read_timeout_seconds,
            "sql_dialect": self.sql_dialect,
            "sql_indent": self.sql_indent,
            "separator": self.separator,
            "item_marker": self.item_marker,
            "summary_marker": self.summary_marker,
            "log_level": self.log_level,
        }
