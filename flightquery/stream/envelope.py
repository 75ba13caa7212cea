"""Envelope Parser.

サーバー送信イベント1件を Fragment に変換する。

対応するエンベロープ:
    (a) ``{"type": "answer" | "sql", "content": "..."}``
    (b) 上記の前に ``data:`` ラベルと空白が付いたもの

名前付きイベント ``done`` は正常完了、``error`` はサーバー側のエラー通知。
"""

from __future__ import annotations

import json
import re
from typing import Optional, Union

from flightquery.errors import MalformedFragmentError
from flightquery.stream.types import Channel, ControlSignal, Fragment

__all__ = [
    "CHANNEL_TYPES",
    "CONTROL_TYPES",
    "DONE_SENTINELS",
    "decode_payload",
    "strip_data_label",
    "parse_envelope",
]

# エンベロープの type → チャネル
CHANNEL_TYPES: dict[str, Channel] = {
    "answer": Channel.ANSWER,
    "sql": Channel.QUERY,
    "query": Channel.QUERY,
}

CONTROL_TYPES: dict[str, ControlSignal] = {
    "done": ControlSignal.DONE,
    "error": ControlSignal.ERROR,
}

# データとして送られてくる完了マーカー
DONE_SENTINELS = frozenset({"[DONE]", "done"})

_DATA_LABEL = re.compile(r"^\s*data:\s*")


def decode_payload(data: Union[bytes, str]) -> str:
    """ペイロードを UTF-8 としてデコード

    Raises:
        MalformedFragmentError: 不正なエンコーディング
    """
    if isinstance(data, str):
        return data
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedFragmentError(
            "Payload is not valid UTF-8",
            payload=data,
            cause=e,
        ) from e


def strip_data_label(text: str) -> str:
    """先頭の ``data:`` ラベル（繰り返しを含む）と空白を除去"""
    stripped = text.strip()
    while True:
        match = _DATA_LABEL.match(stripped)
        if match is None:
            return stripped
        stripped = stripped[match.end():].strip()


def parse_envelope(
    data: Union[bytes, str],
    event: str = "message",
) -> Optional[Fragment]:
    """イベントを Fragment に変換

    Args:
        data: イベントのデータ部
        event: SSE のイベント名

    Returns:
        Fragment。未知の type の場合は None（前方互換のため無視する）

    Raises:
        MalformedFragmentError: ペイロードを解析できない場合
    """
    if event == "done":
        return Fragment.control(ControlSignal.DONE)
    if event == "error":
        message = data if isinstance(data, str) else data.decode("utf-8", "replace")
        return Fragment.control(ControlSignal.ERROR, _error_message(message))

    text = strip_data_label(decode_payload(data))
    if not text:
        raise MalformedFragmentError("Empty payload", payload=data)
    if text in DONE_SENTINELS:
        return Fragment.control(ControlSignal.DONE)

    try:
        envelope = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedFragmentError(
            f"Payload is not valid JSON: {e.msg}",
            payload=text,
            cause=e,
        ) from e

    if not isinstance(envelope, dict):
        raise MalformedFragmentError("Envelope is not a JSON object", payload=text)

    kind = envelope.get("type")
    if not isinstance(kind, str):
        raise MalformedFragmentError("Envelope has no 'type' field", payload=text)

    if kind in CONTROL_TYPES:
        signal = CONTROL_TYPES[kind]
        if signal is ControlSignal.ERROR:
            return Fragment.control(signal, _error_message(envelope.get("content")))
        return Fragment.control(signal)

    channel = CHANNEL_TYPES.get(kind)
    if channel is None:
        return None

    content = envelope.get("content")
    if not isinstance(content, str):
        raise MalformedFragmentError(
            f"Envelope content for '{kind}' is not a string",
            payload=text,
        )
    return Fragment(channel=channel, payload=content)


def _error_message(content: object) -> str:
    """エラー通知のメッセージを取り出す"""
    if content is None:
        return "Server reported an error"
    if isinstance(content, str):
        text = strip_data_label(content)
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return text or "Server reported an error"
        content = parsed
    if isinstance(content, dict):
        for key in ("content", "message", "error", "detail"):
            value = content.get(key)
            if value:
                return str(value)
    return str(content)
