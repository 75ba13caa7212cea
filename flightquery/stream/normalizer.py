"""Chunk Normalizer.

回答バッファ全体に毎回適用する純粋なテキスト変換。
トークン単位の部分配信で生じる空白・Markdown の崩れを補正する。

ルールは固定順で適用され、各ルールもパイプライン全体も冪等:

    normalize(normalize(text)) == normalize(text)

チャンク境界は区切り記号・テーブルのパイプ・句読点の連続を分断しうるので、
追加された末尾だけでなく常にバッファ全体を対象にする。
"""

from __future__ import annotations

import re
from typing import Callable

__all__ = [
    "REASONING_OPEN",
    "REASONING_CLOSE",
    "NORMALIZATION_RULES",
    "normalize",
    "strip_reasoning",
    "space_after_punctuation",
    "space_before_parenthesis",
    "normalize_table_rows",
    "normalize_heading_markers",
    "normalize_bold_markers",
]

REASONING_OPEN = "<think>"
REASONING_CLOSE = "</think>"

# 後ろに空白を補う句読点
_PUNCTUATION = ".,!?)"

# 句読点の直後にあっても「本文」とみなさない文字
_INLINE_CLOSERS = frozenset("*_`~\"']")

_AFTER_PUNCTUATION = re.compile(r"([.,!?)])(?=(\S))")
_BEFORE_PARENTHESIS = re.compile(r"(?<=[^\s(\[\]*_`~])\(")

_TABLE_ROW = re.compile(r"^([ \t]*)\|(.*)$")
_CELL_DELIMITER = re.compile(r"(?<!\\)\|")

_HEADING = re.compile(r"^( {0,3})(#+)(?!#)[ \t]*(?=\S)", re.MULTILINE)

_BOLD_MARKER = re.compile(r"\*{2,}")
_OPENER_EXEMPT = frozenset("([{\"'")
_CLOSER_EXEMPT = frozenset(".,!?:;)]}\"'")


# ============================================================
# Rules
# ============================================================


def strip_reasoning(text: str) -> str:
    """推論スパン ``<think>...</think>`` を区切りごと除去

    閉じていない開始タグ以降はすべて抑制する（ストリーム途中の状態）。
    除去によって新たなタグが現れる場合も、なくなるまで繰り返す。
    """
    while True:
        start = text.find(REASONING_OPEN)
        if start < 0:
            return text
        end = text.find(REASONING_CLOSE, start + len(REASONING_OPEN))
        if end < 0:
            return text[:start]
        text = text[:start] + text[end + len(REASONING_CLOSE):]


def space_after_punctuation(text: str) -> str:
    """句読点の直後に本文が続く場合に空白を1つ挿入

    ``...`` や ``?!`` のような句読点の連続の内部は変更しない。
    数字に挟まれた ``.`` と ``,`` （``1,250.50``）と画像記法 ``![`` は対象外。
    """
    def replace(match: re.Match[str]) -> str:
        mark, following = match.group(1), match.group(2)
        if following in _PUNCTUATION or following in _INLINE_CLOSERS:
            return mark
        if mark in ".," and following.isdigit():
            start = match.start()
            if start > 0 and text[start - 1].isdigit():
                return mark
        if mark == "!" and following == "[":
            return mark
        return mark + " "

    return _AFTER_PUNCTUATION.sub(replace, text)


def space_before_parenthesis(text: str) -> str:
    """空白の後にない ``(`` の前に空白を1つ挿入

    リンク記法 ``[text](url)`` と強調記号直後の括弧はそのまま残す。
    """
    return _BEFORE_PARENTHESIS.sub(" (", text)


def normalize_table_rows(text: str) -> str:
    """テーブル行のセル境界の余白をちょうど1つに揃える

    セル内容はそのまま保持する。閉じていない末尾セルには
    パイプを補わない。
    """
    lines = text.split("\n")
    for index, line in enumerate(lines):
        match = _TABLE_ROW.match(line)
        if match:
            lines[index] = _normalize_row(match.group(1), match.group(2))
    return "\n".join(lines)


def _normalize_row(indent: str, body: str) -> str:
    cells = _CELL_DELIMITER.split(body)
    trailing = cells.pop().strip()

    parts = [indent, "|"]
    for cell in cells:
        content = cell.strip()
        parts.append(f" {content} |" if content else " |")
    if trailing:
        parts.append(f" {trailing}")
    return "".join(parts)


def normalize_heading_markers(text: str) -> str:
    """見出し記号 ``#`` の連続の後の空白をちょうど1つにする"""
    return _HEADING.sub(r"\1\2 ", text)


def normalize_bold_markers(text: str) -> str:
    """太字記号 ``**`` と前後の本文の間の空白をちょうど1つにする

    記号は行ごとに左から開始・終了の順で対にする。閉じていない開始記号も
    前側の空白は補正する。行頭・行末、開き括弧の後、閉じ句読点の前は対象外。
    """
    return "\n".join(_normalize_bold_line(line) for line in text.split("\n"))


def _normalize_bold_line(line: str) -> str:
    markers = list(_BOLD_MARKER.finditer(line))
    if not markers:
        return line

    # segments[i] は markers[i] の直前のテキスト、最後の要素は末尾
    segments: list[str] = []
    position = 0
    for marker in markers:
        segments.append(line[position:marker.start()])
        position = marker.end()
    segments.append(line[position:])

    last = len(segments) - 1
    for index in range(len(segments)):
        segment = segments[index]
        closes_before = index > 0 and index % 2 == 0
        opens_after = index < last and index % 2 == 0

        if closes_before:
            segment = _pad_after_closer(segment, at_line_end=index == last)
        if opens_after:
            segment = _pad_before_opener(segment, at_line_start=index == 0)
        segments[index] = segment

    pieces = [segments[0]]
    for marker, segment in zip(markers, segments[1:]):
        pieces.append(marker.group(0))
        pieces.append(segment)
    return "".join(pieces)


def _pad_after_closer(segment: str, at_line_end: bool) -> str:
    rest = segment.lstrip(" \t")
    if not rest:
        return segment if at_line_end else " "
    if rest[0] in _CLOSER_EXEMPT:
        return segment
    return " " + rest


def _pad_before_opener(segment: str, at_line_start: bool) -> str:
    head = segment.rstrip(" \t")
    if not head:
        return segment if at_line_start else " "
    if head[-1] in _OPENER_EXEMPT:
        return segment
    return head + " "


# ============================================================
# Pipeline
# ============================================================


NORMALIZATION_RULES: tuple[Callable[[str], str], ...] = (
    strip_reasoning,
    space_after_punctuation,
    space_before_parenthesis,
    normalize_table_rows,
    normalize_heading_markers,
    normalize_bold_markers,
)


def normalize(raw: str) -> str:
    """回答バッファ全体を正規化

    Args:
        raw: これまでに受信した回答テキストの連結

    Returns:
        表示用に正規化したテキスト
    """
    text = raw
    for rule in NORMALIZATION_RULES:
        text = rule(text)
    return text
