"""Response Segmenter.

正規化済みの回答をタイトル・項目・サマリーに分割する。
途中のスナップショットに対しても毎回呼べる純粋関数。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from flightquery.stream.types import Segments

__all__ = [
    "DEFAULT_SEPARATOR",
    "DEFAULT_ITEM_MARKER",
    "DEFAULT_SUMMARY_MARKER",
    "HEADING_MARKER",
    "SegmenterConfig",
    "segment",
    "split_parts",
]

DEFAULT_SEPARATOR = "---"
DEFAULT_ITEM_MARKER = "✈"      # ✈ (異体字セレクタ付きの ✈️ にも一致)
DEFAULT_SUMMARY_MARKER = "Summary:"
HEADING_MARKER = "#"


@dataclass(frozen=True)
class SegmenterConfig:
    """セグメント分割の設定"""

    separator: str = DEFAULT_SEPARATOR
    item_marker: str = DEFAULT_ITEM_MARKER
    summary_marker: str = DEFAULT_SUMMARY_MARKER


_DEFAULT_CONFIG = SegmenterConfig()


def split_parts(text: str, separator: str = DEFAULT_SEPARATOR) -> list[str]:
    """区切り行で分割し、空のパートを除く

    区切りは単独の行として現れたものだけを対象にする
    （テーブルの ``| --- |`` 行は分割しない）。
    """
    pattern = re.compile(
        rf"^[ \t]*{re.escape(separator)}[ \t]*$",
        re.MULTILINE,
    )
    return [part for part in pattern.split(text) if part.strip()]


def _is_heading(part: str) -> bool:
    return part.strip().startswith(HEADING_MARKER)


def _title_of(part: str) -> Optional[str]:
    first_line = part.strip().split("\n", 1)[0]
    title = first_line.lstrip(HEADING_MARKER).strip()
    return title or None


def segment(
    rendered_answer: str,
    config: SegmenterConfig | None = None,
) -> Segments:
    """回答をセグメント化

    Args:
        rendered_answer: 正規化済みの回答テキスト
        config: 区切り・マーカーの設定

    Returns:
        Segments（分類できないパートは含まれない）
    """
    config = config or _DEFAULT_CONFIG

    title: Optional[str] = None
    heading_seen = False
    items: list[str] = []
    summary: Optional[str] = None

    for part in split_parts(rendered_answer, config.separator):
        # 最初の見出しパートだけがタイトル（空でも後続は見ない）
        if not heading_seen and _is_heading(part):
            heading_seen = True
            title = _title_of(part)

        marker_at = part.find(config.item_marker)
        if marker_at >= 0:
            items.append(part[marker_at:].strip())

        if summary is None and config.summary_marker in part:
            summary = part.strip()

    return Segments(title=title, items=tuple(items), summary=summary)
