"""Incremental Formatter.

クエリバッファ全体を SQL として整形する。
ストリーム途中の未完成な文は解析できないことが多いので、
その場合は受信したテキストをそのまま返す（FormatFallback）。
呼び出し間で解析状態は持たない。
"""

from __future__ import annotations

import logging
from typing import Optional

import sqlglot
from sqlglot.errors import SqlglotError

from flightquery.errors import FormatFallback

__all__ = [
    "DEFAULT_INDENT",
    "STATEMENT_SEPARATOR",
    "format_query",
    "pretty_print",
]

logger = logging.getLogger(__name__)

DEFAULT_INDENT = 2
STATEMENT_SEPARATOR = ";\n\n"


def pretty_print(
    raw: str,
    indent: int = DEFAULT_INDENT,
    dialect: Optional[str] = None,
) -> str:
    """SQL を整形

    Args:
        raw: SQL テキスト
        indent: インデント幅
        dialect: sqlglot の方言名（None は汎用）

    Returns:
        整形済み SQL

    Raises:
        FormatFallback: 完全な文として解析できない場合
    """
    try:
        expressions = sqlglot.parse(raw, read=dialect)
        statements = [
            expression.sql(dialect=dialect, pretty=True, pad=indent, indent=indent)
            for expression in expressions
            if expression is not None
        ]
    except SqlglotError as e:
        raise FormatFallback("Statement is not parseable yet", cause=e) from e
    except Exception as e:
        # 途中までの入力で sqlglot 内部の例外が出ることがある
        raise FormatFallback(f"sqlglot failed on partial input: {e}", cause=e) from e

    if not statements:
        raise FormatFallback("No statement to format")
    return STATEMENT_SEPARATOR.join(statements)


def format_query(
    raw: str,
    indent: int = DEFAULT_INDENT,
    dialect: Optional[str] = None,
) -> str:
    """クエリバッファ全体を整形（失敗時は入力をそのまま返す）

    例外を送出しない。
    """
    if not raw.strip():
        return raw
    try:
        return pretty_print(raw, indent=indent, dialect=dialect)
    except FormatFallback as fallback:
        logger.debug("Falling back to raw query text: %s", fallback.message)
        return raw
