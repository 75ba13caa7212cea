"""FlightQuery Error Handling Framework.

統一的なエラー管理を提供。

Example:
    >>> from flightquery.errors import (
    ...     FlightQueryError, ValidationError, TransportError, ErrorHandler
    ... )
    >>>
    >>> raise TransportError("Connection refused", url="http://localhost:8000/stream")
    >>>
    >>> handler = ErrorHandler()
    >>> try:
    ...     parse_envelope(data)
    ... except MalformedFragmentError as e:
    ...     handler.handle(e, component="session", reraise=False)
"""

from __future__ import annotations

import logging
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

__all__ = [
    # Base exceptions
    "FlightQueryError",
    "ConfigurationError",
    "ValidationError",
    "MalformedFragmentError",
    "FormatFallback",
    "TransportError",
    # Error context
    "ErrorContext",
    "ErrorSeverity",
    # Error handler
    "ErrorHandlerConfig",
    "ErrorHandler",
    "create_error_handler",
    "get_error_handler",
]


# ============================================================
# Error Severity
# ============================================================


class ErrorSeverity(str, Enum):
    """エラー重要度"""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_logging_level(self) -> int:
        """ロギングレベルに変換"""
        mapping = {
            ErrorSeverity.DEBUG: logging.DEBUG,
            ErrorSeverity.INFO: logging.INFO,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.CRITICAL: logging.CRITICAL,
        }
        return mapping[self]


# ============================================================
# Error Context
# ============================================================


@dataclass
class ErrorContext:
    """エラーコンテキスト情報

    Attributes:
        error_id: ユニークなエラーID
        timestamp: エラー発生時刻
        component: エラー発生コンポーネント
        operation: 実行中の操作
        details: 追加の詳細情報
        stack_trace: スタックトレース
        session_id: ストリームセッションID
    """

    error_id: str = field(default_factory=lambda: f"err_{int(time.time() * 1000)}")
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    component: str | None = None
    operation: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    stack_trace: str | None = None
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat(),
            "component": self.component,
            "operation": self.operation,
            "details": self.details,
            "stack_trace": self.stack_trace,
            "session_id": self.session_id,
        }


# ============================================================
# Base Exception Classes
# ============================================================


class FlightQueryError(Exception):
    """FlightQuery基底例外クラス

    すべてのFlightQuery例外の基底クラス。
    構造化されたエラー情報を提供。

    Attributes:
        message: エラーメッセージ
        code: エラーコード
        severity: エラー重要度
        context: エラーコンテキスト
        cause: 原因となった例外
    """

    default_code: str = "FLIGHTQUERY_ERROR"
    default_severity: ErrorSeverity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        code: str | None = None,
        severity: ErrorSeverity | None = None,
        cause: Exception | None = None,
        component: str | None = None,
        operation: str | None = None,
        session_id: str | None = None,
        **details: Any,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.severity = severity or self.default_severity
        self.cause = cause

        self.context = ErrorContext(
            component=component,
            operation=operation,
            details=details,
            stack_trace=traceback.format_exc() if cause else None,
            session_id=session_id,
        )

    def __str__(self) -> str:
        parts = [f"[{self.code}] {self.message}"]
        if self.context.component:
            parts.append(f"(component: {self.context.component})")
        if self.context.operation:
            parts.append(f"(operation: {self.context.operation})")
        if self.cause:
            parts.append(f"caused by: {self.cause}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"severity={self.severity.value!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "severity": self.severity.value,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }

    def with_context(self, **kwargs: Any) -> "FlightQueryError":
        """追加のコンテキストを設定"""
        self.context.details.update(kwargs)
        return self

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        **kwargs: Any,
    ) -> "FlightQueryError":
        """既存の例外からFlightQueryErrorを作成"""
        return cls(
            message=message or str(exc),
            cause=exc,
            **kwargs,
        )


# ============================================================
# Specific Exception Classes
# ============================================================


class ConfigurationError(FlightQueryError):
    """設定エラー

    設定ファイルの読み込みや検証に失敗した場合。
    """

    default_code = "CONFIG_ERROR"
    default_severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        path: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        if path:
            self.context.details["path"] = path


class ValidationError(FlightQueryError):
    """バリデーションエラー

    送信されたクエリが空の場合など。トランスポートは開かれない。
    """

    default_code = "VALIDATION_ERROR"
    default_severity = ErrorSeverity.WARNING

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        if field:
            self.context.details["field"] = field
        if value is not None:
            self.context.details["value"] = repr(value)


class MalformedFragmentError(FlightQueryError):
    """不正フラグメントエラー

    1イベントのペイロードを解析できなかった場合。
    フラグメントは破棄され、セッションは継続する。
    """

    default_code = "MALFORMED_FRAGMENT"
    default_severity = ErrorSeverity.WARNING

    def __init__(
        self,
        message: str,
        payload: str | bytes | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        if payload is not None:
            preview = payload[:200]
            self.context.details["payload"] = repr(preview)


class FormatFallback(FlightQueryError):
    """フォーマットフォールバック

    未完成のSQL文を整形できなかったことを示す。
    フォーマッタ内部でのみ使用し、呼び出し元には送出しない。
    """

    default_code = "FORMAT_FALLBACK"
    default_severity = ErrorSeverity.DEBUG


class TransportError(FlightQueryError):
    """トランスポートエラー

    接続失敗、HTTPエラー、タイムアウト、サーバー側のエラー通知。
    セッションにとって致命的（failed に遷移）。
    """

    default_code = "TRANSPORT_ERROR"
    default_severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if url:
            self.context.details["url"] = url
        if status_code is not None:
            self.context.details["status_code"] = status_code


# ============================================================
# Error Handler
# ============================================================


@dataclass
class ErrorHandlerConfig:
    """エラーハンドラ設定"""

    log_errors: bool = True
    include_stack_trace: bool = True
    max_recent_errors: int = 100


class ErrorHandler:
    """統合エラーハンドラ

    エラーのログ記録、変換、集約を管理。

    Example:
        >>> handler = ErrorHandler()
        >>>
        >>> try:
        ...     risky_operation()
        ... except Exception as e:
        ...     handler.handle(e, component="session", operation="receive")
    """

    def __init__(
        self,
        config: ErrorHandlerConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config or ErrorHandlerConfig()
        self.logger = logger or logging.getLogger("flightquery.errors")

        self._error_counts: dict[str, int] = {}
        self._recent_errors: list[FlightQueryError] = []

    def handle(
        self,
        error: Exception,
        component: str | None = None,
        operation: str | None = None,
        reraise: bool = True,
        **context: Any,
    ) -> FlightQueryError:
        """エラーを処理

        Args:
            error: 処理するエラー
            component: コンポーネント名
            operation: 操作名
            reraise: エラーを再送出するか
            **context: 追加のコンテキスト

        Returns:
            変換されたFlightQueryError

        Raises:
            FlightQueryError: reraise=Trueの場合
        """
        if isinstance(error, FlightQueryError):
            fq_error = error
            if component:
                fq_error.context.component = component
            if operation:
                fq_error.context.operation = operation
            fq_error.context.details.update(context)
        else:
            fq_error = FlightQueryError.from_exception(
                error,
                component=component,
                operation=operation,
                **context,
            )

        if self.config.log_errors:
            self._log_error(fq_error)

        self._update_stats(fq_error)

        if reraise:
            raise fq_error

        return fq_error

    def _log_error(self, error: FlightQueryError) -> None:
        """エラーをログ記録"""
        level = error.severity.to_logging_level()

        message = str(error)
        if self.config.include_stack_trace and error.context.stack_trace:
            message += f"\n{error.context.stack_trace}"

        self.logger.log(level, message, extra={"error": error.to_dict()})

    def _update_stats(self, error: FlightQueryError) -> None:
        """統計を更新"""
        error_type = error.__class__.__name__
        self._error_counts[error_type] = self._error_counts.get(error_type, 0) + 1

        self._recent_errors.append(error)
        if len(self._recent_errors) > self.config.max_recent_errors:
            self._recent_errors.pop(0)

    def get_stats(self) -> dict[str, Any]:
        """エラー統計を取得"""
        return {
            "error_counts": dict(self._error_counts),
            "total_errors": sum(self._error_counts.values()),
            "recent_error_count": len(self._recent_errors),
        }

    def get_recent_errors(self, limit: int = 10) -> list[dict[str, Any]]:
        """最近のエラーを取得"""
        return [e.to_dict() for e in self._recent_errors[-limit:]]

    def clear_stats(self) -> None:
        """統計をクリア"""
        self._error_counts.clear()
        self._recent_errors.clear()


# Global error handler
_default_handler: ErrorHandler | None = None


def create_error_handler(
    config: ErrorHandlerConfig | None = None,
    logger: logging.Logger | None = None,
) -> ErrorHandler:
    """エラーハンドラを作成"""
    global _default_handler
    _default_handler = ErrorHandler(config=config, logger=logger)
    return _default_handler


def get_error_handler() -> ErrorHandler:
    """グローバルエラーハンドラを取得"""
    global _default_handler
    if _default_handler is None:
        _default_handler = ErrorHandler()
    return _default_handler
