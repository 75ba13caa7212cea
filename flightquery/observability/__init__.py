# FlightQuery Observability Module
"""
flightquery.observability - ロギング、メトリクス

ストリームセッションの構造化ログとカウンタを提供する。
ログは標準の logging に流し、メトリクスはエクスポーターへ送る。
"""

from __future__ import annotations

import asyncio
import functools
import logging
import sys
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Generator, TypeVar

# Type variable for generic decorators
F = TypeVar("F", bound=Callable[..., Any])


# ============================================================
# Enums
# ============================================================


class LogLevel(Enum):
    """ログレベル"""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_logging_level(self) -> int:
        """Python logging レベルに変換"""
        mapping = {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARNING: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
            LogLevel.CRITICAL: logging.CRITICAL,
        }
        return mapping[self]


class MetricType(Enum):
    """メトリクスタイプ"""

    COUNTER = "counter"         # 累積カウンタ
    GAUGE = "gauge"             # 瞬間値
    TIMER = "timer"             # 時間計測


# ============================================================
# Data Classes
# ============================================================


@dataclass
class MetricValue:
    """メトリクス値"""

    name: str
    value: float
    metric_type: MetricType
    timestamp: float = field(default_factory=time.time)
    tags: dict[str, str] = field(default_factory=dict)
    unit: str = ""

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "name": self.name,
            "value": self.value,
            "type": self.metric_type.value,
            "timestamp": self.timestamp,
            "tags": self.tags,
            "unit": self.unit,
        }


@dataclass
class LogEntry:
    """ログエントリ"""

    level: LogLevel
    message: str
    timestamp: float = field(default_factory=time.time)
    logger_name: str = "flightquery"

    # 追加データ
    extra: dict[str, Any] = field(default_factory=dict)

    # 例外情報
    exception: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "level": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "logger_name": self.logger_name,
            "extra": self.extra,
            "exception": self.exception,
        }

    def format(self, include_time: bool = True) -> str:
        """フォーマット済み文字列を生成"""
        parts = []
        if include_time:
            dt = datetime.fromtimestamp(self.timestamp)
            parts.append(f"[{dt.strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]}]")
            parts.append(f"[{self.level.value.upper():8s}]")
            parts.append(f"[{self.logger_name}]")

        parts.append(self.message)

        if self.extra:
            extras = " ".join(f"{k}={v}" for k, v in self.extra.items())
            parts.append(f"| {extras}")

        if self.exception:
            parts.append(f"| exception={self.exception}")

        return " ".join(parts)


@dataclass
class ObservabilityConfig:
    """Observability設定"""

    # ログ設定
    log_level: LogLevel = LogLevel.WARNING
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_to_console: bool = True
    log_to_file: str | None = None

    # メトリクス設定
    metrics_enabled: bool = True
    metrics_prefix: str = "flightquery"

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "log_level": self.log_level.value,
            "log_to_console": self.log_to_console,
            "log_to_file": self.log_to_file,
            "metrics_enabled": self.metrics_enabled,
            "metrics_prefix": self.metrics_prefix,
        }


# ============================================================
# Exporter Protocol
# ============================================================


class TelemetryExporterProtocol(ABC):
    """テレメトリエクスポーターのプロトコル"""

    @abstractmethod
    def export_metrics(self, metrics: list[MetricValue]) -> None:
        """メトリクスをエクスポート"""
        ...

    @abstractmethod
    def export_logs(self, logs: list[LogEntry]) -> None:
        """ログをエクスポート"""
        ...

    @abstractmethod
    def flush(self) -> None:
        """バッファをフラッシュ"""
        ...


class LoggingExporter(TelemetryExporterProtocol):
    """標準 logging へ転送するエクスポーター（デフォルト）"""

    def __init__(self, verbose_metrics: bool = False):
        self.verbose_metrics = verbose_metrics

    def export_metrics(self, metrics: list[MetricValue]) -> None:
        """メトリクスをDEBUGログとして出力"""
        if not self.verbose_metrics:
            return
        metrics_logger = logging.getLogger("flightquery.metrics")
        for metric in metrics:
            tags = " ".join(f"{k}={v}" for k, v in metric.tags.items())
            metrics_logger.debug(f"{metric.name}={metric.value} {tags}".rstrip())

    def export_logs(self, logs: list[LogEntry]) -> None:
        """ログを対応する Python ロガーへ出力"""
        for entry in logs:
            logging.getLogger(entry.logger_name).log(
                entry.level.to_logging_level(),
                entry.format(include_time=False),
            )

    def flush(self) -> None:
        """フラッシュ（logging側で処理されるので何もしない）"""
        pass


class InMemoryExporter(TelemetryExporterProtocol):
    """インメモリエクスポーター（テスト用）"""

    def __init__(self):
        self.metrics: list[MetricValue] = []
        self.logs: list[LogEntry] = []

    def export_metrics(self, metrics: list[MetricValue]) -> None:
        """メトリクスをメモリに保存"""
        self.metrics.extend(metrics)

    def export_logs(self, logs: list[LogEntry]) -> None:
        """ログをメモリに保存"""
        self.logs.extend(logs)

    def flush(self) -> None:
        """フラッシュ（何もしない）"""
        pass

    def clear(self) -> None:
        """データをクリア"""
        self.metrics.clear()
        self.logs.clear()


# ============================================================
# Metrics
# ============================================================


class MetricsCollector:
    """メトリクスコレクター

    Example:
        metrics = MetricsCollector()

        metrics.increment("fragment.accepted", tags={"channel": "answer"})
        metrics.gauge("session.answer_chars", 1024)
        metrics.timer("session.duration_ms", 850.0)
    """

    def __init__(
        self,
        exporter: TelemetryExporterProtocol | None = None,
        config: ObservabilityConfig | None = None,
    ):
        self.exporter = exporter or LoggingExporter()
        self.config = config or ObservabilityConfig()

        self._counters: dict[str, float] = {}
        self._gauges: dict[str, float] = {}
        self._pending_metrics: list[MetricValue] = []

    def _metric_name(self, name: str) -> str:
        """プレフィックス付きメトリクス名"""
        return f"{self.config.metrics_prefix}.{name}"

    def increment(
        self,
        name: str,
        value: float = 1.0,
        tags: dict[str, str] | None = None,
    ) -> None:
        """カウンタをインクリメント"""
        if not self.config.metrics_enabled:
            return

        full_name = self._metric_name(name)
        self._counters[full_name] = self._counters.get(full_name, 0) + value

        self._pending_metrics.append(MetricValue(
            name=full_name,
            value=value,
            metric_type=MetricType.COUNTER,
            tags=tags or {},
        ))

    def gauge(
        self,
        name: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """ゲージ値を設定"""
        if not self.config.metrics_enabled:
            return

        full_name = self._metric_name(name)
        self._gauges[full_name] = value

        self._pending_metrics.append(MetricValue(
            name=full_name,
            value=value,
            metric_type=MetricType.GAUGE,
            tags=tags or {},
        ))

    def timer(
        self,
        name: str,
        value_ms: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """タイマー値を記録"""
        if not self.config.metrics_enabled:
            return

        self._pending_metrics.append(MetricValue(
            name=self._metric_name(name),
            value=value_ms,
            metric_type=MetricType.TIMER,
            tags=tags or {},
            unit="ms",
        ))

    @contextmanager
    def measure_time(
        self,
        name: str,
        tags: dict[str, str] | None = None,
    ) -> Generator[None, None, None]:
        """時間計測コンテキストマネージャ"""
        start = time.time()
        try:
            yield
        finally:
            elapsed_ms = (time.time() - start) * 1000
            self.timer(name, elapsed_ms, tags)

    def get_counter(self, name: str) -> float:
        """カウンタ値を取得"""
        return self._counters.get(self._metric_name(name), 0.0)

    def get_gauge(self, name: str) -> float | None:
        """ゲージ値を取得"""
        return self._gauges.get(self._metric_name(name))

    def flush(self) -> None:
        """保留中のメトリクスをエクスポート"""
        if self._pending_metrics:
            self.exporter.export_metrics(self._pending_metrics)
            self._pending_metrics = []
        self.exporter.flush()

    def get_status(self) -> dict[str, Any]:
        """現在の状態を取得"""
        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "pending": len(self._pending_metrics),
        }


# ============================================================
# Logger
# ============================================================


class Logger:
    """構造化ロガー

    Example:
        logger = Logger("flightquery.session")

        logger.info("Session started", session_id=session_id)
        logger.warning("Dropped malformed fragment", error=str(e))
    """

    def __init__(
        self,
        name: str = "flightquery",
        exporter: TelemetryExporterProtocol | None = None,
        config: ObservabilityConfig | None = None,
    ):
        self.name = name
        self.exporter = exporter or LoggingExporter()
        self.config = config or ObservabilityConfig()

        self._setup_python_logger()

    def _setup_python_logger(self) -> None:
        """Python標準ロガーをセットアップ"""
        self._python_logger = logging.getLogger(self.name)
        self._python_logger.setLevel(self.config.log_level.to_logging_level())

        # ルートロガーにのみハンドラを付ける（子は伝播させる）
        if "." in self.name or self._python_logger.handlers:
            return

        # stdout はCLIの描画に使うので stderr に出す
        if self.config.log_to_console:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(self.config.log_format))
            self._python_logger.addHandler(handler)

        if self.config.log_to_file:
            file_handler = logging.FileHandler(self.config.log_to_file)
            file_handler.setFormatter(logging.Formatter(self.config.log_format))
            self._python_logger.addHandler(file_handler)

    def _enabled(self, level: LogLevel) -> bool:
        return self.config.log_level.to_logging_level() <= level.to_logging_level()

    def _log(
        self,
        level: LogLevel,
        message: str,
        exception: Exception | None = None,
        **kwargs: Any,
    ) -> None:
        """ログを記録"""
        entry = LogEntry(
            level=level,
            message=message,
            logger_name=self.name,
            extra=kwargs,
            exception=str(exception) if exception else None,
        )

        self.exporter.export_logs([entry])

    def debug(self, message: str, **kwargs: Any) -> None:
        """DEBUGログ"""
        if self._enabled(LogLevel.DEBUG):
            self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """INFOログ"""
        if self._enabled(LogLevel.INFO):
            self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """WARNINGログ"""
        if self._enabled(LogLevel.WARNING):
            self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, exception: Exception | None = None, **kwargs: Any) -> None:
        """ERRORログ"""
        if self._enabled(LogLevel.ERROR):
            self._log(LogLevel.ERROR, message, exception=exception, **kwargs)

    def critical(self, message: str, exception: Exception | None = None, **kwargs: Any) -> None:
        """CRITICALログ"""
        self._log(LogLevel.CRITICAL, message, exception=exception, **kwargs)

    def child(self, name: str) -> "Logger":
        """子ロガーを生成"""
        return Logger(
            name=f"{self.name}.{name}",
            exporter=self.exporter,
            config=self.config,
        )


# ============================================================
# Observability Manager
# ============================================================


class Observability:
    """Observability統合マネージャー

    メトリクスとロガーを統合管理。

    Example:
        obs = Observability.create({"log_level": "info"})

        obs.logger.info("Streaming started")
        obs.metrics.increment("session.started")
    """

    def __init__(
        self,
        config: ObservabilityConfig | None = None,
        exporter: TelemetryExporterProtocol | None = None,
    ):
        self.config = config or ObservabilityConfig()
        self.exporter = exporter or LoggingExporter()

        self.metrics = MetricsCollector(exporter=self.exporter, config=self.config)
        self.logger = Logger(exporter=self.exporter, config=self.config)

    @classmethod
    def create(
        cls,
        config: ObservabilityConfig | dict[str, Any] | None = None,
        exporter: TelemetryExporterProtocol | None = None,
    ) -> "Observability":
        """Observabilityインスタンスを作成"""
        if isinstance(config, dict):
            config = dict(config)
            if "log_level" in config and isinstance(config["log_level"], str):
                config["log_level"] = LogLevel(config["log_level"].lower())
            config = ObservabilityConfig(**config)

        return cls(config=config, exporter=exporter)

    @classmethod
    def create_for_testing(
        cls,
        log_level: LogLevel = LogLevel.DEBUG,
    ) -> tuple["Observability", InMemoryExporter]:
        """テスト用Observabilityを作成"""
        exporter = InMemoryExporter()
        obs = cls(
            config=ObservabilityConfig(log_level=log_level, log_to_console=False),
            exporter=exporter,
        )
        return obs, exporter

    def flush(self) -> None:
        """すべてのテレメトリをフラッシュ"""
        self.metrics.flush()

    def get_status(self) -> dict[str, Any]:
        """ステータスを取得"""
        return {
            "config": self.config.to_dict(),
            "metrics": self.metrics.get_status(),
        }


# ============================================================
# Decorators
# ============================================================


def timed(
    name: str | None = None,
    tags: dict[str, str] | None = None,
) -> Callable[[F], F]:
    """関数の実行時間を計測するデコレータ

    Example:
        @timed("session.run")
        async def run(self) -> Snapshot:
            ...
    """
    def decorator(func: F) -> F:
        metric_name = name or f"{func.__module__}.{func.__qualname__}.duration"

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                elapsed_ms = (time.time() - start) * 1000
                get_metrics().timer(metric_name, elapsed_ms, tags)

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                elapsed_ms = (time.time() - start) * 1000
                get_metrics().timer(metric_name, elapsed_ms, tags)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore
        return sync_wrapper  # type: ignore

    return decorator


# ============================================================
# Global Instance
# ============================================================

_default_observability: Observability | None = None


def _get_default_observability() -> Observability:
    """デフォルトのObservabilityインスタンスを取得"""
    global _default_observability
    if _default_observability is None:
        _default_observability = Observability.create()
    return _default_observability


def configure_observability(
    config: ObservabilityConfig | dict[str, Any] | None = None,
    exporter: TelemetryExporterProtocol | None = None,
) -> Observability:
    """グローバルObservabilityを設定"""
    global _default_observability
    _default_observability = Observability.create(config, exporter)
    return _default_observability


def get_observability() -> Observability:
    """グローバルObservabilityを取得"""
    return _get_default_observability()


def get_metrics() -> MetricsCollector:
    """グローバルメトリクスコレクターを取得"""
    return _get_default_observability().metrics


def get_logger(name: str = "flightquery") -> Logger:
    """ロガーを取得"""
    obs = _get_default_observability()
    if name == "flightquery":
        return obs.logger
    if name.startswith("flightquery."):
        name = name[len("flightquery."):]
    return obs.logger.child(name)
