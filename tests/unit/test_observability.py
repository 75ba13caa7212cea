"""Tests for Observability: structured logging and metrics."""

import asyncio
import logging
import time

import pytest

from flightquery.observability import (
    InMemoryExporter,
    LogEntry,
    Logger,
    LoggingExporter,
    LogLevel,
    MetricsCollector,
    MetricType,
    MetricValue,
    Observability,
    ObservabilityConfig,
    configure_observability,
    get_logger,
    get_metrics,
    get_observability,
    timed,
)


DEBUG_CONFIG = ObservabilityConfig(log_level=LogLevel.DEBUG, log_to_console=False)


# ============================================================
# Data Class Tests
# ============================================================


class TestMetricValue:
    """MetricValue tests."""

    def test_metric_to_dict(self):
        """Test metric serialization."""
        metric = MetricValue(
            name="flightquery.fragment.accepted",
            value=1,
            metric_type=MetricType.COUNTER,
            tags={"channel": "answer"},
        )

        data = metric.to_dict()

        assert data["name"] == "flightquery.fragment.accepted"
        assert data["type"] == "counter"
        assert data["tags"]["channel"] == "answer"


class TestLogEntry:
    """LogEntry tests."""

    def test_entry_format(self):
        """Test entry formatting."""
        entry = LogEntry(
            level=LogLevel.INFO,
            message="Session started",
            logger_name="flightquery.session",
            extra={"session_id": "abc"},
        )

        formatted = entry.format()

        assert "[INFO" in formatted
        assert "[flightquery.session]" in formatted
        assert "Session started" in formatted
        assert "session_id=abc" in formatted

    def test_entry_format_without_time(self):
        entry = LogEntry(level=LogLevel.WARNING, message="Dropped", exception="bad json")

        assert entry.format(include_time=False) == "Dropped | exception=bad json"


class TestObservabilityConfig:
    """ObservabilityConfig tests."""

    def test_default_config(self):
        config = ObservabilityConfig()

        assert config.log_level == LogLevel.WARNING
        assert config.metrics_enabled is True
        assert config.metrics_prefix == "flightquery"

    def test_config_to_dict(self):
        data = ObservabilityConfig(log_level=LogLevel.INFO).to_dict()
        assert data["log_level"] == "info"


# ============================================================
# Exporter Tests
# ============================================================


class TestExporters:
    """Exporter tests."""

    def test_in_memory_clear(self):
        exporter = InMemoryExporter()
        exporter.export_logs([LogEntry(level=LogLevel.INFO, message="x")])
        exporter.export_metrics([MetricValue(name="m", value=1, metric_type=MetricType.GAUGE)])

        exporter.clear()

        assert exporter.logs == []
        assert exporter.metrics == []

    def test_logging_exporter_forwards_to_logger(self, caplog):
        exporter = LoggingExporter()

        with caplog.at_level(logging.INFO, logger="flightquery.test_forward"):
            exporter.export_logs([LogEntry(
                level=LogLevel.INFO,
                message="Session completed",
                logger_name="flightquery.test_forward",
                extra={"fragments": 3},
            )])

        record = caplog.records[-1]
        assert record.name == "flightquery.test_forward"
        assert record.getMessage() == "Session completed | fragments=3"


# ============================================================
# Metrics Tests
# ============================================================


class TestMetricsCollector:
    """MetricsCollector tests."""

    def test_increment(self):
        """Test counter increment."""
        metrics = MetricsCollector(exporter=InMemoryExporter())

        metrics.increment("fragment.accepted")
        metrics.increment("fragment.accepted")
        metrics.increment("fragment.accepted", 3)

        assert metrics.get_counter("fragment.accepted") == 5

    def test_gauge_update(self):
        """Test gauge update."""
        metrics = MetricsCollector(exporter=InMemoryExporter())

        metrics.gauge("session.answer_chars", 10)
        metrics.gauge("session.answer_chars", 15)

        assert metrics.get_gauge("session.answer_chars") == 15

    def test_timer(self):
        """Test timer."""
        exporter = InMemoryExporter()
        metrics = MetricsCollector(exporter=exporter)

        metrics.timer("session.duration_ms", 150.5)
        metrics.flush()

        assert len(exporter.metrics) == 1
        assert exporter.metrics[0].metric_type == MetricType.TIMER
        assert exporter.metrics[0].name == "flightquery.session.duration_ms"

    def test_measure_time(self):
        """Test time measurement context manager."""
        exporter = InMemoryExporter()
        metrics = MetricsCollector(exporter=exporter)

        with metrics.measure_time("operation"):
            time.sleep(0.01)

        metrics.flush()

        assert exporter.metrics[0].value > 0

    def test_flush_clears_pending(self):
        exporter = InMemoryExporter()
        metrics = MetricsCollector(exporter=exporter)

        metrics.increment("a")
        metrics.flush()
        metrics.flush()

        assert len(exporter.metrics) == 1
        assert metrics.get_status()["pending"] == 0

    def test_metrics_disabled(self):
        """Test with metrics disabled."""
        metrics = MetricsCollector(config=ObservabilityConfig(metrics_enabled=False))

        metrics.increment("requests")

        assert metrics.get_counter("requests") == 0


# ============================================================
# Logger Tests
# ============================================================


class TestLogger:
    """Logger tests."""

    def test_log_levels(self):
        """Test all log levels."""
        exporter = InMemoryExporter()
        logger = Logger("flightquery.test", exporter=exporter, config=DEBUG_CONFIG)

        logger.debug("Debug message")
        logger.info("Info message")
        logger.warning("Warning message")
        logger.error("Error message")
        logger.critical("Critical message")

        assert [e.level for e in exporter.logs] == [
            LogLevel.DEBUG,
            LogLevel.INFO,
            LogLevel.WARNING,
            LogLevel.ERROR,
            LogLevel.CRITICAL,
        ]

    def test_log_with_extra(self):
        """Test log with extra data."""
        exporter = InMemoryExporter()
        logger = Logger("flightquery.test", exporter=exporter, config=DEBUG_CONFIG)

        logger.info("Session started", session_id="abc", query="Hanoi")

        assert exporter.logs[0].extra == {"session_id": "abc", "query": "Hanoi"}

    def test_log_with_exception(self):
        """Test log with exception."""
        exporter = InMemoryExporter()
        logger = Logger("flightquery.test", exporter=exporter, config=DEBUG_CONFIG)

        logger.error("Listener raised", exception=ValueError("render failed"))

        assert exporter.logs[0].exception == "render failed"

    def test_child_logger(self):
        """Test child logger creation."""
        exporter = InMemoryExporter()
        child = Logger("flightquery", exporter=exporter, config=DEBUG_CONFIG).child("session")

        child.info("x")

        assert child.name == "flightquery.session"
        assert exporter.logs[0].logger_name == "flightquery.session"

    def test_log_level_filtering(self):
        """Test log level filtering."""
        exporter = InMemoryExporter()
        config = ObservabilityConfig(log_level=LogLevel.WARNING, log_to_console=False)
        logger = Logger("flightquery.test", exporter=exporter, config=config)

        logger.debug("Debug")
        logger.info("Info")
        logger.warning("Warning")
        logger.error("Error")

        assert len(exporter.logs) == 2


# ============================================================
# Observability Manager Tests
# ============================================================


class TestObservability:
    """Observability manager tests."""

    def test_create(self):
        obs = Observability.create()

        assert obs.metrics is not None
        assert obs.logger is not None

    def test_create_with_dict_config(self):
        obs = Observability.create(config={"log_level": "DEBUG", "log_to_console": False})
        assert obs.config.log_level == LogLevel.DEBUG

    def test_create_for_testing(self):
        obs, exporter = Observability.create_for_testing()

        obs.logger.info("Test")
        obs.metrics.increment("session.started")
        obs.flush()

        assert len(exporter.logs) == 1
        assert exporter.metrics[0].name == "flightquery.session.started"

    def test_get_status(self):
        status = Observability.create().get_status()

        assert "config" in status
        assert "metrics" in status


# ============================================================
# Global / Decorator Tests
# ============================================================


class TestGlobalObservability:
    """Global instance tests."""

    def test_configure_replaces_global(self):
        exporter = InMemoryExporter()
        obs = configure_observability(exporter=exporter)

        assert get_observability() is obs
        assert get_metrics() is obs.metrics

    def test_get_logger_strips_prefix(self):
        configure_observability(exporter=InMemoryExporter())

        assert get_logger("flightquery.session").name == "flightquery.session"
        assert get_logger("client").name == "flightquery.client"
        assert get_logger().name == "flightquery"


class TestTimedDecorator:
    """@timed decorator tests."""

    def test_sync(self):
        exporter = InMemoryExporter()
        obs = configure_observability(exporter=exporter)

        @timed("test.function")
        def my_function():
            return 42

        assert my_function() == 42
        obs.flush()
        assert any(m.name == "flightquery.test.function" for m in exporter.metrics)

    @pytest.mark.asyncio
    async def test_async(self):
        exporter = InMemoryExporter()
        obs = configure_observability(exporter=exporter)

        @timed("async.function")
        async def async_function():
            await asyncio.sleep(0.01)
            return "done"

        assert await async_function() == "done"
        obs.flush()
        metric = next(m for m in exporter.metrics if m.name == "flightquery.async.function")
        assert metric.metric_type == MetricType.TIMER
        assert metric.value > 0
