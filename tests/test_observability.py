"""Tests for the observability module.

Tests for metrics collection, operation timing, tracing and logging
configuration.
"""
import json
import logging
import time
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import pytest

from bear_core.observability import (
    MetricsCollector,
    configure_logging,
    is_logging_configured,
    timed_operation,
    traced,
)


@pytest.fixture
def restore_bear_logger():
    """Remove handlers added to the package logger during a test."""
    bear_logger = logging.getLogger("bear_core")
    handlers = list(bear_logger.handlers)
    level = bear_logger.level
    yield bear_logger
    for handler in bear_logger.handlers:
        if handler not in handlers:
            bear_logger.removeHandler(handler)
            handler.close()
    bear_logger.setLevel(level)


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    @pytest.fixture
    def metrics_file(self, tmp_path):
        return tmp_path / "metrics.json"

    @pytest.fixture
    def metrics_collector(self):
        """An in-memory MetricsCollector."""
        return MetricsCollector()

    def test_record_successful_operation(self, metrics_collector):
        """Test recording a successful operation."""
        metrics_collector.record_operation("search", 100.0, True)

        metrics = metrics_collector.get_metrics()
        assert metrics["search"]["count"] == 1
        assert metrics["search"]["success_count"] == 1
        assert metrics["search"]["error_count"] == 0
        assert metrics["search"]["avg_duration_ms"] == 100.0

    def test_record_failed_operation(self, metrics_collector):
        """Test recording a failed operation with error."""
        metrics_collector.record_operation("mutate", 50.0, False, "Database is locked")

        metrics = metrics_collector.get_metrics()
        assert metrics["mutate"]["error_count"] == 1
        assert metrics["mutate"]["last_error"] == "Database is locked"
        assert metrics["mutate"]["last_error_time"] is not None

    def test_multiple_operations_aggregated(self, metrics_collector):
        """Test that multiple operations are aggregated correctly."""
        metrics_collector.record_operation("search", 100.0, True)
        metrics_collector.record_operation("search", 200.0, True)
        metrics_collector.record_operation("search", 300.0, False, "Error")

        metrics = metrics_collector.get_metrics()
        assert metrics["search"]["count"] == 3
        assert metrics["search"]["avg_duration_ms"] == 200.0
        assert metrics["search"]["min_duration_ms"] == 100.0
        assert metrics["search"]["max_duration_ms"] == 300.0

    def test_in_memory_collector_does_not_save(self, metrics_collector):
        metrics_collector.record_operation("search", 1.0, True)
        assert metrics_collector.save_metrics() is False

    def test_save_and_load_metrics(self, metrics_file):
        """Test saving and loading metrics."""
        first = MetricsCollector(metrics_file=metrics_file, auto_save_interval=0)
        first.record_operation("search", 100.0, True)
        first.record_operation("mutate", 200.0, False, "Error")
        assert first.save_metrics() is True

        data = json.loads(metrics_file.read_text(encoding="utf-8"))
        assert set(data["operations"]) == {"search", "mutate"}

        second = MetricsCollector(metrics_file=metrics_file, auto_save_interval=0)
        metrics = second.get_metrics()
        assert metrics["search"]["count"] == 1
        assert metrics["mutate"]["error_count"] == 1

    def test_auto_save(self, metrics_file):
        collector = MetricsCollector(metrics_file=metrics_file, auto_save_interval=2)
        collector.record_operation("search", 1.0, True)
        assert not metrics_file.exists()
        collector.record_operation("search", 1.0, True)
        assert metrics_file.exists()

    def test_corrupt_metrics_file_is_ignored(self, metrics_file):
        metrics_file.write_text("{not json", encoding="utf-8")
        collector = MetricsCollector(metrics_file=metrics_file)
        assert collector.get_metrics() == {}

    def test_set_metrics_file_loads_saved_metrics(self, metrics_file):
        saved = MetricsCollector(metrics_file=metrics_file, auto_save_interval=0)
        saved.record_operation("search", 10.0, True)
        saved.save_metrics()

        collector = MetricsCollector()
        collector.record_operation("suggest", 1.0, True)
        collector.set_metrics_file(metrics_file)
        assert collector.metrics_file == metrics_file
        assert set(collector.get_metrics()) == {"search"}

        collector.record_operation("search", 20.0, True)
        assert collector.save_metrics() is True
        reloaded = MetricsCollector(metrics_file=metrics_file)
        assert reloaded.get_metrics()["search"]["count"] == 2

    def test_unset_metrics_file_stops_saving(self, metrics_file):
        collector = MetricsCollector(metrics_file=metrics_file)
        collector.set_metrics_file(None)
        collector.record_operation("search", 1.0, True)
        assert collector.save_metrics() is False
        assert not metrics_file.exists()

    def test_get_summary(self, metrics_collector):
        """Test getting metrics summary."""
        metrics_collector.record_operation("search", 100.0, True)
        metrics_collector.record_operation("mutate", 200.0, False, "Error")

        summary = metrics_collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["total_success"] == 1
        assert summary["total_errors"] == 1
        assert set(summary["operations_tracked"]) == {"search", "mutate"}

    def test_reset_metrics(self, metrics_collector):
        """Test resetting all metrics."""
        metrics_collector.record_operation("search", 100.0, True)
        metrics_collector.reset()
        assert metrics_collector.get_metrics() == {}


class TestTimedOperation:
    """Tests for timed_operation context manager."""

    def test_timed_operation_records_success(self):
        """Test that successful operations are timed and recorded."""
        collector = MetricsCollector()

        with patch('bear_core.observability.metrics', collector):
            with timed_operation("search", tokens=1) as op:
                time.sleep(0.01)
                op["result_count"] = 3

        metrics = collector.get_metrics()
        assert metrics["search"]["success_count"] == 1
        assert metrics["search"]["avg_duration_ms"] >= 10

    def test_timed_operation_records_failure(self):
        """Test that failed operations are recorded with error."""
        collector = MetricsCollector()

        with patch('bear_core.observability.metrics', collector):
            with pytest.raises(ValueError):
                with timed_operation("search"):
                    raise ValueError("Test error")

        metrics = collector.get_metrics()
        assert metrics["search"]["error_count"] == 1
        assert "Test error" in metrics["search"]["last_error"]

    def test_correlation_id_is_exposed(self):
        with patch('bear_core.observability.metrics', MetricsCollector()):
            with timed_operation("search") as op:
                assert len(op["correlation_id"]) == 8


class TestTraced:
    """Tests for the traced decorator."""

    def test_traced_records_under_given_name(self):
        collector = MetricsCollector()

        @traced("lookup")
        def lookup(prefix):
            return ["a", "b"]

        with patch('bear_core.observability.metrics', collector):
            assert lookup(prefix="be") == ["a", "b"]

        assert collector.get_metrics()["lookup"]["count"] == 1

    def test_traced_defaults_to_function_name(self):
        collector = MetricsCollector()

        @traced()
        def related(record_id):
            raise LookupError(record_id)

        with patch('bear_core.observability.metrics', collector):
            with pytest.raises(LookupError):
                related(record_id=7)

        assert collector.get_metrics()["related"]["error_count"] == 1


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_configure_logging_creates_directory(self, tmp_path, restore_bear_logger):
        """Test that configure_logging creates log directory."""
        log_dir = tmp_path / "logs"
        result = configure_logging(log_dir=log_dir, console=False)
        assert result == log_dir
        assert log_dir.is_dir()
        assert is_logging_configured()

    def test_configure_logging_sets_level(self, tmp_path, restore_bear_logger):
        """Test that configure_logging accepts level names."""
        configure_logging(log_dir=tmp_path, level="debug", console=False)
        assert restore_bear_logger.level == logging.DEBUG

    def test_unknown_level_name_falls_back_to_info(self, restore_bear_logger):
        configure_logging(level="chatty", console=False, file_logging=False)
        assert restore_bear_logger.level == logging.INFO

    def test_without_file_logging(self, tmp_path, restore_bear_logger):
        assert configure_logging(log_dir=tmp_path, file_logging=False, console=False) is None
        assert not (tmp_path / "bear_core.log").exists()

    def test_repeated_calls_do_not_duplicate_handlers(self, tmp_path, restore_bear_logger):
        configure_logging(log_dir=tmp_path, console=False)
        configure_logging(log_dir=tmp_path, console=False)
        file_handlers = [
            h for h in restore_bear_logger.handlers if isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1

    def test_messages_reach_the_log_file(self, tmp_path, restore_bear_logger):
        configure_logging(log_dir=tmp_path, level=logging.INFO, console=False)
        logging.getLogger("bear_core.services").info("cache warmed")
        for handler in restore_bear_logger.handlers:
            handler.flush()
        assert "cache warmed" in (tmp_path / "bear_core.log").read_text(encoding="utf-8")
