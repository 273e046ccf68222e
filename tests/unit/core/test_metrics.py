"""
Unit tests for the metrics module.
"""

import json
import time
from unittest.mock import MagicMock, patch

import pytest

from core.metrics import MetricsCollector


@pytest.fixture
def mock_logger():
    return MagicMock()


@pytest.fixture
def metrics_collector(mock_logger):
    """Fixture to provide a MetricsCollector instance with mock logger."""
    with patch("structlog.get_logger", return_value=mock_logger):
        collector = MetricsCollector(max_duration_samples=5, max_errors=3)
    collector.session_id = "test_session"
    collector.start_time = time.time() - 60
    return collector


class TestMetricsCollector:
    def test_record_operation_success(self, metrics_collector):
        metrics_collector.record_operation("process_step", "success", 100.0)

        metrics = metrics_collector.get_operation_metrics("process_step")
        assert metrics["total_executions"] == 1
        assert metrics["successes"] == 1
        assert metrics["success_rate"] == 100.0
        assert metrics["avg_duration_ms"] == 100.0

    def test_record_operation_failure_keeps_recent_errors(self, metrics_collector):
        for i in range(5):
            metrics_collector.record_operation(
                "activate_entry_point", "failure", 10.0, attempt=i + 1, error=f"error {i}", context={"target_id": "1"}
            )

        raw = metrics_collector.operation_metrics["activate_entry_point"]
        assert raw["failures"] == 5
        assert [e["error"] for e in raw["errors"]] == ["error 2", "error 3", "error 4"]
        assert raw["errors"][0]["context"] == {"target_id": "1"}

    def test_retry_and_rejection_counts(self, metrics_collector):
        metrics_collector.record_operation("detection_check", "retry", 5.0, attempt=1)
        metrics_collector.record_operation("detection_check", "rejected", 0.0)

        metrics = metrics_collector.get_operation_metrics("detection_check")
        assert metrics["retries"] == 1
        assert metrics["rejections"] == 1
        assert metrics["successes"] == 0

    def test_duration_samples_are_bounded(self, metrics_collector):
        for duration in range(10):
            metrics_collector.record_operation("op", "success", float(duration))

        assert metrics_collector.operation_metrics["op"]["durations"] == [5.0, 6.0, 7.0, 8.0, 9.0]

    def test_unknown_operation(self, metrics_collector):
        assert metrics_collector.get_operation_metrics("missing") == {}

    def test_circuit_breaker_trips(self, metrics_collector):
        metrics_collector.record_circuit_breaker_state_change("linkedin_ui", "closed", "open")
        metrics_collector.record_circuit_breaker_state_change("linkedin_ui", "open", "half_open")
        metrics_collector.record_circuit_breaker_state_change("linkedin_ui", "half_open", "open")

        assert metrics_collector.get_operation_metrics("linkedin_ui")["circuit_breaker_trips"] == 2

    def test_workflow_outcomes(self, metrics_collector):
        metrics_collector.record_workflow_outcome("1", "applied", 1500.0, steps=3)
        metrics_collector.record_workflow_outcome("2", "skipped", 200.0, reason="Already applied on LinkedIn")
        metrics_collector.record_workflow_outcome("3", "applied", 900.0, steps=2)

        aggregated = metrics_collector.get_aggregated_metrics()
        assert aggregated["session_id"] == "test_session"
        assert aggregated["outcomes"] == {"applied": 2, "skipped": 1}
        assert aggregated["targets"]["2"]["reason"] == "Already applied on LinkedIn"
        assert aggregated["duration_seconds"] >= 60

    def test_export_metrics_to_json(self, metrics_collector, mock_logger, tmp_path):
        metrics_collector.record_operation("process_step", "success", 12.5)
        file_path = tmp_path / "nested" / "metrics.json"

        exported = metrics_collector.export_metrics_to_json(str(file_path))

        assert exported == str(file_path)
        with open(file_path) as f:
            data = json.load(f)
        assert data["aggregated_metrics"]["operations"]["process_step"]["successes"] == 1
        mock_logger.info.assert_called_once_with("metrics_exported", file_path=str(file_path))
