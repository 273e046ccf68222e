"""
Metrics collection for the application workflow.

Tracks guarded operation outcomes, circuit breaker trips and per-target
workflow outcomes, and exports them as JSON at the end of a run.
"""

import json
import os
import threading
import time
from typing import Any, Dict, Optional

import structlog


def _empty_operation_metrics() -> Dict[str, Any]:
    return {
        "total_executions": 0,
        "successes": 0,
        "failures": 0,
        "retries": 0,
        "rejections": 0,
        "total_duration_ms": 0.0,
        "durations": [],
        "circuit_breaker_trips": 0,
        "last_execution_time": time.time(),
        "errors": [],
    }


class MetricsCollector:
    """
    Collects and aggregates metrics for workflow operations.

    One collector is created per run and handed to the components that
    report into it.
    """

    def __init__(self, max_duration_samples: int = 100, max_errors: int = 10):
        self.max_duration_samples = max_duration_samples
        self.max_errors = max_errors
        self.logger = structlog.get_logger(__name__)
        self.operation_metrics: Dict[str, Dict[str, Any]] = {}
        self.outcomes: Dict[str, int] = {}
        self.target_metrics: Dict[str, Dict[str, Any]] = {}
        self.lock = threading.RLock()
        self.session_id = f"session_{int(time.time())}"
        self.start_time = time.time()

    def record_operation(
        self,
        operation_name: str,
        status: str,
        duration_ms: float,
        attempt: int = 1,
        error: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Record a single guarded operation execution.

        Args:
            operation_name: Name of the guarded operation
            status: "success", "failure", "retry" or "rejected"
            duration_ms: Duration of the operation in milliseconds
            attempt: Attempt number
            error: Error message if the operation failed
            context: Additional context such as target_id
        """
        with self.lock:
            metrics = self.operation_metrics.setdefault(operation_name, _empty_operation_metrics())
            metrics["total_executions"] += 1
            metrics["total_duration_ms"] += duration_ms
            metrics["durations"].append(duration_ms)
            metrics["last_execution_time"] = time.time()
            if len(metrics["durations"]) > self.max_duration_samples:
                metrics["durations"] = metrics["durations"][-self.max_duration_samples:]

            if status == "success":
                metrics["successes"] += 1
            elif status == "failure":
                metrics["failures"] += 1
                metrics["errors"].append(
                    {
                        "timestamp": time.time(),
                        "error": error or "Unknown error",
                        "attempt": attempt,
                        "context": context or {},
                    }
                )
                if len(metrics["errors"]) > self.max_errors:
                    metrics["errors"] = metrics["errors"][-self.max_errors:]
            elif status == "retry":
                metrics["retries"] += 1
            elif status == "rejected":
                metrics["rejections"] += 1

    def record_circuit_breaker_state_change(self, breaker_name: str, old_state: str, new_state: str) -> None:
        with self.lock:
            metrics = self.operation_metrics.setdefault(breaker_name, _empty_operation_metrics())
            if new_state == "open" and old_state != "open":
                metrics["circuit_breaker_trips"] += 1

    def record_workflow_outcome(
        self,
        target_id: str,
        outcome: str,
        duration_ms: float,
        reason: Optional[str] = None,
        steps: int = 0,
    ) -> None:
        """Record the terminal outcome of one target's workflow."""
        with self.lock:
            self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1
            self.target_metrics[target_id] = {
                "outcome": outcome,
                "duration_ms": round(duration_ms, 2),
                "reason": reason,
                "steps": steps,
                "timestamp": time.time(),
            }

    def _derived_operation_metrics(self, operation_name: str) -> Dict[str, Any]:
        metrics = self.operation_metrics[operation_name]
        avg_duration = None
        p95_duration = None
        if metrics["durations"]:
            sorted_durations = sorted(metrics["durations"])
            p95_idx = int(len(sorted_durations) * 0.95)
            p95_duration = sorted_durations[min(p95_idx, len(sorted_durations) - 1)]
            avg_duration = metrics["total_duration_ms"] / max(metrics["total_executions"], 1)

        return {
            "total_executions": metrics["total_executions"],
            "successes": metrics["successes"],
            "failures": metrics["failures"],
            "retries": metrics["retries"],
            "rejections": metrics["rejections"],
            "success_rate": round(metrics["successes"] / max(metrics["total_executions"], 1) * 100, 2),
            "avg_duration_ms": round(avg_duration, 2) if avg_duration is not None else None,
            "p95_duration_ms": round(p95_duration, 2) if p95_duration is not None else None,
            "circuit_breaker_trips": metrics["circuit_breaker_trips"],
            "recent_errors": metrics["errors"][-3:],
        }

    def get_operation_metrics(self, operation_name: Optional[str] = None) -> Dict[str, Any]:
        with self.lock:
            if operation_name is not None:
                if operation_name not in self.operation_metrics:
                    return {}
                return self._derived_operation_metrics(operation_name)
            return {name: self._derived_operation_metrics(name) for name in self.operation_metrics}

    def get_aggregated_metrics(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "session_id": self.session_id,
                "start_time": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.start_time)),
                "duration_seconds": int(time.time() - self.start_time),
                "operations": self.get_operation_metrics(),
                "outcomes": dict(self.outcomes),
                "targets": dict(self.target_metrics),
            }

    def export_metrics_to_json(self, file_path: str) -> str:
        """
        Export metrics to a JSON file.

        Returns:
            Path to the exported metrics file
        """
        directory = os.path.dirname(file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(file_path, "w") as f:
            json.dump({"aggregated_metrics": self.get_aggregated_metrics()}, f, indent=2)

        self.logger.info("metrics_exported", file_path=file_path)
        return file_path
