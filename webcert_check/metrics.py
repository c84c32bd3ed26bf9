"""
Prometheus metrics collection for webcert-check.
"""

import re
import socket
import sys
import time
from typing import Any, Dict

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from webcert_check.logger import get_logger, log_metrics_collection
from webcert_check.probe import FailureKind, ProbeOutcome, ProbeSuccess

# Metrics rendered without a fractional part
INTEGER_METRICS = (
    "certificate_days",
    "certificate_expiry_timestamp_seconds",
    "certificate_last_probe_timestamp_seconds",
    "app_memory_bytes",
    "app_thread_count",
)


class MetricsCollector:
    """
    Prometheus metrics for the probed certificate and the exporter process.

    Only the polling loop writes probe metrics; the HTTP layer reads them at
    scrape time.
    """

    def __init__(self, failure_value: float = -1.0) -> None:
        self.logger = get_logger("metrics")
        self.registry = CollectorRegistry()
        self.failure_value = failure_value

        # Certificate metrics
        self.certificate_days = Gauge(
            "certificate_days",
            "The number of days before expiration",
            registry=self.registry,
        )

        self.certificate_expiry_timestamp = Gauge(
            "certificate_expiry_timestamp_seconds",
            "Leaf certificate expiration time (Unix timestamp)",
            registry=self.registry,
        )

        self.certificate_probe_success = Gauge(
            "certificate_probe_success",
            "Whether the latest probe passed every check",
            registry=self.registry,
        )

        self.certificate_probe_failures = Counter(
            "certificate_probe_failures",
            "Failed probes by failure kind",
            ["kind"],
            registry=self.registry,
        )

        self.certificate_probe_duration_seconds = Histogram(
            "certificate_probe_duration_seconds",
            "Probe duration",
            registry=self.registry,
        )

        self.certificate_last_probe_timestamp = Gauge(
            "certificate_last_probe_timestamp_seconds",
            "Time of the latest completed probe",
            registry=self.registry,
        )

        # Application metrics
        self.app_memory_bytes = Gauge(
            "app_memory_bytes",
            "Application memory usage in bytes",
            ["type"],
            registry=self.registry,
        )

        self.app_cpu_percent = Gauge(
            "app_cpu_percent", "Application CPU usage percentage", registry=self.registry
        )

        self.app_thread_count = Gauge(
            "app_thread_count", "Number of application threads", registry=self.registry
        )

        self.app_info = Info(
            "app_info",
            "Application information",
            ["hostname", "version", "python_version"],
            registry=self.registry,
        )

        # Expose a zero series for every kind from the first scrape
        for kind in FailureKind:
            self.certificate_probe_failures.labels(kind=kind.value)

        self._last_system_update = 0.0
        self._system_update_interval = 30

        self.logger.info("Metrics collector initialized")

    def record_outcome(self, outcome: ProbeOutcome, duration: float) -> None:
        """
        Publish the result of one probe.

        Args:
            outcome: Probe outcome
            duration: Probe duration in seconds
        """
        self.certificate_probe_duration_seconds.observe(duration)
        self.certificate_last_probe_timestamp.set(int(time.time()))

        if isinstance(outcome, ProbeSuccess):
            self.certificate_days.set(outcome.days_remaining)
            self.certificate_expiry_timestamp.set(outcome.expiry_date.timestamp())
            self.certificate_probe_success.set(1)
            log_metrics_collection(
                self.logger,
                "certificate_days",
                outcome.days_remaining,
                {"target": str(outcome.target)},
            )
            return

        self.certificate_days.set(self.failure_value)
        self.certificate_probe_success.set(0)
        self.certificate_probe_failures.labels(kind=outcome.kind.value).inc()
        log_metrics_collection(
            self.logger,
            "certificate_probe_failures",
            1.0,
            {"target": str(outcome.target), "kind": outcome.kind.value},
        )

    def update_system_metrics(self) -> None:
        """Update process metrics, at most once per update interval."""
        current_time = time.time()

        if current_time - self._last_system_update < self._system_update_interval:
            return

        try:
            process = psutil.Process()

            memory_info = process.memory_info()
            self.app_memory_bytes.labels(type="rss").set(int(memory_info.rss))
            self.app_memory_bytes.labels(type="vms").set(int(memory_info.vms))

            cpu_percent = process.cpu_percent()
            self.app_cpu_percent.set(cpu_percent)

            thread_count = process.num_threads()
            self.app_thread_count.set(int(thread_count))

            from webcert_check import __version__

            self.app_info.labels(
                hostname=socket.gethostname(),
                version=__version__,
                python_version=f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            ).info({"platform": sys.platform, "process_id": str(process.pid)})

            self._last_system_update = current_time

        except psutil.Error as e:
            self.logger.error(f"Failed to update system metrics: {e}")

    def get_metrics(self) -> str:
        """
        Get Prometheus metrics in text format.

        Returns:
            Metrics in Prometheus text format
        """
        self.update_system_metrics()

        raw_metrics = generate_latest(self.registry).decode("utf-8")
        return self._format_numeric_values(raw_metrics)

    def _format_numeric_values(self, metrics_text: str) -> str:
        """Render integer-valued samples of INTEGER_METRICS without '.0' or exponent."""
        formatted_lines = []

        for line in metrics_text.split("\n"):
            match = re.match(r"^([^}\s]+(?:{[^}]*})?)\s+(\S+)$", line)
            if line.startswith("#") or not match:
                formatted_lines.append(line)
                continue

            metric_name, value = match.groups()
            base_name = metric_name.split("{", 1)[0]
            if base_name not in INTEGER_METRICS:
                formatted_lines.append(line)
                continue

            try:
                float_value = float(value)
            except ValueError:
                formatted_lines.append(line)
                continue

            if float_value.is_integer():
                formatted_lines.append(f"{metric_name} {int(float_value)}")
            else:
                formatted_lines.append(line)

        return "\n".join(formatted_lines)

    def get_content_type(self) -> str:
        """Get content type for metrics endpoint."""
        return CONTENT_TYPE_LATEST

    def get_registry_status(self) -> Dict[str, Any]:
        """Get Prometheus registry status for health checks."""
        return {
            "prometheus_registry": {
                "status": "healthy",
                "metrics_count": len(list(self.registry.collect())),
                "last_update": self._last_system_update,
            }
        }
