import logging
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.http_5xx = None
            self.http_latency = None
            self.job_heartbeat = None
            self.job_last_success = None
            self.job_runner_up = None
            self.job_errors = None
            self.job_disabled = None
            self.job_lease_contention = None
            self.batch_items = None
            self.alerts = None
            self.anomalies = None
            self.attribution_records = None
            return

        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP responses with status >= 500.",
            ["method", "path"],
            registry=self.registry,
        )
        self.http_latency = Histogram(
            "http_request_latency_seconds",
            "HTTP request latency in seconds.",
            ["method", "path", "status_class"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
            registry=self.registry,
        )
        self.job_heartbeat = Gauge(
            "job_last_heartbeat_timestamp",
            "Unix timestamp for the latest job heartbeat.",
            ["job"],
            registry=self.registry,
        )
        self.job_last_success = Gauge(
            "job_last_success_timestamp",
            "Unix timestamp for the latest successful job run.",
            ["job"],
            registry=self.registry,
        )
        self.job_runner_up = Gauge(
            "job_runner_up",
            "Job runner liveness indicator (1=recent heartbeat).",
            ["job"],
            registry=self.registry,
        )
        self.job_errors = Counter(
            "job_errors_total",
            "Job execution errors by job and reason.",
            ["job", "reason"],
            registry=self.registry,
        )
        self.job_disabled = Gauge(
            "job_disabled",
            "Job type auto-disabled after consecutive failures (1=disabled).",
            ["job"],
            registry=self.registry,
        )
        self.job_lease_contention = Counter(
            "job_lease_contention_total",
            "Job runs skipped because another holder owns the lease.",
            ["job"],
            registry=self.registry,
        )
        self.batch_items = Counter(
            "batch_items_total",
            "Batch items by job and outcome (processed/skipped/errored/deferred).",
            ["job", "outcome"],
            registry=self.registry,
        )
        self.alerts = Counter(
            "entity_alerts_total",
            "Watchlist alerts written by alert type and action.",
            ["alert_type", "action"],
            registry=self.registry,
        )
        self.anomalies = Counter(
            "entity_anomalies_total",
            "Detected anomalies by type and severity.",
            ["anomaly_type", "severity"],
            registry=self.registry,
        )
        self.attribution_records = Counter(
            "attribution_records_total",
            "Attribution records written by kind (attributed/organic).",
            ["kind"],
            registry=self.registry,
        )

    def record_http_5xx(self, method: str, path: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, path=path).inc()

    def record_http_latency(self, method: str, path: str, status_code: int, duration_seconds: float) -> None:
        if not self.enabled or self.http_latency is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        duration_seconds = max(0.0, float(duration_seconds))
        self.http_latency.labels(method=method, path=path, status_class=status_class).observe(
            duration_seconds
        )

    def record_job_heartbeat(self, job: str, timestamp: float | None = None) -> None:
        if not self.enabled or self.job_heartbeat is None or self.job_runner_up is None:
            return
        ts = timestamp if timestamp is not None else time.time()
        self.job_heartbeat.labels(job=job).set(ts)
        self.job_runner_up.labels(job=job).set(1)

    def record_job_success(self, job: str, timestamp: float | None = None) -> None:
        if not self.enabled or self.job_last_success is None:
            return
        ts = timestamp if timestamp is not None else time.time()
        self.job_last_success.labels(job=job).set(ts)

    def record_job_error(self, job: str, reason: str) -> None:
        if not self.enabled or self.job_errors is None:
            return
        safe_reason = reason or "unknown"
        self.job_errors.labels(job=job, reason=safe_reason).inc()

    def set_job_disabled(self, job: str, disabled: bool) -> None:
        if not self.enabled or self.job_disabled is None:
            return
        self.job_disabled.labels(job=job).set(1 if disabled else 0)

    def record_lease_contention(self, job: str) -> None:
        if not self.enabled or self.job_lease_contention is None:
            return
        self.job_lease_contention.labels(job=job).inc()

    def record_batch_items(self, job: str, outcome: str, count: int = 1) -> None:
        if not self.enabled or self.batch_items is None:
            return
        if count <= 0:
            return
        self.batch_items.labels(job=job, outcome=outcome).inc(count)

    def record_alert(self, alert_type: str, action: str) -> None:
        if not self.enabled or self.alerts is None:
            return
        self.alerts.labels(alert_type=alert_type or "unknown", action=action).inc()

    def record_anomaly(self, anomaly_type: str, severity: str) -> None:
        if not self.enabled or self.anomalies is None:
            return
        self.anomalies.labels(anomaly_type=anomaly_type, severity=severity).inc()

    def record_attribution(self, kind: str) -> None:
        if not self.enabled or self.attribution_records is None:
            return
        self.attribution_records.labels(kind=kind).inc()

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics
