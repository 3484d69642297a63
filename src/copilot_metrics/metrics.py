from pathlib import Path

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, write_to_textfile


class MetricsUpdater:
    """
    records how a single collection run went. Each run owns a fresh
    registry; at the end it is written in the Prometheus text format
    next to the reports, for a node-exporter textfile collector to
    pick up.
    """

    def __init__(self, registry: "CollectorRegistry | None" = None) -> "None":
        self._registry: "CollectorRegistry" = registry or CollectorRegistry()
        self._fetches: "Counter" = Counter(
            "copilot_metrics_fetches_total",
            "Report fetches by endpoint kind and outcome",
            ["endpoint", "outcome"],
            registry=self._registry,
        )
        self._records: "Counter" = Counter(
            "copilot_metrics_records_normalized_total",
            "Canonical records produced, by wire shape",
            ["shape"],
            registry=self._registry,
        )
        self._duplicates: "Counter" = Counter(
            "copilot_metrics_duplicate_records_total",
            "Records dropped because their key was already seen",
            registry=self._registry,
        )
        self._skipped_dates: "Counter" = Counter(
            "copilot_metrics_skipped_dates_total",
            "Dates in a range recorded as no data",
            registry=self._registry,
        )
        self._run_duration: "Histogram" = Histogram(
            "copilot_metrics_run_duration_seconds",
            "Duration of a collection run",
            ["scope"],
            registry=self._registry,
        )
        self._last_success: "Gauge" = Gauge(
            "copilot_metrics_last_success_timestamp_seconds",
            "Unix timestamp of the run, set only when it succeeded",
            ["scope"],
            registry=self._registry,
        )

    @property
    def registry(self) -> "CollectorRegistry":
        return self._registry

    def inc_fetch(self, endpoint: "str", outcome: "str") -> "None":
        self._fetches.labels(endpoint=endpoint, outcome=outcome).inc()

    def inc_records(self, shape: "str", count: "int" = 1) -> "None":
        self._records.labels(shape=shape).inc(count)

    def inc_duplicates(self, count: "int") -> "None":
        self._duplicates.inc(count)

    def inc_skipped_date(self) -> "None":
        self._skipped_dates.inc()

    def observe_run_duration(self, scope: "str", duration_seconds: "float") -> "None":
        self._run_duration.labels(scope=scope).observe(duration_seconds)

    def set_last_success(self, scope: "str", timestamp: "float") -> "None":
        self._last_success.labels(scope=scope).set(timestamp)

    def write(self, path: "str | Path") -> "None":
        """
        writes the registry to path in the Prometheus text format.
        """
        write_to_textfile(str(path), self._registry)
