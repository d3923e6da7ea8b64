from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from usagelens.models import CombinedUsageSummary, DailyUsageRecord, ProviderUsageSummary

# label values for the window label
WINDOWS: "tuple[str, ...]" = ("today", "week", "month")


class MetricsUpdater:
    """
    publishes aggregation results and aggregation health to
    Prometheus. Gauges mirror the latest summary; counters and the
    duration histogram accumulate across runs.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._aggregation_duration: "Histogram" = Histogram(
            "usagelens_aggregation_duration_seconds",
            "Duration of provider aggregation runs",
            ["provider"],
            registry=registry,
        )
        self._credential_errors: "Counter" = Counter(
            "usagelens_credential_errors_total",
            "Total number of credential failures by provider and stage",
            ["provider", "stage"],
            registry=registry,
        )
        self._last_success: "Gauge" = Gauge(
            "usagelens_last_aggregation_success_timestamp_seconds",
            "Unix timestamp of last successful aggregation per provider",
            ["provider"],
            registry=registry,
        )
        self._cost: "Gauge" = Gauge(
            "usagelens_cost_usd",
            "Cost in USD over a window, per provider",
            ["provider", "window"],
            registry=registry,
        )
        self._tokens: "Gauge" = Gauge(
            "usagelens_tokens",
            "Tokens used over a window, per provider and direction",
            ["provider", "window", "direction"],
            registry=registry,
        )
        self._credentials: "Gauge" = Gauge(
            "usagelens_credentials",
            "Number of credentials resolved per provider",
            ["provider"],
            registry=registry,
        )

    def observe_aggregation_duration(
        self, provider: "str", duration_seconds: "float"
    ) -> "None":
        self._aggregation_duration.labels(provider=provider).observe(duration_seconds)

    def inc_credential_error(self, provider: "str", stage: "str") -> "None":
        self._credential_errors.labels(provider=provider, stage=stage).inc()

    def set_last_success(self, provider: "str", timestamp: "float") -> "None":
        self._last_success.labels(provider=provider).set(timestamp)

    def update_summary(self, summary: "CombinedUsageSummary") -> "None":
        """
        sets the window gauges from a combined summary, one label set
        per provider plus an "all" label set for the combined totals.
        """
        for tag, provider_summary in summary.providers.items():
            self._update_provider(tag, provider_summary)
            self._credentials.labels(provider=tag).set(provider_summary.credential_count)

        self._set_windows(
            "all",
            (summary.total_cost_today, summary.total_cost_week, summary.total_cost_month),
            ((summary.today,), summary.last_7_days, summary.last_30_days),
        )

    def _update_provider(self, tag: "str", summary: "ProviderUsageSummary") -> "None":
        self._set_windows(
            tag,
            (summary.total_cost_today, summary.total_cost_week, summary.total_cost_month),
            ((summary.today,), summary.last_7_days, summary.last_30_days),
        )

    def _set_windows(
        self,
        provider: "str",
        costs: "tuple[float, float, float]",
        series: "tuple[tuple[DailyUsageRecord, ...], ...]",
    ) -> "None":
        for window, cost, records in zip(WINDOWS, costs, series):
            self._cost.labels(provider=provider, window=window).set(cost)
            self._tokens.labels(provider=provider, window=window, direction="input").set(
                sum(r.input_tokens for r in records)
            )
            self._tokens.labels(provider=provider, window=window, direction="output").set(
                sum(r.output_tokens for r in records)
            )
