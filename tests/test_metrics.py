from datetime import date

from prometheus_client import CollectorRegistry

from usagelens.merger import merge_providers
from usagelens.metrics import MetricsUpdater
from usagelens.models import DailyUsageRecord, ProviderUsageSummary

TODAY = date(2024, 5, 2)


def _summary(provider: "str", cost: "float", tokens: "int") -> "ProviderUsageSummary":
    record = DailyUsageRecord(date=TODAY, input_tokens=tokens, output_tokens=tokens, cost_usd=cost)
    return ProviderUsageSummary(
        provider=provider,
        today=record,
        last_7_days=(record,),
        last_30_days=(record,),
        total_cost_today=cost,
        total_cost_week=cost,
        total_cost_month=cost,
        credential_count=2,
    )


class TestMetricsUpdater:
    def test_registers_metrics(self, registry: "CollectorRegistry") -> "None":
        MetricsUpdater(registry=registry)
        # prometheus_client strips _total suffix from Counter family names
        metric_names = [m.name for m in registry.collect()]
        assert "usagelens_aggregation_duration_seconds" in metric_names
        assert "usagelens_credential_errors" in metric_names
        assert "usagelens_cost_usd" in metric_names
        assert "usagelens_tokens" in metric_names

    def test_update_summary_sets_gauges(self, registry: "CollectorRegistry") -> "None":
        updater = MetricsUpdater(registry=registry)
        combined = merge_providers(
            {"openai": _summary("openai", 1.5, 100), "anthropic": _summary("anthropic", 2.5, 10)},
            TODAY,
        )
        updater.update_summary(combined)

        assert registry.get_sample_value(
            "usagelens_cost_usd", {"provider": "openai", "window": "today"}
        ) == 1.5
        assert registry.get_sample_value(
            "usagelens_cost_usd", {"provider": "all", "window": "month"}
        ) == 4.0
        assert registry.get_sample_value(
            "usagelens_tokens",
            {"provider": "anthropic", "window": "week", "direction": "input"},
        ) == 10.0
        assert registry.get_sample_value(
            "usagelens_tokens",
            {"provider": "all", "window": "today", "direction": "output"},
        ) == 110.0
        assert registry.get_sample_value("usagelens_credentials", {"provider": "openai"}) == 2.0

    def test_update_summary_overwrites(self, registry: "CollectorRegistry") -> "None":
        updater = MetricsUpdater(registry=registry)
        updater.update_summary(merge_providers({"openai": _summary("openai", 5.0, 1)}, TODAY))
        updater.update_summary(merge_providers({"openai": _summary("openai", 1.0, 1)}, TODAY))

        assert registry.get_sample_value(
            "usagelens_cost_usd", {"provider": "openai", "window": "today"}
        ) == 1.0

    def test_credential_errors_accumulate(self, registry: "CollectorRegistry") -> "None":
        updater = MetricsUpdater(registry=registry)
        updater.inc_credential_error("openai", "usage")
        updater.inc_credential_error("openai", "usage")

        assert registry.get_sample_value(
            "usagelens_credential_errors_total", {"provider": "openai", "stage": "usage"}
        ) == 2.0

    def test_aggregation_health(self, registry: "CollectorRegistry") -> "None":
        updater = MetricsUpdater(registry=registry)
        updater.observe_aggregation_duration("openai", 0.5)
        updater.set_last_success("openai", 1714651200.0)

        assert registry.get_sample_value(
            "usagelens_aggregation_duration_seconds_sum", {"provider": "openai"}
        ) == 0.5
        assert registry.get_sample_value(
            "usagelens_last_aggregation_success_timestamp_seconds", {"provider": "openai"}
        ) == 1714651200.0
