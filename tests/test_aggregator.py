from datetime import date, timedelta
from typing import Any, Sequence

import pytest
from prometheus_client import CollectorRegistry

from usagelens import audit
from usagelens.aggregator import ProviderAggregator, build_project_usage
from usagelens.credentials import CredentialResolver, SecretEntry, StaticSecretStore
from usagelens.metrics import MetricsUpdater
from usagelens.models import (
    Credential,
    KeyDiagnosis,
    ProjectRef,
    TimeRange,
    TokenCounts,
)

TODAY = date(2024, 5, 2)
YESTERDAY = TODAY - timedelta(days=1)


class FakeUsageClient:
    """
    A fake client serving pre-configured figures per credential
    and per unit.
    """

    def __init__(
        self,
        provider: "str" = "openai",
        display_name: "str" = "OpenAI",
        units: "dict[str, list[ProjectRef]] | None" = None,
        usage: "dict[str, dict[date, TokenCounts]] | None" = None,
        costs: "dict[str, dict[date, float]] | None" = None,
        unit_usage: "dict[str, dict[date, TokenCounts]] | None" = None,
        unit_costs: "dict[str, dict[date, float]] | None" = None,
        failing: "Sequence[str]" = (),
    ) -> "None":
        self._provider = provider
        self._display_name = display_name
        self._units = units or {}
        self._usage = usage or {}
        self._costs = costs or {}
        self._unit_usage = unit_usage or {}
        self._unit_costs = unit_costs or {}
        self._failing = set(failing)
        self.usage_calls: "list[tuple[str, list[str] | None]]" = []

    @property
    def provider(self) -> "str":
        return self._provider

    @property
    def display_name(self) -> "str":
        return self._display_name

    async def list_units(self, credential: "Credential") -> "list[ProjectRef]":
        if credential.name in self._failing:
            raise RuntimeError(f"{credential.name} exploded")
        return list(self._units.get(credential.name, []))

    async def fetch_daily_token_usage(
        self,
        credential: "Credential",
        time_range: "TimeRange",
        unit_ids: "Sequence[str] | None" = None,
    ) -> "dict[date, TokenCounts]":
        self.usage_calls.append((credential.name, list(unit_ids) if unit_ids else None))
        if unit_ids and len(unit_ids) == 1 and unit_ids[0] in self._unit_usage:
            return dict(self._unit_usage[unit_ids[0]])
        return dict(self._usage.get(credential.name, {}))

    async def fetch_daily_cost(
        self,
        credential: "Credential",
        time_range: "TimeRange",
        unit_ids: "Sequence[str] | None" = None,
    ) -> "dict[date, float]":
        if unit_ids and len(unit_ids) == 1 and unit_ids[0] in self._unit_costs:
            return dict(self._unit_costs[unit_ids[0]])
        return dict(self._costs.get(credential.name, {}))

    async def diagnose(self, credential: "Credential") -> "KeyDiagnosis":
        return KeyDiagnosis(credential_name=credential.name, is_valid=True)

    async def close(self) -> "None":
        pass


class RecordingAuditSink:
    def __init__(self) -> "None":
        self.events: "list[tuple[str, str | None, str | None, dict[str, Any] | None]]" = []

    def record(
        self,
        action: "str",
        resource_type: "str | None" = None,
        resource_id: "str | None" = None,
        details: "dict[str, Any] | None" = None,
    ) -> "None":
        self.events.append((action, resource_type, resource_id, details))


class BrokenStore:
    def list_credentials_by_provider(self, tag: "str") -> "list[SecretEntry]":
        raise RuntimeError("keychain locked")


def _store(*names: "str", tag: "str" = "openai") -> "StaticSecretStore":
    return StaticSecretStore(
        {tag: [SecretEntry(name=name, value=f"sk-admin-{name}", category="llm") for name in names]}
    )


def _aggregator(
    store: "Any",
    client: "FakeUsageClient",
    audit_sink: "RecordingAuditSink | None" = None,
    metrics: "MetricsUpdater | None" = None,
) -> "ProviderAggregator":
    return ProviderAggregator(
        CredentialResolver(store),
        {client.provider: client},
        audit_sink=audit_sink,
        metrics=metrics,
    )


class TestAggregateSingleCredential:
    @pytest.mark.asyncio
    async def test_builds_series_and_totals(self, time_range: "TimeRange") -> "None":
        client = FakeUsageClient(
            usage={
                "key-a": {
                    TODAY: TokenCounts(input_tokens=100, output_tokens=40, request_count=2),
                    YESTERDAY: TokenCounts(input_tokens=100, output_tokens=40, request_count=1),
                }
            },
            costs={"key-a": {TODAY: 1.25, YESTERDAY: 0.75}},
        )
        summary = await _aggregator(_store("key-a"), client).aggregate_provider(
            "openai", time_range, TODAY
        )

        assert summary.provider == "openai"
        assert summary.credential_count == 1
        assert summary.errors == ()
        assert summary.today.total_tokens == 140
        assert summary.total_cost_today == 1.25
        assert summary.total_cost_week == 2.0
        assert summary.total_cost_month == 2.0
        assert [r.date for r in summary.last_30_days] == [TODAY, YESTERDAY]
        assert sum(r.total_tokens for r in summary.last_30_days) == 280

    @pytest.mark.asyncio
    async def test_key_without_units_is_a_pseudo_project(self, time_range: "TimeRange") -> "None":
        client = FakeUsageClient(
            provider="google",
            display_name="Gemini",
            costs={"key-a": {TODAY: 2.0}},
        )
        store = StaticSecretStore(
            {"google": [SecretEntry(name="key-a", value="AIzaSyExample", category="llm")]}
        )
        summary = await _aggregator(store, client).aggregate_provider("google", time_range, TODAY)

        assert len(summary.projects) == 1
        project = summary.projects[0]
        assert project.project == ProjectRef(id="key-a", name="Gemini (key-a)")
        assert project.provider == "google"
        assert project.cost_usd == 2.0
        assert project.cost_today == 2.0


class TestAggregateMultipleCredentials:
    @pytest.mark.asyncio
    async def test_credentials_are_added(self, time_range: "TimeRange") -> "None":
        client = FakeUsageClient(
            usage={
                "key-a": {TODAY: TokenCounts(input_tokens=10, output_tokens=10)},
                "key-b": {TODAY: TokenCounts(input_tokens=5, output_tokens=5)},
            },
            costs={"key-a": {TODAY: 5.0}, "key-b": {TODAY: 5.0}},
        )
        summary = await _aggregator(_store("key-a", "key-b"), client).aggregate_provider(
            "openai", time_range, TODAY
        )

        assert summary.credential_count == 2
        assert summary.total_cost_today == 10.0
        assert summary.today.total_tokens == 30
        assert len(summary.last_30_days) == 1
        assert len(summary.projects) == 2

    @pytest.mark.asyncio
    async def test_failing_credential_is_isolated(
        self,
        time_range: "TimeRange",
        registry: "CollectorRegistry",
    ) -> "None":
        client = FakeUsageClient(
            costs={"key-a": {TODAY: 3.0}},
            failing=["key-b"],
        )
        sink = RecordingAuditSink()
        metrics = MetricsUpdater(registry=registry)
        summary = await _aggregator(
            _store("key-a", "key-b"), client, audit_sink=sink, metrics=metrics
        ).aggregate_provider("openai", time_range, TODAY)

        assert summary.credential_count == 2
        assert summary.total_cost_today == 3.0
        assert [p.project.id for p in summary.projects] == ["key-a"]

        errors = [e for e in sink.events if e[0] == audit.API_ERROR]
        assert len(errors) == 1
        assert errors[0][3]["credential"] == "key-b"
        assert (
            registry.get_sample_value(
                "usagelens_credential_errors_total",
                {"provider": "openai", "stage": "usage"},
            )
            == 1.0
        )


class TestAggregateEdgeCases:
    @pytest.mark.asyncio
    async def test_no_credentials(self, time_range: "TimeRange") -> "None":
        client = FakeUsageClient()
        summary = await _aggregator(StaticSecretStore(), client).aggregate_provider(
            "openai", time_range, TODAY
        )

        assert summary.credential_count == 0
        assert summary.today.date == TODAY
        assert summary.total_cost_month == 0.0
        assert summary.projects == ()
        assert summary.errors == ()
        assert client.usage_calls == []

    @pytest.mark.asyncio
    async def test_store_failure_yields_empty_summary(
        self,
        time_range: "TimeRange",
        registry: "CollectorRegistry",
    ) -> "None":
        sink = RecordingAuditSink()
        metrics = MetricsUpdater(registry=registry)
        summary = await _aggregator(
            BrokenStore(), FakeUsageClient(), audit_sink=sink, metrics=metrics
        ).aggregate_provider("openai", time_range, TODAY)

        assert summary.credential_count == 0
        assert len(summary.errors) == 1
        assert "keychain locked" in summary.errors[0]
        assert sink.events[0][0] == audit.API_ERROR
        assert (
            registry.get_sample_value(
                "usagelens_credential_errors_total",
                {"provider": "openai", "stage": "credentials"},
            )
            == 1.0
        )

    @pytest.mark.asyncio
    async def test_unknown_provider(self, time_range: "TimeRange") -> "None":
        summary = await _aggregator(_store("key-a"), FakeUsageClient()).aggregate_provider(
            "mistral", time_range, TODAY
        )
        assert summary.provider == "mistral"
        assert summary.errors

    @pytest.mark.asyncio
    async def test_records_metrics_on_success(
        self,
        time_range: "TimeRange",
        registry: "CollectorRegistry",
    ) -> "None":
        metrics = MetricsUpdater(registry=registry)
        await _aggregator(
            _store("key-a"), FakeUsageClient(), metrics=metrics
        ).aggregate_provider("openai", time_range, TODAY)

        assert (
            registry.get_sample_value(
                "usagelens_aggregation_duration_seconds_count", {"provider": "openai"}
            )
            == 1.0
        )
        assert (
            registry.get_sample_value(
                "usagelens_last_aggregation_success_timestamp_seconds", {"provider": "openai"}
            )
            > 0
        )

    @pytest.mark.asyncio
    async def test_no_last_success_when_credentials_fail(
        self,
        time_range: "TimeRange",
        registry: "CollectorRegistry",
    ) -> "None":
        metrics = MetricsUpdater(registry=registry)
        await _aggregator(
            _store("key-a"), FakeUsageClient(failing=["key-a"]), metrics=metrics
        ).aggregate_provider("openai", time_range, TODAY)

        assert (
            registry.get_sample_value(
                "usagelens_credential_errors_total", {"provider": "openai", "stage": "usage"}
            )
            == 1.0
        )
        assert (
            registry.get_sample_value(
                "usagelens_aggregation_duration_seconds_count", {"provider": "openai"}
            )
            == 1.0
        )
        assert (
            registry.get_sample_value(
                "usagelens_last_aggregation_success_timestamp_seconds", {"provider": "openai"}
            )
            is None
        )

    @pytest.mark.asyncio
    async def test_audits_every_credential_call(self, time_range: "TimeRange") -> "None":
        sink = RecordingAuditSink()
        await _aggregator(
            _store("key-a", "key-b"), FakeUsageClient(), audit_sink=sink
        ).aggregate_provider("openai", time_range, TODAY)

        assert sink.events[0] == (
            audit.SECRET_ACCESSED,
            "openai",
            "credentials",
            {"credentials": ["key-a", "key-b"]},
        )
        calls = [e for e in sink.events if e[0] == audit.API_CALL]
        assert sorted(e[3]["credential"] for e in calls) == ["key-a", "key-b"]


class TestAggregateUnits:
    @pytest.mark.asyncio
    async def test_one_project_per_unit_sorted_by_cost(self, time_range: "TimeRange") -> "None":
        units = [
            ProjectRef(id="p1", name="Alpha"),
            ProjectRef(id="p2", name="Beta"),
            ProjectRef(id="p3", name="Gamma"),
        ]
        client = FakeUsageClient(
            units={"key-a": units},
            costs={"key-a": {TODAY: 11.0}},
            unit_costs={"p1": {TODAY: 3.0}, "p2": {TODAY: 5.0}, "p3": {TODAY: 3.0}},
            unit_usage={"p2": {TODAY: TokenCounts(input_tokens=7, output_tokens=3)}},
        )
        summary = await _aggregator(_store("key-a"), client).aggregate_provider(
            "openai", time_range, TODAY
        )

        # equal costs keep unit order
        assert [p.project.name for p in summary.projects] == ["Beta", "Alpha", "Gamma"]
        assert summary.projects[0].total_tokens == 10
        assert summary.total_cost_today == 11.0

        # the credential-wide fetch is filtered on all units, each
        # unit fetch on its own id
        assert ("key-a", ["p1", "p2", "p3"]) in client.usage_calls
        assert ("key-a", ["p2"]) in client.usage_calls


class TestBuildProjectUsage:
    def test_windows_and_totals(self) -> "None":
        usage = {
            TODAY: TokenCounts(input_tokens=10, output_tokens=5, request_count=1),
            TODAY - timedelta(days=10): TokenCounts(input_tokens=1, output_tokens=1),
        }
        costs = {TODAY: 1.0, TODAY - timedelta(days=10): 2.0}
        project = build_project_usage(
            ProjectRef(id="p1", name="Alpha"), "openai", usage, costs, TODAY
        )

        assert project.total_tokens == 17
        assert project.request_count == 1
        assert project.cost_usd == 3.0
        assert project.cost_today == 1.0
        assert project.cost_week == 1.0
        assert project.cost_month == 3.0
        assert project.daily[0].date == TODAY
