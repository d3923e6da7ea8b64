import asyncio
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Mapping

import structlog

from usagelens import audit
from usagelens.audit import AuditSink, NullAuditSink, safe_record
from usagelens.credentials import CredentialResolver
from usagelens.errors import SecretStoreError
from usagelens.metrics import MetricsUpdater
from usagelens.models import (
    Credential,
    DailyUsageRecord,
    ProjectRef,
    ProjectUsage,
    ProviderUsageSummary,
    TimeRange,
    TokenCounts,
)
from usagelens.provider.base import UsageClient
from usagelens.series import (
    add_records,
    combine_usage_and_cost,
    cost_windows,
    newest_first,
    series_windows,
    today_utc,
)

logger = structlog.get_logger()


@dataclass(slots=True)
class _UnitUsage:
    unit: "ProjectRef"
    usage: "dict[date, TokenCounts]"
    costs: "dict[date, float]"


@dataclass(slots=True)
class _CredentialUsage:
    credential: "Credential"
    units: "list[ProjectRef]"
    usage: "dict[date, TokenCounts]"
    costs: "dict[date, float]"
    unit_usage: "list[_UnitUsage]" = field(default_factory=list)


class ProviderAggregator:
    """
    ProviderAggregator builds one provider's usage summary from
    every credential resolved for it.

    Credentials are processed concurrently and merged only after all
    of them finished. Figures of several credentials are added, not
    deduplicated: two keys of the same organization count its spend
    twice. A failing credential is logged, audited and counted, and
    the remaining credentials still contribute.
    """

    def __init__(
        self,
        resolver: "CredentialResolver",
        clients: "Mapping[str, UsageClient]",
        audit_sink: "AuditSink | None" = None,
        metrics: "MetricsUpdater | None" = None,
    ) -> "None":
        self._resolver = resolver
        self._clients = dict(clients)
        self._audit: "AuditSink" = audit_sink or NullAuditSink()
        self._metrics = metrics

    @property
    def provider_tags(self) -> "list[str]":
        return list(self._clients)

    async def aggregate_provider(
        self,
        provider_tag: "str",
        time_range: "TimeRange",
        today: "date | None" = None,
    ) -> "ProviderUsageSummary":
        today = today or today_utc()
        started = time.monotonic()

        client = self._clients.get(provider_tag)
        if client is None:
            logger.error("provider_unknown", provider=provider_tag)
            return ProviderUsageSummary.empty(
                provider_tag, today, errors=(f"no usage client for provider {provider_tag}",)
            )

        try:
            credentials = self._resolver.resolve_credentials(provider_tag)
        except SecretStoreError as exc:
            logger.error("credential_lookup_failed", provider=provider_tag, error=str(exc))
            safe_record(
                self._audit,
                audit.API_ERROR,
                provider_tag,
                "credentials",
                {"error": str(exc)},
            )
            if self._metrics is not None:
                self._metrics.inc_credential_error(provider_tag, "credentials")
            return ProviderUsageSummary.empty(provider_tag, today, errors=(str(exc),))

        if not credentials:
            logger.info("provider_not_configured", provider=provider_tag)
            return ProviderUsageSummary.empty(provider_tag, today)

        safe_record(
            self._audit,
            audit.SECRET_ACCESSED,
            provider_tag,
            "credentials",
            {"credentials": [c.name for c in credentials]},
        )

        tasks = [
            self._collect_credential(client, credential, time_range)
            for credential in credentials
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        collected: "list[_CredentialUsage]" = []
        for credential, result in zip(credentials, results):
            if isinstance(result, BaseException):
                logger.error(
                    "credential_aggregation_error",
                    provider=provider_tag,
                    credential=credential.name,
                    exc_info=result,
                )
                safe_record(
                    self._audit,
                    audit.API_ERROR,
                    provider_tag,
                    "usage",
                    {"credential": credential.name, "error": str(result)},
                )
                if self._metrics is not None:
                    self._metrics.inc_credential_error(provider_tag, "usage")
                continue

            collected.append(result)

        summary = self._summarize(client, collected, len(credentials), today)

        if self._metrics is not None:
            self._metrics.observe_aggregation_duration(
                provider_tag, time.monotonic() - started
            )
            if len(collected) == len(credentials):
                self._metrics.set_last_success(provider_tag, time.time())

        logger.info(
            "provider_aggregated",
            provider=provider_tag,
            credentials=len(credentials),
            failed_credentials=len(credentials) - len(collected),
            days=len(summary.last_30_days),
            projects=len(summary.projects),
            cost_today=summary.total_cost_today,
            cost_month=summary.total_cost_month,
        )
        return summary

    async def _collect_credential(
        self,
        client: "UsageClient",
        credential: "Credential",
        time_range: "TimeRange",
    ) -> "_CredentialUsage":
        safe_record(
            self._audit,
            audit.API_CALL,
            client.provider,
            "usage",
            {
                "credential": credential.name,
                "start_time": time_range.start,
                "end_time": time_range.end,
            },
        )

        # units first: the usage and cost calls filter on them
        units = await client.list_units(credential)
        unit_ids = [unit.id for unit in units] or None

        usage, costs, *unit_usage = await asyncio.gather(
            client.fetch_daily_token_usage(credential, time_range, unit_ids),
            client.fetch_daily_cost(credential, time_range, unit_ids),
            *(self._collect_unit(client, credential, time_range, unit) for unit in units),
        )

        logger.debug(
            "credential_collected",
            provider=client.provider,
            credential=credential.name,
            units=len(units),
            usage_days=len(usage),
            cost_days=len(costs),
        )
        return _CredentialUsage(
            credential=credential,
            units=units,
            usage=usage,
            costs=costs,
            unit_usage=unit_usage,
        )

    @staticmethod
    async def _collect_unit(
        client: "UsageClient",
        credential: "Credential",
        time_range: "TimeRange",
        unit: "ProjectRef",
    ) -> "_UnitUsage":
        usage, costs = await asyncio.gather(
            client.fetch_daily_token_usage(credential, time_range, [unit.id]),
            client.fetch_daily_cost(credential, time_range, [unit.id]),
        )
        return _UnitUsage(unit=unit, usage=usage, costs=costs)

    @staticmethod
    def _summarize(
        client: "UsageClient",
        collected: "list[_CredentialUsage]",
        credential_count: "int",
        today: "date",
    ) -> "ProviderUsageSummary":
        daily: "dict[date, DailyUsageRecord]" = {}
        projects: "list[ProjectUsage]" = []

        for item in collected:
            add_records(daily, combine_usage_and_cost(item.usage, item.costs).values())

            if item.units:
                for unit_usage in item.unit_usage:
                    projects.append(
                        build_project_usage(
                            unit_usage.unit,
                            client.provider,
                            unit_usage.usage,
                            unit_usage.costs,
                            today,
                        )
                    )
            else:
                # no sub-units: the key itself is the attribution unit
                ref = ProjectRef(
                    id=item.credential.name,
                    name=f"{client.display_name} ({item.credential.name})",
                )
                projects.append(
                    build_project_usage(ref, client.provider, item.usage, item.costs, today)
                )

        # stable sort keeps input order for equal costs
        projects.sort(key=lambda p: p.cost_usd, reverse=True)

        today_record, last_7, last_30 = series_windows(daily, today)
        return ProviderUsageSummary(
            provider=client.provider,
            today=today_record,
            last_7_days=last_7,
            last_30_days=last_30,
            total_cost_today=today_record.cost_usd,
            total_cost_week=sum(r.cost_usd for r in last_7),
            total_cost_month=sum(r.cost_usd for r in last_30),
            projects=tuple(projects),
            credential_count=credential_count,
        )


def build_project_usage(
    project: "ProjectRef",
    provider: "str",
    usage: "Mapping[date, TokenCounts]",
    costs: "Mapping[date, float]",
    today: "date",
) -> "ProjectUsage":
    daily = combine_usage_and_cost(usage, costs)
    cost_today, cost_week, cost_month = cost_windows(costs, today)
    return ProjectUsage(
        project=project,
        provider=provider,
        input_tokens=sum(c.input_tokens for c in usage.values()),
        output_tokens=sum(c.output_tokens for c in usage.values()),
        request_count=sum(c.request_count for c in usage.values()),
        cost_usd=sum(costs.values()),
        cost_today=cost_today,
        cost_week=cost_week,
        cost_month=cost_month,
        daily=newest_first(daily),
    )
