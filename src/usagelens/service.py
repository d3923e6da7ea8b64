import asyncio
from datetime import date
from typing import Mapping

import httpx
import structlog

from usagelens.aggregator import ProviderAggregator
from usagelens.audit import AuditSink, NullAuditSink
from usagelens.credentials import CredentialResolver, SecretStore
from usagelens.diagnosis import DiagnosisOrchestrator
from usagelens.merger import merge_providers
from usagelens.metrics import MetricsUpdater
from usagelens.models import (
    CombinedUsageSummary,
    KeyDiagnosis,
    ProviderUsageSummary,
    TimeRange,
)
from usagelens.provider.anthropic import AnthropicUsageClient
from usagelens.provider.base import DEFAULT_TIMEOUT_SECONDS, MAX_PAGES, UsageClient
from usagelens.provider.gemini import GeminiUsageClient
from usagelens.provider.openai import OpenAIUsageClient
from usagelens.series import MONTH_DAYS, today_utc

logger = structlog.get_logger()


def default_clients(
    http: "httpx.AsyncClient",
    max_pages: "int" = MAX_PAGES,
) -> "dict[str, UsageClient]":
    clients: "list[UsageClient]" = [
        OpenAIUsageClient(http=http, max_pages=max_pages),
        AnthropicUsageClient(http=http, max_pages=max_pages),
        GeminiUsageClient(http=http, max_pages=max_pages),
    ]
    return {client.provider: client for client in clients}


class UsageService:
    """
    UsageService wires the secret store, the provider clients and the
    audit sink together and is the entry point for presentation code.

    It owns one HTTP connection pool shared by all provider clients,
    opened on construction and released by close(). Concurrent calls
    to refresh() are independent: nothing is cached between runs.
    """

    def __init__(
        self,
        store: "SecretStore",
        audit_sink: "AuditSink | None" = None,
        metrics: "MetricsUpdater | None" = None,
        clients: "Mapping[str, UsageClient] | None" = None,
        http: "httpx.AsyncClient | None" = None,
        timeout: "float" = DEFAULT_TIMEOUT_SECONDS,
        max_pages: "int" = MAX_PAGES,
        lookback_days: "int" = MONTH_DAYS,
    ) -> "None":
        self._owns_http = http is None and clients is None
        self._http: "httpx.AsyncClient | None" = http
        if clients is None:
            if self._http is None:
                self._http = httpx.AsyncClient(timeout=timeout)
            clients = default_clients(self._http, max_pages)

        self._clients: "dict[str, UsageClient]" = dict(clients)
        self._metrics = metrics
        self._lookback_days = lookback_days

        resolver = CredentialResolver(store)
        sink = audit_sink or NullAuditSink()
        self._aggregator = ProviderAggregator(
            resolver,
            self._clients,
            audit_sink=sink,
            metrics=metrics,
        )
        self._diagnosis = DiagnosisOrchestrator(resolver, self._clients, audit_sink=sink)

    @property
    def provider_tags(self) -> "list[str]":
        return list(self._clients)

    async def __aenter__(self) -> "UsageService":
        return self

    async def __aexit__(self, *exc_info: "object") -> "None":
        await self.close()

    async def close(self) -> "None":
        for client in self._clients.values():
            await client.close()
        if self._owns_http and self._http is not None:
            await self._http.aclose()

    def default_range(self) -> "TimeRange":
        return TimeRange.last_days(self._lookback_days)

    async def aggregate_provider(
        self,
        provider_tag: "str",
        time_range: "TimeRange | None" = None,
        today: "date | None" = None,
    ) -> "ProviderUsageSummary":
        return await self._aggregator.aggregate_provider(
            provider_tag, time_range or self.default_range(), today
        )

    async def refresh(
        self,
        time_range: "TimeRange | None" = None,
        today: "date | None" = None,
    ) -> "CombinedUsageSummary":
        """
        aggregates every provider concurrently and merges the results.
        A provider that fails outright contributes an empty summary
        instead of cancelling the others.
        """
        time_range = time_range or self.default_range()
        today = today or today_utc()
        tags = self.provider_tags

        results = await asyncio.gather(
            *(self._aggregator.aggregate_provider(tag, time_range, today) for tag in tags),
            return_exceptions=True,
        )

        summaries: "dict[str, ProviderUsageSummary]" = {}
        for tag, result in zip(tags, results):
            if isinstance(result, BaseException):
                logger.error("provider_aggregation_failed", provider=tag, exc_info=result)
                summaries[tag] = ProviderUsageSummary.empty(
                    tag, today, errors=(str(result),)
                )
                continue
            summaries[tag] = result

        combined = merge_providers(summaries, today)
        if self._metrics is not None:
            self._metrics.update_summary(combined)

        logger.info(
            "usage_refreshed",
            providers=tags,
            cost_today=combined.total_cost_today,
            cost_week=combined.total_cost_week,
            cost_month=combined.total_cost_month,
            projects=len(combined.projects),
        )
        return combined

    async def diagnose_all_providers(self) -> "dict[str, list[KeyDiagnosis]]":
        return await self._diagnosis.diagnose_all_providers()
