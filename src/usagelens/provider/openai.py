import asyncio
from datetime import date
from typing import Any, Sequence

import httpx
import structlog

from usagelens.models import (
    KEY_KIND_ADMIN,
    KEY_KIND_STANDARD,
    KEY_KIND_UNKNOWN,
    PROVIDER_OPENAI,
    Credential,
    KeyDiagnosis,
    ProjectRef,
    TimeRange,
    TokenCounts,
)
from usagelens.provider.base import (
    DEFAULT_TIMEOUT_SECONDS,
    MAX_PAGES,
    HttpUsageClient,
    collect_costs,
    collect_token_usage,
)
from usagelens.provider.fields import payload_items

logger = structlog.get_logger()

OPENAI_BASE_URL = "https://api.openai.com/v1"

# every organization usage endpoint; token fields differ per endpoint
# and are reconciled by the candidate field lists
USAGE_ENDPOINTS: "tuple[str, ...]" = (
    "completions",
    "embeddings",
    "moderations",
    "images",
    "audio_speeches",
    "audio_transcriptions",
    "code_interpreter_sessions",
    "vector_stores",
)


class OpenAIUsageClient(HttpUsageClient):
    """
    OpenAIUsageClient reads the OpenAI organization usage and costs
    APIs. Units are organization projects. Usage is the sum over all
    usage endpoints, fetched concurrently.
    """

    provider_tag = PROVIDER_OPENAI
    name = "OpenAI"
    base_url = OPENAI_BASE_URL

    def __init__(
        self,
        http: "httpx.AsyncClient | None" = None,
        timeout: "float" = DEFAULT_TIMEOUT_SECONDS,
        max_pages: "int" = MAX_PAGES,
        org_id: "str" = "",
    ) -> "None":
        super().__init__(http=http, timeout=timeout, max_pages=max_pages)
        self._org_id = org_id

    def _headers(self, credential: "Credential") -> "dict[str, str]":
        headers = {"Authorization": f"Bearer {credential.value}"}
        if self._org_id:
            headers["OpenAI-Organization"] = self._org_id
        return headers

    async def list_units(self, credential: "Credential") -> "list[ProjectRef]":
        """
        lists organization projects, following the after/last_id cursor.
        """
        pages = await self._paginate(
            "organization/projects",
            credential,
            {"limit": 100},
            cursor_param="after",
            cursor_fields=("last_id",),
        )
        return _project_refs(pages or [])

    async def fetch_daily_token_usage(
        self,
        credential: "Credential",
        time_range: "TimeRange",
        unit_ids: "Sequence[str] | None" = None,
    ) -> "dict[date, TokenCounts]":
        tasks = [
            self._fetch_endpoint_usage(endpoint, credential, time_range, unit_ids)
            for endpoint in USAGE_ENDPOINTS
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        daily: "dict[date, TokenCounts]" = {}
        for endpoint, result in zip(USAGE_ENDPOINTS, results):
            if isinstance(result, BaseException):
                logger.error(
                    "openai_usage_endpoint_error",
                    endpoint=endpoint,
                    credential=credential.name,
                    error=str(result),
                )
                continue

            for day, counts in result.items():
                daily[day] = daily.get(day, TokenCounts()) + counts

        logger.debug(
            "openai_usage_done",
            credential=credential.name,
            days=len(daily),
        )
        return daily

    async def _fetch_endpoint_usage(
        self,
        endpoint: "str",
        credential: "Credential",
        time_range: "TimeRange",
        unit_ids: "Sequence[str] | None",
    ) -> "dict[date, TokenCounts]":
        pages = await self._paginate(
            f"organization/usage/{endpoint}",
            credential,
            _report_params(time_range, unit_ids),
        )
        return collect_token_usage(pages or [])

    async def fetch_daily_cost(
        self,
        credential: "Credential",
        time_range: "TimeRange",
        unit_ids: "Sequence[str] | None" = None,
    ) -> "dict[date, float]":
        """
        fetches daily costs. amount.value arrives as a long decimal
        string such as "0.001589850000000000000000000000".
        """
        pages = await self._paginate(
            "organization/costs",
            credential,
            _report_params(time_range, unit_ids),
        )
        daily = collect_costs(pages or [])
        logger.debug("openai_costs_done", credential=credential.name, days=len(daily))
        return daily

    async def diagnose(self, credential: "Credential") -> "KeyDiagnosis":
        key_kind = openai_key_kind(credential.value)

        # both probes always run so a partial failure still reports
        # everything that could be learned about the key
        identity, identity_error = await self._probe_json("me", credential)
        projects, projects_error = await self._probe_json(
            "organization/projects", credential, {"limit": 100}
        )

        organization = None
        if identity is not None:
            organization = str(
                identity.get("name") or identity.get("email") or identity.get("id") or "unknown"
            )

        refs = _project_refs([projects]) if projects is not None else []
        is_valid = identity is not None or projects is not None

        error_message = None
        if not is_valid:
            error_message = f"identity check: {identity_error}; projects: {projects_error}"
        elif projects is None:
            error_message = f"cannot list projects (admin key required): {projects_error}"
        elif not refs:
            error_message = "no projects found"

        return KeyDiagnosis(
            credential_name=credential.name,
            is_valid=is_valid,
            key_kind=key_kind,
            organization=organization,
            accessible=tuple(ref.name for ref in refs),
            error_message=error_message,
        )


def openai_key_kind(value: "str") -> "str":
    if value.startswith("sk-admin-"):
        return KEY_KIND_ADMIN
    if value.startswith("sk-"):
        return KEY_KIND_STANDARD
    return KEY_KIND_UNKNOWN


def _report_params(
    time_range: "TimeRange",
    unit_ids: "Sequence[str] | None",
) -> "dict[str, Any]":
    params: "dict[str, Any]" = {
        "start_time": time_range.start,
        "end_time": time_range.end,
        "bucket_width": "1d",
        "limit": 31,
    }
    if unit_ids:
        params["project_ids"] = list(unit_ids)
    return params


def _project_refs(pages: "list[dict[str, Any]]") -> "list[ProjectRef]":
    refs: "list[ProjectRef]" = []
    for page in pages:
        for project in payload_items(page) or []:
            project_id = project.get("id")
            if not project_id:
                continue
            refs.append(
                ProjectRef(id=str(project_id), name=str(project.get("name") or project_id))
            )
    return refs
