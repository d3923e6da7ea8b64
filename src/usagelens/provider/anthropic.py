from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

import structlog

from usagelens.models import (
    KEY_KIND_ADMIN,
    KEY_KIND_STANDARD,
    KEY_KIND_UNKNOWN,
    PROVIDER_ANTHROPIC,
    Credential,
    KeyDiagnosis,
    ProjectRef,
    TimeRange,
    TokenCounts,
)
from usagelens.provider.base import (
    CandidateRequest,
    HttpUsageClient,
    collect_costs,
    collect_token_usage,
    read_token_counts,
)
from usagelens.provider.fields import first_present, payload_items, probe_int

logger = structlog.get_logger()

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"

# input token parts reported by the usage report in place of a
# single input_tokens figure
_CACHED_INPUT_FIELDS: "tuple[str, ...]" = (
    "uncached_input_tokens",
    "cache_read_input_tokens",
    "cache_creation_input_tokens",
)


class AnthropicUsageClient(HttpUsageClient):
    """
    AnthropicUsageClient reads the Anthropic Admin API. Units are
    organization workspaces.

    Usage and cost are read through fallback chains: the documented
    report endpoints first, then older endpoint shapes. The first
    candidate that answers with a list payload is used.
    """

    provider_tag = PROVIDER_ANTHROPIC
    name = "Anthropic"
    base_url = ANTHROPIC_BASE_URL

    def _headers(self, credential: "Credential") -> "dict[str, str]":
        return {
            "x-api-key": credential.value,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    async def list_units(self, credential: "Credential") -> "list[ProjectRef]":
        pages = await self._paginate(
            "organizations/workspaces",
            credential,
            {"limit": 100},
            cursor_param="after_id",
            cursor_fields=("last_id",),
        )
        return _workspace_refs(pages or [])

    async def fetch_daily_token_usage(
        self,
        credential: "Credential",
        time_range: "TimeRange",
        unit_ids: "Sequence[str] | None" = None,
    ) -> "dict[date, TokenCounts]":
        found = await self._first_successful(
            usage_candidates(time_range, unit_ids), credential
        )
        if found is None:
            return {}

        _, pages = found
        return collect_token_usage(pages, reader=read_anthropic_tokens)

    async def fetch_daily_cost(
        self,
        credential: "Credential",
        time_range: "TimeRange",
        unit_ids: "Sequence[str] | None" = None,
    ) -> "dict[date, float]":
        found = await self._first_successful(
            cost_candidates(time_range, unit_ids), credential
        )
        if found is None:
            return {}

        candidate, pages = found
        return collect_costs(pages, amount_in_cents=candidate.amount_in_cents)

    async def diagnose(self, credential: "Credential") -> "KeyDiagnosis":
        key_kind = anthropic_key_kind(credential.value)

        identity, identity_error = await self._probe_json("organizations/me", credential)
        workspaces, workspaces_error = await self._probe_json(
            "organizations/workspaces", credential, {"limit": 100}
        )

        organization = None
        if identity is not None:
            organization = str(identity.get("name") or identity.get("id") or "unknown")
        elif workspaces is not None and isinstance(workspaces.get("organization"), Mapping):
            org = workspaces["organization"]
            organization = str(org.get("name") or org.get("id") or "unknown")

        refs = _workspace_refs([workspaces]) if workspaces is not None else []
        is_valid = identity is not None or workspaces is not None

        error_message = None
        if not is_valid:
            error_message = (
                "admin API not available (standard API key?): "
                f"identity check: {identity_error}; workspaces: {workspaces_error}"
            )
        elif workspaces is None:
            error_message = f"cannot list workspaces: {workspaces_error}"

        return KeyDiagnosis(
            credential_name=credential.name,
            is_valid=is_valid,
            key_kind=key_kind,
            organization=organization,
            accessible=tuple(ref.name for ref in refs),
            error_message=error_message,
        )


def anthropic_key_kind(value: "str") -> "str":
    if value.startswith("sk-ant-admin"):
        return KEY_KIND_ADMIN
    if value.startswith("sk-ant-"):
        return KEY_KIND_STANDARD
    return KEY_KIND_UNKNOWN


def read_anthropic_tokens(row: "Mapping[str, Any]") -> "TokenCounts":
    """
    reads one usage row. The usage report splits input tokens into
    uncached, cache read and cache creation parts; older shapes
    carry a single input figure.
    """
    counts = read_token_counts(row)
    if counts.input_tokens or first_present(row, ("input_tokens", "prompt_tokens")) is not None:
        return counts

    input_tokens = sum(probe_int(row, (name,)) for name in _CACHED_INPUT_FIELDS)
    cache_creation = row.get("cache_creation")
    if isinstance(cache_creation, Mapping):
        input_tokens += probe_int(cache_creation, ("ephemeral_1h_input_tokens",))
        input_tokens += probe_int(cache_creation, ("ephemeral_5m_input_tokens",))

    return TokenCounts(
        input_tokens=input_tokens,
        output_tokens=counts.output_tokens,
        request_count=counts.request_count,
    )


def usage_candidates(
    time_range: "TimeRange",
    unit_ids: "Sequence[str] | None" = None,
) -> "list[CandidateRequest]":
    report = _report_params(time_range, unit_ids)
    legacy = _legacy_params(time_range)
    return [
        CandidateRequest("organizations/usage_report/messages", report),
        CandidateRequest("organizations/usage", {**legacy, "granularity": "day"}),
        CandidateRequest("usage", legacy),
        CandidateRequest("admin/usage", legacy),
    ]


def cost_candidates(
    time_range: "TimeRange",
    unit_ids: "Sequence[str] | None" = None,
) -> "list[CandidateRequest]":
    report = _report_params(time_range, unit_ids)
    legacy = _legacy_params(time_range)
    return [
        # the cost report bills in cents
        CandidateRequest("organizations/cost_report", report, amount_in_cents=True),
        CandidateRequest("organizations/costs", {**legacy, "granularity": "day"}),
        CandidateRequest("costs", legacy),
        CandidateRequest("admin/costs", legacy),
    ]


def _report_params(
    time_range: "TimeRange",
    unit_ids: "Sequence[str] | None",
) -> "dict[str, Any]":
    params: "dict[str, Any]" = {
        "starting_at": _iso(time_range.start),
        "ending_at": _iso(time_range.end),
        "bucket_width": "1d",
        "limit": 31,
    }
    if unit_ids:
        params["workspace_ids[]"] = list(unit_ids)
    return params


def _legacy_params(time_range: "TimeRange") -> "dict[str, Any]":
    # legacy shapes take inclusive calendar days; the range end is exclusive
    end_day = time_range.end_date
    if time_range.end % 86400 == 0 and time_range.end > time_range.start:
        end_day -= timedelta(days=1)
    return {
        "start_date": time_range.start_date.isoformat(),
        "end_date": end_day.isoformat(),
    }


def _iso(unix_seconds: "int") -> "str":
    return (
        datetime.fromtimestamp(unix_seconds, tz=timezone.utc)
        .isoformat()
        .replace("+00:00", "Z")
    )


def _workspace_refs(pages: "list[dict[str, Any]]") -> "list[ProjectRef]":
    refs: "list[ProjectRef]" = []
    for page in pages:
        for workspace in payload_items(page) or []:
            workspace_id = workspace.get("id")
            if not workspace_id:
                continue
            name = workspace.get("name") or workspace.get("display_name") or workspace_id
            refs.append(ProjectRef(id=str(workspace_id), name=str(name)))
    return refs
