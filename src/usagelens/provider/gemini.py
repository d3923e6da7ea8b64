from datetime import date
from typing import Any, Sequence

import structlog

from usagelens.models import (
    KEY_KIND_STANDARD,
    KEY_KIND_UNKNOWN,
    PROVIDER_GOOGLE,
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
)

logger = structlog.get_logger()

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
GEMINI_ORGANIZATION_LABEL = "Google AI Studio"


class GeminiUsageClient(HttpUsageClient):
    """
    GeminiUsageClient targets Google AI Studio keys.

    Google publishes no usage or billing API for AI Studio keys, so
    usage is requested from a short, fixed list of candidate
    endpoints that usually answer with an error. Empty results are
    the expected outcome, not a failure. Keys have no sub-units;
    the aggregator books each key as its own pseudo-project.

    Token and cost fetches each walk the candidate chain, so a key
    makes the usage requests twice per run. Clients keep no state
    between calls, and the requests usually fail fast.
    """

    provider_tag = PROVIDER_GOOGLE
    name = "Gemini"
    base_url = GEMINI_BASE_URL

    def _headers(self, credential: "Credential") -> "dict[str, str]":
        # header instead of the ?key= query parameter keeps the
        # secret out of logged URLs
        return {"x-goog-api-key": credential.value}

    async def list_units(self, credential: "Credential") -> "list[ProjectRef]":
        return []

    async def fetch_daily_token_usage(
        self,
        credential: "Credential",
        time_range: "TimeRange",
        unit_ids: "Sequence[str] | None" = None,
    ) -> "dict[date, TokenCounts]":
        pages = await self._usage_pages(credential, time_range)
        return collect_token_usage(pages)

    async def fetch_daily_cost(
        self,
        credential: "Credential",
        time_range: "TimeRange",
        unit_ids: "Sequence[str] | None" = None,
    ) -> "dict[date, float]":
        # costs, when present at all, ride along in the usage payload
        pages = await self._usage_pages(credential, time_range)
        return collect_costs(pages)

    async def _usage_pages(
        self,
        credential: "Credential",
        time_range: "TimeRange",
    ) -> "list[dict[str, Any]]":
        found = await self._first_successful(usage_candidates(time_range), credential)
        if found is None:
            logger.debug("gemini_usage_unavailable", credential=credential.name)
            return []
        return found[1]

    async def diagnose(self, credential: "Credential") -> "KeyDiagnosis":
        key_kind = gemini_key_kind(credential.value)

        models, error = await self._probe_json("v1beta/models", credential)
        if models is None:
            return KeyDiagnosis(
                credential_name=credential.name,
                is_valid=False,
                key_kind=key_kind,
                error_message=f"API error: {error}",
            )

        names: "list[str]" = []
        for model in models.get("models") or []:
            if isinstance(model, dict) and model.get("name"):
                names.append(str(model["name"]).removeprefix("models/"))

        return KeyDiagnosis(
            credential_name=credential.name,
            is_valid=True,
            key_kind=key_kind,
            organization=GEMINI_ORGANIZATION_LABEL,
            accessible=tuple(names),
        )


def gemini_key_kind(value: "str") -> "str":
    if value.startswith("AIza"):
        return KEY_KIND_STANDARD
    return KEY_KIND_UNKNOWN


def usage_candidates(time_range: "TimeRange") -> "list[CandidateRequest]":
    return [
        CandidateRequest(
            "v1beta/usage",
            {
                "startDate": time_range.start_date.isoformat(),
                "endDate": time_range.end_date.isoformat(),
            },
        ),
        CandidateRequest("v1/usage", {}),
    ]
