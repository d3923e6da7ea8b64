from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Mapping, Protocol, Sequence

import httpx
import structlog

from usagelens.models import Credential, KeyDiagnosis, ProjectRef, TimeRange, TokenCounts
from usagelens.provider.fields import (
    COST_FIELDS,
    INPUT_TOKEN_FIELDS,
    OUTPUT_TOKEN_FIELDS,
    REQUEST_COUNT_FIELDS,
    bucket_date,
    bucket_rows,
    payload_items,
    probe_amount,
    probe_int,
)

logger = structlog.get_logger()

# hard cap on pages followed per endpoint, bounding latency
# against an API that always reports has_more
MAX_PAGES = 10
DEFAULT_TIMEOUT_SECONDS = 10.0


class UsageClient(Protocol):
    """
    UsageClient stands as a common protocol that all provider
    clients must satisfy.

    Clients translate one provider's usage, cost and project
    endpoints into date keyed mappings. They never raise for
    network or HTTP failures; a failing source contributes no data.
    """

    @property
    def provider(self) -> "str": ...

    @property
    def display_name(self) -> "str": ...

    async def list_units(self, credential: "Credential") -> "list[ProjectRef]": ...

    async def fetch_daily_token_usage(
        self,
        credential: "Credential",
        time_range: "TimeRange",
        unit_ids: "Sequence[str] | None" = None,
    ) -> "dict[date, TokenCounts]": ...

    async def fetch_daily_cost(
        self,
        credential: "Credential",
        time_range: "TimeRange",
        unit_ids: "Sequence[str] | None" = None,
    ) -> "dict[date, float]": ...

    async def diagnose(self, credential: "Credential") -> "KeyDiagnosis": ...

    async def close(self) -> "None": ...


@dataclass(frozen=True, slots=True)
class CandidateRequest:
    """
    CandidateRequest is one entry of an endpoint fallback chain.
    amount_in_cents marks report endpoints that bill in cents.
    """

    path: "str"
    params: "dict[str, Any]"
    amount_in_cents: "bool" = False


class HttpUsageClient:
    """
    HttpUsageClient holds the HTTP plumbing shared by the provider
    clients: authenticated GETs, JSON decoding, cursor pagination
    and endpoint fallback chains.

    The httpx client may be injected so that several provider
    clients share one connection pool; a client created here is
    owned and closed by this instance.
    """

    provider_tag: "str" = ""
    name: "str" = ""
    base_url: "str" = ""

    def __init__(
        self,
        http: "httpx.AsyncClient | None" = None,
        timeout: "float" = DEFAULT_TIMEOUT_SECONDS,
        max_pages: "int" = MAX_PAGES,
    ) -> "None":
        self._owns_http = http is None
        self._http: "httpx.AsyncClient" = http or httpx.AsyncClient(timeout=timeout)
        self._max_pages = max_pages

    @property
    def provider(self) -> "str":
        return self.provider_tag

    @property
    def display_name(self) -> "str":
        return self.name

    async def close(self) -> "None":
        """
        closes the underlying HTTP client if this instance created it.
        """
        if self._owns_http:
            await self._http.aclose()

    def _headers(self, credential: "Credential") -> "dict[str, str]":
        raise NotImplementedError

    async def _get(
        self,
        path: "str",
        credential: "Credential",
        params: "Mapping[str, Any] | None" = None,
    ) -> "httpx.Response":
        return await self._http.get(
            f"{self.base_url}/{path.lstrip('/')}",
            params=params,
            headers=self._headers(credential),
        )

    async def _probe_json(
        self,
        path: "str",
        credential: "Credential",
        params: "Mapping[str, Any] | None" = None,
    ) -> "tuple[dict[str, Any] | None, str | None]":
        """
        performs a GET and returns (payload, None) on success or
        (None, error message) when the request fails, the status is
        not 2xx or the body is not a JSON object. Failures are
        logged, never raised.
        """
        try:
            resp = await self._get(path, credential, params)
        except httpx.HTTPError as exc:
            logger.warning(
                "provider_request_failed",
                provider=self.provider_tag,
                credential=credential.name,
                path=path,
                error=str(exc),
            )
            return None, f"request failed: {exc}"

        if not resp.is_success:
            body = resp.text[:200]
            logger.warning(
                "provider_endpoint_status",
                provider=self.provider_tag,
                credential=credential.name,
                path=path,
                status=resp.status_code,
                body=body,
            )
            message = f"HTTP {resp.status_code}"
            if body:
                message = f"{message}: {body[:100]}"
            return None, message

        try:
            data = resp.json()
        except ValueError:
            logger.warning(
                "provider_invalid_json",
                provider=self.provider_tag,
                credential=credential.name,
                path=path,
            )
            return None, "invalid JSON response"

        if not isinstance(data, dict):
            logger.warning(
                "provider_unexpected_payload",
                provider=self.provider_tag,
                credential=credential.name,
                path=path,
            )
            return None, "unexpected response payload"

        return data, None

    async def _get_json(
        self,
        path: "str",
        credential: "Credential",
        params: "Mapping[str, Any] | None" = None,
    ) -> "dict[str, Any] | None":
        data, _ = await self._probe_json(path, credential, params)
        return data

    async def _paginate(
        self,
        path: "str",
        credential: "Credential",
        params: "Mapping[str, Any]",
        cursor_param: "str" = "page",
        cursor_fields: "tuple[str, ...]" = ("next_page",),
    ) -> "list[dict[str, Any]] | None":
        """
        follows the has_more/cursor protocol and returns every page
        payload. Returns None if the first page failed; a later
        failing page ends the walk with the pages collected so far.
        Stops after max_pages pages regardless of has_more.
        """
        pages: "list[dict[str, Any]]" = []
        cursor = ""

        # loop instead of recursion, bounded by the page cap
        while len(pages) < self._max_pages:
            query = dict(params)
            if cursor:
                query[cursor_param] = cursor

            data = await self._get_json(path, credential, query)
            if data is None:
                return pages if pages else None

            pages.append(data)

            if not data.get("has_more"):
                break

            cursor = ""
            for field_name in cursor_fields:
                value = data.get(field_name)
                if value:
                    cursor = str(value)
                    break
            if not cursor:
                break
        else:
            logger.warning(
                "provider_page_cap_reached",
                provider=self.provider_tag,
                path=path,
                max_pages=self._max_pages,
            )

        return pages

    async def _first_successful(
        self,
        candidates: "Sequence[CandidateRequest]",
        credential: "Credential",
    ) -> "tuple[CandidateRequest, list[dict[str, Any]]] | None":
        """
        walks a fallback chain and returns the first candidate whose
        first page answered 2xx with a recognisable list payload,
        together with all of its pages. Returns None if every
        candidate failed.
        """
        for candidate in candidates:
            pages = await self._paginate(candidate.path, credential, candidate.params)
            if not pages or payload_items(pages[0]) is None:
                logger.debug(
                    "provider_candidate_rejected",
                    provider=self.provider_tag,
                    credential=credential.name,
                    path=candidate.path,
                )
                continue

            logger.debug(
                "provider_candidate_accepted",
                provider=self.provider_tag,
                credential=credential.name,
                path=candidate.path,
                pages=len(pages),
            )
            return candidate, pages

        logger.info(
            "provider_all_candidates_failed",
            provider=self.provider_tag,
            credential=credential.name,
            candidates=[c.path for c in candidates],
        )
        return None


def read_token_counts(row: "Mapping[str, Any]") -> "TokenCounts":
    return TokenCounts(
        input_tokens=probe_int(row, INPUT_TOKEN_FIELDS),
        output_tokens=probe_int(row, OUTPUT_TOKEN_FIELDS),
        request_count=probe_int(row, REQUEST_COUNT_FIELDS),
    )


def collect_token_usage(
    pages: "Sequence[Mapping[str, Any]]",
    reader: "Callable[[Mapping[str, Any]], TokenCounts]" = read_token_counts,
) -> "dict[date, TokenCounts]":
    """
    sums token rows of usage pages per UTC day. Buckets without a
    usable date and rows with no activity are skipped, so quiet
    days stay absent from the mapping.
    """
    daily: "dict[date, TokenCounts]" = {}
    for page in pages:
        for bucket in payload_items(page) or []:
            fallback_day = bucket_date(bucket)
            for row in bucket_rows(bucket):
                day = bucket_date(row) or fallback_day
                if day is None:
                    continue
                counts = reader(row)
                if counts == TokenCounts():
                    continue
                daily[day] = daily.get(day, TokenCounts()) + counts
    return daily


def collect_costs(
    pages: "Sequence[Mapping[str, Any]]",
    amount_in_cents: "bool" = False,
) -> "dict[date, float]":
    """
    sums cost rows of cost pages per UTC day, in USD.
    """
    scale = 0.01 if amount_in_cents else 1.0
    daily: "dict[date, float]" = {}
    for page in pages:
        for bucket in payload_items(page) or []:
            fallback_day = bucket_date(bucket)
            for row in bucket_rows(bucket):
                day = bucket_date(row) or fallback_day
                if day is None:
                    continue
                amount = probe_amount(row, COST_FIELDS) * scale
                if amount <= 0:
                    continue
                daily[day] = daily.get(day, 0.0) + amount
    return daily
