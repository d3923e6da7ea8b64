from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any


@dataclass(frozen=True, slots=True)
class Credential:
    """
    Credential is a named API secret resolved for one provider.
    The secret value is kept out of repr() so it never ends up
    in logs or tracebacks.
    """

    name: "str"
    value: "str" = field(repr=False)
    provider_hint: "str" = ""


@dataclass(frozen=True, slots=True)
class TimeRange:
    """
    TimeRange is a half-open [start, end) window in unix seconds.
    """

    start: "int"
    end: "int"

    @classmethod
    def last_days(cls, days: "int", now: "datetime | None" = None) -> "TimeRange":
        """
        builds a range starting at UTC midnight (days - 1) days ago
        and ending now, so "30 days" includes today.
        """
        now = now or datetime.now(timezone.utc)
        first_day = now.astimezone(timezone.utc).date() - timedelta(days=days - 1)
        start = datetime.combine(first_day, time.min, tzinfo=timezone.utc)
        return cls(start=int(start.timestamp()), end=int(now.timestamp()))

    @property
    def start_date(self) -> "date":
        return datetime.fromtimestamp(self.start, tz=timezone.utc).date()

    @property
    def end_date(self) -> "date":
        return datetime.fromtimestamp(self.end, tz=timezone.utc).date()


@dataclass(frozen=True, slots=True)
class TokenCounts:
    input_tokens: "int" = 0
    output_tokens: "int" = 0
    request_count: "int" = 0

    def __add__(self, other: "TokenCounts") -> "TokenCounts":
        return TokenCounts(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            request_count=self.request_count + other.request_count,
        )


@dataclass(frozen=True, slots=True)
class DailyUsageRecord:
    """
    DailyUsageRecord holds one calendar day's token, request
    and cost figures. total_tokens is derived from the input and
    output counts so the two can never disagree.
    """

    date: "date"
    input_tokens: "int" = 0
    output_tokens: "int" = 0
    request_count: "int" = 0
    cost_usd: "float" = 0.0

    @property
    def total_tokens(self) -> "int":
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "DailyUsageRecord") -> "DailyUsageRecord":
        if other.date != self.date:
            raise ValueError(f"cannot add records for {self.date} and {other.date}")

        return DailyUsageRecord(
            date=self.date,
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            request_count=self.request_count + other.request_count,
            cost_usd=self.cost_usd + other.cost_usd,
        )

    def with_tokens(self, counts: "TokenCounts") -> "DailyUsageRecord":
        return self + DailyUsageRecord(
            date=self.date,
            input_tokens=counts.input_tokens,
            output_tokens=counts.output_tokens,
            request_count=counts.request_count,
        )

    def with_cost(self, cost_usd: "float") -> "DailyUsageRecord":
        return self + DailyUsageRecord(date=self.date, cost_usd=cost_usd)

    def as_dict(self) -> "dict[str, Any]":
        return {
            "date": self.date.isoformat(),
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "request_count": self.request_count,
            "cost_usd": self.cost_usd,
        }


@dataclass(frozen=True, slots=True)
class ProjectRef:
    """
    ProjectRef identifies a provider's cost attribution unit:
    an OpenAI project, an Anthropic workspace or a pseudo-project
    keyed by credential name.
    """

    id: "str"
    name: "str"


@dataclass(frozen=True, slots=True)
class ProjectUsage:
    project: "ProjectRef"
    provider: "str"
    input_tokens: "int" = 0
    output_tokens: "int" = 0
    request_count: "int" = 0
    cost_usd: "float" = 0.0
    cost_today: "float" = 0.0
    cost_week: "float" = 0.0
    cost_month: "float" = 0.0
    # newest first
    daily: "tuple[DailyUsageRecord, ...]" = ()

    @property
    def total_tokens(self) -> "int":
        return self.input_tokens + self.output_tokens

    def as_dict(self) -> "dict[str, Any]":
        return {
            "project": {"id": self.project.id, "name": self.project.name},
            "provider": self.provider,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "request_count": self.request_count,
            "cost_usd": self.cost_usd,
            "cost_today": self.cost_today,
            "cost_week": self.cost_week,
            "cost_month": self.cost_month,
            "daily": [record.as_dict() for record in self.daily],
        }


@dataclass(frozen=True, slots=True)
class ProviderUsageSummary:
    """
    ProviderUsageSummary is the result of one aggregation run for
    a single provider. The daily series only contain dates that
    had data; they are not zero-filled calendar grids.
    """

    provider: "str"
    today: "DailyUsageRecord"
    # newest first
    last_7_days: "tuple[DailyUsageRecord, ...]" = ()
    last_30_days: "tuple[DailyUsageRecord, ...]" = ()
    total_cost_today: "float" = 0.0
    total_cost_week: "float" = 0.0
    total_cost_month: "float" = 0.0
    projects: "tuple[ProjectUsage, ...]" = ()
    credential_count: "int" = 0
    # errors that made the summary incomplete, e.g. an unreachable
    # secret store. Per-endpoint failures are only logged.
    errors: "tuple[str, ...]" = ()

    @classmethod
    def empty(
        cls,
        provider: "str",
        today: "date",
        errors: "tuple[str, ...]" = (),
    ) -> "ProviderUsageSummary":
        return cls(provider=provider, today=DailyUsageRecord(date=today), errors=errors)

    def as_dict(self) -> "dict[str, Any]":
        return {
            "provider": self.provider,
            "today": self.today.as_dict(),
            "last_7_days": [record.as_dict() for record in self.last_7_days],
            "last_30_days": [record.as_dict() for record in self.last_30_days],
            "total_cost_today": self.total_cost_today,
            "total_cost_week": self.total_cost_week,
            "total_cost_month": self.total_cost_month,
            "projects": [project.as_dict() for project in self.projects],
            "credential_count": self.credential_count,
            "errors": list(self.errors),
        }


@dataclass(frozen=True, slots=True)
class CombinedUsageSummary:
    today: "DailyUsageRecord"
    last_7_days: "tuple[DailyUsageRecord, ...]" = ()
    last_30_days: "tuple[DailyUsageRecord, ...]" = ()
    total_cost_today: "float" = 0.0
    total_cost_week: "float" = 0.0
    total_cost_month: "float" = 0.0
    projects: "tuple[ProjectUsage, ...]" = ()
    providers: "dict[str, ProviderUsageSummary]" = field(default_factory=dict)

    def as_dict(self) -> "dict[str, Any]":
        return {
            "today": self.today.as_dict(),
            "last_7_days": [record.as_dict() for record in self.last_7_days],
            "last_30_days": [record.as_dict() for record in self.last_30_days],
            "total_cost_today": self.total_cost_today,
            "total_cost_week": self.total_cost_week,
            "total_cost_month": self.total_cost_month,
            "projects": [project.as_dict() for project in self.projects],
            "providers": {
                tag: summary.as_dict() for tag, summary in self.providers.items()
            },
        }


# provider tags, as stored alongside secrets
PROVIDER_OPENAI = "openai"
PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_GOOGLE = "google"

KEY_KIND_ADMIN = "admin"
KEY_KIND_STANDARD = "standard"
KEY_KIND_UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class KeyDiagnosis:
    """
    KeyDiagnosis reports whether a credential works against its
    provider and what it can see. Produced on demand, never stored.
    """

    credential_name: "str"
    is_valid: "bool"
    key_kind: "str" = KEY_KIND_UNKNOWN
    organization: "str | None" = None
    # names of the projects, workspaces or models the key can access
    accessible: "tuple[str, ...]" = ()
    error_message: "str | None" = None

    def as_dict(self) -> "dict[str, Any]":
        return {
            "credential_name": self.credential_name,
            "is_valid": self.is_valid,
            "key_kind": self.key_kind,
            "organization": self.organization,
            "accessible": list(self.accessible),
            "error_message": self.error_message,
        }
