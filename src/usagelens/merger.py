from datetime import date
from typing import Mapping

from usagelens.models import (
    CombinedUsageSummary,
    DailyUsageRecord,
    ProjectUsage,
    ProviderUsageSummary,
)
from usagelens.series import add_records, series_windows, today_utc


def merge_providers(
    summaries: "Mapping[str, ProviderUsageSummary]",
    today: "date | None" = None,
) -> "CombinedUsageSummary":
    """
    combines provider summaries into one. Daily figures are summed
    per date over the union of the providers' 30 day series, project
    lists are concatenated and sorted by cost, and window totals are
    summed.

    The combined series are cut to the first 7 and 30 dates with data,
    like the provider series, even when the providers were active on
    more than 30 distinct dates between them.

    Providers are visited in sorted tag order, so the result does not
    depend on the order of the mapping. No I/O happens here.
    """
    today = today or today_utc()
    ordered = [summaries[tag] for tag in sorted(summaries)]

    daily: "dict[date, DailyUsageRecord]" = {}
    projects: "list[ProjectUsage]" = []
    for summary in ordered:
        add_records(daily, summary.last_30_days)
        projects.extend(summary.projects)

    projects.sort(key=lambda p: p.cost_usd, reverse=True)
    today_record, last_7, last_30 = series_windows(daily, today)

    return CombinedUsageSummary(
        today=today_record,
        last_7_days=last_7,
        last_30_days=last_30,
        total_cost_today=sum(s.total_cost_today for s in ordered),
        total_cost_week=sum(s.total_cost_week for s in ordered),
        total_cost_month=sum(s.total_cost_month for s in ordered),
        projects=tuple(projects),
        providers={tag: summaries[tag] for tag in sorted(summaries)},
    )
