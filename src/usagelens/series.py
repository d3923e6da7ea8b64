from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Mapping

from usagelens.models import DailyUsageRecord, TokenCounts

WEEK_DAYS = 7
MONTH_DAYS = 30


def today_utc() -> "date":
    return datetime.now(timezone.utc).date()


def add_records(
    daily: "dict[date, DailyUsageRecord]",
    records: "Iterable[DailyUsageRecord]",
) -> "None":
    """
    adds records into daily in place, field by field.
    """
    for record in records:
        existing = daily.get(record.date)
        daily[record.date] = record if existing is None else existing + record


def combine_usage_and_cost(
    usage: "Mapping[date, TokenCounts]",
    costs: "Mapping[date, float]",
) -> "dict[date, DailyUsageRecord]":
    daily: "dict[date, DailyUsageRecord]" = {}
    for day, counts in usage.items():
        daily[day] = daily.get(day, DailyUsageRecord(date=day)).with_tokens(counts)
    for day, cost in costs.items():
        daily[day] = daily.get(day, DailyUsageRecord(date=day)).with_cost(cost)
    return daily


def newest_first(daily: "Mapping[date, DailyUsageRecord]") -> "tuple[DailyUsageRecord, ...]":
    return tuple(daily[day] for day in sorted(daily, reverse=True))


def series_windows(
    daily: "Mapping[date, DailyUsageRecord]",
    today: "date",
) -> "tuple[DailyUsageRecord, tuple[DailyUsageRecord, ...], tuple[DailyUsageRecord, ...]]":
    """
    returns (today's record, last 7, last 30). The series are the
    first 7 and 30 dates that have data, newest first; days without
    data are absent rather than zero filled. Today's record is a
    zero record when there is no data for today.
    """
    ordered = newest_first(daily)
    today_record = daily.get(today) or DailyUsageRecord(date=today)
    return today_record, ordered[:WEEK_DAYS], ordered[:MONTH_DAYS]


def cost_windows(
    costs: "Mapping[date, float]",
    today: "date",
) -> "tuple[float, float, float]":
    """
    sums costs for today, the last 7 calendar days and the last 30
    calendar days, all inclusive of today. Dates after today are
    ignored.
    """
    week_start = today - timedelta(days=WEEK_DAYS - 1)
    month_start = today - timedelta(days=MONTH_DAYS - 1)

    cost_today = cost_week = cost_month = 0.0
    for day, cost in costs.items():
        if day > today:
            continue
        if day == today:
            cost_today += cost
        if day >= week_start:
            cost_week += cost
        if day >= month_start:
            cost_month += cost
    return cost_today, cost_week, cost_month
