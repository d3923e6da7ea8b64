from datetime import date, datetime, timezone

import pytest
from prometheus_client import CollectorRegistry

from usagelens.models import TimeRange


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def today() -> "date":
    return date(2024, 5, 2)


@pytest.fixture()
def time_range() -> "TimeRange":
    """
    30 days ending at noon UTC on 2024-05-02.
    """
    return TimeRange.last_days(30, now=datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc))
