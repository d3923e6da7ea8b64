from datetime import date

import pytest

from usagelens.models import CombinedUsageSummary, DailyUsageRecord
from usagelens.refresher import Refresher

TODAY = date(2024, 5, 2)


class CountingSource:
    """
    A summary source that stops the refresher after a given number
    of cycles and optionally fails on some of them.
    """

    def __init__(self, stop_after: "int", failing_cycles: "tuple[int, ...]" = ()) -> "None":
        self.calls = 0
        self.refresher: "Refresher | None" = None
        self._stop_after = stop_after
        self._failing = failing_cycles

    async def refresh(self) -> "CombinedUsageSummary":
        self.calls += 1
        if self.calls >= self._stop_after and self.refresher is not None:
            self.refresher.stop()
        if self.calls in self._failing:
            raise RuntimeError("provider outage")
        return CombinedUsageSummary(
            today=DailyUsageRecord(date=TODAY, cost_usd=float(self.calls)),
            total_cost_today=float(self.calls),
        )


class TestRefresher:
    @pytest.mark.asyncio
    async def test_run_stops_when_signalled(self) -> "None":
        source = CountingSource(stop_after=1)
        refresher = Refresher(source, interval_seconds=3600)
        source.refresher = refresher

        await refresher.run()

        assert source.calls == 1
        assert refresher.latest is not None
        assert refresher.latest.total_cost_today == 1.0

    @pytest.mark.asyncio
    async def test_failed_cycle_keeps_previous_summary(self) -> "None":
        source = CountingSource(stop_after=99, failing_cycles=(2,))
        refresher = Refresher(source, interval_seconds=3600)

        first = await refresher.refresh_once()
        second = await refresher.refresh_once()

        assert first is not None
        assert second is None
        assert refresher.latest is first

    @pytest.mark.asyncio
    async def test_repeats_until_stopped(self) -> "None":
        source = CountingSource(stop_after=3)
        refresher = Refresher(source, interval_seconds=0)
        source.refresher = refresher

        await refresher.run()

        assert source.calls == 3
        assert refresher.latest is not None
        assert refresher.latest.total_cost_today == 3.0
