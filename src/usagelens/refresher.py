import asyncio
from typing import Protocol

import structlog

from usagelens.models import CombinedUsageSummary

logger = structlog.get_logger()


class SummarySource(Protocol):
    async def refresh(self) -> "CombinedUsageSummary": ...


class Refresher:
    """
    Refresher re-runs the usage aggregation on a fixed interval
    until stopped and keeps the latest combined summary. A cycle
    that fails keeps the previous summary.
    """

    def __init__(
        self,
        source: "SummarySource",
        interval_seconds: "int" = 300,
    ) -> "None":
        self._source = source
        self._interval = interval_seconds
        self._stop_event: "asyncio.Event" = asyncio.Event()
        self._latest: "CombinedUsageSummary | None" = None

    @property
    def latest(self) -> "CombinedUsageSummary | None":
        return self._latest

    def stop(self) -> "None":
        """
        signals the refresh loop to stop after the current cycle.
        """
        self._stop_event.set()

    async def refresh_once(self) -> "CombinedUsageSummary | None":
        logger.info("refresh_cycle_start")
        try:
            summary = await self._source.refresh()
        except Exception:
            logger.exception("refresh_cycle_error")
            return None

        self._latest = summary
        logger.info("refresh_cycle_end", cost_today=summary.total_cost_today)
        return summary

    async def run(self) -> "None":
        """
        runs the refresh loop. Runs until stop() is called.
        """
        while not self._stop_event.is_set():
            await self.refresh_once()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass
