"""Scheduler for periodic memory maintenance using pure asyncio.

Jobs:
- Decay: recompute relevance scores every ``decay_interval`` seconds
- Archive: once a day at the hour of ``archive_cron``, archive old low-value memories
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mnemo.config import MnemoConfig
    from mnemo.memory.store import MemoryStore

logger = logging.getLogger(__name__)


def _parse_cron_hour(cron_expr: str) -> int:
    """Extract hour from simple cron expression like '0 3 * * *'."""
    parts = cron_expr.split()
    if len(parts) >= 2:
        try:
            return int(parts[1])
        except ValueError:
            pass
    return 3  # default: 3 AM


class MaintenanceScheduler:
    """Simple asyncio-based scheduler for relevance maintenance."""

    def __init__(self, store: MemoryStore, config: MnemoConfig) -> None:
        self._store = store
        self._decay_interval = config.maintenance.decay_interval
        self._archive_hour = _parse_cron_hour(config.maintenance.archive_cron)
        self._archive_days = config.maintenance.archive_days
        self._last_archive_date: str | None = None

    async def start(self, shutdown_event: asyncio.Event) -> None:
        """Run scheduled jobs until shutdown_event is set."""
        logger.info(
            "Scheduler started (decay every %ds, archive@%02d:00)",
            self._decay_interval,
            self._archive_hour,
        )
        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self._decay_interval)
                break  # shutdown requested
            except asyncio.TimeoutError:
                pass  # interval elapsed, run jobs
            await self.tick(datetime.now())
        logger.info("Scheduler stopped.")

    async def tick(self, now: datetime) -> None:
        """One scheduling round: always decay, archive once per day at the configured hour."""
        await self._run("decay")
        today = now.strftime("%Y-%m-%d")
        if now.hour == self._archive_hour and self._last_archive_date != today:
            await self._run("archive")
            self._last_archive_date = today

    async def _run(self, operation: str) -> None:
        try:
            count = await self._store.run_maintenance(operation, self._archive_days)
            logger.info("Scheduled %s pass affected %d memories", operation, count)
        except Exception as e:
            logger.error("Scheduled %s pass failed: %s", operation, e)
