"""Cron-driven build trigger.

Runs `BuildService.build` on a cron cadence (daily at 03:00 by default) and on demand,
and prunes archived generations after every successful build.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from croniter import croniter

from build_service import BuildCompleted, BuildFailed, BuildReport, BuildService
from build_store import DEFAULT_KEEP_LAST
from models import utc_now

logger = logging.getLogger(__name__)

DEFAULT_BUILD_CRON = "0 3 * * *"


def next_run_after(cron: str, now: datetime) -> datetime:
    """Next fire time of `cron` strictly after `now` (same timezone as `now`)."""

    return croniter(cron, now).get_next(datetime)


class BuildScheduler:
    def __init__(
        self,
        build_service: BuildService,
        *,
        cron: str = DEFAULT_BUILD_CRON,
        keep_last: int = DEFAULT_KEEP_LAST,
    ) -> None:
        if not croniter.is_valid(cron):
            raise ValueError(f"Invalid cron expression: {cron}")

        self.build_service = build_service
        self.cron = cron
        self.keep_last = keep_last

        self._loop_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[BuildReport | None]] = set()

        build_service.on_completed(self._handle_completed)
        build_service.on_failed(self._handle_failed)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Start the cron loop on the running event loop."""

        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run_forever(), name="build-scheduler")
        logger.info(f"Build job scheduled with cron {self.cron!r}")

    async def stop(self) -> None:
        tasks = [task for task in (self._loop_task, *self._background) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._background.clear()

    async def run_now(self) -> BuildReport:
        logger.info("Running build manually...")
        return await self.build_service.build()

    def trigger(self) -> asyncio.Task[BuildReport | None]:
        """Start a build in the background and return immediately."""

        task = asyncio.create_task(self._run_logged("Manual"), name="manual-build")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run_forever(self) -> None:
        while True:
            now = utc_now()
            next_run = next_run_after(self.cron, now)
            logger.info(f"Next scheduled build at {next_run.isoformat()}")
            await asyncio.sleep((next_run - now).total_seconds())
            await self._run_logged("Scheduled")

    async def _run_logged(self, kind: str) -> BuildReport | None:
        logger.info(f"Starting {kind.lower()} build...")
        try:
            return await self.build_service.build()
        except Exception:
            # Build failures are already recorded on the generation; this covers
            # errors before a generation exists (e.g. storage unreachable).
            logger.exception(f"{kind} build failed")
            return None

    async def _handle_completed(self, event: BuildCompleted) -> None:
        logger.info(f"Build {event.build_id} completed successfully; starting cleanup")
        try:
            deleted = await self.build_service.clear_old_builds(self.keep_last)
            logger.info(f"Cleanup completed ({len(deleted)} build(s) removed)")
        except Exception:
            logger.exception("Cleanup failed")

    def _handle_failed(self, event: BuildFailed) -> None:
        logger.error(f"Build {event.build_id} failed: {event.error}")
