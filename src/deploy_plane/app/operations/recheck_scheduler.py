"""Scheduled re-check of deployments still building.

A run polls each ``deploying`` deployment once through
``DeploymentOrchestrator.check_status`` and settles the ones whose build
finished. Builds outlive the request that started them, so this is what
eventually moves a deployment to ``live`` or ``failed``.

Usage::

    scheduler = DeploymentRecheckScheduler(orchestrator, ledger)
    report = await scheduler.run_once()
    # report.live / report.failed / report.still_deploying / report.errored

    scheduler.start(interval_seconds=60)   # periodic, inside an event loop
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from ..deployments.orchestrator import DeploymentOrchestrator
from ..deployments.records import utcnow
from ..protocols import DeploymentLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RecheckReport:
    """Result of one re-check pass.

    Attributes:
        live: Deployments that became live during this pass.
        failed: Deployments that failed during this pass.
        still_deploying: Deployments whose build has not finished.
        errored: Deployments whose check raised (ledger outage, etc.).
        started_at: When the pass began.
    """

    live: tuple[str, ...]
    failed: tuple[str, ...]
    still_deploying: tuple[str, ...]
    errored: tuple[str, ...]
    started_at: datetime

    @property
    def total_checked(self) -> int:
        return (
            len(self.live) + len(self.failed)
            + len(self.still_deploying) + len(self.errored)
        )


class DeploymentRecheckScheduler:
    """Runs ``check_status`` over every deploying deployment.

    Args:
        orchestrator: Orchestrator whose ``check_status`` performs the poll.
        ledger: Ledger used to list deployments in ``deploying``.
        concurrency: Maximum checks in flight at once.
        batch_size: Deployments listed per ledger page.
    """

    def __init__(
        self,
        orchestrator: DeploymentOrchestrator,
        ledger: DeploymentLedger,
        *,
        concurrency: int = 8,
        batch_size: int = 100,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._orchestrator = orchestrator
        self._ledger = ledger
        self._concurrency = concurrency
        self._batch_size = batch_size
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> RecheckReport:
        """Check every ``deploying`` deployment, one page of ids at a time.

        Pages are keyed on the deployment id, so a build that stays in
        progress never hides the deployments listed after it.
        """
        started_at = utcnow()
        semaphore = asyncio.Semaphore(self._concurrency)

        async def check(deployment_id: str) -> tuple[str, str]:
            async with semaphore:
                try:
                    result = await self._orchestrator.check_status(deployment_id)
                except Exception:
                    logger.exception("Re-check failed for deployment %s", deployment_id)
                    return deployment_id, "errored"
                return deployment_id, result.status

        outcomes: list[tuple[str, str]] = []
        cursor: str | None = None
        while True:
            page = await self._ledger.list_by_status(
                "deploying", limit=self._batch_size, after=cursor,
            )
            if not page:
                break
            outcomes.extend(await asyncio.gather(*(check(d.id) for d in page)))
            if len(page) < self._batch_size:
                break
            cursor = page[-1].id

        buckets: dict[str, list[str]] = {
            "live": [], "failed": [], "still_deploying": [], "errored": [],
        }
        for deployment_id, status in outcomes:
            if status in ("live", "failed", "errored"):
                buckets[status].append(deployment_id)
            else:
                buckets["still_deploying"].append(deployment_id)

        report = RecheckReport(
            live=tuple(buckets["live"]),
            failed=tuple(buckets["failed"]),
            still_deploying=tuple(buckets["still_deploying"]),
            errored=tuple(buckets["errored"]),
            started_at=started_at,
        )
        if report.total_checked:
            logger.info(
                "Re-check pass: %d live, %d failed, %d deploying, %d errored",
                len(report.live), len(report.failed),
                len(report.still_deploying), len(report.errored),
            )
        return report

    def start(self, *, interval_seconds: float) -> None:
        """Run ``run_once`` every ``interval_seconds`` in a background task."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if self.running:
            return
        self._task = asyncio.create_task(
            self._loop(interval_seconds), name="deployment-recheck",
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self, interval_seconds: float) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Re-check pass failed")
            await asyncio.sleep(interval_seconds)
