"""Polling worker that executes queued analysis jobs.

Run with ``python -m hive_analysis.worker``. The worker also picks up jobs whose
lock expired, so a crashed executor's job is retried after the lock TTL.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.core.config import get_settings
from hive_analysis.services.executor import AnalysisJobExecutor, build_default_executor
from hive_analysis.services.scheduler import AnalysisJobScheduler

_LOGGER = logging.getLogger(__name__)


class AnalysisWorker:
    def __init__(
        self,
        executor: AnalysisJobExecutor,
        session_factory: Callable[[], AsyncSession],
        *,
        scheduler: Optional[AnalysisJobScheduler] = None,
        poll_interval: Optional[float] = None,
    ) -> None:
        self._executor = executor
        self._session_factory = session_factory
        self._scheduler = scheduler or AnalysisJobScheduler()
        self._poll_interval = poll_interval if poll_interval is not None else get_settings().worker_poll_interval_seconds

    async def run_once(self) -> Optional[str]:
        """Execute the oldest claimable job, if any; return the outcome."""

        async with self._session_factory() as session:
            job_id = await self._scheduler.find_claimable_job(session)
        if job_id is None:
            return None
        return await self._executor.execute(job_id)

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        stop = stop or asyncio.Event()
        _LOGGER.info("Analysis worker started (poll every %.1fs)", self._poll_interval)
        while not stop.is_set():
            outcome = await self.run_once()
            if outcome is not None:
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
        _LOGGER.info("Analysis worker stopped")


async def main() -> None:
    from hive_analysis.db.session import SessionLocal, init_db

    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    await init_db()
    worker = AnalysisWorker(build_default_executor(SessionLocal), SessionLocal)
    await worker.run_forever()


if __name__ == "__main__":
    asyncio.run(main())
