"""FastAPI dependencies shared by the route modules.

Functions:
    get_current_user_id(x_user_id): Caller identity taken from the ``X-User-Id`` header.
    get_scheduler(): Scheduler used by request handlers.
    get_executor(): Process-wide executor that runs queued jobs in background tasks.
"""

from __future__ import annotations

from functools import lru_cache
from uuid import UUID

from fastapi import Header

from hive_analysis.services.executor import AnalysisJobExecutor, build_default_executor
from hive_analysis.services.scheduler import AnalysisJobScheduler


async def get_current_user_id(x_user_id: UUID = Header(...)) -> UUID:
    return x_user_id


def get_scheduler() -> AnalysisJobScheduler:
    return AnalysisJobScheduler()


@lru_cache()
def get_executor() -> AnalysisJobExecutor:
    return build_default_executor()
