"""Stage timing for analysis runs."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any


class StageTimer:
    """Capture stage-level timings for one analysis run."""

    def __init__(self) -> None:
        self._origin = time.perf_counter()
        self._wall_start = datetime.utcnow()
        self._stages: list[dict[str, Any]] = []

    @asynccontextmanager
    async def track(self, name: str):
        start_counter = time.perf_counter()
        try:
            yield
        finally:
            self._stages.append(
                {
                    "name": name,
                    "duration_ms": round((time.perf_counter() - start_counter) * 1000.0, 3),
                    "offset_ms": round((start_counter - self._origin) * 1000.0, 3),
                }
            )

    def snapshot(self) -> dict[str, Any]:
        return {
            "total_duration_ms": round((time.perf_counter() - self._origin) * 1000.0, 3),
            "stages": list(self._stages),
            "started_at": self._wall_start.isoformat(timespec="milliseconds") + "Z",
        }
