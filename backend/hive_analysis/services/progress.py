"""Fire-and-forget publication of analysis status and progress.

Payloads are posted to a realtime broadcast endpoint (``REALTIME_URL``) as
``{"messages": [{"topic": "analysis:<id>", "event": "analysis_status", "payload": ...}]}``.
Publication never raises: failures are logged and the pipeline carries on.

Classes:
    ProgressStage: Percent and default message of one named stage.
    ProgressBroadcaster: Publishes status payloads for a conversation.

Functions:
    channel_name(conversation_id): Topic a conversation's status is published on.
    status_for_stage(stage): Conversation status implied by a progress stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import httpx

from hive_analysis.core.config import get_settings
from hive_analysis.models import AnalysisStatus
from hive_analysis.schemas import AnalysisProgress, AnalysisStatusPayload

_LOGGER = logging.getLogger(__name__)

ANALYSIS_STATUS_EVENT = "analysis_status"


@dataclass(frozen=True, slots=True)
class ProgressStage:
    percent: int
    message: str


PROGRESS_STAGES: dict[str, ProgressStage] = {
    "starting": ProgressStage(0, "Starting analysis..."),
    "fetching": ProgressStage(5, "Fetching responses"),
    "fetched": ProgressStage(10, "Found responses"),
    "embedding": ProgressStage(15, "Generating embeddings..."),
    "embedding_progress": ProgressStage(25, "Generating embeddings..."),
    "embedding_done": ProgressStage(40, "Embeddings complete"),
    "clustering": ProgressStage(45, "Clustering responses..."),
    "themes": ProgressStage(55, "Generating theme titles"),
    "subthemes": ProgressStage(70, "Generating subthemes"),
    "consolidating": ProgressStage(80, "Consolidating insights"),
    "saving": ProgressStage(90, "Updating database"),
    "umap": ProgressStage(95, "Generating 2D visual map"),
    "finalizing": ProgressStage(98, "Making it look pretty"),
    "complete": ProgressStage(100, "Analysis complete"),
}

_EMBEDDING_STAGES = {"starting", "fetching", "fetched", "embedding", "embedding_progress", "embedding_done"}


def channel_name(conversation_id: UUID | str) -> str:
    return f"analysis:{conversation_id}"


def status_for_stage(stage: str) -> str:
    if stage == "complete":
        return AnalysisStatus.READY
    if stage in _EMBEDDING_STAGES:
        return AnalysisStatus.EMBEDDING
    return AnalysisStatus.ANALYZING


class ProgressBroadcaster:
    def __init__(
        self,
        *,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self._url = url if url is not None else settings.realtime_url
        if api_key is None and settings.realtime_api_key is not None:
            api_key = settings.realtime_api_key.get_secret_value()
        self._api_key = api_key
        self._client = client
        self._timeout = timeout if timeout is not None else settings.realtime_timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self._url)

    async def publish(self, conversation_id: UUID, payload: AnalysisStatusPayload) -> bool:
        """Publish ``payload`` on the conversation's channel; return whether it was delivered."""

        progress = payload.progress
        detail = f" ({progress.progress_percent}% - {progress.progress_message})" if progress else ""
        if not self._url:
            _LOGGER.debug("Realtime not configured; %s%s for %s", payload.analysis_status, detail, conversation_id)
            return False

        body = {
            "messages": [
                {
                    "topic": channel_name(conversation_id),
                    "event": ANALYSIS_STATUS_EVENT,
                    "payload": payload.model_dump(by_alias=True, exclude_none=True),
                }
            ]
        }
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"

        client = self._client
        should_close = False
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout)
            should_close = True
        try:
            response = await client.post(self._url, json=body, headers=headers)
            response.raise_for_status()
        except Exception:
            _LOGGER.warning("Failed to broadcast analysis status for %s", conversation_id, exc_info=True)
            return False
        finally:
            if should_close:
                await client.aclose()

        _LOGGER.info("Broadcast %s%s for %s", payload.analysis_status, detail, conversation_id)
        return True

    async def publish_status(
        self,
        conversation_id: UUID,
        status: str,
        *,
        error: Optional[str] = None,
    ) -> bool:
        return await self.publish(
            conversation_id,
            AnalysisStatusPayload(analysis_status=status, analysis_error=error),
        )

    async def publish_stage(
        self,
        conversation_id: UUID,
        stage: str,
        message: Optional[str] = None,
    ) -> bool:
        info = PROGRESS_STAGES.get(stage)
        if info is None:
            _LOGGER.warning("Unknown progress stage %s; not broadcasting", stage)
            return False
        return await self.publish(
            conversation_id,
            AnalysisStatusPayload(
                analysis_status=status_for_stage(stage),
                progress=AnalysisProgress(
                    progress_percent=info.percent,
                    progress_message=message or info.message,
                    progress_stage=stage,
                ),
            ),
        )
