"""Pydantic schemas for analysis triggers, status payloads, and consensus views.

Classes:
    TriggerMode, TriggerStrategy: Trigger request enums.
    TriggerAnalysisRequest, TriggerAnalysisResponse: Payloads of the analyze endpoint.
    AnalysisProgress, AnalysisStatusPayload: Realtime status channel payload.
    AnalysisStatusResponse: Snapshot returned by the analysis-status endpoint.
    ConsensusItemSchema, AgreementSummarySchema,
    AgreementSummariesResponse: Consensus read models.

All wire payloads use camelCase keys; Python code uses snake_case attributes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class TriggerMode(str, Enum):
    MANUAL = "manual"
    REGENERATE = "regenerate"


class TriggerStrategy(str, Enum):
    AUTO = "auto"
    INCREMENTAL = "incremental"
    FULL = "full"


class TriggerAnalysisRequest(_CamelModel):
    mode: TriggerMode = TriggerMode.MANUAL
    strategy: TriggerStrategy = TriggerStrategy.AUTO


TriggerOutcome = Literal["queued", "already_running", "already_complete"]
TriggerReason = Literal["fresh", "wrong_type", "below_threshold", "in_progress", "stale"]


class TriggerAnalysisResponse(_CamelModel):
    status: TriggerOutcome
    strategy: Optional[Literal["incremental", "full"]] = None
    reason: Optional[TriggerReason] = None
    current_response_count: int
    analysis_response_count: Optional[int] = None
    new_responses_since_analysis: Optional[int] = None
    job_id: Optional[UUID] = None


class AnalysisProgress(_CamelModel):
    progress_percent: int = Field(ge=0, le=100)
    progress_message: str
    progress_stage: Optional[str] = None


class AnalysisStatusPayload(_CamelModel):
    analysis_status: str
    analysis_error: Optional[str] = None
    progress: Optional[AnalysisProgress] = None


class AnalysisStatusResponse(_CamelModel):
    conversation_id: UUID
    analysis_status: str
    analysis_error: Optional[str] = None
    analysis_updated_at: Optional[datetime] = None
    analysis_response_count: Optional[int] = None
    response_count: int
    threshold: int


class ConsensusItemSchema(_CamelModel):
    id: Union[int, str]
    response_text: str
    agree_percent: int
    pass_percent: int
    disagree_percent: int
    agree_votes: int
    pass_votes: int
    disagree_votes: int
    total_votes: int


class AgreementSummarySchema(_CamelModel):
    id: Union[int, str]
    response_text: str
    agree_percent: int
    pass_percent: int
    disagree_percent: int
    total_votes: int
    type: Literal["agreement", "divisive"]


class AgreementSummariesResponse(_CamelModel):
    agreement: list[AgreementSummarySchema]
    divisive: list[AgreementSummarySchema]
