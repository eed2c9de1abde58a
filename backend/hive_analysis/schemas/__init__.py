"""Convenience exports for API schemas.

Re-exports the pydantic models used across the backend so consumers can import from one module.
"""

from .analysis import (
    AgreementSummariesResponse,
    AgreementSummarySchema,
    AnalysisProgress,
    AnalysisStatusPayload,
    AnalysisStatusResponse,
    ConsensusItemSchema,
    TriggerAnalysisRequest,
    TriggerAnalysisResponse,
    TriggerMode,
    TriggerStrategy,
)

__all__ = [
    "AgreementSummariesResponse",
    "AgreementSummarySchema",
    "AnalysisProgress",
    "AnalysisStatusPayload",
    "AnalysisStatusResponse",
    "ConsensusItemSchema",
    "TriggerAnalysisRequest",
    "TriggerAnalysisResponse",
    "TriggerMode",
    "TriggerStrategy",
]
