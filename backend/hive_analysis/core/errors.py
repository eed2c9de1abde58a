"""Domain exception hierarchy for the analysis service.

Every error raised deliberately by the service derives from HiveAnalysisError so
callers can distinguish our failures from library errors. Errors carry a small
context dict that is folded into the message for logging.
"""

from __future__ import annotations

from typing import Any, Optional


class HiveAnalysisError(Exception):
    """Base class for analysis errors."""

    _retryable: bool = False

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None) -> None:
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self._retryable

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base_msg} (context: {context_str})"
        return base_msg


class ConversationNotFoundError(HiveAnalysisError):
    """The conversation does not exist."""


class AnalysisAuthorizationError(HiveAnalysisError):
    """Caller is not allowed to analyse the conversation."""


class CollaboratorContractError(HiveAnalysisError):
    """An external collaborator returned output that breaks its contract.

    Examples:
    - embedding count differs from the number of input texts
    - cluster indices that are not 0-based and contiguous
    - a 2D projection with the wrong shape
    """


class IncrementalPrerequisiteError(HiveAnalysisError):
    """Incremental analysis requested but no cluster models are stored."""


class PersistenceError(HiveAnalysisError):
    """A replace-style write (delete then insert) failed."""

    _retryable = True
