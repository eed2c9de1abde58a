"""Service layer exports.

Expose the pipelines, scheduler and collaborators for easy importing.
"""

from .openai_client import OpenAIService
from .scheduler import AnalysisJobScheduler, maybe_enqueue_auto_analysis
from .full_analysis import FullAnalysisPipeline
from .incremental_analysis import IncrementalAnalysisPipeline
from .executor import AnalysisJobExecutor

__all__ = [
    "OpenAIService",
    "AnalysisJobScheduler",
    "maybe_enqueue_auto_analysis",
    "FullAnalysisPipeline",
    "IncrementalAnalysisPipeline",
    "AnalysisJobExecutor",
]
