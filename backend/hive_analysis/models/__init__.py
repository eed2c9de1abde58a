"""Convenience exports for ORM models.

Surface frequently used SQLModel classes so calling code can import them from a single module.
"""

from .conversation import AnalysisStatus, Conversation, ConversationType, HiveMember
from .response import Response
from .embedding import ResponseEmbedding
from .cluster_model import ClusterModel
from .theme import Theme
from .response_group import ResponseGroup, ResponseGroupMember
from .consolidated_statement import ConsolidatedStatement
from .feedback import FeedbackValue, FeedbackVote
from .analysis_job import AnalysisJob, JobStatus, JobStrategy

__all__ = [
    "AnalysisStatus",
    "Conversation",
    "ConversationType",
    "HiveMember",
    "Response",
    "ResponseEmbedding",
    "ClusterModel",
    "Theme",
    "ResponseGroup",
    "ResponseGroupMember",
    "ConsolidatedStatement",
    "FeedbackValue",
    "FeedbackVote",
    "AnalysisJob",
    "JobStatus",
    "JobStrategy",
]
