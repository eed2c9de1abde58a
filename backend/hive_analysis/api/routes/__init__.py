"""Route exports for the API layer.

Re-exports the analysis and consensus routers so callers can include all endpoints with a single import.
"""

from .analysis import router as analysis_router
from .consensus import router as consensus_router

__all__ = ["analysis_router", "consensus_router"]
