"""API router composition for the backend.

The module assembles individual route groups into a single `api_router` that can be mounted on the app.
"""

from fastapi import APIRouter

from hive_analysis.api.routes.analysis import router as analysis_router
from hive_analysis.api.routes.consensus import router as consensus_router

api_router = APIRouter()
api_router.include_router(analysis_router)
api_router.include_router(consensus_router)

__all__ = ["api_router"]
