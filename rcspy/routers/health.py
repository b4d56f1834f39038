"""Health check router."""

from fastapi import APIRouter, Depends

from rcspy.dependencies import get_orchestrator
from rcspy.services.analysis_orchestrator import AnalysisOrchestrator

router = APIRouter()


@router.get("/health")
async def health_check(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    """Check API and cache health."""
    cache_dir = orchestrator.context.cache.cache_dir
    cache_status = "healthy" if cache_dir.is_dir() else "unhealthy: cache directory missing"

    return {
        "status": "healthy" if cache_status == "healthy" else "degraded",
        "cache": cache_status,
        "state": orchestrator.state.value,
        "version": "0.1.0",
    }


@router.get("/ready")
async def readiness_check():
    """Check if the API is ready to receive traffic."""
    return {"ready": True}
