"""FastAPI dependencies."""

from fastapi import Request

from rcspy.services.analysis_orchestrator import AnalysisOrchestrator


def get_orchestrator(request: Request) -> AnalysisOrchestrator:
    """Return the orchestrator created by the application lifespan."""
    return request.app.state.orchestrator
