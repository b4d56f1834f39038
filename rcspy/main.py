"""rcspy API - Firebase Remote Config and Supabase exposure scanner."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rcspy.config import get_settings
from rcspy.routers import analysis, health
from rcspy.services.analysis_orchestrator import AnalysisOrchestrator
from rcspy.services.context import AnalysisContext
from rcspy.services.package_source import DirectoryPackageSource

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.api_log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting rcspy API...")
    context = AnalysisContext(settings)
    await context.open()
    app.state.orchestrator = AnalysisOrchestrator(
        context, DirectoryPackageSource(settings.packages_dir)
    )
    yield
    logger.info("Shutting down rcspy API...")
    await context.close()


app = FastAPI(
    title="rcspy",
    description="Firebase Remote Config and Supabase exposure scanner",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(analysis.router, prefix="/api/analysis", tags=["Analysis"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "rcspy",
        "version": "0.1.0",
        "description": "Firebase Remote Config and Supabase exposure scanner",
    }
