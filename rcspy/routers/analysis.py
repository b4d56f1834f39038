"""Analysis router: progress, results and rescans."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from rcspy.dependencies import get_orchestrator
from rcspy.models.schemas import (
    AppFilter,
    PackageResultResponse,
    ProgressResponse,
    RunAcceptedResponse,
)
from rcspy.services.analysis_orchestrator import (
    AnalysisInProgressError,
    AnalysisOrchestrator,
)

router = APIRouter()
logger = logging.getLogger(__name__)


async def _run_in_background(orchestrator: AnalysisOrchestrator, operation: str, run, *args) -> None:
    """Await a scheduled run, logging instead of raising."""
    try:
        await run(*args)
    except AnalysisInProgressError:
        logger.warning(f"Skipped {operation}: another run is in progress")
    except KeyError as e:
        logger.warning(f"Skipped {operation}: unknown package {e}")
    finally:
        orchestrator.release_run()


def _reserve_run(orchestrator: AnalysisOrchestrator) -> None:
    """Claim the run before answering 202 so a second request gets 409."""
    try:
        orchestrator.reserve_run()
    except AnalysisInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    """Get aggregate progress of the current or last run."""
    progress = orchestrator.progress
    return ProgressResponse(
        state=orchestrator.state.value,
        is_analyzing=orchestrator.is_analyzing,
        new_packages=orchestrator.new_packages_count,
        progress=progress,
        fraction=progress.fraction,
        remaining=progress.remaining,
    )


@router.get("/results", response_model=list[PackageResultResponse])
async def list_results(
    app_filter: AppFilter = Query(AppFilter.ALL, alias="filter"),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """List known packages with their analysis, optionally filtered."""
    return [
        PackageResultResponse(
            package_id=package.package_id,
            display_name=package.display_name,
            stage=orchestrator.stage_of(package.package_id),
            vulnerable=record is not None and orchestrator.is_vulnerable(record),
            analysis=record,
        )
        for package, record in orchestrator.filtered(app_filter)
    ]


@router.get("/results/{package_id}", response_model=PackageResultResponse)
async def get_result(
    package_id: str,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Get the analysis of one package."""
    record = orchestrator.get_record(package_id)
    if record is None:
        raise HTTPException(status_code=404, detail="No analysis for this package")

    package = next((p for p in orchestrator.packages if p.package_id == package_id), None)
    return PackageResultResponse(
        package_id=package_id,
        display_name=package.display_name if package else None,
        stage=orchestrator.stage_of(package_id),
        vulnerable=orchestrator.is_vulnerable(record),
        analysis=record,
    )


@router.post("/resume", response_model=RunAcceptedResponse, status_code=202)
async def resume_analysis(
    background_tasks: BackgroundTasks,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Load cached results and analyze packages not seen before."""
    _reserve_run(orchestrator)
    background_tasks.add_task(_run_in_background, orchestrator, "resume", orchestrator.load_and_resume)
    return RunAcceptedResponse(operation="resume")


@router.post("/rescan", response_model=RunAcceptedResponse, status_code=202)
async def rescan_all(
    background_tasks: BackgroundTasks,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Clear the cache and analyze every package again."""
    _reserve_run(orchestrator)
    background_tasks.add_task(_run_in_background, orchestrator, "rescan", orchestrator.rescan_all)
    return RunAcceptedResponse(operation="rescan")


@router.post("/rescan/{package_id}", response_model=RunAcceptedResponse, status_code=202)
async def rescan_package(
    package_id: str,
    background_tasks: BackgroundTasks,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Analyze one package again."""
    if not any(p.package_id == package_id for p in orchestrator.packages):
        raise HTTPException(status_code=404, detail="Unknown package")
    _reserve_run(orchestrator)
    background_tasks.add_task(
        _run_in_background, orchestrator, f"rescan of {package_id}", orchestrator.rescan_one, package_id
    )
    return RunAcceptedResponse(operation="rescan_one", package_id=package_id)
