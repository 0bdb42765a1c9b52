"""
API router for batch run endpoints.
"""
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, status

from cropwatch.api.dependencies import OrchestratorDep, ReportRepositoryDep
from cropwatch.api.v1.models.responses import (
    RunReportSummary,
    RunReportsResponse,
    RunStatusResponse,
    RunTriggerResponse,
)


router = APIRouter(
    prefix="/runs",
    tags=["runs"],
)


@router.post(
    "",
    response_model=RunTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a batch analysis run",
    description="""
    Start the daily analysis over every active farm, outside the schedule.

    The run executes in the background; poll `/runs/status` for progress.
    Only one run may be in progress at a time.
    """,
    responses={
        409: {"description": "A run is already in progress"},
    },
)
async def start_run(
    orchestrator: OrchestratorDep,
    background_tasks: BackgroundTasks,
) -> RunTriggerResponse:
    if orchestrator.is_running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A batch run is already in progress",
        )

    # A second start racing this one is turned into a no-op by the orchestrator
    background_tasks.add_task(orchestrator.run)
    return RunTriggerResponse(accepted=True, message="Batch run started")


@router.get(
    "/status",
    response_model=RunStatusResponse,
    summary="Get batch run status",
)
async def get_run_status(orchestrator: OrchestratorDep) -> RunStatusResponse:
    """
    Return the orchestrator state and the statistics of the current or last run.
    """
    return RunStatusResponse(**orchestrator.status())


@router.post(
    "/stop",
    response_model=RunTriggerResponse,
    summary="Stop the current batch run",
    description="""
    Ask the current run to stop before its next batch. Farms already being
    analyzed are allowed to finish and the partial run is still reported.
    """,
    responses={
        409: {"description": "No run is in progress"},
    },
)
async def stop_run(orchestrator: OrchestratorDep) -> RunTriggerResponse:
    if not orchestrator.request_stop():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No batch run is in progress",
        )
    return RunTriggerResponse(accepted=True, message="Stop requested")


@router.get(
    "/reports",
    response_model=RunReportsResponse,
    summary="List batch run reports",
)
async def list_run_reports(
    report_repository: ReportRepositoryDep,
    limit: Annotated[int, Query(ge=1, le=365, description="Maximum number of reports")] = 30,
) -> RunReportsResponse:
    """
    List persisted run reports, newest first.

    Args:
        report_repository: Run report repository (injected dependency)
        limit: Maximum number of reports to return

    Returns:
        RunReportsResponse
    """
    reports = await report_repository.list_reports(limit=limit)
    return RunReportsResponse(reports=[RunReportSummary.from_report(r) for r in reports])
