"""
API router for farm endpoints.
"""
import asyncio
from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, Query
from fastapi.responses import Response

from cropwatch.api.dependencies import (
    AlertRepositoryDep,
    AnalysisRepositoryDep,
    FarmRepositoryDep,
    IndexEngineDep,
    PipelineDep,
)
from cropwatch.api.v1.models.requests import CompareRequest
from cropwatch.api.v1.models.responses import (
    AlertsResponse,
    AnalysesResponse,
    AnalysisSummary,
    ComparisonResponse,
    FarmAnalysisResponse,
)
from cropwatch.config import settings
from cropwatch.domain.models import Farm, FarmStatus
from cropwatch.domain.repositories import FarmRepository
from cropwatch.infrastructure.api_constants import APIConstants
from cropwatch.services.domain.temporal_comparison import MIN_ANALYSES, compare_analyses


router = APIRouter(
    prefix="/farms",
    tags=["farms"],
)

FarmId = Annotated[str, Path(description="Unique identifier for the farm")]


async def _require_farm(farm_repository: FarmRepository, farm_id: str) -> Farm:
    farm = await farm_repository.get_farm(farm_id)
    if farm is None:
        raise HTTPException(status_code=404, detail=f"Farm with ID '{farm_id}' not found")
    return farm


@router.get(
    "/{farm_id}/analyses",
    response_model=AnalysesResponse,
    summary="Get farm analysis history",
    responses={404: {"description": "Farm not found"}},
)
async def get_farm_analyses(
    farm_id: FarmId,
    farm_repository: FarmRepositoryDep,
    analysis_repository: AnalysisRepositoryDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> AnalysesResponse:
    """
    List the analyses of a farm, newest first.

    Args:
        farm_id: Unique identifier for the farm
        farm_repository: Farm registry (injected dependency)
        analysis_repository: Analysis repository (injected dependency)
        limit: Page size
        offset: Number of analyses to skip

    Returns:
        AnalysesResponse

    Raises:
        HTTPException: If the farm is not registered
    """
    await _require_farm(farm_repository, farm_id)
    records = await analysis_repository.list_analyses(farm_id, limit=limit, offset=offset)
    return AnalysesResponse(
        farm_id=farm_id,
        limit=limit,
        offset=offset,
        analyses=[AnalysisSummary.from_record(r) for r in records],
    )


@router.get(
    "/{farm_id}/alerts",
    response_model=AlertsResponse,
    summary="Get farm alerts",
    responses={404: {"description": "Farm not found"}},
)
async def get_farm_alerts(
    farm_id: FarmId,
    farm_repository: FarmRepositoryDep,
    alert_repository: AlertRepositoryDep,
) -> AlertsResponse:
    await _require_farm(farm_repository, farm_id)
    alerts = await alert_repository.list_alerts(farm_id)
    return AlertsResponse(farm_id=farm_id, alert_count=len(alerts), alerts=alerts)


@router.get(
    "/{farm_id}/ndvi-image",
    summary="Get the NDVI map of the latest analysis",
    description="""
    Render the vegetation index of the farm's most recent analysis as a PNG,
    one colour per zone: water (blue), bare soil (brown), sparse (yellow),
    moderate (light green) and dense (dark green) vegetation.
    """,
    responses={
        200: {"content": {APIConstants.IMAGE_MEDIA_TYPE: {}}},
        404: {"description": "Farm not found or never analyzed"},
    },
    response_class=Response,
)
async def get_farm_ndvi_image(
    farm_id: FarmId,
    farm_repository: FarmRepositoryDep,
    analysis_repository: AnalysisRepositoryDep,
    engine: IndexEngineDep,
) -> Response:
    await _require_farm(farm_repository, farm_id)

    latest = await analysis_repository.latest_analysis(farm_id)
    if latest is None or latest.index_result.index_values is None:
        raise HTTPException(
            status_code=404,
            detail=f"No index data available for farm '{farm_id}'",
        )

    index_result = latest.index_result
    png = await asyncio.to_thread(
        engine.render_visualization,
        index_result.index_values,
        index_result.width,
        index_result.height,
        settings.ndvi_thresholds(),
    )
    return Response(content=png, media_type=APIConstants.IMAGE_MEDIA_TYPE)


@router.post(
    "/{farm_id}/analyze",
    response_model=FarmAnalysisResponse,
    summary="Analyze a farm now",
    description="""
    Run the full analysis for one farm immediately, regardless of how recently
    it was analyzed: fetch the latest bands, compute the vegetation index,
    request vision findings, then persist and announce the resulting alerts.
    """,
    responses={
        404: {"description": "Farm not found or no recent satellite image"},
        502: {"description": "Imagery or vision provider error"},
    },
)
async def analyze_farm(
    farm_id: FarmId,
    farm_repository: FarmRepositoryDep,
    pipeline: PipelineDep,
) -> FarmAnalysisResponse:
    """
    Analyze a single farm on demand.

    Args:
        farm_id: Unique identifier for the farm
        farm_repository: Farm registry (injected dependency)
        pipeline: Farm analysis pipeline (injected dependency)

    Returns:
        FarmAnalysisResponse

    Raises:
        HTTPException: If the farm is not registered or has no recent image
    """
    farm = await _require_farm(farm_repository, farm_id)

    outcome = await pipeline.run(farm, force=True)
    if outcome.status == FarmStatus.SKIPPED:
        raise HTTPException(
            status_code=404,
            detail=f"No recent satellite image available for farm '{farm_id}'",
        )
    return FarmAnalysisResponse.from_outcome(outcome)


@router.post(
    "/{farm_id}/compare",
    response_model=ComparisonResponse,
    summary="Compare farm analyses over a period",
    responses={
        400: {"description": "Fewer than two analyses in the period"},
        404: {"description": "Farm not found"},
    },
)
async def compare_farm_analyses(
    farm_id: FarmId,
    period: CompareRequest,
    farm_repository: FarmRepositoryDep,
    analysis_repository: AnalysisRepositoryDep,
) -> ComparisonResponse:
    await _require_farm(farm_repository, farm_id)

    records = await analysis_repository.list_analyses_between(
        farm_id, period.start_date, period.end_date
    )
    if len(records) < MIN_ANALYSES:
        raise HTTPException(
            status_code=400,
            detail=f"At least {MIN_ANALYSES} analyses are required for comparison, "
                   f"found {len(records)}",
        )

    return ComparisonResponse(
        farm_id=farm_id,
        start_date=period.start_date,
        end_date=period.end_date,
        comparison=compare_analyses(records),
    )
