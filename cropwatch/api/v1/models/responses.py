"""
API response models using Pydantic.
"""
from datetime import date as date_type, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from cropwatch.domain.models import (
    Alert,
    AnalysisRecord,
    FarmOutcome,
    RunReport,
    Statistics,
    TemporalComparison,
    ZoneHistogram,
)


class RunStatisticsResponse(BaseModel):
    total_farms: int
    succeeded: int
    failed: int
    skipped: int
    alerts_generated: int
    started_at: Optional[datetime] = None
    duration_ms: int


class RunStatusResponse(BaseModel):
    """Response model for the run status endpoint."""
    state: str = Field(description="Current orchestrator state (idle or running)")
    last_outcome: Optional[str] = Field(
        default=None,
        description="Terminal state of the previous run (completed or failed)"
    )
    stop_requested: bool = False
    statistics: RunStatisticsResponse

    class Config:
        json_schema_extra = {
            "example": {
                "state": "running",
                "last_outcome": "completed",
                "stop_requested": False,
                "statistics": {
                    "total_farms": 12,
                    "succeeded": 4,
                    "failed": 1,
                    "skipped": 0,
                    "alerts_generated": 7,
                    "started_at": "2026-03-02T09:00:00Z",
                    "duration_ms": 0,
                },
            }
        }


class RunTriggerResponse(BaseModel):
    """Response model for run start/stop requests."""
    accepted: bool
    message: str


class RunReportSummary(BaseModel):
    date: date_type
    total_farms: int
    succeeded: int
    failed: int
    skipped: int = 0
    alerts_generated: int
    success_rate_percent: float
    execution_time_ms: int
    stopped_early: bool = False

    @classmethod
    def from_report(cls, report: RunReport) -> "RunReportSummary":
        return cls(
            date=report.date,
            total_farms=report.total_farms,
            succeeded=report.succeeded,
            failed=report.failed,
            skipped=report.report_data.get("skipped", 0),
            alerts_generated=report.alerts_generated,
            success_rate_percent=report.success_rate_percent,
            execution_time_ms=report.execution_time_ms,
            stopped_early=report.report_data.get("stopped_early", False),
        )


class RunReportsResponse(BaseModel):
    reports: List[RunReportSummary]


class AnalysisSummary(BaseModel):
    """One analysis of a farm, without the raw index grid."""
    id: Optional[str] = None
    created_at: datetime
    ndvi_mean: float
    vision_confidence: float
    risk_level: Optional[str] = None
    alert_count: int
    image_id: Optional[str] = None
    sensing_date: Optional[datetime] = None
    statistics: Statistics
    zones: ZoneHistogram
    summary: str = ""

    @classmethod
    def from_record(cls, record: AnalysisRecord) -> "AnalysisSummary":
        return cls(
            id=record.id,
            created_at=record.created_at,
            ndvi_mean=record.ndvi_mean,
            vision_confidence=record.vision_confidence,
            risk_level=record.risk_level,
            alert_count=record.alert_count,
            image_id=record.image_id,
            sensing_date=record.index_result.timestamp,
            statistics=record.index_result.statistics,
            zones=record.index_result.zones,
            summary=record.vision_result.summary,
        )


class AnalysesResponse(BaseModel):
    """Response model for the farm analysis history endpoint."""
    farm_id: str
    limit: int
    offset: int
    analyses: List[AnalysisSummary]


class AlertsResponse(BaseModel):
    """Response model for the farm alerts endpoint."""
    farm_id: str = Field(description="Unique identifier for the farm")
    alert_count: int = Field(description="Number of alerts stored for the farm")
    alerts: List[Alert]

    class Config:
        json_schema_extra = {
            "example": {
                "farm_id": "farm-001",
                "alert_count": 1,
                "alerts": [
                    {
                        "id": "5b0c1c7e-3f0a-4d8e-9a53-2d1f4b0e6a11",
                        "farm_id": "farm-001",
                        "type": "LOW_VEGETATION_INDEX",
                        "severity": "high",
                        "title": "Low Vegetative Vigor - soy",
                        "description": "Mean NDVI 0.150 is below the stress threshold.",
                        "recommendation": "Check the irrigation system and the nutritional status of the plants.",
                        "source": "index",
                        "metadata": {},
                        "created_at": "2026-03-02T09:00:00Z",
                    }
                ],
            }
        }


class FarmAnalysisResponse(BaseModel):
    """Response model for an on-demand farm analysis."""
    farm_id: str
    status: str = Field(description="Outcome of the analysis (succeeded or skipped)")
    alerts_generated: int
    ndvi_mean: Optional[float] = None
    risk_level: Optional[str] = None
    image_id: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: FarmOutcome) -> "FarmAnalysisResponse":
        return cls(
            farm_id=outcome.farm_id,
            status=outcome.status.value,
            alerts_generated=outcome.alerts_generated,
            ndvi_mean=outcome.details.get("ndvi_mean"),
            risk_level=outcome.details.get("risk_level"),
            image_id=outcome.details.get("image_id"),
        )


class ComparisonResponse(BaseModel):
    """Response model for the temporal comparison endpoint."""
    farm_id: str
    start_date: datetime
    end_date: datetime
    comparison: TemporalComparison

    class Config:
        json_schema_extra = {
            "example": {
                "farm_id": "farm-001",
                "start_date": "2026-02-01T00:00:00Z",
                "end_date": "2026-03-01T23:59:59Z",
                "comparison": {
                    "farm_id": "farm-001",
                    "analyses_count": 3,
                    "first_analysis_at": "2026-02-02T09:00:00Z",
                    "last_analysis_at": "2026-02-28T09:00:00Z",
                    "ndvi": {
                        "initial": 0.62,
                        "final": 0.48,
                        "change": -0.14,
                        "change_percent": -22.58,
                        "trend": "declining",
                    },
                    "risk": {"initial": "low", "final": "medium", "high_risk_analyses": 0},
                    "average_confidence": 81.5,
                    "total_alerts": 4,
                    "average_alerts": 1.33,
                },
            }
        }
