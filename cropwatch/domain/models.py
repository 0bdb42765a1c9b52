"""
Domain models for farms, band rasters, vegetation index results and alerts.

These models represent the core domain entities and should be independent
of any infrastructure concerns (API clients, databases, etc.).
"""
from dataclasses import dataclass, field
from datetime import date as date_type, datetime
from enum import Enum
from typing import Any, Optional

import numpy as np
from pydantic import BaseModel, Field, field_validator, model_validator


class Severity(str, Enum):
    """Alert severity. Totally ordered: high > medium > low > info."""
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
}


class VisionSeverity(str, Enum):
    """Severity tag attached to a vision finding by the provider."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"
    UNMAPPED = "unmapped"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AlertSource(str, Enum):
    INDEX = "index"
    VISION = "vision"
    SYSTEM = "system"


class RunState(str, Enum):
    """Batch run lifecycle: idle -> running -> completed|failed -> idle."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AlertType:
    """Alert type identifiers produced by this system."""
    LOW_VEGETATION_INDEX = "LOW_VEGETATION_INDEX"
    HIGH_VARIABILITY = "HIGH_VARIABILITY"
    EXCESSIVE_BARE_SOIL = "EXCESSIVE_BARE_SOIL"
    HEALTHY_VEGETATION = "HEALTHY_VEGETATION"
    HIGH_RISK_IDENTIFIED = "HIGH_RISK_IDENTIFIED"
    GENERAL_OBSERVATION = "GENERAL_OBSERVATION"


class NdviThresholds(BaseModel):
    """Index thresholds separating vegetation zones."""
    low: float = 0.2
    normal: float = 0.4
    high: float = 0.7

    @model_validator(mode="after")
    def _check_order(self) -> "NdviThresholds":
        if not (self.low < self.normal < self.high):
            raise ValueError(
                f"Thresholds must satisfy low < normal < high, got "
                f"{self.low}, {self.normal}, {self.high}"
            )
        return self


class Farm(BaseModel):
    """A monitored land parcel. Owned by the farm registry."""
    id: str
    name: str = ""
    crop_type: str
    area_hectares: float
    priority: Priority = Priority.MEDIUM
    crop_stage: Optional[str] = None
    geometry: dict[str, Any] = Field(
        default_factory=dict,
        description="GeoJSON geometry of the parcel boundary"
    )
    last_analyzed_at: Optional[datetime] = None
    active: bool = True
    owner_contact: Optional[str] = None
    technical_contacts: list[str] = Field(default_factory=list)

    @property
    def recipients(self) -> list[str]:
        """Addresses that receive this farm's alert messages."""
        recipients = [self.owner_contact] if self.owner_contact else []
        recipients.extend(c for c in self.technical_contacts if c)
        return recipients


class BandRaster(BaseModel):
    """Single spectral channel as a (height, width) grid of raw samples."""
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    values: np.ndarray
    scale: float = Field(
        default=255.0,
        gt=0,
        description="Raw full-scale sample value, used to normalize to [0, 1]"
    )

    class Config:
        arbitrary_types_allowed = True

    @field_validator("values", mode="before")
    @classmethod
    def _to_array(cls, value: Any) -> np.ndarray:
        return np.asarray(value, dtype=np.float64)

    @model_validator(mode="after")
    def _check_shape(self) -> "BandRaster":
        expected = (self.height, self.width)
        if self.values.size != self.width * self.height:
            raise ValueError(
                f"Raster holds {self.values.size} samples, expected "
                f"{self.width}x{self.height}"
            )
        if self.values.shape != expected:
            self.values = self.values.reshape(expected)
        return self


class BandData(BaseModel):
    """Aligned NIR/red bands for one farm, as returned by the imagery provider."""
    nir: BandRaster
    red: BandRaster
    sensing_date: datetime
    cloud_coverage: Optional[float] = None
    image_id: Optional[str] = None
    preview: Optional[bytes] = Field(default=None, repr=False)


class Statistics(BaseModel):
    """Index statistics over valid pixels."""
    mean: float = 0.0
    min: float = 0.0
    max: float = 0.0
    std: float = 0.0
    valid_pixel_count: int = 0
    total_pixel_count: int = 0


class ZoneBucket(BaseModel):
    count: int = 0
    percentage: float = 0.0


class ZoneHistogram(BaseModel):
    """Five mutually exclusive vegetation zones."""
    water: ZoneBucket = Field(default_factory=ZoneBucket)
    bare_soil: ZoneBucket = Field(default_factory=ZoneBucket)
    sparse_vegetation: ZoneBucket = Field(default_factory=ZoneBucket)
    moderate_vegetation: ZoneBucket = Field(default_factory=ZoneBucket)
    dense_vegetation: ZoneBucket = Field(default_factory=ZoneBucket)

    def buckets(self) -> dict[str, ZoneBucket]:
        return {name: getattr(self, name) for name in type(self).model_fields}


class DerivedAlert(BaseModel):
    """Alert raised by the index rule table, before it is tied to a farm."""
    type: str
    severity: Severity
    message: str
    recommendation: str


class IndexResult(BaseModel):
    """Outcome of one vegetation index computation."""
    timestamp: Optional[datetime] = None
    width: int
    height: int
    statistics: Statistics
    zones: ZoneHistogram
    derived_alerts: list[DerivedAlert] = Field(default_factory=list)
    index_values: Optional[np.ndarray] = Field(default=None, exclude=True, repr=False)

    class Config:
        arbitrary_types_allowed = True


class VisionFinding(BaseModel):
    """Structured observation returned by the vision provider."""
    type: str
    description: str = ""
    severity: VisionSeverity
    confidence: float = Field(default=0.0, ge=0, le=100)
    raw_severity: Optional[str] = None


class VisionRecommendation(BaseModel):
    action: str = ""
    priority: Optional[str] = None
    description: str = ""


class VisionResult(BaseModel):
    """Full response of the vision provider for one farm."""
    findings: list[VisionFinding] = Field(default_factory=list)
    confidence_overall: float = Field(default=0.0, ge=0, le=100)
    risk_level: Optional[str] = None
    summary: str = ""
    recommendations: list[VisionRecommendation] = Field(default_factory=list)


class Alert(BaseModel):
    """Unified alert shape persisted per farm."""
    id: Optional[str] = None
    farm_id: str
    type: str
    severity: Severity
    title: str
    description: str
    recommendation: Optional[str] = None
    source: AlertSource
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @property
    def dedup_key(self) -> tuple[str, str, Severity]:
        return (self.farm_id, self.type, self.severity)


class AnalysisRecord(BaseModel):
    """Persisted result of one successful farm analysis."""
    id: Optional[str] = None
    farm_id: str
    created_at: datetime
    ndvi_mean: float
    vision_confidence: float
    risk_level: Optional[str] = None
    alert_count: int
    image_id: Optional[str] = None
    index_result: IndexResult
    vision_result: VisionResult


class AnalysisErrorRecord(BaseModel):
    """Persisted trace of a failed farm analysis."""
    farm_id: str
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class RunReport(BaseModel):
    """Summary of one batch run, persisted once per run."""
    date: date_type
    total_farms: int
    succeeded: int
    failed: int
    alerts_generated: int
    success_rate_percent: float
    execution_time_ms: int
    report_data: dict[str, Any] = Field(default_factory=dict)


@dataclass
class RunStatistics:
    """Counters for one run. Mutated only by the orchestrator that owns it."""
    total_farms: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    alerts_generated: int = 0
    started_at: Optional[datetime] = None
    duration_ms: int = 0


class FarmStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class FarmOutcome:
    """Result message a farm task hands back to the orchestrator."""
    farm_id: str
    status: FarmStatus
    alerts_generated: int = 0
    reason: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


class NdviTrend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class NdviChange(BaseModel):
    """Mean NDVI at the start and end of a period."""
    initial: float
    final: float
    change: float
    change_percent: Optional[float] = Field(
        default=None,
        description="Relative change; None when the initial mean is zero"
    )
    trend: NdviTrend


class RiskChange(BaseModel):
    """Vision risk level at the start and end of a period."""
    initial: Optional[str] = None
    final: Optional[str] = None
    high_risk_analyses: int = 0


class TemporalComparison(BaseModel):
    """Evolution of a farm across the analyses of a period, oldest to newest."""
    farm_id: str
    analyses_count: int
    first_analysis_at: datetime
    last_analysis_at: datetime
    ndvi: NdviChange
    risk: RiskChange
    average_confidence: float
    total_alerts: int
    average_alerts: float
