"""
Contracts for the collaborators the analysis core depends on.

Concrete implementations live in the infrastructure layer; services only
depend on these protocols so that providers and storage can be swapped.
"""
from datetime import datetime
from typing import Any, Optional, Protocol

from cropwatch.domain.models import (
    Alert,
    AnalysisErrorRecord,
    AnalysisRecord,
    BandData,
    Farm,
    IndexResult,
    RunReport,
    VisionResult,
)


class BandDataProvider(Protocol):
    async def get_bands(
        self, farm_geometry: dict[str, Any], max_age_days: int
    ) -> Optional[BandData]:
        """Return the most recent aligned NIR/red bands, or None if none is recent enough."""
        ...


class VisionFindingsProvider(Protocol):
    async def analyze(
        self, image: bytes, farm_context: dict[str, Any], index_result: IndexResult
    ) -> VisionResult:
        """Return structured findings. Raises ExternalServiceError on failure."""
        ...


class NotificationDispatcher(Protocol):
    async def send(self, recipient: str, message: str) -> bool:
        ...


class FarmRepository(Protocol):
    async def list_active_farms(self) -> list[Farm]:
        """Active farms ordered by last_analyzed_at ascending, never-analyzed first."""
        ...

    async def get_farm(self, farm_id: str) -> Optional[Farm]:
        ...

    async def update_last_analyzed_at(self, farm_id: str, timestamp: datetime) -> None:
        ...


class AnalysisRepository(Protocol):
    async def save_analysis(
        self,
        farm_id: str,
        index_result: IndexResult,
        vision_result: VisionResult,
        alert_count: int,
        image_id: Optional[str] = None,
    ) -> AnalysisRecord:
        ...

    async def save_error(self, farm_id: str, error: AnalysisErrorRecord) -> None:
        ...

    async def latest_analysis(self, farm_id: str) -> Optional[AnalysisRecord]:
        ...

    async def list_analyses(
        self, farm_id: str, limit: int = 10, offset: int = 0
    ) -> list[AnalysisRecord]:
        ...

    async def list_analyses_between(
        self, farm_id: str, start: datetime, end: datetime
    ) -> list[AnalysisRecord]:
        """Analyses created within [start, end], oldest first."""
        ...


class AlertRepository(Protocol):
    async def save_alerts(self, farm_id: str, alerts: list[Alert]) -> list[Alert]:
        """Persist alerts and return them with ids assigned."""
        ...

    async def list_alerts(self, farm_id: str) -> list[Alert]:
        ...


class RunReportRepository(Protocol):
    async def save_report(self, report: RunReport) -> None:
        ...

    async def list_reports(self, limit: int = 30) -> list[RunReport]:
        ...
