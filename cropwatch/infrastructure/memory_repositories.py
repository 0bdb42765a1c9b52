"""
Infrastructure layer: In-memory repositories.

Process-local implementations of the repository contracts, used when no
external store is configured and by the test suite. Every method completes
without awaiting, so each call is atomic on the event loop.
"""
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
import json
import logging
import uuid

from cropwatch.domain.exceptions import PersistenceError
from cropwatch.domain.models import (
    Alert,
    AnalysisErrorRecord,
    AnalysisRecord,
    Farm,
    IndexResult,
    RunReport,
    VisionResult,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _aware(timestamp: datetime) -> datetime:
    return timestamp if timestamp.tzinfo is not None else timestamp.replace(tzinfo=timezone.utc)


def _sort_key(farm: Farm) -> tuple[int, datetime]:
    # Never-analyzed farms first, then oldest analysis first
    if farm.last_analyzed_at is None:
        return (0, _EPOCH)
    return (1, _aware(farm.last_analyzed_at))


class InMemoryFarmRepository:
    """Farm registry held in a dict keyed by farm id."""

    def __init__(self, farms: Optional[list[Farm]] = None):
        self._farms: dict[str, Farm] = {f.id: f for f in farms or []}

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryFarmRepository":
        """
        Load farms from a JSON file holding a list of farm objects.

        Raises:
            PersistenceError: If the file cannot be read or parsed
        """
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
            farms = [Farm(**item) for item in raw]
        except (OSError, ValueError, TypeError) as e:
            raise PersistenceError(f"Could not load farm registry from {path}: {e}") from e
        logger.info(f"Loaded {len(farms)} farms from {path}")
        return cls(farms)

    def add(self, farm: Farm) -> None:
        self._farms[farm.id] = farm

    async def list_active_farms(self) -> list[Farm]:
        return sorted((f for f in self._farms.values() if f.active), key=_sort_key)

    async def get_farm(self, farm_id: str) -> Optional[Farm]:
        return self._farms.get(farm_id)

    async def update_last_analyzed_at(self, farm_id: str, timestamp: datetime) -> None:
        farm = self._farms.get(farm_id)
        if farm is None:
            raise PersistenceError(f"Farm {farm_id} not found")
        self._farms[farm_id] = farm.model_copy(update={"last_analyzed_at": timestamp})


class InMemoryAnalysisRepository:
    """Analysis records and error records, newest last."""

    def __init__(self):
        self.analyses: list[AnalysisRecord] = []
        self.errors: list[AnalysisErrorRecord] = []

    async def save_analysis(
        self,
        farm_id: str,
        index_result: IndexResult,
        vision_result: VisionResult,
        alert_count: int,
        image_id: Optional[str] = None,
    ) -> AnalysisRecord:
        record = AnalysisRecord(
            id=str(uuid.uuid4()),
            farm_id=farm_id,
            created_at=datetime.now(timezone.utc),
            ndvi_mean=index_result.statistics.mean,
            vision_confidence=vision_result.confidence_overall,
            risk_level=vision_result.risk_level,
            alert_count=alert_count,
            image_id=image_id,
            index_result=index_result,
            vision_result=vision_result,
        )
        self.analyses.append(record)
        return record

    async def save_error(self, farm_id: str, error: AnalysisErrorRecord) -> None:
        self.errors.append(error)

    async def latest_analysis(self, farm_id: str) -> Optional[AnalysisRecord]:
        for record in reversed(self.analyses):
            if record.farm_id == farm_id:
                return record
        return None

    async def list_analyses(
        self, farm_id: str, limit: int = 10, offset: int = 0
    ) -> list[AnalysisRecord]:
        records = [r for r in reversed(self.analyses) if r.farm_id == farm_id]
        return records[offset:offset + limit]

    async def list_analyses_between(
        self, farm_id: str, start: datetime, end: datetime
    ) -> list[AnalysisRecord]:
        start, end = _aware(start), _aware(end)
        records = [
            r for r in self.analyses
            if r.farm_id == farm_id and start <= _aware(r.created_at) <= end
        ]
        return sorted(records, key=lambda r: _aware(r.created_at))


class InMemoryAlertRepository:
    """Alerts per farm. Ids are assigned on save."""

    def __init__(self):
        self._alerts: dict[str, list[Alert]] = {}

    async def save_alerts(self, farm_id: str, alerts: list[Alert]) -> list[Alert]:
        saved = [a.model_copy(update={"id": str(uuid.uuid4())}) for a in alerts]
        self._alerts.setdefault(farm_id, []).extend(saved)
        return saved

    async def list_alerts(self, farm_id: str) -> list[Alert]:
        return list(self._alerts.get(farm_id, []))


class InMemoryRunReportRepository:
    def __init__(self):
        self.reports: list[RunReport] = []

    async def save_report(self, report: RunReport) -> None:
        self.reports.append(report)

    async def list_reports(self, limit: int = 30) -> list[RunReport]:
        return list(reversed(self.reports))[:limit]
