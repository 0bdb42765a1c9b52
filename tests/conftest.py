"""
Shared pytest fixtures for all tests.

This module provides common fixtures including:
- Band rasters with known index values
- Sample farms and provider results
- In-memory repositories and recording fakes
- A pipeline/orchestrator wired from the above
- FastAPI test client
"""
import pytest
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from cropwatch.main import app
from cropwatch.domain.models import (
    BandData,
    BandRaster,
    Farm,
    NdviThresholds,
    Priority,
    VisionFinding,
    VisionResult,
    VisionSeverity,
)
from cropwatch.infrastructure.memory_repositories import (
    InMemoryAlertRepository,
    InMemoryAnalysisRepository,
    InMemoryFarmRepository,
    InMemoryRunReportRepository,
)
from cropwatch.services.application.batch_orchestrator import BatchOrchestrator
from cropwatch.services.application.farm_pipeline import FarmPipeline
from cropwatch.services.domain.alert_aggregator import AlertAggregator
from cropwatch.services.domain.vegetation_index import VegetationIndexEngine


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

# A (nir, red) sample pair per target index value, on the 0-255 scale
HEALTHY_PIXEL = (230, 20)       # ~0.84
STRESSED_PIXEL = (250, 150)     # 0.25
WATER_PIXEL = (110, 130)        # -1/12


# ============================================================
# Raster Fixtures
# ============================================================

def make_bands(
    pixels: list[tuple[float, float]],
    width: Optional[int] = None,
    height: int = 1,
    sensing_date: datetime = NOW - timedelta(days=1),
    image_id: str = "S2A_TEST",
) -> BandData:
    """Build a BandData from (nir, red) sample pairs laid out row by row."""
    width = width if width is not None else len(pixels) // height
    return BandData(
        nir=BandRaster(width=width, height=height, values=[p[0] for p in pixels]),
        red=BandRaster(width=width, height=height, values=[p[1] for p in pixels]),
        sensing_date=sensing_date,
        cloud_coverage=3.5,
        image_id=image_id,
    )


@pytest.fixture
def thresholds() -> NdviThresholds:
    """Default zone thresholds (0.2 / 0.4 / 0.7)."""
    return NdviThresholds()


@pytest.fixture
def healthy_bands() -> BandData:
    """4x2 raster of dense vegetation."""
    return make_bands([HEALTHY_PIXEL] * 8, width=4, height=2)


@pytest.fixture
def stressed_bands() -> BandData:
    """
    10 pixels with mean index exactly 0.15.

    7 pixels at 0.25 and 3 at -1/12: std ~0.153, no bare soil, so only the
    low vegetation rule fires.
    """
    return make_bands([STRESSED_PIXEL] * 7 + [WATER_PIXEL] * 3, width=5, height=2)


# ============================================================
# Farm and Provider Result Fixtures
# ============================================================

@pytest.fixture
def farm_factory() -> Callable[..., Farm]:
    """Create farms with sensible defaults."""
    def _make(farm_id: str = "farm-1", **overrides) -> Farm:
        data = {
            "id": farm_id,
            "name": f"Farm {farm_id}",
            "crop_type": "soy",
            "area_hectares": 120.0,
            "priority": Priority.MEDIUM,
            "geometry": {
                "type": "Polygon",
                "coordinates": [[
                    [-47.10, -22.90], [-47.09, -22.90], [-47.09, -22.89],
                    [-47.10, -22.89], [-47.10, -22.90],
                ]],
            },
            "owner_contact": f"+55119000{farm_id[-1]}",
        }
        data.update(overrides)
        return Farm(**data)
    return _make


@pytest.fixture
def sample_farm(farm_factory) -> Farm:
    return farm_factory()


@pytest.fixture
def quiet_vision_result() -> VisionResult:
    """Vision result with no findings and low risk."""
    return VisionResult(findings=[], confidence_overall=80.0, risk_level="low", summary="No issues")


@pytest.fixture
def risky_vision_result() -> VisionResult:
    """Vision result with a pest finding and high overall risk."""
    return VisionResult(
        findings=[
            VisionFinding(
                type="PEST_DISEASE_RISK",
                description="Irregular patches compatible with pest damage",
                severity=VisionSeverity.HIGH,
                confidence=72.0,
            ),
        ],
        confidence_overall=70.0,
        risk_level="high",
        summary="Signs of pest pressure in the north-east corner",
    )


# ============================================================
# Repository and Collaborator Fixtures
# ============================================================

class RecordingDispatcher:
    """Notification dispatcher that records every message it is given."""

    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient: str, message: str) -> bool:
        self.sent.append((recipient, message))
        return self.deliver


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def farm_repository() -> InMemoryFarmRepository:
    return InMemoryFarmRepository()


@pytest.fixture
def analysis_repository() -> InMemoryAnalysisRepository:
    return InMemoryAnalysisRepository()


@pytest.fixture
def alert_repository() -> InMemoryAlertRepository:
    return InMemoryAlertRepository()


@pytest.fixture
def report_repository() -> InMemoryRunReportRepository:
    return InMemoryRunReportRepository()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def band_provider(healthy_bands):
    """Band provider mock returning healthy bands for every farm."""
    provider = AsyncMock()
    provider.get_bands.return_value = healthy_bands
    return provider


@pytest.fixture
def vision_provider(quiet_vision_result):
    """Vision provider mock returning a quiet result for every farm."""
    provider = AsyncMock()
    provider.analyze.return_value = quiet_vision_result
    return provider


@pytest.fixture
def aggregator(alert_repository, dispatcher) -> AlertAggregator:
    return AlertAggregator(alert_repository, dispatcher=dispatcher, clock=lambda: NOW)


@pytest.fixture
def pipeline(
    band_provider,
    vision_provider,
    aggregator,
    farm_repository,
    analysis_repository,
    thresholds,
) -> FarmPipeline:
    return FarmPipeline(
        band_provider=band_provider,
        vision_provider=vision_provider,
        engine=VegetationIndexEngine(),
        aggregator=aggregator,
        farm_repository=farm_repository,
        analysis_repository=analysis_repository,
        thresholds=thresholds,
        clock=lambda: NOW,
    )


@pytest.fixture
def orchestrator(
    pipeline,
    farm_repository,
    analysis_repository,
    report_repository,
    dispatcher,
    recording_sleep,
) -> BatchOrchestrator:
    return BatchOrchestrator(
        pipeline=pipeline,
        farm_repository=farm_repository,
        analysis_repository=analysis_repository,
        report_repository=report_repository,
        dispatcher=dispatcher,
        batch_size=5,
        inter_batch_delay_seconds=30.0,
        sleep=recording_sleep,
        clock=lambda: NOW,
    )


# ============================================================
# FastAPI Test Client Fixtures
# ============================================================

@pytest.fixture
def test_client() -> TestClient:
    """Create a synchronous test client for FastAPI."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    yield
    app.dependency_overrides.clear()
