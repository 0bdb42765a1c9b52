"""
Unit tests for the single farm pipeline.

Tests cover:
- Successful analysis end to end with in-memory repositories
- Freshness skip and forced re-analysis
- Missing imagery skips
- Error propagation and call timeouts
"""
import asyncio
import pytest
from datetime import timedelta

from cropwatch.domain.exceptions import DataUnavailableError, DimensionMismatch, ExternalServiceError
from cropwatch.domain.models import (
    AlertType,
    AnalysisRecord,
    BandData,
    BandRaster,
    FarmStatus,
    IndexResult,
    Priority,
    Statistics,
    VisionResult,
    ZoneHistogram,
)
from tests.conftest import NOW


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def seed_analysis(analysis_repository, farm_id: str, age: timedelta, risk_level=None):
    """Store an analysis created `age` before the pipeline clock."""
    record = AnalysisRecord(
        id=f"seed-{farm_id}",
        farm_id=farm_id,
        created_at=NOW - age,
        ndvi_mean=0.5,
        vision_confidence=80.0,
        risk_level=risk_level,
        alert_count=0,
        index_result=IndexResult(width=1, height=1, statistics=Statistics(), zones=ZoneHistogram()),
        vision_result=VisionResult(risk_level=risk_level),
    )
    analysis_repository.analyses.append(record)
    return record


# ============================================================
# Successful Analysis Tests
# ============================================================

class TestSuccessfulAnalysis:
    """Tests for a farm that goes through every step."""

    @pytest.mark.asyncio
    async def test_healthy_farm(
        self, pipeline, farm_repository, analysis_repository, alert_repository, sample_farm
    ):
        """A healthy farm should be analyzed, saved and stamped."""
        farm_repository.add(sample_farm)

        outcome = await pipeline.run(sample_farm)

        assert outcome.status == FarmStatus.SUCCEEDED
        assert outcome.alerts_generated == 1
        assert outcome.details["ndvi_mean"] == pytest.approx(0.84)

        records = await analysis_repository.list_analyses(sample_farm.id)
        assert len(records) == 1
        assert records[0].image_id == "S2A_TEST"
        assert records[0].alert_count == 1

        alerts = await alert_repository.list_alerts(sample_farm.id)
        assert [a.type for a in alerts] == [AlertType.HEALTHY_VEGETATION]

        stamped = await farm_repository.get_farm(sample_farm.id)
        assert stamped.last_analyzed_at == NOW

    @pytest.mark.asyncio
    async def test_stressed_farm_yields_one_high_alert(
        self, pipeline, band_provider, farm_repository, stressed_bands, sample_farm
    ):
        """Mean NDVI 0.15 should produce exactly one high stress alert."""
        farm_repository.add(sample_farm)
        band_provider.get_bands.return_value = stressed_bands

        outcome = await pipeline.run(sample_farm)

        assert outcome.status == FarmStatus.SUCCEEDED
        assert outcome.alerts_generated == 1
        assert outcome.details["ndvi_mean"] == pytest.approx(0.15)

    @pytest.mark.asyncio
    async def test_rendered_image_sent_to_vision(
        self, pipeline, vision_provider, farm_repository, sample_farm
    ):
        """Without a provider preview the rendered zone map should be analyzed."""
        farm_repository.add(sample_farm)

        await pipeline.run(sample_farm)

        image, context, index_result = vision_provider.analyze.call_args.args
        assert image.startswith(PNG_SIGNATURE)
        assert context["id"] == sample_farm.id
        assert context["crop_type"] == "soy"
        assert index_result.statistics.valid_pixel_count == 8

    @pytest.mark.asyncio
    async def test_provider_preview_is_preferred(
        self, pipeline, band_provider, vision_provider, farm_repository, healthy_bands, sample_farm
    ):
        """A preview image from the provider should be sent as is."""
        farm_repository.add(sample_farm)
        band_provider.get_bands.return_value = healthy_bands.model_copy(update={"preview": b"preview"})

        await pipeline.run(sample_farm)

        assert vision_provider.analyze.call_args.args[0] == b"preview"

    @pytest.mark.asyncio
    async def test_index_timestamp_is_sensing_date(
        self, pipeline, analysis_repository, farm_repository, healthy_bands, sample_farm
    ):
        """The stored index result should refer to the image sensing date."""
        farm_repository.add(sample_farm)

        await pipeline.run(sample_farm)

        record = await analysis_repository.latest_analysis(sample_farm.id)
        assert record.index_result.timestamp == healthy_bands.sensing_date


# ============================================================
# Freshness Tests
# ============================================================

class TestFreshness:
    """Tests for skipping farms analyzed recently."""

    @pytest.mark.asyncio
    async def test_recent_analysis_is_skipped(
        self, pipeline, band_provider, analysis_repository, farm_repository, sample_farm
    ):
        """An analysis younger than the window should skip the farm."""
        farm_repository.add(sample_farm)
        seed_analysis(analysis_repository, sample_farm.id, timedelta(hours=2))

        outcome = await pipeline.run(sample_farm)

        assert outcome.status == FarmStatus.SKIPPED
        assert outcome.reason == "recent_analysis"
        band_provider.get_bands.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_analysis_is_repeated(
        self, pipeline, analysis_repository, farm_repository, sample_farm
    ):
        """An analysis older than the window should not block a new one."""
        farm_repository.add(sample_farm)
        seed_analysis(analysis_repository, sample_farm.id, timedelta(hours=30))

        outcome = await pipeline.run(sample_farm)

        assert outcome.status == FarmStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_high_priority_forces_analysis(
        self, pipeline, analysis_repository, farm_repository, farm_factory
    ):
        """High priority farms should be analyzed despite a fresh analysis."""
        farm = farm_factory(priority=Priority.HIGH)
        farm_repository.add(farm)
        seed_analysis(analysis_repository, farm.id, timedelta(hours=2))

        outcome = await pipeline.run(farm)

        assert outcome.status == FarmStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_previous_high_risk_forces_analysis(
        self, pipeline, analysis_repository, farm_repository, sample_farm
    ):
        """A fresh but high risk analysis should be followed up."""
        farm_repository.add(sample_farm)
        seed_analysis(analysis_repository, sample_farm.id, timedelta(hours=2), "high")

        outcome = await pipeline.run(sample_farm)

        assert outcome.status == FarmStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_on_demand_analysis_bypasses_freshness(
        self, pipeline, band_provider, analysis_repository, farm_repository, sample_farm
    ):
        """force=True should analyze a farm that was analyzed minutes ago."""
        farm_repository.add(sample_farm)
        seed_analysis(analysis_repository, sample_farm.id, timedelta(minutes=5))

        outcome = await pipeline.run(sample_farm, force=True)

        assert outcome.status == FarmStatus.SUCCEEDED
        band_provider.get_bands.assert_awaited_once()
        assert len(analysis_repository.analyses) == 2

    @pytest.mark.asyncio
    async def test_on_demand_analysis_still_skips_without_image(
        self, pipeline, band_provider, sample_farm
    ):
        """Forcing an analysis cannot make up for a missing image."""
        band_provider.get_bands.return_value = None

        outcome = await pipeline.run(sample_farm, force=True)

        assert outcome.status == FarmStatus.SKIPPED
        assert outcome.reason == "no_recent_image"


# ============================================================
# Missing Imagery Tests
# ============================================================

class TestMissingImagery:
    """Tests for farms without a usable image."""

    @pytest.mark.asyncio
    async def test_no_image_is_skipped(
        self, pipeline, band_provider, vision_provider, analysis_repository, sample_farm
    ):
        """No bands should skip the farm without calling the vision provider."""
        band_provider.get_bands.return_value = None

        outcome = await pipeline.run(sample_farm)

        assert outcome.status == FarmStatus.SKIPPED
        assert outcome.reason == "no_recent_image"
        vision_provider.analyze.assert_not_called()
        assert analysis_repository.analyses == []
        assert analysis_repository.errors == []

    @pytest.mark.asyncio
    async def test_data_unavailable_is_skipped(self, pipeline, band_provider, sample_farm):
        """DataUnavailableError should be treated as a skip, not a failure."""
        band_provider.get_bands.side_effect = DataUnavailableError("clouds for two weeks")

        outcome = await pipeline.run(sample_farm)

        assert outcome.status == FarmStatus.SKIPPED
        assert outcome.reason == "no_recent_image"

    @pytest.mark.asyncio
    async def test_max_image_age_passed_to_provider(self, pipeline, band_provider, sample_farm):
        """The provider should be asked for images within the configured age."""
        band_provider.get_bands.return_value = None

        await pipeline.run(sample_farm)

        band_provider.get_bands.assert_awaited_once_with(sample_farm.geometry, 7)


# ============================================================
# Error Propagation Tests
# ============================================================

class TestErrorPropagation:
    """Tests for errors the pipeline leaves to its caller."""

    @pytest.mark.asyncio
    async def test_vision_failure_propagates(
        self, pipeline, vision_provider, analysis_repository, farm_repository, sample_farm
    ):
        """A vision provider error should propagate and nothing should be saved."""
        farm_repository.add(sample_farm)
        vision_provider.analyze.side_effect = ExternalServiceError("Vision API unavailable", 503)

        with pytest.raises(ExternalServiceError):
            await pipeline.run(sample_farm)

        assert analysis_repository.analyses == []
        stored = await farm_repository.get_farm(sample_farm.id)
        assert stored.last_analyzed_at is None

    @pytest.mark.asyncio
    async def test_dimension_mismatch_propagates(self, pipeline, band_provider, healthy_bands, sample_farm):
        """Misaligned bands should fail the farm, never degrade the result."""
        band_provider.get_bands.return_value = BandData(
            nir=healthy_bands.nir,
            red=BandRaster(width=2, height=1, values=[10, 20]),
            sensing_date=healthy_bands.sensing_date,
        )

        with pytest.raises(DimensionMismatch):
            await pipeline.run(sample_farm)

    @pytest.mark.asyncio
    async def test_slow_provider_times_out(self, pipeline, band_provider, sample_farm):
        """A provider call exceeding the timeout should raise TimeoutError."""
        async def hang(*args, **kwargs):
            await asyncio.sleep(5)

        band_provider.get_bands.side_effect = hang
        pipeline.call_timeout = 0.01

        with pytest.raises(asyncio.TimeoutError):
            await pipeline.run(sample_farm)
