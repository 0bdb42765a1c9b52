"""
Application service: the analysis pipeline for a single farm.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar
import asyncio
import logging

from cropwatch.domain.exceptions import DataUnavailableError
from cropwatch.domain.models import Farm, FarmOutcome, FarmStatus, NdviThresholds
from cropwatch.domain.repositories import (
    AnalysisRepository,
    BandDataProvider,
    FarmRepository,
    VisionFindingsProvider,
)
from cropwatch.services.domain.alert_aggregator import AlertAggregator
from cropwatch.services.domain.analysis_policy import should_force_analysis
from cropwatch.services.domain.vegetation_index import VegetationIndexEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FarmPipeline:
    """
    Application service for one farm's daily analysis.

    Coordinates the providers, the index engine and the alert aggregator.
    No business logic here. Errors propagate to the caller, which owns the
    failure boundary; only "nothing to do" situations end in a skip.
    """

    def __init__(
        self,
        band_provider: BandDataProvider,
        vision_provider: VisionFindingsProvider,
        engine: VegetationIndexEngine,
        aggregator: AlertAggregator,
        farm_repository: FarmRepository,
        analysis_repository: AnalysisRepository,
        thresholds: NdviThresholds,
        freshness_window: timedelta = timedelta(hours=24),
        max_image_age_days: int = 7,
        call_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.band_provider = band_provider
        self.vision_provider = vision_provider
        self.engine = engine
        self.aggregator = aggregator
        self.farm_repository = farm_repository
        self.analysis_repository = analysis_repository
        self.thresholds = thresholds
        self.freshness_window = freshness_window
        self.max_image_age_days = max_image_age_days
        self.call_timeout = call_timeout
        self.clock = clock

    async def run(self, farm: Farm, force: bool = False) -> FarmOutcome:
        """
        Analyze one farm.

        This method orchestrates:
        1. Freshness check against the latest analysis (with override policy)
        2. Fetching the NIR/red bands
        3. Computing the vegetation index
        4. Requesting vision findings
        5. Aggregating, persisting and announcing alerts
        6. Saving the analysis and stamping the farm

        Args:
            farm: Farm to analyze
            force: Skip the freshness check (on-demand analysis)

        Returns:
            FarmOutcome with status succeeded or skipped

        Raises:
            Any error from providers, the engine or repositories,
            including asyncio.TimeoutError when a call exceeds its timeout
        """
        if force:
            logger.info(f"Farm {farm.id}: on-demand analysis, freshness check bypassed")
        else:
            latest = await self._call(self.analysis_repository.latest_analysis(farm.id))
            if latest is not None and self.clock() - latest.created_at < self.freshness_window:
                override = should_force_analysis(farm, latest)
                if override is None:
                    logger.info(f"Farm {farm.id}: recent analysis found, skipping")
                    return FarmOutcome(farm.id, FarmStatus.SKIPPED, reason="recent_analysis")
                logger.info(f"Farm {farm.id}: recent analysis found, forced by {override}")

        try:
            band_data = await self._call(
                self.band_provider.get_bands(farm.geometry, self.max_image_age_days)
            )
        except DataUnavailableError as e:
            logger.warning(f"Farm {farm.id}: {e}")
            band_data = None

        if band_data is None:
            logger.warning(
                f"Farm {farm.id}: no image in the last {self.max_image_age_days} days, skipping"
            )
            return FarmOutcome(farm.id, FarmStatus.SKIPPED, reason="no_recent_image")

        index_result = await asyncio.to_thread(
            self.engine.compute_index,
            band_data.nir,
            band_data.red,
            self.thresholds,
            band_data.sensing_date,
        )

        image = band_data.preview
        if image is None:
            image = await asyncio.to_thread(
                self.engine.render_visualization,
                index_result.index_values,
                index_result.width,
                index_result.height,
                self.thresholds,
            )

        vision_result = await self._call(
            self.vision_provider.analyze(image, self._farm_context(farm), index_result)
        )

        alerts = await self.aggregator.combine(farm, index_result, vision_result)

        await self._call(self.analysis_repository.save_analysis(
            farm.id,
            index_result,
            vision_result,
            len(alerts),
            image_id=band_data.image_id,
        ))
        await self._call(self.farm_repository.update_last_analyzed_at(farm.id, self.clock()))

        logger.info(
            f"Farm {farm.id}: analysis complete, mean NDVI "
            f"{index_result.statistics.mean:.3f}, {len(alerts)} alerts"
        )

        return FarmOutcome(
            farm.id,
            FarmStatus.SUCCEEDED,
            alerts_generated=len(alerts),
            details={
                "ndvi_mean": index_result.statistics.mean,
                "risk_level": vision_result.risk_level,
                "image_id": band_data.image_id,
            },
        )

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, self.call_timeout)

    @staticmethod
    def _farm_context(farm: Farm) -> dict[str, Any]:
        return {
            "id": farm.id,
            "name": farm.name,
            "crop_type": farm.crop_type,
            "area_hectares": farm.area_hectares,
            "crop_stage": farm.crop_stage,
            "priority": farm.priority.value,
        }
