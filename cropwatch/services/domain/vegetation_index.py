"""
Domain service: Vegetation index computation and zone classification.

This module turns two aligned band rasters (near infrared and red) into:
- A per-pixel normalized difference vegetation index (NDVI)
- Statistics over the valid pixels
- A five-zone histogram (water, bare soil, sparse/moderate/dense vegetation)
- Alerts derived from the aggregate statistics by a fixed rule table

Everything here is pure: no I/O, no randomness, no ambient configuration
beyond the thresholds passed in.
"""
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Callable, Optional
import logging

import numpy as np
from PIL import Image

from cropwatch.domain.exceptions import DimensionMismatch
from cropwatch.domain.models import (
    AlertType,
    BandRaster,
    DerivedAlert,
    IndexResult,
    NdviThresholds,
    Severity,
    Statistics,
    ZoneBucket,
    ZoneHistogram,
)

logger = logging.getLogger(__name__)


# One fixed colour per zone, in histogram order
ZONE_COLORS: dict[str, tuple[int, int, int]] = {
    "water": (0, 0, 255),
    "bare_soil": (139, 69, 19),
    "sparse_vegetation": (255, 255, 0),
    "moderate_vegetation": (144, 238, 144),
    "dense_vegetation": (0, 100, 0),
}
INVALID_PIXEL_COLOR = (0, 0, 0)


@dataclass
class IndexRuleConfig:
    """Limits used by the statistics alert rules."""

    variability_std_threshold: float = 0.2
    """Standard deviation above which the field is considered uneven"""

    bare_soil_percent_threshold: float = 30.0
    """Bare soil share (percent of valid pixels) above which soil exposure is flagged"""


@dataclass(frozen=True)
class _AlertRule:
    type: str
    severity: Severity
    applies: Callable[[Statistics, ZoneHistogram, NdviThresholds, IndexRuleConfig], bool]
    message: Callable[[Statistics, ZoneHistogram], str]
    recommendation: str


# Evaluated in order; rules are independent and may co-fire.
# Stress and healthy cannot co-fire because thresholds.low < thresholds.high.
ALERT_RULES: tuple[_AlertRule, ...] = (
    _AlertRule(
        type=AlertType.LOW_VEGETATION_INDEX,
        severity=Severity.HIGH,
        applies=lambda s, z, t, c: s.mean < t.low,
        message=lambda s, z: (
            f"Very low mean NDVI ({s.mean:.3f}). Possible crop stress or irrigation failure."
        ),
        recommendation="Check the irrigation system and the nutritional status of the plants.",
    ),
    _AlertRule(
        type=AlertType.HIGH_VARIABILITY,
        severity=Severity.MEDIUM,
        applies=lambda s, z, t, c: s.std > c.variability_std_threshold,
        message=lambda s, z: (
            f"High NDVI variability (std={s.std:.3f}). The crop may be developing unevenly."
        ),
        recommendation="Inspect the low-NDVI areas to locate specific problems.",
    ),
    _AlertRule(
        type=AlertType.EXCESSIVE_BARE_SOIL,
        severity=Severity.MEDIUM,
        applies=lambda s, z, t, c: z.bare_soil.percentage > c.bare_soil_percent_threshold,
        message=lambda s, z: f"{z.bare_soil.percentage}% of the area shows exposed soil.",
        recommendation="Assess ground cover and consider replanting uncovered areas.",
    ),
    _AlertRule(
        type=AlertType.HEALTHY_VEGETATION,
        severity=Severity.INFO,
        applies=lambda s, z, t, c: s.mean > t.high,
        message=lambda s, z: f"Excellent vegetation index (NDVI={s.mean:.3f}).",
        recommendation="Keep current management practices.",
    ),
)


class VegetationIndexEngine:
    """
    Domain service computing the vegetation index from band rasters.

    The engine is stateless apart from its rule configuration, so a single
    instance can be shared between concurrent farm tasks.
    """

    def __init__(self, config: Optional[IndexRuleConfig] = None):
        self.config = config or IndexRuleConfig()

    def compute_index_values(self, nir: BandRaster, red: BandRaster) -> np.ndarray:
        """
        Compute the per-pixel index.

        Samples are normalized to [0, 1] by each raster's scale. A zero
        denominator yields an index of 0. NaN samples propagate to NaN.

        Raises:
            DimensionMismatch: If the rasters differ in width or height
        """
        if (nir.width, nir.height) != (red.width, red.height):
            raise DimensionMismatch((nir.width, nir.height), (red.width, red.height))

        nir_norm = np.clip(nir.values / nir.scale, 0.0, 1.0)
        red_norm = np.clip(red.values / red.scale, 0.0, 1.0)

        numerator = nir_norm - red_norm
        denominator = nir_norm + red_norm
        with np.errstate(divide="ignore", invalid="ignore"):
            index = np.where(denominator != 0, numerator / denominator, 0.0)
        return index

    def compute_index(
        self,
        nir: BandRaster,
        red: BandRaster,
        thresholds: NdviThresholds,
        timestamp: Optional[datetime] = None,
    ) -> IndexResult:
        """
        Compute index, statistics, zone histogram and derived alerts.

        Args:
            nir: Near infrared band
            red: Red band, same dimensions as nir
            thresholds: Zone and alert thresholds
            timestamp: Time the result refers to (normally the image sensing date)

        Returns:
            IndexResult for the pair of rasters

        Raises:
            DimensionMismatch: If the rasters differ in width or height
        """
        index = self.compute_index_values(nir, red)
        valid_mask = np.isfinite(index) & (index >= -1.0) & (index <= 1.0)
        valid = index[valid_mask]

        statistics = self._statistics(valid, total=int(index.size))
        zones = self._classify_zones(valid, thresholds)

        if statistics.valid_pixel_count == 0:
            logger.warning(f"No valid pixels in {nir.width}x{nir.height} raster")
            derived_alerts = []
        else:
            derived_alerts = self._derive_alerts(statistics, zones, thresholds)

        logger.debug(
            f"Index computed: mean={statistics.mean:.4f}, std={statistics.std:.4f}, "
            f"valid={statistics.valid_pixel_count}/{statistics.total_pixel_count}, "
            f"alerts={len(derived_alerts)}"
        )

        return IndexResult(
            timestamp=timestamp,
            width=nir.width,
            height=nir.height,
            statistics=statistics,
            zones=zones,
            derived_alerts=derived_alerts,
            index_values=index,
        )

    def render_visualization(
        self,
        index_values: np.ndarray,
        width: int,
        height: int,
        thresholds: Optional[NdviThresholds] = None,
    ) -> bytes:
        """
        Render the index as a PNG with one colour per zone.

        Invalid pixels (non-finite or outside [-1, 1]) are drawn black.

        Returns:
            PNG image bytes
        """
        thresholds = thresholds or NdviThresholds()
        values = np.asarray(index_values, dtype=np.float64)
        if values.size != width * height:
            raise ValueError(
                f"Index holds {values.size} values, expected {width}x{height}"
            )
        values = values.reshape((height, width))

        rgb = np.zeros((height, width, 3), dtype=np.uint8)
        rgb[:] = INVALID_PIXEL_COLOR
        for zone, mask in self._zone_masks(values, thresholds).items():
            rgb[mask] = ZONE_COLORS[zone]

        buffer = BytesIO()
        Image.fromarray(rgb).save(buffer, format="PNG")
        return buffer.getvalue()

    def _statistics(self, valid: np.ndarray, total: int) -> Statistics:
        if valid.size == 0:
            return Statistics(valid_pixel_count=0, total_pixel_count=total)

        return Statistics(
            mean=float(valid.mean()),
            min=float(valid.min()),
            max=float(valid.max()),
            std=float(valid.std()),
            valid_pixel_count=int(valid.size),
            total_pixel_count=total,
        )

    def _zone_masks(
        self, values: np.ndarray, thresholds: NdviThresholds
    ) -> dict[str, np.ndarray]:
        """Boolean mask per zone. Non-finite values fall in no zone."""
        with np.errstate(invalid="ignore"):
            in_range = np.isfinite(values) & (values >= -1.0) & (values <= 1.0)
            return {
                "water": in_range & (values < 0),
                "bare_soil": in_range & (values >= 0) & (values < thresholds.low),
                "sparse_vegetation": in_range & (values >= thresholds.low) & (values < thresholds.normal),
                "moderate_vegetation": in_range & (values >= thresholds.normal) & (values < thresholds.high),
                "dense_vegetation": in_range & (values >= thresholds.high),
            }

    def _classify_zones(self, valid: np.ndarray, thresholds: NdviThresholds) -> ZoneHistogram:
        total = valid.size
        if total == 0:
            return ZoneHistogram()

        buckets = {}
        for zone, mask in self._zone_masks(valid, thresholds).items():
            count = int(np.count_nonzero(mask))
            buckets[zone] = ZoneBucket(
                count=count,
                percentage=round(count / total * 100, 2),
            )
        return ZoneHistogram(**buckets)

    def _derive_alerts(
        self,
        statistics: Statistics,
        zones: ZoneHistogram,
        thresholds: NdviThresholds,
    ) -> list[DerivedAlert]:
        alerts = []
        for rule in ALERT_RULES:
            if rule.applies(statistics, zones, thresholds, self.config):
                alerts.append(DerivedAlert(
                    type=rule.type,
                    severity=rule.severity,
                    message=rule.message(statistics, zones),
                    recommendation=rule.recommendation,
                ))
        return alerts
