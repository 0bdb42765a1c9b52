"""
Domain service: compare a farm's analyses over a period.

Pure functions over stored analysis records; no I/O.
"""
from typing import Optional
import logging

from cropwatch.domain.models import (
    AnalysisRecord,
    NdviChange,
    NdviTrend,
    RiskChange,
    TemporalComparison,
)
from cropwatch.services.domain.analysis_policy import HIGH_RISK_LEVEL

logger = logging.getLogger(__name__)

MIN_ANALYSES = 2

# Mean NDVI changes smaller than this are reported as stable
STABLE_NDVI_DELTA = 0.01


def ndvi_trend(initial: float, final: float, tolerance: float = STABLE_NDVI_DELTA) -> NdviTrend:
    change = final - initial
    if abs(change) < tolerance:
        return NdviTrend.STABLE
    return NdviTrend.IMPROVING if change > 0 else NdviTrend.DECLINING


def _change_percent(initial: float, final: float) -> Optional[float]:
    if initial == 0:
        return None
    return round((final - initial) / abs(initial) * 100, 2)


def compare_analyses(records: list[AnalysisRecord]) -> TemporalComparison:
    """
    Compare the first and last analysis of a period and summarize the rest.

    Args:
        records: Analyses of a single farm, in any order

    Returns:
        TemporalComparison from the oldest to the newest analysis

    Raises:
        ValueError: If fewer than two analyses are given, or they belong
            to different farms
    """
    if len(records) < MIN_ANALYSES:
        raise ValueError(
            f"At least {MIN_ANALYSES} analyses are required for comparison, got {len(records)}"
        )
    farm_ids = {r.farm_id for r in records}
    if len(farm_ids) != 1:
        raise ValueError(f"Analyses belong to more than one farm: {sorted(farm_ids)}")

    ordered = sorted(records, key=lambda r: r.created_at)
    first, last = ordered[0], ordered[-1]
    count = len(ordered)
    total_alerts = sum(r.alert_count for r in ordered)

    comparison = TemporalComparison(
        farm_id=first.farm_id,
        analyses_count=count,
        first_analysis_at=first.created_at,
        last_analysis_at=last.created_at,
        ndvi=NdviChange(
            initial=first.ndvi_mean,
            final=last.ndvi_mean,
            change=last.ndvi_mean - first.ndvi_mean,
            change_percent=_change_percent(first.ndvi_mean, last.ndvi_mean),
            trend=ndvi_trend(first.ndvi_mean, last.ndvi_mean),
        ),
        risk=RiskChange(
            initial=first.risk_level,
            final=last.risk_level,
            high_risk_analyses=sum(
                1 for r in ordered if (r.risk_level or "").lower() == HIGH_RISK_LEVEL
            ),
        ),
        average_confidence=sum(r.vision_confidence for r in ordered) / count,
        total_alerts=total_alerts,
        average_alerts=total_alerts / count,
    )

    logger.info(
        f"Farm {comparison.farm_id}: {count} analyses compared, "
        f"NDVI {comparison.ndvi.trend.value} ({comparison.ndvi.initial:.3f} -> {comparison.ndvi.final:.3f})"
    )
    return comparison
