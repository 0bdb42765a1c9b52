"""
Domain service: decides when a farm with a fresh analysis is analyzed anyway.
"""
from typing import Callable, NamedTuple, Optional

from cropwatch.domain.models import AnalysisRecord, Farm, Priority


CRITICAL_CROP_STAGE = "critical"
HIGH_RISK_LEVEL = "high"


class ForceAnalysisRule(NamedTuple):
    name: str
    applies: Callable[[Farm, Optional[AnalysisRecord]], bool]


FORCE_ANALYSIS_RULES: tuple[ForceAnalysisRule, ...] = (
    ForceAnalysisRule(
        "high_priority",
        lambda farm, latest: farm.priority == Priority.HIGH,
    ),
    ForceAnalysisRule(
        "critical_crop_stage",
        lambda farm, latest: (farm.crop_stage or "").lower() == CRITICAL_CROP_STAGE,
    ),
    ForceAnalysisRule(
        "previous_run_high_risk",
        lambda farm, latest: (
            latest is not None and (latest.risk_level or "").lower() == HIGH_RISK_LEVEL
        ),
    ),
)


def should_force_analysis(
    farm: Farm,
    latest_analysis: Optional[AnalysisRecord],
    rules: tuple[ForceAnalysisRule, ...] = FORCE_ANALYSIS_RULES,
) -> Optional[str]:
    """
    Check the override table for a farm.

    Returns:
        Name of the first rule that applies, or None
    """
    for rule in rules:
        if rule.applies(farm, latest_analysis):
            return rule.name
    return None
