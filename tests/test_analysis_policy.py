"""
Unit tests for the forced analysis policy.
"""
from datetime import timedelta

from cropwatch.domain.models import (
    AnalysisRecord,
    IndexResult,
    Priority,
    Statistics,
    VisionResult,
    ZoneHistogram,
)
from cropwatch.services.domain.analysis_policy import (
    FORCE_ANALYSIS_RULES,
    ForceAnalysisRule,
    should_force_analysis,
)
from tests.conftest import NOW


def analysis(risk_level=None) -> AnalysisRecord:
    return AnalysisRecord(
        id="a-1",
        farm_id="farm-1",
        created_at=NOW - timedelta(hours=2),
        ndvi_mean=0.5,
        vision_confidence=80.0,
        risk_level=risk_level,
        alert_count=0,
        index_result=IndexResult(
            width=1, height=1, statistics=Statistics(), zones=ZoneHistogram()
        ),
        vision_result=VisionResult(risk_level=risk_level),
    )


class TestShouldForceAnalysis:
    """Tests for the override rule table."""

    def test_ordinary_farm_is_not_forced(self, sample_farm):
        """A medium priority farm with a calm history should not be forced."""
        assert should_force_analysis(sample_farm, analysis("low")) is None

    def test_high_priority(self, farm_factory):
        """High priority farms should always be re-analyzed."""
        farm = farm_factory(priority=Priority.HIGH)

        assert should_force_analysis(farm, analysis()) == "high_priority"

    def test_critical_crop_stage(self, farm_factory):
        """Farms in a critical crop stage should be re-analyzed."""
        farm = farm_factory(crop_stage="Critical")

        assert should_force_analysis(farm, analysis()) == "critical_crop_stage"

    def test_previous_high_risk(self, sample_farm):
        """A high risk previous analysis should force a new one."""
        assert should_force_analysis(sample_farm, analysis("HIGH")) == "previous_run_high_risk"

    def test_no_previous_analysis(self, sample_farm):
        """Without history only farm attributes can force an analysis."""
        assert should_force_analysis(sample_farm, None) is None

    def test_first_matching_rule_wins(self, farm_factory):
        """Rules should be evaluated in table order."""
        farm = farm_factory(priority=Priority.HIGH, crop_stage="critical")

        assert should_force_analysis(farm, analysis("high")) == "high_priority"

    def test_custom_rule_table(self, sample_farm):
        """Callers may supply their own rule table."""
        rules = FORCE_ANALYSIS_RULES + (
            ForceAnalysisRule("soy_always", lambda farm, latest: farm.crop_type == "soy"),
        )

        assert should_force_analysis(sample_farm, analysis(), rules=rules) == "soy_always"
