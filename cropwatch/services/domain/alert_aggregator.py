"""
Domain service: Alert aggregation for one farm analysis.

Merges index-derived alerts with vision findings into the unified Alert
shape, removes duplicates, orders by severity, persists the survivors and
decides which message (if any) goes out to the farm's contacts.
"""
from datetime import datetime, timezone
from typing import Callable, Optional
import asyncio
import logging

from cropwatch.domain.models import (
    Alert,
    AlertSource,
    AlertType,
    Farm,
    IndexResult,
    Severity,
    VisionFinding,
    VisionRecommendation,
    VisionResult,
    VisionSeverity,
)
from cropwatch.domain.repositories import AlertRepository, NotificationDispatcher

logger = logging.getLogger(__name__)


VISION_SEVERITY_MAP: dict[VisionSeverity, Severity] = {
    VisionSeverity.CRITICAL: Severity.HIGH,
    VisionSeverity.HIGH: Severity.HIGH,
    VisionSeverity.MEDIUM: Severity.MEDIUM,
    VisionSeverity.LOW: Severity.LOW,
    VisionSeverity.INFO: Severity.INFO,
}
UNMAPPED_SEVERITY_DEFAULT = Severity.MEDIUM

ALERT_TITLES: dict[str, str] = {
    AlertType.LOW_VEGETATION_INDEX: "Low Vegetative Vigor - {crop_type}",
    AlertType.HIGH_VARIABILITY: "Uneven Crop Development",
    AlertType.EXCESSIVE_BARE_SOIL: "Exposed Soil Detected",
    AlertType.HEALTHY_VEGETATION: "Healthy Crop",
    AlertType.HIGH_RISK_IDENTIFIED: "High Risk Identified by AI",
    "VEGETATION_STRESS": "Vegetation Stress Identified",
    "IRRIGATION_NEEDED": "Irrigation Needed",
    "PEST_DISEASE_RISK": "Pest/Disease Risk",
}

URGENT_MESSAGE_MAX_ALERTS = 3
HIGH_RISK_LEVEL = "high"


def map_vision_severity(severity: Optional[str]) -> Severity:
    """Map a provider severity tag to the internal scale. Unknown tags map to medium."""
    try:
        return VISION_SEVERITY_MAP.get(VisionSeverity(severity), UNMAPPED_SEVERITY_DEFAULT)
    except ValueError:
        return UNMAPPED_SEVERITY_DEFAULT


def deduplicate_alerts(alerts: list[Alert]) -> list[Alert]:
    """Keep the first alert seen for each (farm_id, type, severity)."""
    seen = set()
    unique = []
    for alert in alerts:
        if alert.dedup_key in seen:
            continue
        seen.add(alert.dedup_key)
        unique.append(alert)
    return unique


def prioritize_alerts(alerts: list[Alert]) -> list[Alert]:
    """Sort by descending severity, keeping emission order within a severity."""
    return sorted(alerts, key=lambda alert: -alert.severity.rank)


class AlertAggregator:
    """
    Domain service combining index and vision output into persisted alerts.

    Persistence and dispatch failures are logged and never propagate:
    the farm pipeline continues with whatever alerts it has.
    """

    def __init__(
        self,
        alert_repository: AlertRepository,
        dispatcher: Optional[NotificationDispatcher] = None,
        notifications_enabled: bool = True,
        call_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.alert_repository = alert_repository
        self.dispatcher = dispatcher
        self.notifications_enabled = notifications_enabled
        self.call_timeout = call_timeout
        self.clock = clock

    async def combine(
        self,
        farm: Farm,
        index_result: IndexResult,
        vision_result: Optional[VisionResult],
    ) -> list[Alert]:
        """
        Build, deduplicate, order, persist and announce the alerts of one analysis.

        Args:
            farm: Farm the analysis belongs to
            index_result: Vegetation index result with derived alerts
            vision_result: Vision provider result (may be None)

        Returns:
            Ordered alerts, with ids when persistence succeeded
        """
        alerts = self.build_alerts(farm, index_result, vision_result)
        alerts = prioritize_alerts(deduplicate_alerts(alerts))

        logger.info(
            f"Farm {farm.id}: {len(alerts)} alerts after aggregation "
            f"({sum(1 for a in alerts if a.severity == Severity.HIGH)} high)"
        )

        alerts = await self._persist(farm, alerts)

        if self.notifications_enabled and self.dispatcher is not None:
            message = self.build_notification(farm, alerts)
            if message is not None:
                await self._notify(farm, message)

        return alerts

    def build_alerts(
        self,
        farm: Farm,
        index_result: IndexResult,
        vision_result: Optional[VisionResult],
    ) -> list[Alert]:
        """Map index alerts, then vision findings, into Alerts in emission order."""
        now = self.clock()
        alerts = []

        zones = index_result.zones.model_dump()
        for derived in index_result.derived_alerts:
            alerts.append(Alert(
                farm_id=farm.id,
                type=derived.type,
                severity=derived.severity,
                title=self._title(derived.type, farm),
                description=derived.message,
                recommendation=derived.recommendation,
                source=AlertSource.INDEX,
                metadata={
                    "ndvi_mean": index_result.statistics.mean,
                    "ndvi_std": index_result.statistics.std,
                    "zones": zones,
                },
                created_at=now,
            ))

        if vision_result is None:
            return alerts

        for finding in vision_result.findings:
            alerts.append(self._vision_alert(farm, finding, vision_result, now))

        if (vision_result.risk_level or "").lower() == HIGH_RISK_LEVEL:
            alerts.append(Alert(
                farm_id=farm.id,
                type=AlertType.HIGH_RISK_IDENTIFIED,
                severity=Severity.HIGH,
                title=self._title(AlertType.HIGH_RISK_IDENTIFIED, farm),
                description=vision_result.summary or "AI analysis identified high-risk conditions on the farm.",
                recommendation="Immediate action recommended. See the specific recommendations.",
                source=AlertSource.VISION,
                metadata={
                    "risk_level": vision_result.risk_level,
                    "confidence": vision_result.confidence_overall,
                },
                created_at=now,
            ))

        return alerts

    def build_notification(self, farm: Farm, alerts: list[Alert]) -> Optional[str]:
        """
        Decide which message the farm contacts receive.

        Returns:
            Urgent message if a non-healthy alert is high, positive status
            message if a healthy alert exists, otherwise None
        """
        actionable = [a for a in alerts if a.type != AlertType.HEALTHY_VEGETATION]
        if any(a.severity == Severity.HIGH for a in actionable):
            return self._urgent_message(farm, actionable)

        healthy = [a for a in alerts if a.type == AlertType.HEALTHY_VEGETATION]
        if healthy:
            return self._positive_message(farm, healthy[0])

        return None

    def _vision_alert(
        self,
        farm: Farm,
        finding: VisionFinding,
        vision_result: VisionResult,
        now: datetime,
    ) -> Alert:
        alert_type = finding.type or AlertType.GENERAL_OBSERVATION
        return Alert(
            farm_id=farm.id,
            type=alert_type,
            severity=map_vision_severity(finding.severity),
            title=ALERT_TITLES.get(alert_type, f"AI Observation: {alert_type}"),
            description=finding.description,
            recommendation=self._recommendation_for(alert_type, vision_result.recommendations),
            source=AlertSource.VISION,
            metadata={
                "confidence": finding.confidence,
                "risk_level": vision_result.risk_level,
                "finding": finding.model_dump(mode="json"),
            },
            created_at=now,
        )

    @staticmethod
    def _recommendation_for(
        finding_type: str, recommendations: list[VisionRecommendation]
    ) -> Optional[str]:
        if not recommendations:
            return None

        needle = finding_type.lower()
        for recommendation in recommendations:
            if needle in recommendation.action.lower() or needle in recommendation.description.lower():
                return recommendation.description or None
        return recommendations[0].description or None

    @staticmethod
    def _title(alert_type: str, farm: Farm) -> str:
        template = ALERT_TITLES.get(alert_type, f"Alert - {alert_type}")
        return template.format(crop_type=farm.crop_type)

    async def _persist(self, farm: Farm, alerts: list[Alert]) -> list[Alert]:
        if not alerts:
            return alerts
        try:
            return await asyncio.wait_for(
                self.alert_repository.save_alerts(farm.id, alerts),
                self.call_timeout,
            )
        except Exception as e:
            logger.error(f"Farm {farm.id}: alerts not saved ({type(e).__name__}: {e})")
            return alerts

    async def _notify(self, farm: Farm, message: str) -> None:
        for recipient in farm.recipients:
            try:
                delivered = await asyncio.wait_for(
                    self.dispatcher.send(recipient, message),
                    self.call_timeout,
                )
            except Exception as e:
                logger.error(
                    f"Farm {farm.id}: notification to {recipient} failed "
                    f"({type(e).__name__}: {e})"
                )
                continue
            if not delivered:
                logger.warning(f"Farm {farm.id}: notification to {recipient} was not delivered")

    def _urgent_message(self, farm: Farm, alerts: list[Alert]) -> str:
        lines = [
            f"ALERT - Farm {farm.name or farm.id}",
            f"Date: {self.clock().date().isoformat()}",
            f"Crop: {farm.crop_type}",
            "",
        ]
        for alert in alerts[:URGENT_MESSAGE_MAX_ALERTS]:
            lines.append(f"[{alert.severity.value.upper()}] {alert.title}")
            lines.append(alert.description)
            if alert.recommendation:
                lines.append(f"Recommendation: {alert.recommendation}")
            lines.append("")

        remaining = len(alerts) - URGENT_MESSAGE_MAX_ALERTS
        if remaining > 0:
            lines.append(f"+{remaining} more alerts available on the dashboard.")
            lines.append("")

        lines.append("Automatic analysis. Open the dashboard for details.")
        return "\n".join(lines)

    def _positive_message(self, farm: Farm, healthy: Alert) -> str:
        lines = [
            f"Farm {farm.name or farm.id}",
            "",
            f"Good news! Your {farm.crop_type} crop is in good health.",
            "",
            f"Today's analysis: {healthy.description}",
        ]
        if healthy.recommendation:
            lines.append(healthy.recommendation)
        return "\n".join(lines)
