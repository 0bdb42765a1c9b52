"""
Infrastructure layer: AI vision findings provider client.
"""
from typing import Any, Dict, Optional
import base64
import logging

from pydantic import ValidationError

from cropwatch.config import settings
from cropwatch.domain.exceptions import ExternalServiceError
from cropwatch.domain.models import (
    IndexResult,
    VisionFinding,
    VisionRecommendation,
    VisionResult,
    VisionSeverity,
)
from cropwatch.infrastructure.api_constants import APIConstants, VisionAPIEndpoints
from cropwatch.infrastructure.provider_client import ProviderClient

logger = logging.getLogger(__name__)


class VisionApiClient(ProviderClient):
    """
    Client for the vision provider.

    Only structured responses are accepted: every finding must carry a
    severity tag. Untagged findings are rejected instead of being guessed
    from their free text.
    """

    service_name = "Vision API"

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        super().__init__(
            base_url=base_url or settings.vision_api_base_url,
            api_key=api_key if api_key is not None else settings.vision_api_key,
            timeout=APIConstants.LONG_TIMEOUT,
        )

    async def analyze(
        self,
        image: bytes,
        farm_context: dict[str, Any],
        index_result: IndexResult,
    ) -> VisionResult:
        """
        Request visual findings for a farm image.

        Args:
            image: PNG image of the farm
            farm_context: Farm identity and crop information
            index_result: Vegetation index result giving numeric context

        Returns:
            VisionResult

        Raises:
            ExternalServiceError: If the request fails or the response is malformed
        """
        payload = {
            "image": base64.b64encode(image).decode("ascii"),
            "media_type": APIConstants.IMAGE_MEDIA_TYPE,
            "farm": farm_context,
            "ndvi": {
                "statistics": index_result.statistics.model_dump(),
                "zones": index_result.zones.model_dump(),
            },
        }
        data = await self._make_request("POST", VisionAPIEndpoints.ANALYSES, json=payload)
        result = self.parse_result(data)

        logger.info(
            f"Vision analysis for farm {farm_context.get('id')}: "
            f"{len(result.findings)} findings, risk={result.risk_level}"
        )
        return result

    def parse_result(self, data: Dict[str, Any]) -> VisionResult:
        """
        Parse a provider response into a VisionResult.

        Raises:
            ExternalServiceError: If findings are missing, untagged or malformed
        """
        if not isinstance(data, dict):
            raise ExternalServiceError(f"{self.service_name} returned a malformed response")
        findings_data = data.get("findings")
        if not isinstance(findings_data, list):
            raise ExternalServiceError(f"{self.service_name} response has no findings list")

        try:
            findings = [self._parse_finding(f) for f in findings_data]
            return VisionResult(
                findings=findings,
                confidence_overall=data.get("confidence", 0.0),
                risk_level=data.get("risk_level"),
                summary=data.get("summary") or "",
                recommendations=[
                    VisionRecommendation(**r) for r in data.get("recommendations") or []
                ],
            )
        except (AttributeError, TypeError, ValidationError) as e:
            raise ExternalServiceError(f"{self.service_name} returned a malformed result: {e}") from e

    def _parse_finding(self, finding: Dict[str, Any]) -> VisionFinding:
        raw = finding.get("severity")
        if not isinstance(raw, str) or not raw.strip():
            raise ExternalServiceError(
                f"{self.service_name} finding {finding.get('type')!r} has no severity tag"
            )

        tag = raw.strip().lower()
        try:
            severity = VisionSeverity(tag)
        except ValueError:
            logger.warning(f"Unknown vision severity {raw!r}, marking as unmapped")
            severity = VisionSeverity.UNMAPPED

        return VisionFinding(
            type=finding.get("type") or "GENERAL_OBSERVATION",
            description=finding.get("description") or "",
            severity=severity,
            confidence=finding.get("confidence", 0.0),
            raw_severity=raw,
        )


# Singleton instance
_vision_client: Optional[VisionApiClient] = None


def get_vision_client() -> VisionApiClient:
    """
    Get or create the singleton VisionApiClient instance.

    Returns:
        VisionApiClient instance
    """
    global _vision_client
    if _vision_client is None:
        _vision_client = VisionApiClient()
    return _vision_client
