"""
Infrastructure layer: Band raster provider client.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import base64
import logging

from pydantic import ValidationError

from cropwatch.config import settings
from cropwatch.domain.exceptions import ExternalServiceError
from cropwatch.domain.models import BandData, BandRaster
from cropwatch.infrastructure.api_constants import APIConstants, ImageryAPIEndpoints
from cropwatch.infrastructure.provider_client import ProviderClient
from cropwatch.utils.geometry import geometry_bbox

logger = logging.getLogger(__name__)


class ImageryApiClient(ProviderClient):
    """
    Client for the imagery provider.

    The provider returns ready-to-use NIR and red rasters for a footprint;
    acquisition and decoding of the satellite products happen on its side.
    """

    service_name = "Imagery API"

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        super().__init__(
            base_url=base_url or settings.imagery_api_base_url,
            api_key=api_key if api_key is not None else settings.imagery_api_key,
            timeout=APIConstants.LONG_TIMEOUT,
        )

    async def get_bands(
        self, farm_geometry: dict[str, Any], max_age_days: int
    ) -> Optional[BandData]:
        """
        Fetch the most recent NIR/red pair for a farm footprint.

        Args:
            farm_geometry: GeoJSON geometry of the farm
            max_age_days: Oldest acceptable sensing date, in days

        Returns:
            BandData, or None if no image is recent enough

        Raises:
            ExternalServiceError: If the provider fails or returns malformed data
            ValueError: If the farm geometry is invalid
        """
        bbox = geometry_bbox(farm_geometry)
        try:
            data = await self._make_request(
                "GET",
                ImageryAPIEndpoints.BANDS,
                params={
                    "bbox": ",".join(f"{v:.6f}" for v in bbox),
                    "max_age_days": max_age_days,
                    "bands": f"{ImageryAPIEndpoints.NIR_BAND},{ImageryAPIEndpoints.RED_BAND}",
                },
            )
        except ExternalServiceError as e:
            if e.status_code == 404:
                logger.info(f"No image available for bbox {bbox}")
                return None
            raise

        if not isinstance(data, dict):
            raise ExternalServiceError(
                f"{self.service_name} returned malformed band data: expected an object"
            )
        if not data.get("bands"):
            return None

        band_data = self.parse_band_data(data)

        oldest = datetime.now(timezone.utc) - timedelta(days=max_age_days)
        sensing_date = band_data.sensing_date
        if sensing_date.tzinfo is None:
            sensing_date = sensing_date.replace(tzinfo=timezone.utc)
        if sensing_date < oldest:
            logger.info(f"Latest image {band_data.image_id} from {sensing_date.date()} is too old")
            return None

        logger.info(
            f"Image {band_data.image_id} sensed {sensing_date.date()}, "
            f"{band_data.nir.width}x{band_data.nir.height}, cloud {band_data.cloud_coverage}%"
        )
        return band_data

    def parse_band_data(self, data: Dict[str, Any]) -> BandData:
        """
        Parse a provider response into BandData.

        Raises:
            ExternalServiceError: If the payload is incomplete or inconsistent
        """
        try:
            bands = data["bands"]
            scale = data.get("scale", 255.0)
            preview = data.get("preview_png")
            return BandData(
                nir=BandRaster(
                    width=data["width"], height=data["height"],
                    values=bands["nir"], scale=scale,
                ),
                red=BandRaster(
                    width=data["width"], height=data["height"],
                    values=bands["red"], scale=scale,
                ),
                sensing_date=data["sensing_date"],
                cloud_coverage=data.get("cloud_coverage"),
                image_id=data.get("image_id"),
                preview=base64.b64decode(preview) if preview else None,
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise ExternalServiceError(f"{self.service_name} returned malformed band data: {e}") from e


# Singleton instance
_imagery_client: Optional[ImageryApiClient] = None


def get_imagery_client() -> ImageryApiClient:
    """
    Get or create the singleton ImageryApiClient instance.

    Returns:
        ImageryApiClient instance
    """
    global _imagery_client
    if _imagery_client is None:
        _imagery_client = ImageryApiClient()
    return _imagery_client
