"""
Application configuration using Pydantic settings.
"""
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field

from cropwatch.domain.models import NdviThresholds


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Imagery provider
    imagery_api_base_url: str = Field(
        default="https://imagery.example.com",
        description="Base URL for the band raster provider"
    )
    imagery_api_key: str = Field(
        default="",
        description="API key for the band raster provider"
    )

    # Vision provider
    vision_api_base_url: str = Field(
        default="https://vision.example.com",
        description="Base URL for the AI vision findings provider"
    )
    vision_api_key: str = Field(
        default="",
        description="API key for the AI vision findings provider"
    )

    # Messaging provider
    messaging_api_base_url: str = Field(
        default="https://messaging.example.com",
        description="Base URL for the outbound message transport"
    )
    messaging_api_key: str = Field(
        default="",
        description="API key for the outbound message transport"
    )

    # Farm registry
    farm_registry_file: Optional[str] = Field(
        default=None,
        description="JSON file with the farms loaded into the in-memory registry"
    )

    # Retry Configuration
    max_retry_attempts: int = Field(
        default=3,
        description="Maximum number of retry attempts for provider calls"
    )
    retry_backoff_multiplier: int = Field(
        default=1,
        description="Multiplier for exponential backoff"
    )
    retry_min_wait: int = Field(
        default=4,
        description="Minimum wait time in seconds between retries"
    )
    retry_max_wait: int = Field(
        default=10,
        description="Maximum wait time in seconds between retries"
    )

    # Batch run
    batch_size: int = Field(
        default=5,
        ge=1,
        description="Number of farms analyzed concurrently in one batch"
    )
    inter_batch_delay_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Pause between batches to pace rate-limited providers"
    )
    freshness_window_hours: float = Field(
        default=24.0,
        description="Analyses newer than this are not repeated unless forced"
    )
    max_image_age_days: int = Field(
        default=7,
        description="Oldest acceptable satellite image for a daily analysis"
    )
    external_call_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Timeout applied to every provider or repository call in a farm task"
    )

    # Vegetation index thresholds
    ndvi_threshold_low: float = Field(
        default=0.2,
        description="Below this mean NDVI the crop is considered stressed"
    )
    ndvi_threshold_normal: float = Field(
        default=0.4,
        description="Lower bound of moderate vegetation"
    )
    ndvi_threshold_high: float = Field(
        default=0.7,
        description="Lower bound of dense vegetation"
    )
    variability_std_threshold: float = Field(
        default=0.2,
        description="NDVI standard deviation above which a field is flagged as uneven"
    )
    bare_soil_percent_threshold: float = Field(
        default=30.0,
        description="Bare soil share (percent) above which soil exposure is flagged"
    )

    # Notifications
    alert_notifications_enabled: bool = Field(
        default=True,
        description="Whether farm contacts receive alert messages"
    )
    admin_notification_enabled: bool = Field(
        default=False,
        description="Whether administrators receive run summaries and failure notices"
    )
    admin_contacts: list[str] = Field(
        default=[],
        description="Administrator recipient addresses"
    )

    # Daily schedule
    scheduler_enabled: bool = Field(
        default=False,
        description="Start the daily trigger with the application"
    )
    schedule_hour: int = Field(default=6, ge=0, le=23)
    schedule_minute: int = Field(default=0, ge=0, le=59)
    schedule_timezone: str = Field(
        default="America/Sao_Paulo",
        description="IANA timezone the daily schedule is expressed in"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins (use specific origins in production)"
    )

    # Rate Limiting
    rate_limit_requests: int = Field(
        default=100,
        description="Maximum requests per minute per client"
    )

    # Application Settings
    app_name: str = Field(
        default="CropWatch Vegetation Monitoring",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode"
    )

    class Config:
        env_file = ".env"
        case_sensitive = False

    def ndvi_thresholds(self) -> NdviThresholds:
        """Build the zone/alert thresholds from the flat settings."""
        return NdviThresholds(
            low=self.ndvi_threshold_low,
            normal=self.ndvi_threshold_normal,
            high=self.ndvi_threshold_high,
        )


# Global settings instance
settings = Settings()
