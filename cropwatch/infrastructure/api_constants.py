"""
Provider endpoint constants and configuration.

This module contains all external provider endpoint paths and related constants.
Centralizing these values makes it easy to swap out endpoints or update API versions.
"""


class ImageryAPIEndpoints:
    """Band raster provider endpoint paths."""

    BASE = "/v1"
    BANDS = f"{BASE}/bands"

    # Sentinel-2 band identifiers for near infrared and red
    NIR_BAND = "B08"
    RED_BAND = "B04"


class VisionAPIEndpoints:
    """AI vision provider endpoint paths."""

    BASE = "/v1"
    ANALYSES = f"{BASE}/analyses"


class MessagingAPIEndpoints:
    """Outbound message transport endpoint paths."""

    BASE = "/v1"
    MESSAGES = f"{BASE}/messages"


class APIConstants:
    """General provider configuration constants."""

    # HTTP Headers
    CONTENT_TYPE_JSON = "application/json"

    # Timeouts (in seconds)
    DEFAULT_TIMEOUT = 30.0
    LONG_TIMEOUT = 300.0

    # Media type of images sent for vision analysis
    IMAGE_MEDIA_TYPE = "image/png"
