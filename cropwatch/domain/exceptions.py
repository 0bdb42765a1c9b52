"""
Error taxonomy shared by the analysis services.
"""
from typing import Optional


class CropWatchError(Exception):
    """Base class for all errors raised by this package."""
    pass


class DimensionMismatch(CropWatchError, ValueError):
    """Two band rasters used together do not share width and height."""

    def __init__(self, nir_shape: tuple[int, int], red_shape: tuple[int, int]):
        self.nir_shape = nir_shape
        self.red_shape = red_shape
        super().__init__(
            f"Band dimensions differ: nir={nir_shape[0]}x{nir_shape[1]}, "
            f"red={red_shape[0]}x{red_shape[1]}"
        )


class DataUnavailableError(CropWatchError):
    """No sufficiently recent image exists for a farm."""
    pass


class ExternalServiceError(CropWatchError):
    """An imagery, vision or messaging provider failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class PersistenceError(CropWatchError):
    """A repository write failed."""
    pass


class ReentrancyError(CropWatchError):
    """A run was requested while another run is in progress."""
    pass
