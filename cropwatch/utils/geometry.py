"""
Farm geometry helpers.

Farm boundaries arrive as GeoJSON mappings in WGS84. The imagery provider
is queried by footprint, so these helpers only validate and summarize the
geometry; no reprojection happens here.
"""
from typing import Any

from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry


def load_geometry(geometry: dict[str, Any]) -> BaseGeometry:
    """
    Build a shapely geometry from a GeoJSON mapping.

    Raises:
        ValueError: If the mapping is empty, malformed or not a valid area
    """
    if not geometry:
        raise ValueError("Farm geometry is empty")

    try:
        geom = shape(geometry)
    except (KeyError, TypeError, AttributeError, ValueError) as e:
        raise ValueError(f"Malformed farm geometry: {e}") from e

    if geom.is_empty:
        raise ValueError("Farm geometry is empty")
    if not geom.is_valid:
        raise ValueError("Farm geometry is not a valid polygon")
    return geom


def geometry_bbox(geometry: dict[str, Any]) -> tuple[float, float, float, float]:
    """Bounding box (min_lon, min_lat, max_lon, max_lat) of a GeoJSON geometry."""
    return tuple(load_geometry(geometry).bounds)
