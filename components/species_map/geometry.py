"""
Geometry helpers for anchoring popups on polygon records.

The anchor is a vertex average over the outer rings of a multi-polygon. It is
good enough to place a popup near a feature, it is not an area-weighted
centroid and does not account for holes or the antimeridian.
"""

from typing import Any, List, Sequence, Tuple
import logging

import numpy as np

from .errors import GeometryError

logger = logging.getLogger(__name__)

# Returned whenever an anchor cannot be computed (San Francisco Bay)
FALLBACK_COORDINATE: Tuple[float, float] = (-122.4, 37.8)


def _polygon_coordinates(multi_polygon: Any) -> Sequence:
    """Extract the nested polygon coordinate list from supported inputs."""
    if multi_polygon is None:
        raise GeometryError("No geometry given")

    if hasattr(multi_polygon, '__geo_interface__'):
        multi_polygon = multi_polygon.__geo_interface__

    if isinstance(multi_polygon, dict):
        geom_type = multi_polygon.get('type')
        coordinates = multi_polygon.get('coordinates')
        if geom_type == 'Polygon':
            return [coordinates] if coordinates is not None else []
        if geom_type != 'MultiPolygon':
            raise GeometryError(f"Unsupported geometry type: {geom_type}")
        return coordinates if coordinates is not None else []

    return multi_polygon


def outer_ring_vertices(multi_polygon: Any) -> List[Tuple[float, float]]:
    """
    Flatten the outer ring of every polygon into one vertex list.

    Args:
        multi_polygon: GeoJSON MultiPolygon mapping, nested coordinate
            sequence or an object exposing __geo_interface__

    Returns:
        List of (lon, lat) pairs in ring order

    Raises:
        GeometryError: If the input does not have multi-polygon structure
    """
    vertices = []
    try:
        for polygon in _polygon_coordinates(multi_polygon):
            if not polygon:
                continue
            for coord in polygon[0]:
                vertices.append((float(coord[0]), float(coord[1])))
    except GeometryError:
        raise
    except (TypeError, ValueError, IndexError) as e:
        raise GeometryError(f"Malformed multi-polygon coordinates: {e}") from e
    return vertices


def _vertex_mean(multi_polygon: Any) -> Tuple[float, float]:
    vertices = outer_ring_vertices(multi_polygon)
    if not vertices:
        raise GeometryError("No coordinates found in multi-polygon")

    coords = np.asarray(vertices, dtype=float)
    center_lon = float(coords[:, 0].sum() / len(coords))
    center_lat = float(coords[:, 1].sum() / len(coords))

    if not (np.isfinite(center_lon) and np.isfinite(center_lat)):
        raise GeometryError("Invalid center coordinates calculated")

    return center_lon, center_lat


def centroid_of(multi_polygon: Any) -> Tuple[float, float]:
    """
    Compute the popup anchor of a multi-polygon.

    Never raises: empty or degenerate input yields FALLBACK_COORDINATE.

    Returns:
        (lon, lat) tuple
    """
    try:
        return _vertex_mean(multi_polygon)
    except GeometryError as e:
        logger.warning(f"Error calculating multi-polygon center: {e}")
        return FALLBACK_COORDINATE
