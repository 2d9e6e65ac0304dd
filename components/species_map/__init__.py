"""
Species Map Component - Interactive map of points and species presence ranges.

This component fetches point and polygon records from PostGIS, paginates the
polygon records as the user pans and zooms, follows live point changes and
shows popups for the selected feature.

Maps are rendered using Folium inside Streamlit.
"""

from .errors import SpeciesMapError, DataError, ConfigError, GeometryError
from .models import Point, PolygonRecord
from .geometry import centroid_of, FALLBACK_COORDINATE
from .map_config import SpeciesMapConfig, get_map_config
from .data_access import SpeciesDataSource, PointSubscription
from .state import (
    ViewStateController,
    ViewSnapshot,
    Selection,
    PageStatus,
    PaginationStatus,
)
from .map_renderer import SpeciesMapRenderer, polygons_to_geodataframe, polygons_to_feature_collection
from .map_page import render_species_map_page, reset_species_map_session

__all__ = [
    'SpeciesMapError',
    'DataError',
    'ConfigError',
    'GeometryError',
    'Point',
    'PolygonRecord',
    'centroid_of',
    'FALLBACK_COORDINATE',
    'SpeciesMapConfig',
    'get_map_config',
    'SpeciesDataSource',
    'PointSubscription',
    'ViewStateController',
    'ViewSnapshot',
    'Selection',
    'PageStatus',
    'PaginationStatus',
    'SpeciesMapRenderer',
    'polygons_to_geodataframe',
    'polygons_to_feature_collection',
    'render_species_map_page',
    'reset_species_map_session',
]
