"""
Map rendering module for the species map.

Builds the Folium map from a view snapshot: Mapbox base tiles, a filled and
outlined layer for polygon records, one marker per point and a popup at the
current selection.
"""

import logging
from html import escape
from typing import Any, Dict, Iterable, List, Optional

import folium
import geopandas as gpd
import pandas as pd
from shapely.geometry import shape

from .models import Point, PolygonRecord
from .state import Selection, ViewSnapshot

logger = logging.getLogger(__name__)

POLYGON_LAYER_NAME = "abalone-polygons"
PROPERTY_COLUMNS = ['gid', 'sci_name', 'presence', 'compiler', 'citation']


def polygons_to_geodataframe(records: Iterable[PolygonRecord]) -> gpd.GeoDataFrame:
    """
    Project polygon records into a GeoDataFrame, one row per drawable record.

    Args:
        records: Polygon records in collection order

    Returns:
        GeoDataFrame in EPSG:4326 with the flattened feature properties
    """
    records = [record for record in records if record.geom is not None]
    rows = [record.properties() for record in records]
    geometries = [shape(record.geom) for record in records]
    frame = pd.DataFrame(rows, columns=PROPERTY_COLUMNS)
    return gpd.GeoDataFrame(frame, geometry=geometries, crs="EPSG:4326")


def polygons_to_feature_collection(records: Iterable[PolygonRecord]) -> Dict[str, Any]:
    """GeoJSON FeatureCollection of the polygon records."""
    return {
        'type': 'FeatureCollection',
        'features': [
            {
                'type': 'Feature',
                'geometry': record.geom,
                'properties': record.properties(),
            }
            for record in records
            if record.geom is not None
        ],
    }


def points_to_dataframe(points: Iterable[Point]) -> pd.DataFrame:
    """Tabular summary of points for the side panel."""
    return pd.DataFrame(
        [
            {
                'id': point.id,
                'name': point.name,
                'longitude': point.longitude,
                'latitude': point.latitude,
                'created_at': point.created_at,
            }
            for point in points
        ],
        columns=['id', 'name', 'longitude', 'latitude', 'created_at'],
    )


def mapbox_tile_url(style: str, access_token: str) -> str:
    return (
        f"https://api.mapbox.com/styles/v1/{style}/tiles/{{z}}/{{x}}/{{y}}"
        f"?access_token={access_token}"
    )


def create_point_popup_content(point: Point) -> str:
    """HTML popup for a selected point."""
    added = point.created_at.strftime('%Y-%m-%d') if point.created_at else "unknown"
    return f"""
    <div style="font-family: Arial, sans-serif; padding: 4px;">
        <h4 style="margin: 0 0 4px 0;">{escape(point.name)}</h4>
        <p style="margin: 0; color: #4b5563;">{escape(point.description)}</p>
        <p style="margin: 8px 0 0 0; font-size: 11px; color: #9ca3af;">Added: {added}</p>
    </div>
    """


def create_polygon_popup_content(record: PolygonRecord) -> str:
    """HTML popup for a selected polygon record."""
    content = f"""
    <div style="font-family: Arial, sans-serif; padding: 4px; max-width: 280px; overflow-wrap: break-word;">
        <h4 style="margin: 0 0 4px 0;">{escape(record.display_name)}</h4>
        <p style="margin: 0; color: #4b5563;">Presence: {record.presence}</p>
    """
    if record.compiler:
        content += f'<p style="margin: 0; color: #4b5563;">Compiler: {escape(record.compiler)}</p>'
    if record.citation:
        content += f'<p style="margin: 8px 0 0 0; font-size: 11px; color: #6b7280;">Source: {escape(record.citation)}</p>'
    content += "</div>"
    return content


class SpeciesMapRenderer:
    """Core map rendering using Folium."""

    def __init__(self, access_token: str, map_settings: Dict[str, Any], style: Dict[str, Any]):
        self.access_token = access_token
        self.map_settings = map_settings
        self.style = style

    def create_base_map(self, center: Optional[List[float]] = None, zoom: Optional[int] = None) -> folium.Map:
        """
        Create the base map with Mapbox tiles.

        Args:
            center: [lat, lon]; defaults to the configured center
            zoom: Zoom level; defaults to the configured zoom
        """
        center = center or self.map_settings['default_center']
        zoom = zoom if zoom is not None else self.map_settings['default_zoom']

        m = folium.Map(location=center, zoom_start=zoom, tiles=None, control_scale=True)
        folium.TileLayer(
            tiles=mapbox_tile_url(self.map_settings['map_style'], self.access_token),
            attr='© Mapbox © OpenStreetMap contributors',
            name='Mapbox',
            tile_size=512,
            zoom_offset=-1,
        ).add_to(m)

        logger.debug(f"Created base map centered at {center}, zoom {zoom}")
        return m

    def add_polygon_layer(self, map_obj: folium.Map, records: Iterable[PolygonRecord]) -> folium.Map:
        """Add the filled, outlined polygon layer."""
        gdf = polygons_to_geodataframe(records)
        if gdf.empty:
            logger.debug("No polygon records to render")
            return map_obj

        fill_color = self.style['polygon_fill_color']
        fill_opacity = self.style['polygon_fill_opacity']
        line_color = self.style['polygon_line_color']
        line_width = self.style['polygon_line_width']

        folium.GeoJson(
            gdf,
            name=POLYGON_LAYER_NAME,
            style_function=lambda feature: {
                'fillColor': fill_color,
                'fillOpacity': fill_opacity,
                'color': line_color,
                'weight': line_width,
            },
            highlight_function=lambda feature: {'fillOpacity': min(1.0, fill_opacity + 0.2)},
            tooltip=folium.GeoJsonTooltip(fields=['sci_name'], aliases=['Species'], sticky=True),
        ).add_to(map_obj)

        logger.info(f"Added {len(gdf)} polygon features to map")
        return map_obj

    def add_point_markers(self, map_obj: folium.Map, points: Iterable[Point],
                          selection: Selection) -> folium.Map:
        """Add one marker per point; the selected one carries an open popup."""
        selected_id = selection.point.id if selection.point is not None else None
        count = 0

        for point in points:
            popup = None
            if point.id == selected_id:
                popup = folium.Popup(create_point_popup_content(selection.point), max_width=300, show=True)
            folium.Marker(
                location=[point.latitude, point.longitude],
                tooltip=point.name or point.id,
                popup=popup,
                icon=folium.Icon(color=self.style['marker_color'], icon=self.style['marker_icon'], prefix='fa'),
            ).add_to(map_obj)
            count += 1

        logger.debug(f"Added {count} point markers to map")
        return map_obj

    def add_polygon_popup(self, map_obj: folium.Map, selection: Selection) -> folium.Map:
        """Open a popup at the anchor of the selected polygon record."""
        if selection.polygon is None or selection.anchor is None:
            return map_obj

        lon, lat = selection.anchor
        folium.CircleMarker(
            location=[lat, lon],
            radius=1,
            opacity=0,
            fill_opacity=0,
            popup=folium.Popup(create_polygon_popup_content(selection.polygon), max_width=320, show=True),
        ).add_to(map_obj)
        return map_obj

    def build_map(self, snapshot: ViewSnapshot, center: Optional[List[float]] = None,
                  zoom: Optional[int] = None) -> folium.Map:
        """Create the complete map for one snapshot."""
        m = self.create_base_map(center, zoom)
        self.add_polygon_layer(m, snapshot.polygons)
        self.add_point_markers(m, snapshot.points, snapshot.selection)
        self.add_polygon_popup(m, snapshot.selection)
        return m
