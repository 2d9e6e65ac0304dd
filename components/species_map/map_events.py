"""
Translation of streamlit-folium map state into view state operations.

``st_folium`` returns the latest click and viewport values on every rerun.
The interpreter compares them with the values seen on the previous rerun to
work out what the user just did.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import logging

from .models import Point

logger = logging.getLogger(__name__)

# Marker coordinates come back from Leaflet unchanged; allow float noise only
COORDINATE_TOLERANCE = 1e-7

RETURNED_OBJECTS = [
    "last_clicked",
    "last_object_clicked",
    "last_active_drawing",
    "bounds",
    "zoom",
    "center",
]


class MapEventKind(Enum):
    POINT_CLICKED = "point_clicked"
    POLYGON_CLICKED = "polygon_clicked"
    BACKGROUND_CLICKED = "background_clicked"
    VIEWPORT_SETTLED = "viewport_settled"


@dataclass(frozen=True)
class MapEvent:
    kind: MapEventKind
    value: Any = None


def _feature_gid(feature: Optional[Dict[str, Any]]) -> Optional[int]:
    if not feature:
        return None
    gid = (feature.get('properties') or {}).get('gid')
    try:
        return int(gid) if gid is not None else None
    except (TypeError, ValueError):
        return None


def find_point_at(points: Iterable[Point], location: Optional[Dict[str, Any]]) -> Optional[Point]:
    """Find the point whose marker sits at a clicked {lat, lng} location."""
    if not location or location.get('lat') is None or location.get('lng') is None:
        return None
    lat, lng = float(location['lat']), float(location['lng'])
    for point in points:
        if (abs(point.latitude - lat) <= COORDINATE_TOLERANCE
                and abs(point.longitude - lng) <= COORDINATE_TOLERANCE):
            return point
    return None


class MapEventInterpreter:
    """Diffs consecutive st_folium results into map events."""

    def __init__(self):
        self.previous: Optional[Dict[str, Any]] = None

    def interpret(self, map_state: Optional[Dict[str, Any]], points: Iterable[Point]) -> List[MapEvent]:
        """
        Work out the events since the previous rerun.

        Marker clicks win over background clicks, and feature clicks win over
        both. Viewport changes are only reported once the move or zoom has
        ended, so each change means one settled viewport.
        """
        if not map_state:
            return []

        current = {key: map_state.get(key) for key in RETURNED_OBJECTS}
        previous = self.previous
        self.previous = current

        # First result only reports the initial viewport
        if previous is None:
            return []

        events = []
        drawing_changed = current['last_active_drawing'] != previous['last_active_drawing']
        object_changed = current['last_object_clicked'] != previous['last_object_clicked']
        click_changed = current['last_clicked'] != previous['last_clicked']
        gid = _feature_gid(current['last_active_drawing'])

        if drawing_changed and gid is not None:
            events.append(MapEvent(MapEventKind.POLYGON_CLICKED, gid))
        elif object_changed and current['last_object_clicked']:
            point = find_point_at(points, current['last_object_clicked'])
            if point is not None:
                events.append(MapEvent(MapEventKind.POINT_CLICKED, point.id))
            elif gid is not None:
                # Same feature clicked again
                events.append(MapEvent(MapEventKind.POLYGON_CLICKED, gid))
        elif click_changed and current['last_clicked']:
            events.append(MapEvent(MapEventKind.BACKGROUND_CLICKED))

        if current['bounds'] != previous['bounds'] or current['zoom'] != previous['zoom']:
            events.append(MapEvent(MapEventKind.VIEWPORT_SETTLED, current['zoom']))

        if events:
            logger.debug(f"Map events: {[event.kind.value for event in events]}")
        return events


def dispatch_map_events(controller, events: Iterable[MapEvent]) -> bool:
    """
    Apply map events to a ViewStateController.

    Returns:
        True if any event changed the view state
    """
    before = controller.snapshot().revision
    for event in events:
        if event.kind == MapEventKind.POLYGON_CLICKED:
            controller.select_polygon(event.value)
        elif event.kind == MapEventKind.POINT_CLICKED:
            controller.select_point_by_id(event.value)
        elif event.kind == MapEventKind.BACKGROUND_CLICKED:
            controller.clear_selection()
        elif event.kind == MapEventKind.VIEWPORT_SETTLED:
            controller.request_more_polygons()
    return controller.snapshot().revision != before
