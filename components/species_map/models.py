"""
Record types for the species map.

Points are named location markers; polygon records are species presence
ranges with a (server-simplified) multi-polygon geometry. Both can be built
from database rows or change-notification payloads via ``from_row``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple
import json

from shapely.geometry import mapping, shape

from .errors import DataError


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        # fromisoformat only accepts a trailing Z from Python 3.11 on
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise DataError(f"Invalid timestamp: {value!r}") from e


def _load_geojson(value: Any) -> Dict[str, Any]:
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise DataError(f"Invalid GeoJSON geometry: {e}") from e
    if hasattr(value, '__geo_interface__'):
        value = value.__geo_interface__
    if not isinstance(value, Mapping):
        raise DataError(f"Unsupported geometry value: {type(value).__name__}")
    return dict(value)


def _parse_coordinates(row: Mapping[str, Any]) -> Tuple[float, float]:
    """Read a (lon, lat) pair from the supported row layouts."""
    try:
        if 'lon' in row and 'lat' in row:
            return float(row['lon']), float(row['lat'])

        value = row['coordinates']
        if isinstance(value, (list, tuple)):
            return float(value[0]), float(value[1])

        geojson = _load_geojson(value)
        if geojson.get('type') != 'Point':
            raise DataError(f"Expected Point coordinates, got {geojson.get('type')}")
        lon, lat = geojson['coordinates'][:2]
        return float(lon), float(lat)
    except DataError:
        raise
    except (KeyError, TypeError, ValueError, IndexError) as e:
        raise DataError(f"Invalid point coordinates: {e}") from e


def _parse_multipolygon(value: Any) -> Dict[str, Any]:
    geojson = _load_geojson(value)
    try:
        geometry = shape(geojson)
    except Exception as e:
        raise DataError(f"Invalid polygon geometry: {e}") from e

    if geometry.geom_type == 'Polygon':
        return {'type': 'MultiPolygon', 'coordinates': [mapping(geometry)['coordinates']]}
    if geometry.geom_type != 'MultiPolygon':
        raise DataError(f"Expected MultiPolygon geometry, got {geometry.geom_type}")
    return {'type': 'MultiPolygon', 'coordinates': geojson['coordinates']}


@dataclass(frozen=True)
class Point:
    """A named location marker."""
    id: str
    name: str
    description: str
    coordinates: Tuple[float, float]  # (lon, lat)
    created_at: Optional[datetime] = None

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Point":
        """Build a point from a database row or notification record."""
        if row.get('id') is None:
            raise DataError("Point row has no id")
        return cls(
            id=str(row['id']),
            name=row.get('name') or "",
            description=row.get('description') or "",
            coordinates=_parse_coordinates(row),
            created_at=_parse_timestamp(row.get('created_at')),
        )


@dataclass(frozen=True)
class PolygonRecord:
    """A species presence record with its multi-polygon range.

    ``geom`` is None when the simplified geometry is NULL; such records stay
    in the collection but are not drawn or selectable.
    """
    gid: int
    id_no: int
    sci_name: str
    presence: int
    compiler: str
    citation: str
    geom: Optional[Dict[str, Any]] = field(compare=False, repr=False)
    created_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.sci_name or "Unnamed Species"

    def properties(self) -> Dict[str, Any]:
        """Flattened feature properties used by the map layer."""
        return {
            'gid': self.gid,
            'sci_name': self.sci_name,
            'presence': self.presence,
            'compiler': self.compiler,
            'citation': self.citation,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PolygonRecord":
        """Build a polygon record from a ``simplified_abalones`` row."""
        try:
            gid = int(row['gid'])
            id_no = int(row['id_no']) if row.get('id_no') is not None else 0
            presence = int(row['presence']) if row.get('presence') is not None else 0
        except (KeyError, TypeError, ValueError) as e:
            raise DataError(f"Invalid polygon record: {e}") from e

        return cls(
            gid=gid,
            id_no=id_no,
            sci_name=row.get('sci_name') or "",
            presence=presence,
            compiler=row.get('compiler') or "",
            citation=row.get('citation') or "",
            geom=_parse_multipolygon(row['geom']) if row.get('geom') is not None else None,
            created_at=_parse_timestamp(row.get('created_at')),
        )
