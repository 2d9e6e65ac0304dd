"""
Pytest configuration and fixtures for species map tests.
"""

import pytest
from datetime import datetime, timezone

from components.species_map.errors import DataError
from components.species_map.models import Point, PolygonRecord


def make_square(lon: float, lat: float, size: float = 1.0):
    """Closed square ring with its lower-left corner at (lon, lat)."""
    return [
        (lon, lat),
        (lon + size, lat),
        (lon + size, lat + size),
        (lon, lat + size),
        (lon, lat),
    ]


def make_polygon_record(gid: int, **overrides) -> PolygonRecord:
    """Polygon record with a unit square geometry placed by gid."""
    values = {
        'gid': gid,
        'id_no': 1000 + gid,
        'sci_name': f"Haliotis sp. {gid}",
        'presence': 1,
        'compiler': "IUCN",
        'citation': "IUCN (International Union for Conservation of Nature)",
        'geom': {'type': 'MultiPolygon', 'coordinates': [[make_square(-123.0 + gid * 0.01, 37.0)]]},
    }
    values.update(overrides)
    return PolygonRecord(**values)


def make_point(point_id: str, lon: float = -122.41, lat: float = 37.77, **overrides) -> Point:
    values = {
        'id': point_id,
        'name': f"Point {point_id}",
        'description': f"Description of {point_id}",
        'coordinates': (lon, lat),
        'created_at': datetime(2025, 1, 20, 7, 10, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return Point(**values)


class FakeSubscription:
    """Records how often it was cancelled."""

    def __init__(self, on_insert, on_update, on_delete):
        self.on_insert = on_insert
        self.on_update = on_update
        self.on_delete = on_delete
        self.cancel_count = 0

    def cancel(self):
        self.cancel_count += 1
        return self.cancel_count == 1


class FakeDataSource:
    """In-memory stand-in for SpeciesDataSource."""

    def __init__(self, points=None, total_polygons: int = 0, fail_points: bool = False,
                 fail_offsets=None, fail_subscribe: bool = False, report_total: bool = True):
        self.points = list(points or [])
        self.polygons = [make_polygon_record(gid) for gid in range(1, total_polygons + 1)]
        self.fail_points = fail_points
        self.fail_offsets = set(fail_offsets or [])
        self.fail_subscribe = fail_subscribe
        self.report_total = report_total
        self.page_calls = []
        self.subscriptions = []
        self.closed = False

    def fetch_points(self):
        if self.fail_points:
            raise DataError("points query failed")
        return list(self.points)

    def fetch_polygon_page(self, start_offset, page_size):
        self.page_calls.append((start_offset, page_size))
        if start_offset in self.fail_offsets:
            raise DataError(f"page at {start_offset} failed")
        page = self.polygons[start_offset:start_offset + page_size]
        total = len(self.polygons) if self.report_total else None
        return page, total

    def subscribe_to_point_changes(self, on_insert, on_update, on_delete):
        if self.fail_subscribe:
            raise DataError("subscribe failed")
        subscription = FakeSubscription(on_insert, on_update, on_delete)
        self.subscriptions.append(subscription)
        return subscription

    def close(self):
        self.closed = True


@pytest.fixture
def sample_points():
    """Three points around San Francisco."""
    return [
        make_point("p1", -122.41, 37.77),
        make_point("p2", -122.45, 37.80),
        make_point("p3", -122.39, 37.75, description=""),
    ]


@pytest.fixture
def sample_polygons():
    return [make_polygon_record(gid) for gid in (1, 2, 42)]


@pytest.fixture
def fake_source_factory():
    """Build FakeDataSource instances with per-test behaviour."""
    return FakeDataSource


@pytest.fixture
def sample_config(tmp_path):
    """Environment and config file for SpeciesMapConfig tests."""
    return {
        'environ': {
            'MAPBOX_TOKEN': 'pk.test-token',
            'DATABASE_URL': 'postgresql://anon@localhost:5432/postgres',
        },
        'config_path': str(tmp_path / "species_map_config.json"),
    }


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
