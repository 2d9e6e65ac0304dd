"""
Tests for turning st_folium results into view state operations.
"""

import pytest

from components.species_map.map_events import (
    MapEvent,
    MapEventInterpreter,
    MapEventKind,
    dispatch_map_events,
    find_point_at,
)
from components.species_map.state import PaginationStatus, ViewStateController


BOUNDS = {'_southWest': {'lat': 37.7, 'lng': -122.5}, '_northEast': {'lat': 37.9, 'lng': -122.3}}
MOVED_BOUNDS = {'_southWest': {'lat': 37.6, 'lng': -122.6}, '_northEast': {'lat': 37.8, 'lng': -122.4}}


def map_state(**overrides):
    state = {
        'last_clicked': None,
        'last_object_clicked': None,
        'last_active_drawing': None,
        'bounds': BOUNDS,
        'zoom': 11,
        'center': {'lat': 37.8, 'lng': -122.4},
    }
    state.update(overrides)
    return state


def polygon_feature(gid):
    return {'type': 'Feature', 'properties': {'gid': gid, 'sci_name': 'x'}, 'geometry': None}


@pytest.fixture
def primed_interpreter():
    interpreter = MapEventInterpreter()
    assert interpreter.interpret(map_state(), []) == []
    return interpreter


class TestFindPointAt:

    def test_exact_match(self, sample_points):
        point = find_point_at(sample_points, {'lat': 37.80, 'lng': -122.45})
        assert point.id == "p2"

    def test_no_match(self, sample_points):
        assert find_point_at(sample_points, {'lat': 0, 'lng': 0}) is None

    def test_missing_location(self, sample_points):
        assert find_point_at(sample_points, None) is None
        assert find_point_at(sample_points, {'lat': None, 'lng': 1}) is None


class TestMapEventInterpreter:
    """Diffing consecutive map states."""

    def test_first_state_only_primes(self):
        interpreter = MapEventInterpreter()
        assert interpreter.interpret(map_state(last_clicked={'lat': 1, 'lng': 2}), []) == []

    def test_no_state(self):
        assert MapEventInterpreter().interpret(None, []) == []

    def test_unchanged_state_has_no_events(self, primed_interpreter):
        assert primed_interpreter.interpret(map_state(), []) == []

    def test_background_click(self, primed_interpreter):
        events = primed_interpreter.interpret(map_state(last_clicked={'lat': 37.75, 'lng': -122.42}), [])
        assert events == [MapEvent(MapEventKind.BACKGROUND_CLICKED)]

    def test_marker_click_is_not_background_click(self, primed_interpreter, sample_points):
        state = map_state(
            last_object_clicked={'lat': 37.77, 'lng': -122.41},
            last_clicked={'lat': 37.77, 'lng': -122.41},
        )
        events = primed_interpreter.interpret(state, sample_points)
        assert events == [MapEvent(MapEventKind.POINT_CLICKED, "p1")]

    def test_polygon_click(self, primed_interpreter):
        state = map_state(
            last_active_drawing=polygon_feature(42),
            last_object_clicked={'lat': 37.0, 'lng': -122.0},
            last_clicked={'lat': 37.0, 'lng': -122.0},
        )
        assert primed_interpreter.interpret(state, []) == [MapEvent(MapEventKind.POLYGON_CLICKED, 42)]

    def test_same_polygon_clicked_again(self, primed_interpreter):
        primed_interpreter.interpret(map_state(
            last_active_drawing=polygon_feature(42),
            last_object_clicked={'lat': 37.0, 'lng': -122.0},
        ), [])

        events = primed_interpreter.interpret(map_state(
            last_active_drawing=polygon_feature(42),
            last_object_clicked={'lat': 37.1, 'lng': -122.1},
        ), [])
        assert events == [MapEvent(MapEventKind.POLYGON_CLICKED, 42)]

    def test_viewport_change(self, primed_interpreter):
        events = primed_interpreter.interpret(map_state(bounds=MOVED_BOUNDS), [])
        assert events == [MapEvent(MapEventKind.VIEWPORT_SETTLED, 11)]

    def test_zoom_change(self, primed_interpreter):
        events = primed_interpreter.interpret(map_state(zoom=12), [])
        assert events == [MapEvent(MapEventKind.VIEWPORT_SETTLED, 12)]

    def test_click_and_move_together(self, primed_interpreter):
        events = primed_interpreter.interpret(
            map_state(bounds=MOVED_BOUNDS, last_clicked={'lat': 1, 'lng': 1}), [])
        assert [event.kind for event in events] == [
            MapEventKind.BACKGROUND_CLICKED,
            MapEventKind.VIEWPORT_SETTLED,
        ]


class TestDispatchMapEvents:
    """Events applied to a ViewStateController."""

    def _controller(self, fake_source_factory, sample_points, total=250):
        source = fake_source_factory(points=sample_points, total_polygons=total)
        controller = ViewStateController(source)
        controller.initialize()
        return controller, source

    def test_viewport_settled_loads_next_page(self, fake_source_factory, sample_points):
        controller, source = self._controller(fake_source_factory, sample_points)

        changed = dispatch_map_events(controller, [MapEvent(MapEventKind.VIEWPORT_SETTLED, 12)])

        assert changed is True
        assert len(controller.polygons) == 200
        assert source.page_calls[-1] == (100, 100)

    def test_viewport_settled_when_exhausted(self, fake_source_factory, sample_points):
        controller, source = self._controller(fake_source_factory, sample_points, total=50)
        assert controller.pagination_status == PaginationStatus.EXHAUSTED

        changed = dispatch_map_events(controller, [MapEvent(MapEventKind.VIEWPORT_SETTLED, 12)])
        assert changed is False
        assert len(source.page_calls) == 1

    def test_point_then_polygon_selection(self, fake_source_factory, sample_points):
        controller, _ = self._controller(fake_source_factory, sample_points)

        dispatch_map_events(controller, [MapEvent(MapEventKind.POINT_CLICKED, "p1")])
        dispatch_map_events(controller, [MapEvent(MapEventKind.POLYGON_CLICKED, 42)])

        assert controller.selection.kind == "polygon"
        assert controller.selection.polygon.gid == 42

    def test_background_click_clears(self, fake_source_factory, sample_points):
        controller, _ = self._controller(fake_source_factory, sample_points)
        controller.select_point_by_id("p2")

        dispatch_map_events(controller, [MapEvent(MapEventKind.BACKGROUND_CLICKED)])
        assert controller.selection.is_empty

    def test_click_on_unloaded_polygon(self, fake_source_factory, sample_points):
        controller, _ = self._controller(fake_source_factory, sample_points)

        changed = dispatch_map_events(controller, [MapEvent(MapEventKind.POLYGON_CLICKED, 240)])
        assert changed is False
        assert controller.selection.is_empty
