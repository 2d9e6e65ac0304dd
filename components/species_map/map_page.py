"""
Species map page.

Wires the view state controller to Streamlit: creates it once per session,
renders the map from its snapshots and feeds map interactions back into it.
"""

import atexit
from html import escape
from typing import Any, Dict, Optional
import logging

import streamlit as st
from streamlit_folium import st_folium

from .data_access import SpeciesDataSource
from .errors import ConfigError
from .map_config import SpeciesMapConfig, get_map_config
from .map_events import (
    MapEventInterpreter,
    MapEventKind,
    RETURNED_OBJECTS,
    dispatch_map_events,
)
from .map_renderer import SpeciesMapRenderer, points_to_dataframe, polygons_to_geodataframe
from .state import PageStatus, ViewSnapshot, ViewStateController

logger = logging.getLogger(__name__)

MAP_KEY = "species_map"


class SpeciesMapPage:
    """Main interface for the species map page."""

    def __init__(self, config: Optional[SpeciesMapConfig] = None):
        self.config = config or get_map_config()
        self.renderer = SpeciesMapRenderer(
            self.config.get_access_token(),
            self.config.get_map_settings(),
            self.config.get_style(),
        )

    def render(self) -> None:
        """Render the complete page."""
        controller = self._get_controller()
        snapshot = controller.snapshot()

        if snapshot.status == PageStatus.ERROR:
            self._render_error_panel(snapshot)
            return

        if snapshot.status == PageStatus.INITIALIZING:
            st.info("Loading map data...")
            return

        self._render_pagination_feedback(controller, snapshot)

        col_map, col_details = st.columns([3, 1])

        with col_map:
            map_state = self._render_map(snapshot)

        with col_details:
            self._render_selection_panel(controller, snapshot)
            self._render_summary(controller, snapshot)

        self._handle_map_state(controller, snapshot, map_state)

    def _get_controller(self) -> ViewStateController:
        """Create and initialize the controller once per session."""
        if 'species_map_controller' not in st.session_state:
            data_source = SpeciesDataSource.from_config(self.config)
            controller = ViewStateController(data_source, page_size=self.config.page_size)

            with st.spinner("Loading map data..."):
                teardown = controller.initialize()

            atexit.register(teardown)
            st.session_state.species_map_controller = controller
            st.session_state.species_map_teardown = teardown
            st.session_state.species_map_interpreter = MapEventInterpreter()
            st.session_state.species_map_view = {'center': None, 'zoom': None}

        return st.session_state.species_map_controller

    def _render_error_panel(self, snapshot: ViewSnapshot) -> None:
        st.markdown(f"""
        <div style="display: flex; align-items: center; justify-content: center; height: 70vh;
                    background-color: #fef2f2; border-radius: 8px;">
            <div style="color: #dc2626; font-size: 18px;">Error: {escape(snapshot.error_message or "")}</div>
        </div>
        """, unsafe_allow_html=True)

    def _render_pagination_feedback(self, controller: ViewStateController, snapshot: ViewSnapshot) -> None:
        if snapshot.pagination_error:
            col_msg, col_btn = st.columns([5, 1])
            with col_msg:
                st.warning(f"Could not load more polygon data: {snapshot.pagination_error}")
            with col_btn:
                if st.button("Dismiss", key="dismiss_pagination_error"):
                    controller.dismiss_pagination_error()
                    st.rerun()

    def _render_map(self, snapshot: ViewSnapshot) -> Optional[Dict[str, Any]]:
        view = st.session_state.species_map_view
        map_obj = self.renderer.build_map(snapshot, view['center'], view['zoom'])

        return st_folium(
            map_obj,
            key=MAP_KEY,
            width=None,
            height=self.config.get_map_settings()['height'],
            returned_objects=RETURNED_OBJECTS,
        )

    def _handle_map_state(self, controller: ViewStateController, snapshot: ViewSnapshot,
                          map_state: Optional[Dict[str, Any]]) -> None:
        if not map_state:
            return

        # Keep the user's viewport when the map is rebuilt
        center = map_state.get('center')
        if center and map_state.get('zoom') is not None:
            st.session_state.species_map_view = {
                'center': [center['lat'], center['lng']],
                'zoom': map_state['zoom'],
            }

        interpreter = st.session_state.species_map_interpreter
        events = interpreter.interpret(map_state, snapshot.points)
        if not events:
            return

        if any(event.kind == MapEventKind.VIEWPORT_SETTLED for event in events):
            with st.spinner("Loading more data..."):
                changed = dispatch_map_events(controller, events)
        else:
            changed = dispatch_map_events(controller, events)

        if changed:
            st.rerun()

    def _render_selection_panel(self, controller: ViewStateController, snapshot: ViewSnapshot) -> None:
        st.subheader("Selection")
        selection = snapshot.selection

        if selection.point is not None:
            point = selection.point
            st.markdown(f"**{point.name}**")
            st.write(point.description)
            if point.created_at:
                st.caption(f"Added: {point.created_at:%Y-%m-%d}")
            if st.button("Close", key="close_point_popup"):
                controller.close_point_popup()
                st.rerun()
        elif selection.polygon is not None:
            record = selection.polygon
            st.markdown(f"**{record.display_name}**")
            st.write(f"Presence: {record.presence}")
            if record.compiler:
                st.write(f"Compiler: {record.compiler}")
            if record.citation:
                st.caption(f"Source: {record.citation}")
            if st.button("Close", key="close_polygon_popup"):
                controller.close_polygon_popup()
                st.rerun()
        else:
            st.info("Click a marker or a range to see its details")

    def _render_summary(self, controller: ViewStateController, snapshot: ViewSnapshot) -> None:
        st.subheader("Loaded data")
        total = snapshot.total_count if snapshot.total_count is not None else "?"
        st.metric("Points", len(snapshot.points))
        st.metric("Species ranges", f"{len(snapshot.polygons)} / {total}")

        if snapshot.is_loading_more:
            st.caption("Loading more data...")

        with st.expander("Records", expanded=False):
            ranges = polygons_to_geodataframe(snapshot.polygons).drop(columns='geometry')
            st.dataframe(ranges, hide_index=True)
            st.dataframe(points_to_dataframe(snapshot.points), hide_index=True)


def reset_species_map_session() -> None:
    """End the current map session and cancel its subscription."""
    teardown = st.session_state.pop('species_map_teardown', None)
    if teardown is not None:
        teardown()
    controller = st.session_state.pop('species_map_controller', None)
    if controller is not None:
        controller.data_source.close()
    for key in ('species_map_interpreter', 'species_map_view'):
        st.session_state.pop(key, None)
    logger.info("Species map session reset")


def render_species_map_page(config: Optional[SpeciesMapConfig] = None) -> None:
    """
    Main function to render the species map page in Streamlit.

    Missing configuration stops the page before anything is drawn.
    """
    config = config or get_map_config()
    try:
        config.validate()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        st.error(f"Configuration error: {e}")
        st.stop()

    SpeciesMapPage(config).render()
