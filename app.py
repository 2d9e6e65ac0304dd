"""
Species Presence Map - Streamlit GUI Application

This module provides the Streamlit-based web interface showing map points
and species presence ranges stored in PostGIS.

Run with:
    streamlit run app.py
"""

import logging

import streamlit as st

from components.species_map import (
    ConfigError,
    get_map_config,
    render_species_map_page,
    reset_species_map_session,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Configure Streamlit page
st.set_page_config(
    page_title="Species Presence Map",
    page_icon="🗺️",
    layout="wide",
    initial_sidebar_state="collapsed"
)


def main():
    """Main Streamlit application entry point"""
    config = get_map_config()

    # Missing token or database URL is fatal; nothing else is drawn
    try:
        config.validate()
    except ConfigError as e:
        logger.error(f"Startup configuration error: {e}")
        st.error(f"Configuration error: {e}")
        st.stop()

    with st.sidebar:
        st.markdown("### Species Presence Map")
        st.caption("Points update live. Pan or zoom the map to load more species ranges.")
        if st.button("Reload data", key="reload_species_map"):
            reset_species_map_session()
            st.rerun()

    render_species_map_page(config)


if __name__ == "__main__":
    main()
