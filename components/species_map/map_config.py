"""
Configuration management for the species map.

Display, data and style settings come from built-in defaults merged with an
optional JSON file. Secrets (map tile token, database URL) are read from the
environment only.
"""

import copy
import json
import os
from typing import Dict, Any, Optional
import logging

from .errors import ConfigError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_ENV = "MAPBOX_TOKEN"
DATABASE_URL_ENV = "DATABASE_URL"
CONFIG_PATH_ENV = "SPECIES_MAP_CONFIG"


class SpeciesMapConfig:
    """Manages species map configuration settings."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        self.environ = environ if environ is not None else os.environ
        self.config_path = config_path or self.environ.get(CONFIG_PATH_ENV) or "species_map_config.json"
        self.default_config = self._get_default_config()
        self.config = self._load_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default species map configuration."""
        return {
            "map_settings": {
                "default_center": [37.8, -122.4],
                "default_zoom": 11,
                "map_style": "mapbox/streets-v12",
                "height": 700,
            },
            "data": {
                "page_size": 100,
                "points_table": "points",
                "polygon_view": "simplified_abalones",
                "notify_channel": "points_changes",
                "listen_poll_seconds": 1.0,
            },
            "style": {
                "polygon_fill_color": "#9333ea",
                "polygon_fill_opacity": 0.4,
                "polygon_line_color": "#7e22ce",
                "polygon_line_width": 2,
                "marker_color": "blue",
                "marker_icon": "map-marker",
            },
        }

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file or use defaults."""
        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r') as f:
                    config = json.load(f)
                logger.info(f"Loaded species map configuration from {self.config_path}")
                return self._merge_configs(self.default_config, config)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load config from {self.config_path}: {e}")
                logger.info("Using default configuration")
                return copy.deepcopy(self.default_config)
        else:
            logger.info(f"Config file {self.config_path} not found, using defaults")
            return copy.deepcopy(self.default_config)

    def _merge_configs(self, default: Dict, user: Dict) -> Dict:
        """Recursively merge user config with defaults."""
        merged = copy.deepcopy(default)

        for key, value in user.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = self._merge_configs(merged[key], value)
            else:
                merged[key] = value

        return merged

    def get_map_settings(self) -> Dict[str, Any]:
        """Get map display settings."""
        return self.config["map_settings"]

    def get_data_settings(self) -> Dict[str, Any]:
        """Get table names, channel and paging settings."""
        return self.config["data"]

    def get_style(self) -> Dict[str, Any]:
        """Get layer and marker styling."""
        return self.config["style"]

    @property
    def page_size(self) -> int:
        page_size = int(self.config["data"]["page_size"])
        if page_size <= 0:
            raise ConfigError(f"page_size must be positive, got {page_size}")
        return page_size

    def _require_env(self, name: str, description: str) -> str:
        value = (self.environ.get(name) or "").strip()
        if not value:
            raise ConfigError(f"Missing {description}: set the {name} environment variable")
        return value

    def get_access_token(self) -> str:
        """Map tile access token; missing token is fatal."""
        return self._require_env(ACCESS_TOKEN_ENV, "Mapbox token")

    def get_database_url(self) -> str:
        """Connection string of the backing PostGIS database."""
        return self._require_env(DATABASE_URL_ENV, "database connection string")

    def validate(self) -> None:
        """Fail fast on missing startup configuration."""
        self.get_access_token()
        self.get_database_url()
        _ = self.page_size


# Global configuration instance
_map_config = None


def get_map_config(config_path: Optional[str] = None) -> SpeciesMapConfig:
    """Get global species map configuration instance."""
    global _map_config
    if _map_config is None:
        _map_config = SpeciesMapConfig(config_path)
    return _map_config
