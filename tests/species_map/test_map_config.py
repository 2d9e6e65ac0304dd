"""
Tests for species map configuration.
"""

import json

import pytest

from components.species_map.errors import ConfigError
from components.species_map.map_config import SpeciesMapConfig


class TestSpeciesMapConfig:
    """Defaults, file overrides and required environment values."""

    def test_defaults_without_file(self, sample_config):
        config = SpeciesMapConfig(sample_config['config_path'], environ=sample_config['environ'])

        assert config.page_size == 100
        assert config.get_map_settings()['default_center'] == [37.8, -122.4]
        assert config.get_map_settings()['default_zoom'] == 11
        assert config.get_data_settings()['polygon_view'] == 'simplified_abalones'
        assert config.get_style()['polygon_fill_color'] == '#9333ea'

    def test_file_is_merged_over_defaults(self, sample_config):
        with open(sample_config['config_path'], 'w') as f:
            json.dump({'data': {'page_size': 25}, 'style': {'polygon_fill_opacity': 0.6}}, f)

        config = SpeciesMapConfig(sample_config['config_path'], environ=sample_config['environ'])

        assert config.page_size == 25
        assert config.get_data_settings()['points_table'] == 'points'
        assert config.get_style()['polygon_fill_opacity'] == 0.6
        assert config.get_style()['polygon_line_color'] == '#7e22ce'

    def test_invalid_file_falls_back_to_defaults(self, sample_config):
        with open(sample_config['config_path'], 'w') as f:
            f.write("{broken")

        config = SpeciesMapConfig(sample_config['config_path'], environ=sample_config['environ'])
        assert config.page_size == 100

    def test_config_path_from_environment(self, tmp_path, sample_config):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({'map_settings': {'default_zoom': 7}}))
        environ = dict(sample_config['environ'], SPECIES_MAP_CONFIG=str(path))

        config = SpeciesMapConfig(environ=environ)
        assert config.config_path == str(path)
        assert config.get_map_settings()['default_zoom'] == 7

    def test_defaults_are_not_shared(self, sample_config):
        config = SpeciesMapConfig(sample_config['config_path'], environ=sample_config['environ'])
        config.config['data']['page_size'] = 5
        assert config.default_config['data']['page_size'] == 100

    def test_secrets_from_environment(self, sample_config):
        config = SpeciesMapConfig(sample_config['config_path'], environ=sample_config['environ'])

        assert config.get_access_token() == 'pk.test-token'
        assert config.get_database_url().startswith('postgresql://')
        config.validate()

    @pytest.mark.parametrize("missing", ['MAPBOX_TOKEN', 'DATABASE_URL'])
    def test_missing_secret_is_fatal(self, sample_config, missing):
        environ = dict(sample_config['environ'])
        environ[missing] = "  "
        config = SpeciesMapConfig(sample_config['config_path'], environ=environ)

        with pytest.raises(ConfigError, match=missing):
            config.validate()

    def test_non_positive_page_size(self, sample_config):
        config = SpeciesMapConfig(sample_config['config_path'], environ=sample_config['environ'])
        config.config['data']['page_size'] = 0

        with pytest.raises(ConfigError):
            _ = config.page_size
