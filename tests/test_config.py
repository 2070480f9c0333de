"""
Tests for the configuration file.
"""

import json

import pytest

from tomes import config as config_module
from tomes.config import TomesConfig, load_config, save_config, update_config


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "tomes" / "config.json"


class TestLoadConfig:
    """Test reading the configuration file."""

    def test_missing_file_gives_defaults(self, config_path):
        config = load_config(config_path)

        assert config.server.host == "0.0.0.0"
        assert config.server.port is None
        assert config.server.session_secret is None
        assert config.library.default_path is None

    def test_invalid_json_gives_defaults(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text("{not json")

        assert load_config(config_path) == TomesConfig()

    def test_partial_file(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({"server": {"port": 8080}}))

        config = load_config(config_path)

        assert config.server.port == 8080
        assert config.server.host == "0.0.0.0"

    def test_unknown_keys_give_defaults(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({"server": {"colour": "blue"}}))

        assert load_config(config_path) == TomesConfig()


class TestSaveConfig:
    """Test writing the configuration file."""

    def test_save_then_load(self, config_path):
        config = TomesConfig()
        config.library.default_path = "/srv/books"
        config.server.session_secret = "s3cret"

        written = save_config(config, config_path)

        assert written == config_path
        assert load_config(config_path) == config

    def test_update_only_changes_given_values(self, config_path):
        update_config(server_port=9000, config_path=config_path)
        config = update_config(library_default_path="/srv/books", config_path=config_path)

        assert config.server.port == 9000
        assert config.library.default_path == "/srv/books"
        assert load_config(config_path).server.port == 9000


class TestConfigPath:
    """Test locating the configuration file."""

    def test_prefers_xdg_directory(self, tmp_path, monkeypatch):
        (tmp_path / ".config").mkdir()
        monkeypatch.setattr(config_module.Path, "home", lambda: tmp_path)

        assert config_module.get_config_path() == tmp_path / ".config" / "tomes" / "config.json"

    def test_falls_back_to_dot_directory(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config_module.Path, "home", lambda: tmp_path)

        assert config_module.get_config_path() == tmp_path / ".tomes" / "config.json"
