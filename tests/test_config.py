"""
Tests for configuration loading and saving.

Tests cover:
- Built-in defaults
- Dictionary round trip and partial dictionaries
- Config path resolution through the environment override
- Loading missing and unreadable files
- Updating individual values and rejecting unusable ones
"""

import json

import pytest

from folderserver.config import (
    CONFIG_ENV_VAR,
    FolderServerConfig,
    get_config_path,
    load_config,
    save_config,
    update_config,
)


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "conf" / "config.json"
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    return path


class TestDefaults:

    def test_defaults(self):
        config = FolderServerConfig()
        assert config.server.port == 9010
        assert config.listing.default_limit == 50
        assert config.listing.max_limit == 100
        assert config.listing.default_sort == "name"
        assert config.paths.delimiter == "/"
        assert config.paths.case_sensitive is True
        assert config.store.default_path is None

    def test_default_policies(self):
        config = FolderServerConfig()
        assert config.paths.policy().normalize("a//b/") == "/a/b"
        assert config.listing.sort_options().descending_marker == "-"


class TestDictionaries:

    def test_round_trip(self):
        config = FolderServerConfig()
        config.server.server_name = "lab-folders"
        config.paths.case_sensitive = False

        restored = FolderServerConfig.from_dict(config.to_dict())

        assert restored == config

    def test_partial_dictionary(self):
        config = FolderServerConfig.from_dict({"listing": {"default_limit": 20}})
        assert config.listing.default_limit == 20
        assert config.listing.max_limit == 100
        assert config.server.port == 9010


class TestLoadAndSave:

    def test_env_override(self, config_file):
        assert get_config_path() == config_file

    def test_missing_file_gives_defaults(self, config_file):
        assert load_config() == FolderServerConfig()

    def test_save_then_load(self, config_file):
        config = FolderServerConfig()
        config.store.id_prefix = "https://repo.example.org/folders/"

        assert save_config(config) == config_file
        assert json.loads(config_file.read_text())["store"]["id_prefix"] == config.store.id_prefix
        assert load_config().store.id_prefix == config.store.id_prefix

    def test_bad_json_gives_defaults(self, config_file):
        config_file.parent.mkdir(parents=True)
        config_file.write_text("{not json")
        assert load_config() == FolderServerConfig()

    def test_unknown_key_gives_defaults(self, config_file):
        config_file.parent.mkdir(parents=True)
        config_file.write_text(json.dumps({"server": {"colour": "blue"}}))
        assert load_config() == FolderServerConfig()


class TestUpdate:

    def test_updates_only_given_values(self, config_file):
        update_config(server_port=8080)
        config = update_config(default_limit=25, case_sensitive=False)

        assert config.server.port == 8080
        assert config.listing.default_limit == 25
        assert config.paths.case_sensitive is False
        assert load_config() == config

    def test_store_path(self, config_file):
        update_config(store_default_path="/srv/folders")
        assert load_config().store.default_path == "/srv/folders"

    def test_rejects_unknown_default_sort(self, config_file):
        with pytest.raises(ValueError):
            update_config(default_sort="size")
        assert not config_file.exists()
