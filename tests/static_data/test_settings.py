"""Tests for settings loading and environment overrides."""

import json
from pathlib import Path

import pytest

from ProdToolkit.StaticData.errors import ConfigurationError
from ProdToolkit.StaticData.settings import (
    DEFAULT_CONSTANT_NAMES,
    build_settings,
    get_settings,
    invalidate_settings_cache,
    load_settings,
)


class TestDefaults:
    def test_default_sources(self):
        settings = build_settings({})

        assert settings.sources.constant_names == DEFAULT_CONSTANT_NAMES
        assert settings.sources.versions_url.endswith("/api/versions.json")
        assert "{version}" in settings.sources.archive_url_template
        assert settings.sync.language == "en_US"
        assert settings.sync.confirm_timeout_sec == 10.0
        assert settings.sync.confirm_default is True
        assert settings.sync.max_version_regressions == 5

    def test_get_settings_is_memoised(self):
        first = get_settings()
        assert get_settings() is first
        invalidate_settings_cache()
        assert get_settings() is not first

    def test_config_hash_is_stable(self):
        assert build_settings({}).config_hash() == build_settings({}).config_hash()
        assert build_settings({}).config_hash() != build_settings(
            {"sync": {"language": "de_DE"}}
        ).config_hash()


class TestValidation:
    @pytest.mark.parametrize(
        "raw",
        [
            {"http": {"max_retries": 0}},
            {"http": {"unknown": 1}},
            {"sync": {"language": "english"}},
            {"sources": {"constant_names": []}},
            {"sources": {"constant_names": ["queues", "queues"]}},
            {"sources": {"constant_names": ["../etc"]}},
            {"logging": {"level": "LOUD"}},
        ],
    )
    def test_invalid_values_raise_configuration_error(self, raw):
        with pytest.raises(ConfigurationError, match="Invalid settings"):
            build_settings(raw)

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigurationError):
            build_settings(["not", "a", "mapping"])

    def test_destination_is_made_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        settings = build_settings({"sync": {"destination_root": "frontend"}})
        assert settings.sync.destination_root == (tmp_path / "frontend").resolve()


class TestFilesAndEnvironment:
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("sync:\n  language: fr_FR\nhttp:\n  max_retries: 7\n")

        settings = load_settings(path)

        assert settings.sync.language == "fr_FR"
        assert settings.http.max_retries == 7

    def test_json_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"sync": {"image_workers": 2}}))
        assert load_settings(path).sync.image_workers == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(tmp_path / "absent.yaml")

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("sync: [unclosed")
        with pytest.raises(ConfigurationError, match="Unable to parse"):
            load_settings(path)

    def test_empty_file_means_defaults(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("")
        assert load_settings(path).sync.language == "en_US"

    def test_environment_wins_over_file(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("sync:\n  language: fr_FR\n  image_workers: 3\n")
        monkeypatch.setenv("STATICDATA_SYNC__LANGUAGE", "de_DE")

        settings = load_settings(path)

        assert settings.sync.language == "de_DE"
        assert settings.sync.image_workers == 3

    def test_environment_destination(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STATICDATA_SYNC__DESTINATION_ROOT", str(tmp_path / "env-root"))
        assert build_settings({}).sync.destination_root == Path(tmp_path / "env-root").resolve()
