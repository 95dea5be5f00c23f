"""Tests for apihooks.config -- file loading and precedence resolution."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import patch

import httpx
import pytest

from apihooks.config import (
    _parse_content,
    find_config_file,
    load_config_source,
    resolve_configuration,
)
from apihooks.exceptions import ConfigError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_json(path: Path, data: Any) -> None:
    """Write a dict as JSON to *path*, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


# ---------------------------------------------------------------------------
# Source loading
# ---------------------------------------------------------------------------


class TestLoadConfigSource:
    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "apihooks.yml"
        path.write_text("options:\n  hookfiles: ./hooks/*.py\n  sandbox: true\n", encoding="utf-8")

        data = load_config_source(str(path))

        assert data == {"options": {"hookfiles": "./hooks/*.py", "sandbox": True}}

    def test_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "apihooks.json"
        _write_json(path, {"options": {"language": "ruby"}})

        assert load_config_source(str(path)) == {"options": {"language": "ruby"}}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config_source(str(tmp_path / "nope.yml"))

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config_source(str(path))

    def test_url_source(self) -> None:
        response = httpx.Response(
            200,
            json={"options": {"sandbox": True}},
            request=httpx.Request("GET", "https://example.com/apihooks.json"),
        )
        with patch("apihooks.config.httpx.get", return_value=response) as mock_get:
            data = load_config_source("https://example.com/apihooks.json")

        mock_get.assert_called_once()
        assert data == {"options": {"sandbox": True}}

    def test_url_http_error(self) -> None:
        response = httpx.Response(
            404, request=httpx.Request("GET", "https://example.com/missing.yml")
        )
        with patch("apihooks.config.httpx.get", return_value=response):
            with pytest.raises(ConfigError, match="HTTP 404"):
                load_config_source("https://example.com/missing.yml")

    def test_url_connection_error(self) -> None:
        error = httpx.ConnectError("refused")
        with patch("apihooks.config.httpx.get", side_effect=error):
            with pytest.raises(ConfigError, match="Failed to fetch"):
                load_config_source("https://example.com/apihooks.yml")


class TestParseContent:
    def test_empty_content(self) -> None:
        assert _parse_content("   \n") == {}

    def test_null_document(self) -> None:
        assert _parse_content("~\n") == {}

    def test_non_object_rejected(self) -> None:
        with pytest.raises(ConfigError, match="must be an object"):
            _parse_content("- a\n- b\n", origin="list.yml")


class TestFindConfigFile:
    def test_none_when_absent(self, tmp_path: Path) -> None:
        assert find_config_file(tmp_path) is None

    def test_yml_preferred(self, tmp_path: Path) -> None:
        (tmp_path / "apihooks.json").write_text("{}", encoding="utf-8")
        (tmp_path / "apihooks.yml").write_text("{}", encoding="utf-8")

        assert find_config_file(tmp_path) == tmp_path / "apihooks.yml"


# ---------------------------------------------------------------------------
# Precedence
# ---------------------------------------------------------------------------


class TestResolveConfiguration:
    def test_defaults(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)

        config = resolve_configuration()

        assert config.options.hookfiles is None
        assert config.options.language == "python"
        assert config.options.sandbox is False
        assert config.hooks_data == {}

    def test_discovers_file_in_working_directory(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (tmp_path / "apihooks.yml").write_text("options:\n  sandbox: true\n", encoding="utf-8")
        monkeypatch.chdir(tmp_path)

        assert resolve_configuration().options.sandbox is True

    def test_hooks_data_alias(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        _write_json(path, {"hooksData": {"inline.py": "log('x')"}})

        config = resolve_configuration(config_source=str(path))

        assert config.hooks_data == {"inline.py": "log('x')"}

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "config.yml"
        path.write_text(
            "options:\n  hookfiles: file.py\n  language: python\n  sandbox: false\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("APIHOOKS_HOOKFILES", "a.py, b/*.py")
        monkeypatch.setenv("APIHOOKS_LANGUAGE", "Ruby")
        monkeypatch.setenv("APIHOOKS_SANDBOX", "yes")

        config = resolve_configuration(config_source=str(path))

        assert config.options.hookfiles == ["a.py", "b/*.py"]
        assert config.options.language == "ruby"
        assert config.options.sandbox is True

    def test_cli_overrides_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("APIHOOKS_HOOKFILES", "env.py")
        monkeypatch.setenv("APIHOOKS_SANDBOX", "1")

        config = resolve_configuration(cli_hookfiles=["cli.py"], cli_sandbox=False)

        assert config.options.hookfiles == ["cli.py"]
        assert config.options.sandbox is False

    def test_file_keeps_worker_settings(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yml"
        path.write_text(
            "options:\n"
            "  language: go\n"
            "  worker:\n"
            "    command: apihooks-go --verbose\n"
            "    request_timeout: 1.5\n",
            encoding="utf-8",
        )

        config = resolve_configuration(config_source=str(path), cli_sandbox=True)

        assert config.options.worker.command == ["apihooks-go", "--verbose"]
        assert config.options.worker.request_timeout == 1.5
        assert config.options.sandbox is True

    def test_invalid_env_boolean(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("APIHOOKS_SANDBOX", "maybe")

        with pytest.raises(ConfigError, match="APIHOOKS_SANDBOX"):
            resolve_configuration()

    def test_invalid_values_raise_config_error(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yml"
        path.write_text("options:\n  worker:\n    request_timeout: -1\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="Invalid run configuration"):
            resolve_configuration(config_source=str(path))
