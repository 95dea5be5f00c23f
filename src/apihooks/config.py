"""Run configuration loading and precedence resolution.

Configuration comes from four layers, highest precedence first:

1. CLI flags (``--hookfiles``, ``--language``, ``--sandbox``)
2. Environment variables (``APIHOOKS_HOOKFILES``, ``APIHOOKS_LANGUAGE``,
   ``APIHOOKS_SANDBOX``)
3. A configuration file: an explicit path or URL, otherwise the first of
   ``apihooks.yml``, ``apihooks.yaml``, ``apihooks.json`` found in the
   working directory
4. Model defaults

Configuration files are JSON or YAML objects shaped like
:class:`~apihooks.models.RunConfiguration`::

    options:
      hookfiles: ./hooks/*.py
      sandbox: true
    hooksData: {}
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

import httpx
import yaml
from pydantic import ValidationError

from apihooks.exceptions import ConfigError
from apihooks.models import RunConfiguration

CONFIG_FILENAMES = ("apihooks.yml", "apihooks.yaml", "apihooks.json")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def load_config_source(source: str) -> dict[str, Any]:
    """Load a configuration document from a URL or a local file.

    Args:
        source: An ``http(s)://`` URL or a file path.

    Returns:
        The parsed document.

    Raises:
        ConfigError: If the source cannot be read or parsed.
    """
    if source.startswith(("http://", "https://")):
        return _load_from_url(source)
    return _load_from_file(source)


def _load_from_url(url: str) -> dict[str, Any]:
    try:
        response = httpx.get(url, timeout=30.0, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise ConfigError(
            f"HTTP {exc.response.status_code} fetching configuration from {url}"
        ) from exc
    except httpx.RequestError as exc:
        raise ConfigError(f"Failed to fetch configuration from {url}: {exc}") from exc

    content_type = response.headers.get("content-type", "")
    hint = "json" if "json" in content_type else ""
    return _parse_content(response.text, hint=hint, origin=url)


def _load_from_file(path: str) -> dict[str, Any]:
    file_path = Path(path)
    if not file_path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")
    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read configuration file {path}: {exc}") from exc

    hint = "json" if file_path.suffix.lower() == ".json" else ""
    return _parse_content(content, hint=hint, origin=path)


def _parse_content(content: str, hint: str = "", origin: str = "") -> dict[str, Any]:
    """Parse *content* as JSON when hinted, otherwise as YAML (a JSON superset)."""
    if not content.strip():
        return {}
    try:
        if hint == "json":
            result = json.loads(content)
        else:
            result = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Invalid configuration in {origin}: {exc}") from exc

    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ConfigError(
            f"Configuration in {origin} must be an object (got {type(result).__name__})"
        )
    return result


def find_config_file(directory: Optional[Path] = None) -> Optional[Path]:
    """Return the first default configuration file present in *directory*."""
    base = directory or Path.cwd()
    for name in CONFIG_FILENAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def _env_bool(name: str) -> Optional[bool]:
    raw = os.environ.get(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"Invalid boolean in {name}: {raw!r}")


def _split_patterns(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def resolve_configuration(
    config_source: Optional[str] = None,
    cli_hookfiles: Optional[list[str]] = None,
    cli_language: Optional[str] = None,
    cli_sandbox: Optional[bool] = None,
) -> RunConfiguration:
    """Resolve the run configuration with the full precedence chain.

    Args:
        config_source: Explicit configuration path or URL. When ``None`` the
            working directory is searched for a default file.
        cli_hookfiles: Hook file patterns given on the command line.
        cli_language: Hook language given on the command line.
        cli_sandbox: Sandbox flag given on the command line.

    Returns:
        The validated :class:`~apihooks.models.RunConfiguration`.

    Raises:
        ConfigError: If a layer cannot be read or the result fails validation.
    """
    data: dict[str, Any] = {}
    if config_source is not None:
        data = load_config_source(config_source)
    else:
        found = find_config_file()
        if found is not None:
            data = load_config_source(str(found))

    options = dict(data.get("options") or {})

    env_hookfiles = os.environ.get("APIHOOKS_HOOKFILES")
    if env_hookfiles:
        options["hookfiles"] = _split_patterns(env_hookfiles)
    env_language = os.environ.get("APIHOOKS_LANGUAGE")
    if env_language:
        options["language"] = env_language
    env_sandbox = _env_bool("APIHOOKS_SANDBOX")
    if env_sandbox is not None:
        options["sandbox"] = env_sandbox

    if cli_hookfiles:
        options["hookfiles"] = list(cli_hookfiles)
    if cli_language is not None:
        options["language"] = cli_language
    if cli_sandbox is not None:
        options["sandbox"] = cli_sandbox

    data = {**data, "options": options}
    try:
        return RunConfiguration.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid run configuration: {exc}") from exc
