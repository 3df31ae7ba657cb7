"""Settings and manifest loading with Pydantic validation."""

import json
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from .models import DownloadOptions, RootManifest

DEFAULT_SETTINGS_FILE = "pluginsync.yaml"


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""


def load_yaml(path: Path) -> dict:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML contents.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
            if data is None:
                return {}
            if not isinstance(data, dict):
                raise ConfigError(f"Expected a mapping at the top of {path}")
            return data
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def load_json(path: Path) -> dict:
    """Load a JSON object from disk.

    Raises:
        ConfigError: If the file is missing, invalid, or not an object.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(f"Manifest not found: {path}") from None
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a JSON object in {path}")
    return data


def load_root_manifest(path: Path) -> RootManifest:
    """Load the plugin section of a root ``package.json``.

    Raises:
        ConfigError: If the file is invalid or has no ``theiaPlugins`` property.
    """
    data = load_json(path)
    try:
        manifest = RootManifest.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Manifest validation failed for {path}: {e}") from e
    if manifest.plugins is None:
        raise ConfigError(f"Missing mandatory 'theiaPlugins' property in {path}")
    return manifest


def load_download_options(
    path: Optional[Path] = None, **overrides: Any
) -> DownloadOptions:
    """Build download options from an optional YAML file plus overrides.

    Overrides set to ``None`` are ignored so unset CLI flags keep the
    value from the settings file (or the model default).
    """
    data: dict = {}
    if path is not None:
        data = load_yaml(path)
    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return DownloadOptions(**data)
    except ValidationError as e:
        source = path or "command line"
        raise ConfigError(f"Invalid download options from {source}: {e}") from e
