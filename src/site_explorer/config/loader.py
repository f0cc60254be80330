"""
Layered configuration loading.

Values are resolved from three layers, later layers winning:

1. Model defaults (settings.py)
2. An optional YAML file
3. Environment variables named SITE_EXPLORER__{SECTION}__{KEY},
   e.g. SITE_EXPLORER__EXPLORER__MAX_PAGES=20
"""

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from site_explorer.config.settings import Settings
from site_explorer.core.exceptions import ConfigurationError

ENV_PREFIX = "SITE_EXPLORER"

_TRUE_WORDS = frozenset({"true", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "no", "off"})
_NULL_WORDS = frozenset({"none", "null", ""})

CONFIG_SEARCH_PATHS = (
    Path("config.yaml"),
    Path("config") / "config.yaml",
    Path.home() / ".site_explorer" / "config.yaml",
)


def merge_layers(*layers: Mapping[str, Any]) -> dict[str, Any]:
    """Merge nested mappings left to right; nested sections merge key by key."""
    merged: dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            current = merged.get(key)
            if isinstance(current, dict) and isinstance(value, Mapping):
                merged[key] = merge_layers(current, value)
            else:
                merged[key] = value
    return merged


def coerce_env_value(raw: str) -> Any:
    """
    Turn an environment string into a config value.

    Recognizes booleans, null, ints and floats. A comma separated value
    becomes a list, so list settings such as volatile_query_params can
    be overridden too.
    """
    word = raw.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    if word in _NULL_WORDS:
        return None

    for number_type in (int, float):
        try:
            return number_type(raw)
        except ValueError:
            continue

    if "," in raw:
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw


def env_layer(environ: Mapping[str, str] | None = None, prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """Collect SECTION__KEY overrides from the environment into a nested dict."""
    environ = os.environ if environ is None else environ
    marker = f"{prefix}__"
    layer: dict[str, Any] = {}

    for name, raw in environ.items():
        if not name.startswith(marker):
            continue
        *sections, leaf = name[len(marker):].lower().split("__")
        if not sections:
            continue
        target = layer
        for section in sections:
            target = target.setdefault(section, {})
        target[leaf] = coerce_env_value(raw)

    return layer


def yaml_layer(path: Path) -> dict[str, Any]:
    """
    Read a YAML config file. An empty file is an empty layer.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigurationError: If the file is not valid YAML or not a mapping
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    try:
        content = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in configuration file: {e}", details={"path": str(path)}) from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(
            f"Configuration file must contain a mapping, got: {type(content).__name__}",
            details={"path": str(path)},
        )
    return content


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = ENV_PREFIX,
) -> Settings:
    """
    Build validated Settings from defaults, an optional YAML file, and the environment.

    Raises:
        FileNotFoundError: If config_path is given but missing
        ConfigurationError: If the file is malformed or a value is out of range
    """
    file_values = yaml_layer(Path(config_path)) if config_path is not None else {}
    values = merge_layers(file_values, env_layer(prefix=env_prefix))

    try:
        return Settings.model_validate(values)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration: {e.error_count()} error(s)",
            details={"fields": [".".join(str(p) for p in err["loc"]) for err in e.errors()]},
        ) from e


def get_default_config_path() -> Path | None:
    """First existing config.yaml in the working directory, ./config/, or ~/.site_explorer/."""
    for candidate in CONFIG_SEARCH_PATHS:
        path = candidate if candidate.is_absolute() else Path.cwd() / candidate
        if path.exists():
            return path
    return None
