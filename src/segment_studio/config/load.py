"""Layered YAML configuration for Segment Studio.

A configuration is built from three layers, later layers winning:

1. ``configs/{env}.yaml`` (or ``.yml``) from the config directory.
2. The ``overrides`` mapping passed by the caller (CLI flags, tests).
3. ``SEGMENT_STUDIO_*`` environment variables, where ``__`` separates nesting
   levels: ``SEGMENT_STUDIO_TRANSCRIPTION__PROVIDER=cloud``.

The merged result is validated against ``schema.json``.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from copy import deepcopy
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError

from ..utils.logging import get_logger

LOGGER = get_logger(__name__)

__all__ = ["ConfigError", "load_config"]

PROJECT_ROOT = Path(__file__).resolve().parents[3]
CONFIG_DIR = PROJECT_ROOT / "configs"
SCHEMA_PATH = Path(__file__).with_name("schema.json")
ENV_PREFIX = "SEGMENT_STUDIO_"
ENV_SEPARATOR = "__"


class ConfigError(RuntimeError):
    """Raised when configuration loading or validation fails."""


def load_config(
    env: str = "dev",
    *,
    config_dir: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    validate: bool = True,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the merged configuration for ``env``.

    ``environ`` defaults to :data:`os.environ`. A missing environment file
    raises :class:`FileNotFoundError`; unparseable or invalid configuration
    raises :class:`ConfigError`.
    """

    source = _find_config_file(Path(config_dir) if config_dir is not None else CONFIG_DIR, env)
    config = _read_yaml(source)
    LOGGER.debug("Loaded configuration from %s.", source)

    if overrides:
        config = _merge(config, overrides)

    env_layer = _env_layer(os.environ if environ is None else environ)
    if env_layer:
        LOGGER.debug("Applying environment overrides for: %s.", ", ".join(sorted(env_layer)))
        config = _merge(config, env_layer)

    if validate:
        _validate(config)
    return config


def _find_config_file(base_dir: Path, env: str) -> Path:
    candidates = [base_dir / f"{env}.yaml", base_dir / f"{env}.yml"]
    found = next((candidate for candidate in candidates if candidate.is_file()), None)
    if found is None:
        raise FileNotFoundError(f"No configuration for environment '{env}' in {base_dir}.")
    return found


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Unable to parse YAML configuration {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping in {path}.")
    return data


def _merge(base: Mapping[str, Any], layer: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``layer`` merged in; nested mappings merge key by key."""
    merged = deepcopy(dict(base))
    for key, value in layer.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = _merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key in sorted(environ):
        if not key.startswith(ENV_PREFIX):
            continue
        tokens = [
            token.strip().lower().replace("-", "_")
            for token in key[len(ENV_PREFIX) :].split(ENV_SEPARATOR)
            if token.strip()
        ]
        if not tokens:
            continue
        node = layer
        for token in tokens[:-1]:
            child = node.get(token)
            if not isinstance(child, dict):
                child = node[token] = {}
            node = child
        node[tokens[-1]] = _parse_env_value(environ[key])
    return layer


def _parse_env_value(raw: str) -> Any:
    # YAML scalars give "10" -> 10, "true" -> True, "null" -> None.
    if not raw:
        return ""
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


@lru_cache(maxsize=1)
def _validator() -> Draft7Validator:
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    if not isinstance(schema, dict):
        raise ConfigError("Configuration schema must be a JSON object.")
    return Draft7Validator(schema)


def _validate(config: Mapping[str, Any]) -> None:
    errors: list[ValidationError] = sorted(
        _validator().iter_errors(config), key=lambda err: [str(piece) for piece in err.path]
    )
    if not errors:
        return
    lines = [
        f"- {'.'.join(str(piece) for piece in error.path) or '<root>'}: {error.message}"
        for error in errors
    ]
    raise ConfigError("Configuration validation failed:\n" + "\n".join(lines)) from errors[0]
