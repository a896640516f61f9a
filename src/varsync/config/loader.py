"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from varsync.config.schema import Config

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "varsync.yaml"


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


# Field name → environment variable.
_CONTEXT_ENV_MAP: dict[str, str] = {
    "project": "VARSYNC_PROJECT",
    "environment": "VARSYNC_ENVIRONMENT",
    "user": "VARSYNC_USER",
}


def _resolve_context(raw_context: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve context fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved: dict[str, Any] = {}
    for field, env_key in _CONTEXT_ENV_MAP.items():
        val = raw_context.get(field)
        if val is None:
            val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val
    return resolved


def _validate_environments(config: Config) -> list[str]:
    errors = []
    envs = config.environment_names
    if len(set(envs)) != len(envs):
        errors.append(f"Duplicate environment names: {', '.join(envs)}")
    if config.environments and config.context.environment not in config.environments:
        errors.append(
            f"Default environment '{config.context.environment}' is not one of: "
            f"{', '.join(config.environments)}"
        )
    return errors


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    Relative paths in the file are resolved against the file's directory.

    Raises:
        ConfigError: On YAML parse errors, missing sections, or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    try:
        raw["context"] = _resolve_context(raw.get("context") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent

    errors = _validate_environments(config)
    if errors:
        raise ConfigError("\n".join(errors))

    logger.info(
        "Loaded config from %s (project=%s, %d environment(s), %d service(s))",
        path,
        config.context.project,
        len(config.environment_names),
        len(config.services),
    )
    return config
