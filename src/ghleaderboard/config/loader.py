from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from ghleaderboard.config.models import AppConfig
from ghleaderboard.core.errors import ConfigError

# ${VAR} is required; ${VAR:-fallback} uses fallback when VAR is unset or empty.
_ENV_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)(?::-([^}]*))?\}")


def load_config(path: str, *, env_file: str | None = None) -> AppConfig:
    """Load and validate the leaderboard config, expanding ${VAR} from the environment.

    Variables from `env_file` (default: a .env found from the working directory)
    are loaded first but never override variables already set.
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigError(f"Config file does not exist: {path}")
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    try:
        raw: Any = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Failed to read config file: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")

    expanded = _expand_env_vars(raw)
    try:
        return AppConfig.model_validate(expanded)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc


def _expand_env_vars(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _expand_env_vars(val) for key, val in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    if isinstance(value, str):
        return _ENV_PATTERN.sub(_replace_env_var, value)
    return value


def _replace_env_var(match: re.Match[str]) -> str:
    env_key, fallback = match.group(1), match.group(2)
    env_value = os.getenv(env_key)
    if env_value:
        return env_value
    if fallback is not None:
        return fallback
    raise ConfigError(f"Missing required environment variable: {env_key}")
