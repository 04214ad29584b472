"""
Configuration management and loading.

Handles application settings, environment variables and custom
rate tables.

Settings resolution order (highest priority first):
1. Environment variables (LLM_TRACKER_DB_PATH, LLM_TRACKER_CURRENCY, ...)
2. YAML settings file
3. Hardcoded defaults
"""

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ..core.rates import DEFAULT_RATE_TABLE, Provider, RateTable
from ..storage.db import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

ENV_VARS = {
    "LLM_TRACKER_DB_PATH": "database_path",
    "LLM_TRACKER_CURRENCY": "default_currency",
    "LLM_TRACKER_LOG_LEVEL": "log_level",
    "LLM_TRACKER_RATES_FILE": "rates_file",
}


@dataclass(frozen=True)
class TrackerConfig:
    """Application settings."""
    database_path: str = DEFAULT_DB_PATH
    default_currency: str = "USD"
    log_level: str = "WARNING"
    rates_file: Optional[str] = None

    def __post_init__(self):
        """Validate settings values."""
        if not self.database_path:
            raise ValueError("database_path cannot be empty")
        if not self.default_currency or len(self.default_currency) != 3:
            raise ValueError("default_currency must be a 3-letter currency code")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {list(LOG_LEVELS)}")

    def rate_table(self) -> RateTable:
        """Rate table from ``rates_file``, or the built-in table."""
        if self.rates_file:
            return load_rate_table(self.rates_file)
        return DEFAULT_RATE_TABLE


def _read_yaml(path: str, what: str) -> Any:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"{what} file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in {what.lower()} file {path}: {e}")


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> TrackerConfig:
    """Load settings from an optional YAML file and the environment.

    Args:
        path: Path to YAML settings file; defaults are used when omitted
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated TrackerConfig

    Raises:
        FileNotFoundError: If the settings file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If settings are invalid
    """
    config = TrackerConfig()

    if path is not None:
        raw = _read_yaml(path, "Config")
        if not raw:
            raise ValueError("Configuration file is empty")
        if not isinstance(raw, dict):
            raise ValueError("Configuration must be a dictionary")

        allowed_keys = {'database_path', 'default_currency', 'log_level', 'rates_file'}
        unknown_keys = set(raw.keys()) - allowed_keys
        if unknown_keys:
            raise ValueError(f"Unknown configuration keys: {unknown_keys}")

        for key, value in raw.items():
            if value is not None and not isinstance(value, str):
                raise ValueError(f"'{key}' must be a string")

        config = replace(config, **{k: v for k, v in raw.items() if v is not None})

    env = os.environ if environ is None else environ
    overrides: Dict[str, str] = {}
    for var, key in ENV_VARS.items():
        value = env.get(var)
        if value:
            overrides[key] = value
    if overrides:
        logger.debug("Settings overridden from environment: %s", sorted(overrides))
        config = replace(config, **overrides)

    return config


def load_rate_table(path: str) -> RateTable:
    """Load and validate a rate table from a YAML file.

    Expected layout::

        openai:
          gpt-4o: {input: 0.0025, output: 0.01}
        anthropic:
          claude-3-sonnet: {input: 0.003, output: 0.015}

    Args:
        path: Path to YAML rate table

    Returns:
        Validated RateTable

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If the table is invalid
    """
    raw = _read_yaml(path, "Rate table")
    if not raw:
        raise ValueError("Rate table file is empty")
    if not isinstance(raw, dict):
        raise ValueError("Rate table must be a dictionary")

    valid_providers = {p.value for p in Provider}
    unknown = set(raw.keys()) - valid_providers
    if unknown:
        raise ValueError(f"Unknown providers: {unknown}")

    data = {}
    for provider_name, models in raw.items():
        if not isinstance(models, dict):
            raise ValueError(f"Provider '{provider_name}' must be a dictionary")
        data[provider_name] = {
            str(model): _parse_rate(rate, f"{provider_name}.{model}")
            for model, rate in models.items()
        }
    return RateTable.from_mapping(data)


def _parse_rate(data: Any, path: str) -> tuple:
    """Parse and validate a single ``{input, output}`` rate entry."""
    if not isinstance(data, dict):
        raise ValueError(f"Rate {path} must be a dictionary")

    allowed_keys = {'input', 'output'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    values = []
    for key in ('input', 'output'):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"'{key}' in {path} must be a number >= 0")
        values.append(float(value))
    return tuple(values)
