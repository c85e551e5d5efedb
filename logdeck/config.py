"""Configuration loading from an optional YAML file and environment variables."""

import os
import logging
from dataclasses import dataclass, fields

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "LOGDECK_"
VALID_ENVIRONMENT_CASES = ("original", "lower", "upper", "case-sensitive")


def _parse_bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    return str(val).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    remote_budget: int = 1000
    page_size: int = 1000
    search_url: str = ""
    search_index: str = ""
    keep_alive: str = "1m"
    allow_insecure_tls: bool = False
    environment_case: str = "original"
    settings_file: str = "logdeck_settings.json"
    max_mdc_keys: int = 1000
    max_mdc_values_per_key: int = 10000
    filter_history_size: int = 10
    log_level: str = "INFO"

    def __post_init__(self):
        if self.remote_budget <= 0:
            raise ValueError(f"remote_budget must be positive, got {self.remote_budget}")
        if self.page_size <= 0:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        if self.environment_case not in VALID_ENVIRONMENT_CASES:
            raise ValueError(f"environment_case must be one of {VALID_ENVIRONMENT_CASES}")


# YAML section -> keys it may carry
_YAML_SECTIONS = {
    "engine": ("remote_budget", "page_size", "settings_file", "max_mdc_keys",
               "max_mdc_values_per_key", "filter_history_size"),
    "search": ("search_url", "search_index", "keep_alive", "allow_insecure_tls",
               "environment_case"),
    "logging": ("log_level",),
}

# Keys the YAML sections use when they differ from the Config field name
_YAML_ALIASES = {
    "search": {"url": "search_url", "index": "search_index"},
    "logging": {"level": "log_level"},
}

_ENV_FIELDS = (
    "remote_budget", "page_size", "search_url", "search_index", "keep_alive",
    "allow_insecure_tls", "environment_case", "settings_file", "log_level",
)


def load_yaml_config(path: str | None) -> dict:
    """Load the YAML file at ``path``. Returns an empty dict if missing or invalid."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        logger.warning("Invalid YAML in %s, using defaults: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, using defaults", path)
        return {}
    logger.info("Loaded YAML config from %s", path)
    return data


def _flatten_yaml(data: dict) -> dict:
    values = {}
    for section, allowed in _YAML_SECTIONS.items():
        block = data.get(section) or {}
        if not isinstance(block, dict):
            logger.warning("Ignoring config section '%s': not a mapping", section)
            continue
        aliases = _YAML_ALIASES.get(section, {})
        for key, value in block.items():
            name = aliases.get(key, key)
            if name in allowed:
                values[name] = value
            else:
                logger.warning("Unknown config key %s.%s", section, key)
    return values


def _coerce(name: str, value):
    default = getattr(Config, name)
    if isinstance(default, bool):
        return value if isinstance(value, bool) else _parse_bool(str(value), default)
    if isinstance(default, int):
        return int(value)
    return str(value)


def load_config(config_path: str | None = None, env=None) -> Config:
    """Build Config from defaults, then the YAML file, then ``LOGDECK_*`` env vars."""
    env = os.environ if env is None else env
    values = _flatten_yaml(load_yaml_config(config_path))

    for name in _ENV_FIELDS:
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is not None:
            values[name] = raw

    known = {f.name for f in fields(Config)}
    kwargs = {name: _coerce(name, value) for name, value in values.items() if name in known}
    if "environment_case" in kwargs:
        kwargs["environment_case"] = kwargs["environment_case"].strip().lower()
    if "log_level" in kwargs:
        kwargs["log_level"] = kwargs["log_level"].strip().upper()
    return Config(**kwargs)
