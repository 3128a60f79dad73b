"""YAML configuration for Classic Photos.

User values from ``config.yaml`` are layered over ``DEFAULT_CONFIG``.  The
typed keys the app reads are checked once at load time, so a bad value stops
startup with a clear message instead of failing later inside a worker thread.
"""
import copy
import logging
import os
from typing import Any, Callable, Dict, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "manifest_url": "http://www.raywenderlich.com/downloads/ClassicPhotosDictionary.plist",
    "network": {
        "download_timeout": 15.0,  # seconds; the fetch must not hang forever
        "manifest_timeout": 30.0,
    },
    "filter": {
        "sepia_intensity": 0.8,
    },
    "gui": {
        "window_width": 480,
        "window_height": 640,
        "thumbnail_size": 64,
        "settle_delay_ms": 150,
    },
    "logging_level": "INFO",
    "log_dir": "~/.classicphotos",
}

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_NUMBER = (int, float)

# dotted key -> (accepted types, range check, what a valid value looks like)
_TYPED_KEYS: Dict[str, Tuple[tuple, Callable[[Any], bool], str]] = {
    "manifest_url": ((str,), bool, "a non-empty URL"),
    "network.download_timeout": (_NUMBER, lambda v: v > 0, "a positive number of seconds"),
    "network.manifest_timeout": (_NUMBER, lambda v: v > 0, "a positive number of seconds"),
    "filter.sepia_intensity": (_NUMBER, lambda v: 0 <= v <= 1, "a number between 0 and 1"),
    "gui.window_width": ((int,), lambda v: v > 0, "a positive integer"),
    "gui.window_height": ((int,), lambda v: v > 0, "a positive integer"),
    "gui.thumbnail_size": ((int,), lambda v: v > 0, "a positive integer"),
    "gui.settle_delay_ms": ((int,), lambda v: v >= 0, "a non-negative integer"),
    "logging_level": ((str,), lambda v: v.upper() in _LOG_LEVELS, "one of " + ", ".join(sorted(_LOG_LEVELS))),
    "log_dir": ((str,), bool, "a directory path"),
}


def default_config_path() -> str:
    config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
    return os.path.join(config_home, "classicphotos", "config.yaml")


def _layered(defaults: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        base = merged.get(key)
        merged[key] = _layered(base, value) if isinstance(base, dict) and isinstance(value, dict) else value
    return merged


def _lookup(config: dict, dotted_key: str):
    node = config
    for part in dotted_key.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node


def validate_config(config: dict, source: str = "<config>") -> None:
    """Raise ValueError naming the first typed key whose value is unusable."""
    for key, (types, in_range, expected) in _TYPED_KEYS.items():
        value = _lookup(config, key)
        # bool is an int subclass; `download_timeout: yes` is not a timeout
        if isinstance(value, bool) or not isinstance(value, types) or not in_range(value):
            raise ValueError(f"{source}: '{key}' must be {expected}, got {value!r}")
    for key in config:
        if key not in DEFAULT_CONFIG:
            logger.warning(f"{source}: unknown setting '{key}' ignored.")


class ConfigManager:
    def __init__(self, config_path: str | None = None):
        self.config_path = config_path or default_config_path()
        self.config = self._load()

    def _load(self) -> dict:
        if not os.path.exists(self.config_path):
            self._write_defaults()
            return copy.deepcopy(DEFAULT_CONFIG)

        with open(self.config_path, "r") as f:
            try:
                user_config = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ValueError(f"Malformed config at {self.config_path}") from exc
        if user_config is None:
            user_config = {}
        if not isinstance(user_config, dict):
            raise ValueError(f"Config at {self.config_path} must be a mapping")

        config = _layered(DEFAULT_CONFIG, user_config)
        validate_config(config, self.config_path)
        return config

    def _write_defaults(self):
        os.makedirs(os.path.dirname(self.config_path) or ".", exist_ok=True)
        with open(self.config_path, "w") as f:
            yaml.safe_dump(DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)
        logger.info(f"Wrote default configuration to {self.config_path}")

    def get(self, key: str, default=None):
        value = _lookup(self.config, key)
        return default if value is None else value

    @property
    def logging_level(self) -> str:
        return self.get("logging_level", "INFO")
