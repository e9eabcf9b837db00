"""
Configuration management for gitlab-search.

Loads:
- gitlab-search.yml: optional settings file (server, patterns, cache location)
- environment: hostname / gitlab_access_token (also read from .env by the CLI)

Precedence is CLI flag > environment > config file > default.
"""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml


CONFIG_FILE_NAME = "gitlab-search.yml"
CACHE_NAMESPACE = "io.orleans.gitlab-search"

DEFAULT_FILE_PATTERN = r"erfile$"  # Dockerfile, Containerfile
DEFAULT_CONTENT_PATTERN = r"ARG "
DEFAULT_REPORT_BLOB_PATH = "/-/blob/master/Dockerfile"

# First match wins
HOSTNAME_ENV_VARS = ("hostname", "GITLAB_HOSTNAME")
TOKEN_ENV_VARS = ("gitlab_access_token", "GITLAB_ACCESS_TOKEN")


class ConfigError(Exception):
    """Invalid configuration file."""


def default_cache_root() -> Path:
    return Path(tempfile.gettempdir()) / CACHE_NAMESPACE


@dataclass
class SearchConfig:
    """Complete gitlab-search configuration."""
    hostname: str | None = None
    access_token: str | None = None
    cache_root: Path = field(default_factory=default_cache_root)
    per_page: int = 100
    min_access_level: int = 10  # Guest
    file_pattern: str = DEFAULT_FILE_PATTERN
    content_pattern: str = DEFAULT_CONTENT_PATTERN
    recursive_tree: bool = False
    report_blob_path: str = DEFAULT_REPORT_BLOB_PATH

    @classmethod
    def load(cls, path: Path | None = None) -> "SearchConfig":
        """
        Load configuration from a YAML file.

        A missing file yields the defaults. An explicitly given path that
        does not exist is an error.
        """
        if path is None:
            path = Path.cwd() / CONFIG_FILE_NAME
            if not path.exists():
                return cls()
        elif not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping")
        return cls._parse(data)

    @classmethod
    def _parse(cls, data: dict[str, Any]) -> "SearchConfig":
        """Parse configuration dictionary."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

        config = cls()
        config.hostname = _optional_str(data, "hostname")
        config.access_token = _optional_str(data, "access_token")
        if data.get("cache_root"):
            config.cache_root = Path(str(data["cache_root"])).expanduser()
        config.per_page = _positive_int(data, "per_page", 100)
        config.min_access_level = _positive_int(data, "min_access_level", 10)
        config.file_pattern = _pattern(data, "file_pattern", DEFAULT_FILE_PATTERN)
        config.content_pattern = _pattern(data, "content_pattern", DEFAULT_CONTENT_PATTERN)
        recursive_tree = data.get("recursive_tree", False)
        if not isinstance(recursive_tree, bool):
            raise ConfigError(f"recursive_tree must be true or false, got {recursive_tree!r}")
        config.recursive_tree = recursive_tree
        config.report_blob_path = _optional_str(data, "report_blob_path") or DEFAULT_REPORT_BLOB_PATH
        return config

    def apply_env(self, environ: Mapping[str, str] | None = None) -> "SearchConfig":
        """Fill hostname and token from the environment."""
        environ = os.environ if environ is None else environ
        for name in HOSTNAME_ENV_VARS:
            if environ.get(name):
                self.hostname = environ[name]
                break
        for name in TOKEN_ENV_VARS:
            if environ.get(name):
                self.access_token = environ[name]
                break
        return self


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ConfigError(f"{key} must be a string, got {value!r}")
    return str(value)


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    if number < 1:
        raise ConfigError(f"{key} must be positive, got {number}")
    return number


def _pattern(data: dict[str, Any], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty regular expression, got {value!r}")
    try:
        re.compile(value)
    except re.error as e:
        raise ConfigError(f"{key} is not a valid regular expression: {e}")
    return value


def get_cache_dir(config: SearchConfig) -> Path:
    """Get the hostname-scoped cache directory."""
    if not config.hostname:
        raise ConfigError("hostname is not set")
    # Strip a scheme so "https://host" and "host" share a cache
    hostname = config.hostname.split("://", 1)[-1].strip("/").replace("/", "_")
    return Path(config.cache_root) / hostname


def ensure_cache_dir(config: SearchConfig) -> Path:
    """Ensure the cache directory exists and return its path."""
    cache_dir = get_cache_dir(config)
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir
