"""
Configuration management and loading.

Handles rate limit, client and storage settings from a YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict
from urllib.parse import urlparse

import yaml

from scoresnap_guard.core.policy import DEFAULT_POLICY, RateLimitPolicy
from scoresnap_guard.storage.db import DEFAULT_DB_PATH

DEFAULT_ENDPOINT = "https://api.anthropic.com/v1/messages"
ALLOWED_HOSTS = frozenset({"api.anthropic.com"})


def validate_endpoint(endpoint: str) -> None:
    """Reject endpoints that are not HTTPS on an allowed host.

    Raises:
        ValueError: If the endpoint is not acceptable
    """
    parsed = urlparse(endpoint)
    if parsed.scheme != "https":
        raise ValueError(f"endpoint must use https: {endpoint}")
    if parsed.hostname not in ALLOWED_HOSTS:
        raise ValueError(f"endpoint host is not allowed: {parsed.hostname}")


@dataclass(frozen=True)
class ClientSettings:
    """Settings for the remote inference client."""
    endpoint: str = DEFAULT_ENDPOINT
    model: str = "claude-3-5-haiku-20241022"
    api_version: str = "2023-06-01"
    max_tokens: int = 1000
    timeout_seconds: float = 30.0
    max_retries: int = 2
    backoff_base_seconds: float = 1.0
    max_image_dimension: int = 1024

    def __post_init__(self):
        """Validate client settings."""
        validate_endpoint(self.endpoint)
        if not self.model or not self.model.strip():
            raise ValueError("model is required and cannot be empty")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds must be >= 0")
        if self.max_image_dimension <= 0:
            raise ValueError("max_image_dimension must be > 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


@dataclass(frozen=True)
class StorageConfig:
    """Where limiter state is persisted."""
    db_path: str = DEFAULT_DB_PATH


@dataclass(frozen=True)
class Settings:
    """Complete application settings."""
    limits: RateLimitPolicy = DEFAULT_POLICY
    client: ClientSettings = field(default_factory=ClientSettings)
    storage: StorageConfig = field(default_factory=StorageConfig)


_LIMIT_KEYS = {"per_minute", "per_hour", "per_day"}
_CLIENT_FIELDS = {
    "endpoint": str,
    "model": str,
    "api_version": str,
    "max_tokens": int,
    "timeout_seconds": (int, float),
    "max_retries": int,
    "backoff_base_seconds": (int, float),
    "max_image_dimension": int,
}
_STORAGE_KEYS = {"db_path"}


def load_settings(path: str) -> Settings:
    """Load and validate settings from a YAML file.

    Unknown keys are rejected so that a typo never silently falls back to a
    default limit.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        return Settings()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'limits', 'client', 'storage'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    return Settings(
        limits=_parse_limits(raw_config.get('limits')),
        client=_parse_client(raw_config.get('client')),
        storage=_parse_storage(raw_config.get('storage'))
    )


def _section(data: Any, name: str, allowed: set) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _parse_limits(data: Any) -> RateLimitPolicy:
    """Parse the limits section.

    Missing thresholds fall back to the defaults; values below 1 are
    clamped by RateLimitPolicy.
    """
    data = _section(data, "limits", _LIMIT_KEYS)
    values = {}
    for key in _LIMIT_KEYS:
        value = data.get(key, getattr(DEFAULT_POLICY, key))
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'limits.{key}' must be an integer")
        values[key] = value
    return RateLimitPolicy(**values)


def _parse_client(data: Any) -> ClientSettings:
    data = _section(data, "client", set(_CLIENT_FIELDS))
    for key, expected in _CLIENT_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, expected):
            raise ValueError(f"'client.{key}' has invalid type: {type(value).__name__}")
    kwargs = dict(data)
    for key in ("timeout_seconds", "backoff_base_seconds"):
        if key in kwargs:
            kwargs[key] = float(kwargs[key])
    return ClientSettings(**kwargs)


def _parse_storage(data: Any) -> StorageConfig:
    data = _section(data, "storage", _STORAGE_KEYS)
    db_path = data.get("db_path", DEFAULT_DB_PATH)
    if not isinstance(db_path, str) or not db_path.strip():
        raise ValueError("'storage.db_path' must be a non-empty string")
    return StorageConfig(db_path=db_path)
