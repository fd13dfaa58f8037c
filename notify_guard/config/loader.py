"""
Configuration management and loading.

Handles quota/push settings from YAML and VAPID keys from the environment.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from notify_guard.core.quota import DEFAULT_POLICIES, QuotaPolicy
from notify_guard.core.vapid import DEFAULT_CONTACT, VapidCredential
from notify_guard.storage.db import DEFAULT_DB_PATH


class ConfigurationError(ValueError):
    """Raised when required configuration is missing or invalid.

    Fatal: nothing that depends on it can succeed, so it is never retried.
    """


@dataclass(frozen=True)
class PushConfig:
    """Delivery settings for Web Push fan-out."""
    ttl_seconds: int = 86400
    max_workers: int = 8
    timeout_seconds: float = 10.0

    def __post_init__(self):
        """Validate push settings are positive."""
        if self.ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


@dataclass(frozen=True)
class NotifyConfig:
    """Complete notify-guard configuration."""
    quotas: Dict[str, QuotaPolicy] = field(default_factory=lambda: dict(DEFAULT_POLICIES))
    push: PushConfig = field(default_factory=PushConfig)

    def get_policy(self, operation_name: str) -> QuotaPolicy:
        """Get the quota policy for an operation.

        Raises:
            ConfigurationError: If no policy is configured
        """
        try:
            return self.quotas[operation_name]
        except KeyError:
            raise ConfigurationError(
                f"No quota configured for operation '{operation_name}'. "
                f"Known operations: {sorted(self.quotas)}"
            )


def load_notify_config(path: Optional[str] = None) -> NotifyConfig:
    """Load and validate configuration from a YAML file.

    Without a path the built-in quotas and push defaults are returned.
    Strict validation ensures no silent misconfigurations that could
    leave a quota unenforced.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated NotifyConfig object

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    if path is None:
        return NotifyConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ConfigurationError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Configuration must be a mapping")

    allowed_top_keys = {'quotas', 'push'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ConfigurationError(f"Unknown configuration keys: {unknown_keys}")

    quotas = dict(DEFAULT_POLICIES)
    quotas_data = raw_config.get('quotas', {})
    if not isinstance(quotas_data, dict):
        raise ConfigurationError("'quotas' must be a dictionary")
    for operation_name, quota_data in quotas_data.items():
        if not isinstance(quota_data, dict):
            raise ConfigurationError(f"Quota '{operation_name}' must be a dictionary")
        quotas[operation_name] = _parse_quota(operation_name, quota_data)

    push_data = raw_config.get('push', {})
    if not isinstance(push_data, dict):
        raise ConfigurationError("'push' must be a dictionary")
    push = _parse_push(push_data)

    return NotifyConfig(quotas=quotas, push=push)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_quota(operation_name: str, data: Dict) -> QuotaPolicy:
    """Parse and validate one quota entry.

    Raises:
        ConfigurationError: If the entry is invalid
    """
    path = f"quotas.{operation_name}"
    allowed_keys = {'ceiling', 'window_hours', 'unit_cost'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ConfigurationError(f"Unknown keys in {path}: {unknown_keys}")

    for required in ('ceiling', 'window_hours'):
        if required not in data:
            raise ConfigurationError(f"Missing required '{required}' in {path}")
        if not _is_number(data[required]) or data[required] <= 0:
            raise ConfigurationError(f"'{required}' in {path} must be > 0")

    unit_cost = data.get('unit_cost')
    if unit_cost is not None and (not _is_number(unit_cost) or unit_cost < 0):
        raise ConfigurationError(f"'unit_cost' in {path} must be >= 0")

    return QuotaPolicy(
        operation_name=operation_name,
        ceiling=float(data['ceiling']),
        window=timedelta(hours=data['window_hours']),
        unit_cost=float(unit_cost) if unit_cost is not None else None
    )


def _parse_push(data: Dict) -> PushConfig:
    """Parse and validate the push section."""
    allowed_keys = {'ttl_seconds', 'max_workers', 'timeout_seconds'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ConfigurationError(f"Unknown keys in push: {unknown_keys}")

    for key in ('ttl_seconds', 'max_workers'):
        if key in data and (not isinstance(data[key], int) or isinstance(data[key], bool)):
            raise ConfigurationError(f"'{key}' in push must be an integer")
    if 'timeout_seconds' in data and not _is_number(data['timeout_seconds']):
        raise ConfigurationError("'timeout_seconds' in push must be a number")

    try:
        return PushConfig(**{
            key: (float(value) if key == 'timeout_seconds' else value)
            for key, value in data.items()
        })
    except ValueError as e:
        raise ConfigurationError(f"Invalid push settings: {e}")


def load_vapid_credential(environ: Optional[Mapping[str, str]] = None) -> VapidCredential:
    """Read the VAPID key pair from the environment.

    Reads VAPID_PUBLIC_KEY, VAPID_PRIVATE_KEY and VAPID_CONTACT.

    Raises:
        ConfigurationError: If either key is missing
    """
    env = os.environ if environ is None else environ
    public_key = env.get('VAPID_PUBLIC_KEY', '').strip()
    private_key = env.get('VAPID_PRIVATE_KEY', '').strip()

    missing = [
        name for name, value in (
            ('VAPID_PUBLIC_KEY', public_key),
            ('VAPID_PRIVATE_KEY', private_key),
        ) if not value
    ]
    if missing:
        raise ConfigurationError(f"Push service not configured: missing {', '.join(missing)}")

    return VapidCredential(
        public_key=public_key,
        private_key=private_key,
        contact=env.get('VAPID_CONTACT', '').strip() or DEFAULT_CONTACT
    )


def database_path(environ: Optional[Mapping[str, str]] = None) -> str:
    """SQLite path from NOTIFY_GUARD_DB, falling back to the default."""
    env = os.environ if environ is None else environ
    return env.get('NOTIFY_GUARD_DB') or DEFAULT_DB_PATH
