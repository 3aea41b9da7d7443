"""
Resilience settings: default and per-operation retry/breaker configuration.

Settings can be built in code, from a mapping, from a YAML file or from
environment variables. A YAML file looks like::

    defaults:
      retry: default
      breaker:
        preset: aggressive
        cooldown_seconds: 45
    operations:
      wallet.fetch_balance:
        retry: conservative
        breaker: lenient
      menu.fetch:
        retry: {max_attempts: 4, base_delay_ms: 250}

Each ``retry``/``breaker`` entry is either a preset name or a mapping whose
optional ``preset`` key selects the base the other keys override.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from resilient_client.errors import ConfigurationError
from resilient_client.resilience.circuit_breaker import CircuitBreakerConfig
from resilient_client.resilience.retry import RetryConfig

_RETRY_KEYS = {"preset", "max_attempts", "base_delay_ms", "max_delay_ms", "backoff_multiplier"}
_BREAKER_KEYS = {"preset", "failure_threshold", "success_threshold", "cooldown_seconds"}


@dataclass(frozen=True)
class OperationPolicy:
    """Overrides for a single operation; None falls back to the defaults."""

    retry: RetryConfig | None = None
    breaker: CircuitBreakerConfig | None = None


@dataclass
class ResilienceSettings:
    """Default configs plus per-operation overrides.

    Attributes:
        retry: Retry config used when an operation has no override
        breaker: Breaker config used when an operation has no override
        operations: Overrides keyed by operation name
    """

    retry: RetryConfig = field(default_factory=RetryConfig.default)
    breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig.default)
    operations: dict[str, OperationPolicy] = field(default_factory=dict)

    def retry_for(self, operation: str) -> RetryConfig:
        policy = self.operations.get(operation)
        if policy is not None and policy.retry is not None:
            return policy.retry
        return self.retry

    def breaker_for(self, operation: str) -> CircuitBreakerConfig:
        policy = self.operations.get(operation)
        if policy is not None and policy.breaker is not None:
            return policy.breaker
        return self.breaker

    def with_operation(
        self,
        operation: str,
        retry: RetryConfig | None = None,
        breaker: CircuitBreakerConfig | None = None,
    ) -> ResilienceSettings:
        """Return a copy with an override registered for ``operation``."""
        operations = dict(self.operations)
        operations[operation] = OperationPolicy(retry=retry, breaker=breaker)
        return ResilienceSettings(
            retry=self.retry, breaker=self.breaker, operations=operations
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ResilienceSettings:
        """Create settings from a parsed mapping.

        Raises:
            ConfigurationError: If a section is malformed or names an unknown preset
        """
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError("Settings must be a mapping")

        defaults = data.get("defaults") or {}
        if not isinstance(defaults, dict):
            raise ConfigurationError("'defaults' must be a mapping")

        operations: dict[str, OperationPolicy] = {}
        raw_operations = data.get("operations") or {}
        if not isinstance(raw_operations, dict):
            raise ConfigurationError("'operations' must be a mapping")

        for name, entry in raw_operations.items():
            if not isinstance(entry, dict):
                raise ConfigurationError(f"Operation '{name}' must be a mapping")
            operations[str(name)] = OperationPolicy(
                retry=_parse_retry(entry.get("retry"), where=f"operations.{name}.retry"),
                breaker=_parse_breaker(
                    entry.get("breaker"), where=f"operations.{name}.breaker"
                ),
            )

        return cls(
            retry=_parse_retry(defaults.get("retry"), where="defaults.retry")
            or RetryConfig.default(),
            breaker=_parse_breaker(defaults.get("breaker"), where="defaults.breaker")
            or CircuitBreakerConfig.default(),
            operations=operations,
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> ResilienceSettings:
        """Load settings from a YAML file.

        Raises:
            ConfigurationError: If the file is missing, unreadable or invalid
        """
        file_path = Path(path)
        try:
            content = file_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read settings file: {e}", path=str(file_path)
            ) from e

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in settings file: {e}", path=str(file_path)
            ) from e

        try:
            return cls.from_dict(data)
        except ConfigurationError as e:
            raise ConfigurationError(e.message, path=str(file_path)) from e

    @classmethod
    def from_env(cls) -> ResilienceSettings:
        """Create settings from environment variables.

        ``RESILIENT_SETTINGS_PATH`` points at a YAML file; without it the
        defaults come from the ``RESILIENT_RETRY_*`` and
        ``RESILIENT_BREAKER_*`` variables.
        """
        path = os.getenv("RESILIENT_SETTINGS_PATH")
        if path:
            return cls.from_yaml(path)
        return cls(retry=RetryConfig.from_env(), breaker=CircuitBreakerConfig.from_env())


def _parse_retry(value: Any, where: str) -> RetryConfig | None:
    if value is None:
        return None
    try:
        if isinstance(value, str):
            return RetryConfig.preset(value)
        if isinstance(value, dict):
            _check_keys(value, _RETRY_KEYS, where)
            return RetryConfig.from_dict(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid retry config at '{where}': {e}") from e
    raise ConfigurationError(f"'{where}' must be a preset name or a mapping")


def _parse_breaker(value: Any, where: str) -> CircuitBreakerConfig | None:
    if value is None:
        return None
    try:
        if isinstance(value, str):
            return CircuitBreakerConfig.preset(value)
        if isinstance(value, dict):
            _check_keys(value, _BREAKER_KEYS, where)
            return CircuitBreakerConfig.from_dict(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid breaker config at '{where}': {e}") from e
    raise ConfigurationError(f"'{where}' must be a preset name or a mapping")


def _check_keys(value: dict[str, Any], allowed: set[str], where: str) -> None:
    unknown = set(value) - allowed
    if unknown:
        raise ConfigurationError(
            f"Unknown keys at '{where}': {', '.join(sorted(unknown))}"
        )
