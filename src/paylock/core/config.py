"""
Configuration management for Paylock.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from paylock.core.exceptions import ConfigurationError
from paylock.core.logging import mask_secret
from paylock.core.types import Network

# Substrings that mark a placeholder rather than a real key
_INSECURE_KEY_MARKERS = ("default", "change-me", "changeme", "example")


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


def default_credentials_dir() -> Path:
    """Directory holding one encrypted credential file per (owner, network)."""
    return Path.home() / ".paylock" / "credentials"


@dataclass(frozen=True)
class Config:
    """Settlement-service and lifecycle configuration."""

    payment_service_url: str
    payment_api_key: str
    network: Network = Network.PREPROD
    agent_identifier: str | None = None
    seller_vkey: str | None = None
    registry_service_url: str | None = None

    # Request client
    request_timeout: float = 30.0  # per-call deadline in seconds
    max_retries: int = 3  # total attempts, including the first
    retry_initial_delay: float = 1.0

    # Lifecycle
    monitor_interval: float = 30.0
    pay_by_window: float = 12 * 60 * 60  # seconds from creation
    submit_result_window: float = 24 * 60 * 60

    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self) -> None:
        if not self.payment_service_url:
            raise ConfigurationError(
                "payment_service_url is required. Point it at your own settlement "
                "node, e.g. http://localhost:3001/api/v1"
            )
        if not self.payment_api_key:
            raise ConfigurationError("payment_api_key is required")
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if self.submit_result_window <= self.pay_by_window:
            raise ConfigurationError("submit_result_window must exceed pay_by_window")

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        payment_service_url = overrides.pop("payment_service_url", None) or _get_env_var(
            "PAYLOCK_PAYMENT_SERVICE_URL", required=True
        )
        payment_api_key = overrides.pop("payment_api_key", None) or _get_env_var(
            "PAYLOCK_PAYMENT_API_KEY", required=True
        )

        network_str = overrides.pop("network", None) or _get_env_var(
            "PAYLOCK_NETWORK", default="Preprod"
        )
        network = Network.from_string(network_str) if isinstance(network_str, str) else network_str

        agent_identifier = overrides.pop("agent_identifier", None) or _get_env_var(
            "PAYLOCK_AGENT_IDENTIFIER"
        )
        seller_vkey = overrides.pop("seller_vkey", None) or _get_env_var("PAYLOCK_SELLER_VKEY")
        registry_service_url = overrides.pop("registry_service_url", None) or _get_env_var(
            "PAYLOCK_REGISTRY_SERVICE_URL"
        )
        log_level = overrides.pop("log_level", None) or _get_env_var(
            "PAYLOCK_LOG_LEVEL", default="INFO"
        )
        log_json = overrides.pop("log_json", None)
        if log_json is None:
            log_json = (_get_env_var("PAYLOCK_LOG_JSON", default="") or "").lower() in ("1", "true", "yes")

        return cls(
            payment_service_url=payment_service_url,  # type: ignore
            payment_api_key=payment_api_key,  # type: ignore
            network=network,
            agent_identifier=agent_identifier,
            seller_vkey=seller_vkey,
            registry_service_url=registry_service_url,
            log_level=log_level,  # type: ignore
            log_json=log_json,
            **overrides,
        )

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(updates)
        return Config(**current)

    def masked_api_key(self) -> str:
        """Return API key with most characters masked for safe logging."""
        return mask_secret(self.payment_api_key)


@dataclass(frozen=True)
class VaultConfig:
    """
    Explicit configuration for the credential vault.

    There is no fallback key: a vault constructed without a usable
    encryption key refuses to start.
    """

    encryption_key: str
    credentials_dir: Path = None  # type: ignore[assignment]
    min_key_length: int = 32

    def __post_init__(self) -> None:
        if not self.encryption_key:
            raise ConfigurationError(
                "Vault encryption key is not set. Generate one with "
                "paylock.core.config.generate_encryption_key()"
            )
        if len(self.encryption_key) < self.min_key_length:
            raise ConfigurationError(
                f"Vault encryption key is too short (< {self.min_key_length} characters)"
            )
        lowered = self.encryption_key.lower()
        if any(marker in lowered for marker in _INSECURE_KEY_MARKERS):
            raise ConfigurationError("Vault encryption key looks like a placeholder value")
        if self.credentials_dir is None:
            object.__setattr__(self, "credentials_dir", default_credentials_dir())
        else:
            object.__setattr__(self, "credentials_dir", Path(self.credentials_dir))

    @classmethod
    def from_env(cls, **overrides: Any) -> VaultConfig:
        encryption_key = overrides.pop("encryption_key", None) or _get_env_var(
            "PAYLOCK_ENCRYPTION_KEY", required=True
        )
        credentials_dir = overrides.pop("credentials_dir", None) or _get_env_var(
            "PAYLOCK_CREDENTIALS_DIR"
        )
        return cls(
            encryption_key=encryption_key,  # type: ignore
            credentials_dir=Path(credentials_dir) if credentials_dir else None,  # type: ignore
            **overrides,
        )


def generate_encryption_key() -> str:
    """
    Generate a new 32-byte vault encryption key (64 hex characters).

    Returns:
        64-character hex string for use as PAYLOCK_ENCRYPTION_KEY
    """
    return secrets.token_hex(32)
