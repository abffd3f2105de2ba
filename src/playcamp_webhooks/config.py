"""Configuration types with environment variable support.

All settings can be configured via environment variables with the
PLAYCAMP_WEBHOOK_ prefix.
Example: PLAYCAMP_WEBHOOK_TOLERANCE_SECONDS=600 widens the replay window to 10 minutes.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import yaml
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from playcamp_webhooks.verifier import WebhookVerifier

ENV_PREFIX = "PLAYCAMP_WEBHOOK_"


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            data = tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")

    # Allow settings to be nested under a "webhook" section.
    section = data.get("webhook")
    if isinstance(section, dict):
        return section
    return data


class WebhookSettings(BaseSettings):
    """Webhook receiver settings.

    All settings can be overridden via environment variables:
    - PLAYCAMP_WEBHOOK_SECRET: Shared secret issued at registration
    - PLAYCAMP_WEBHOOK_TOLERANCE_SECONDS: Replay window for timestamped signatures
    - PLAYCAMP_WEBHOOK_SIGNATURE_HEADER: Header carrying the signature
    - PLAYCAMP_WEBHOOK_HOST / PORT / PATH: Receiver bind address and route
    - etc.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    secret: SecretStr | None = Field(
        default=None,
        description="Webhook secret returned once at registration. Required to verify.",
    )
    tolerance_seconds: int = Field(
        default=300,
        ge=0,
        description="Maximum clock difference for timestamped signatures (seconds).",
    )
    signature_header: str = Field(
        default="X-Webhook-Signature",
        description="Request header carrying the signature.",
    )
    host: str = Field(
        default="127.0.0.1",
        description="Receiver bind host.",
    )
    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Receiver bind port.",
    )
    path: str = Field(
        default="/webhooks",
        description="Route that accepts webhook deliveries.",
    )
    fail_on_handler_error: bool = Field(
        default=False,
        description="Answer 500 when any handler in a batch fails, so the sender redelivers.",
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Log level for the receiver (debug, info, warning, error).",
    )

    @classmethod
    def from_file(cls, path: str | Path, **overrides: Any) -> WebhookSettings:
        """Build settings from a YAML/TOML file. Explicit overrides win."""
        values = load_config_from_file(path)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def secret_value(self) -> str:
        """Return the raw secret.

        Raises:
            ValueError: If no secret is configured.
        """
        if self.secret is None or not self.secret.get_secret_value():
            raise ValueError(f"Webhook secret is not configured (set {ENV_PREFIX}SECRET)")
        return self.secret.get_secret_value()

    def verifier(self) -> WebhookVerifier:
        """Build a WebhookVerifier from these settings."""
        from playcamp_webhooks.verifier import WebhookVerifier

        return WebhookVerifier(self.secret_value(), tolerance_seconds=self.tolerance_seconds)

    def to_display_dict(self) -> dict[str, Any]:
        """Export settings for display with the secret masked."""
        return {
            "secret": "********" if self.secret else None,
            "tolerance_seconds": self.tolerance_seconds,
            "signature_header": self.signature_header,
            "host": self.host,
            "port": self.port,
            "path": self.path,
            "fail_on_handler_error": self.fail_on_handler_error,
            "log_level": self.log_level,
        }


_config: WebhookSettings | None = None


def get_config() -> WebhookSettings:
    """Get the cached settings instance, loading from the environment on first use."""
    global _config
    if _config is None:
        _config = WebhookSettings()
    return _config


def clear_config() -> None:
    """Drop the cached settings so the next get_config() re-reads the environment."""
    global _config
    _config = None
