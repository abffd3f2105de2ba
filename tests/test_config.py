"""Tests for configuration loading from environment variables and files."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from playcamp_webhooks.config import (
    WebhookSettings,
    clear_config,
    get_config,
    load_config_from_file,
)
from playcamp_webhooks.verifier import WebhookVerifier


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    """Keep a developer .env or exported vars out of these tests."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("PLAYCAMP_WEBHOOK_"):
            monkeypatch.delenv(key)
    clear_config()
    yield
    clear_config()


class TestWebhookSettings:
    """Test WebhookSettings defaults and env overrides."""

    def test_default_values(self) -> None:
        """Test default values."""
        settings = WebhookSettings()
        assert settings.secret is None
        assert settings.tolerance_seconds == 300
        assert settings.signature_header == "X-Webhook-Signature"
        assert settings.host == "127.0.0.1"
        assert settings.port == 8080
        assert settings.path == "/webhooks"
        assert settings.fail_on_handler_error is False

    def test_env_override_secret(self) -> None:
        """Test PLAYCAMP_WEBHOOK_SECRET env var."""
        with patch.dict(os.environ, {"PLAYCAMP_WEBHOOK_SECRET": "s3cr3t"}):
            settings = WebhookSettings()
            assert settings.secret_value() == "s3cr3t"

    def test_env_override_tolerance(self) -> None:
        """Test PLAYCAMP_WEBHOOK_TOLERANCE_SECONDS env var."""
        with patch.dict(os.environ, {"PLAYCAMP_WEBHOOK_TOLERANCE_SECONDS": "600"}):
            assert WebhookSettings().tolerance_seconds == 600

    def test_env_override_fail_on_handler_error(self) -> None:
        with patch.dict(os.environ, {"PLAYCAMP_WEBHOOK_FAIL_ON_HANDLER_ERROR": "true"}):
            assert WebhookSettings().fail_on_handler_error is True

    def test_negative_tolerance_rejected(self) -> None:
        with pytest.raises(ValueError):
            WebhookSettings(tolerance_seconds=-5)

    def test_env_override_log_level(self) -> None:
        with patch.dict(os.environ, {"PLAYCAMP_WEBHOOK_LOG_LEVEL": "debug"}):
            assert WebhookSettings().log_level == "debug"

    def test_invalid_log_level_rejected(self) -> None:
        """Test PLAYCAMP_WEBHOOK_LOG_LEVEL only accepts known levels."""
        with patch.dict(os.environ, {"PLAYCAMP_WEBHOOK_LOG_LEVEL": "verbose"}):
            with pytest.raises(ValueError):
                WebhookSettings()

    def test_dotenv_file(self, tmp_path) -> None:
        """Test settings are read from .env in the working directory."""
        (tmp_path / ".env").write_text("PLAYCAMP_WEBHOOK_PORT=9090\n", encoding="utf-8")
        assert WebhookSettings().port == 9090

    def test_secret_hidden(self) -> None:
        settings = WebhookSettings(secret="s3cr3t")
        assert "s3cr3t" not in repr(settings)
        assert settings.to_display_dict()["secret"] == "********"

    def test_missing_secret(self) -> None:
        with pytest.raises(ValueError, match="PLAYCAMP_WEBHOOK_SECRET"):
            WebhookSettings().secret_value()

    def test_verifier(self) -> None:
        settings = WebhookSettings(secret="s3cr3t", tolerance_seconds=42)
        verifier = settings.verifier()
        assert isinstance(verifier, WebhookVerifier)
        assert verifier.tolerance_seconds == 42


class TestConfigFiles:
    """Test YAML and TOML loading."""

    def test_yaml(self, tmp_path) -> None:
        path = tmp_path / "webhook.yaml"
        path.write_text("secret: abc\nport: 9000\n", encoding="utf-8")
        assert load_config_from_file(path) == {"secret": "abc", "port": 9000}

    def test_toml_section(self, tmp_path) -> None:
        """Test settings nested under a [webhook] table."""
        path = tmp_path / "webhook.toml"
        path.write_text('[webhook]\nsecret = "abc"\ntolerance_seconds = 60\n', encoding="utf-8")
        assert load_config_from_file(path) == {"secret": "abc", "tolerance_seconds": 60}

    def test_empty_yaml(self, tmp_path) -> None:
        path = tmp_path / "empty.yml"
        path.write_text("", encoding="utf-8")
        assert load_config_from_file(path) == {}

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "nope.yaml")

    def test_unsupported_format(self, tmp_path) -> None:
        path = tmp_path / "webhook.ini"
        path.write_text("secret=abc", encoding="utf-8")
        with pytest.raises(ValueError, match="Unsupported"):
            load_config_from_file(path)

    def test_invalid_yaml(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("secret: [unclosed", encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config_from_file(path)

    def test_non_mapping(self, tmp_path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            load_config_from_file(path)

    def test_from_file_with_overrides(self, tmp_path) -> None:
        path = tmp_path / "webhook.yaml"
        path.write_text("secret: abc\nport: 9000\nhost: 0.0.0.0\n", encoding="utf-8")
        settings = WebhookSettings.from_file(path, port=9100, host=None)
        assert settings.port == 9100
        assert settings.host == "0.0.0.0"
        assert settings.secret_value() == "abc"


class TestGetConfig:
    """Test the cached settings accessor."""

    def test_cached(self) -> None:
        assert get_config() is get_config()

    def test_clear_config_reloads(self) -> None:
        first = get_config()
        with patch.dict(os.environ, {"PLAYCAMP_WEBHOOK_PORT": "9999"}):
            assert get_config().port == first.port
            clear_config()
            assert get_config().port == 9999
