"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for settings and secrets.
"""

import os
import tempfile

import pytest
import yaml

from genledger.config.loader import (
    AppConfig,
    ExtractorConfig,
    LedgerConfig,
    Secrets,
    default_config,
    load_config,
    load_secrets,
)
from genledger.core.errors import ServerMisconfigured


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "storage": {"db_path": "/tmp/credits.db"},
            "ledger": {
                "starter_credits": 3,
                "credits_per_generation": 2,
                "default_purchase_credits": 50,
            },
            "extractor": {
                "model": "gpt-4o-mini",
                "max_attempts": 2,
                "timeout_seconds": 10,
                "base_temperature": 0.3,
                "strict_temperature": 0,
                "max_output_tokens": 900,
            },
            "payments": {"timeout_seconds": 20},
        }
        config = load_config(self._write_config(config_data))

        assert config.storage.db_path == "/tmp/credits.db"
        assert config.ledger == LedgerConfig(3, 2, 50)
        assert config.extractor.model == "gpt-4o-mini"
        assert config.extractor.timeout_seconds == 10.0
        assert isinstance(config.extractor.timeout_seconds, float)
        assert config.payments.timeout_seconds == 20.0

    def test_partial_config_uses_defaults(self):
        config = load_config(self._write_config({"ledger": {"starter_credits": 0}}))

        assert config.ledger.starter_credits == 0
        assert config.ledger.default_purchase_credits == 30
        assert config.extractor == ExtractorConfig()

    def test_empty_file_returns_defaults(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, "w").close()

        assert load_config(config_path) == default_config()

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml(self):
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, "w", encoding="utf-8") as f:
            f.write("ledger: [unclosed")

        with pytest.raises(yaml.YAMLError):
            load_config(config_path)

    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_config(self._write_config({"billing": {}}))

    def test_unknown_section_key(self):
        with pytest.raises(ValueError, match="Unknown keys in ledger"):
            load_config(self._write_config({"ledger": {"starter": 5}}))

    def test_section_must_be_mapping(self):
        with pytest.raises(ValueError, match="'ledger' must be a dictionary"):
            load_config(self._write_config({"ledger": [1, 2]}))

    def test_wrong_types_rejected(self):
        with pytest.raises(ValueError, match="must be an integer"):
            load_config(self._write_config({"ledger": {"starter_credits": "5"}}))
        with pytest.raises(ValueError, match="must be an integer"):
            load_config(self._write_config({"extractor": {"max_attempts": 2.5}}))
        with pytest.raises(ValueError, match="must be a number"):
            load_config(self._write_config({"extractor": {"timeout_seconds": "fast"}}))
        with pytest.raises(ValueError, match="must be a string"):
            load_config(self._write_config({"extractor": {"model": 4}}))

    def test_out_of_range_values(self):
        with pytest.raises(ValueError, match="Invalid ledger"):
            load_config(self._write_config({"ledger": {"credits_per_generation": 0}}))
        with pytest.raises(ValueError, match="max_attempts"):
            load_config(self._write_config({"extractor": {"max_attempts": 11}}))
        with pytest.raises(ValueError, match="base_temperature"):
            load_config(self._write_config({"extractor": {"base_temperature": 2.5}}))

    def test_retry_policy_from_config(self):
        policy = ExtractorConfig(max_attempts=2, timeout_seconds=9.0).retry_policy()
        assert policy.max_attempts == 2
        assert policy.timeout_seconds == 9.0

    def test_default_config(self):
        config = default_config()
        assert isinstance(config, AppConfig)
        assert config.ledger.starter_credits == 5
        assert config.ledger.credits_per_generation == 1
        assert config.extractor.max_attempts == 3


class TestSecrets:
    """Test credential loading from the environment."""

    def test_reads_present_values(self):
        secrets = load_secrets(environ={
            "OPENAI_API_KEY": "sk-test",
            "STRIPE_SECRET_KEY": " sk_test_stripe ",
        })
        assert secrets == Secrets(
            openai_api_key="sk-test",
            stripe_secret_key="sk_test_stripe",
            stripe_webhook_secret=None,
        )

    def test_missing_required_fails_fast(self):
        with pytest.raises(ServerMisconfigured) as excinfo:
            load_secrets(
                required=["STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"],
                environ={"STRIPE_WEBHOOK_SECRET": "  "},
            )
        assert excinfo.value.missing == ["STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"]

    def test_reads_os_environ_by_default(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        assert load_secrets().openai_api_key == "sk-env"
