"""
Configuration Unit Tests.

Tests for YAML loading, environment overlays, variable substitution and
validation of the vault configuration models.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from yield_vault.config import (
    ConfigFileNotFoundError,
    ConfigLoader,
    ConfigParseError,
    ConfigValidationError,
)
from yield_vault.config.models import AppConfig, NotarizationConfig, VaultConfig
from yield_vault.vault import VaultEngine
from yield_vault.vault.models import DecisionDraft, DecisionType

BASE_YAML = """
app_name: Test Vault
environment: development
vault:
  owner: ${VAULT_OWNER:owner}
  operators:
    - agent
    - agent
    - " "
  page_cap: ${PAGE_CAP:100}
notarization:
  enabled: false
"""


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "vault.yaml").write_text(BASE_YAML, encoding="utf-8")
    return tmp_path


class TestConfigLoader:
    """Test the YAML loader."""

    def test_load_defaults(self, config_dir, monkeypatch):
        monkeypatch.delenv("VAULT_OWNER", raising=False)
        monkeypatch.delenv("PAGE_CAP", raising=False)

        config = ConfigLoader().load(config_dir / "vault.yaml")

        assert config.app_name == "Test Vault"
        assert config.vault.owner == "owner"
        assert config.vault.operators == ["agent"]
        assert config.vault.page_cap == 100
        assert config.vault.db_path is None

    def test_env_substitution(self, config_dir, monkeypatch):
        monkeypatch.setenv("VAULT_OWNER", "0xabc")
        monkeypatch.setenv("PAGE_CAP", "25")

        config = ConfigLoader().load(config_dir / "vault.yaml")

        assert config.vault.owner == "0xabc"
        assert config.vault.page_cap == 25

    def test_environment_overlay(self, config_dir):
        (config_dir / "vault.production.yaml").write_text(
            "environment: production\nvault:\n  page_cap: 50\n",
            encoding="utf-8",
        )

        config = ConfigLoader().load(config_dir / "vault.yaml", env="production")

        assert config.is_production
        assert config.vault.page_cap == 50
        assert config.vault.operators == ["agent"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigFileNotFoundError):
            ConfigLoader().load(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("vault: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigParseError):
            ConfigLoader().load(path)

    def test_validation_error(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("vault:\n  page_cap: 0\n", encoding="utf-8")

        with pytest.raises(ConfigValidationError) as exc_info:
            ConfigLoader().load(path)
        assert any("page_cap" in e for e in exc_info.value.errors)

    def test_merge_configs(self):
        merged = ConfigLoader().merge_configs(
            {"vault": {"page_cap": 100, "owner": "a"}},
            {"vault": {"page_cap": 50}},
        )
        assert merged == {"vault": {"page_cap": 50, "owner": "a"}}

    def test_convert_values(self):
        loader = ConfigLoader()
        assert loader._convert_value("true") is True
        assert loader._convert_value("42") == 42
        assert loader._convert_value("0.5") == 0.5
        assert loader._convert_value("data/vault.db") == "data/vault.db"


class TestModels:
    """Test model validation."""

    def test_frozen(self):
        config = VaultConfig(owner="owner")
        with pytest.raises(ValidationError):
            config.page_cap = 5

    def test_empty_owner(self):
        with pytest.raises(ValidationError):
            VaultConfig(owner="")

    def test_http_sink_requires_url(self):
        with pytest.raises(ValidationError):
            NotarizationConfig(enabled=True, sink="http")
        assert NotarizationConfig(enabled=False, sink="http").url is None

    def test_token_masked(self):
        config = NotarizationConfig(sink="http", url="https://notary.test", api_token="s3cret")
        assert "s3cret" not in repr(config)
        assert config.masked_dict()["api_token"] == "***"

    def test_unknown_environment_normalised(self):
        config = AppConfig(environment="Qa", log_level="verbose")
        assert config.environment == "development"
        assert config.log_level == "INFO"

    def test_production_warnings(self):
        warnings = AppConfig(environment="production").validate_for_production()
        assert len(warnings) == 3


class TestEngineFromConfig:
    """Test building an engine from application config."""

    @pytest.mark.asyncio
    async def test_from_config(self, tmp_path, clock):
        config = AppConfig(
            vault=VaultConfig(
                owner="owner",
                operators=["agent"],
                page_cap=20,
                db_path=str(tmp_path / "vault.db"),
            ),
            notarization=NotarizationConfig(
                enabled=True,
                path=str(tmp_path / "notary.jsonl"),
                retry_interval=0,
            ),
        )

        engine = VaultEngine.from_config(config, clock=clock)
        await engine.deposit("alice", 100)
        await engine.log_decision("agent", DecisionDraft(DecisionType.REBALANCE, reason="hold"))

        assert engine.audit_log.page_cap == 20
        assert engine.notarizer.pending_count == 1
        assert await engine.flush_notarizations() == 1

        restarted = VaultEngine.from_config(config, clock=clock)
        assert restarted.get_balance("alice") == 100
        assert restarted.audit_log.get_receipts(0)[0].startswith("file:0:")
        await engine.close()
        await restarted.close()


def test_shipped_config_is_valid(monkeypatch):
    """Test the example configuration in config/ loads with its defaults."""
    for var in ("VAULT_ENV", "VAULT_AGENT", "VAULT_DB_PATH", "NOTARY_ENABLED", "NOTARY_SINK"):
        monkeypatch.delenv(var, raising=False)

    config = ConfigLoader().load(Path(__file__).parents[2] / "config" / "vault.yaml")

    assert config.vault.operators == ["ai-agent"]
    assert config.vault.db_path == "data/vault.db"
    assert config.notarization.enabled is False
