"""
Unit tests for config.py.
"""

import pytest
from pydantic import ValidationError

from config import Config, load_config


class TestConfig:
    def test_defaults(self, monkeypatch):
        """Defaults match the 15-minute Up/Down strategy."""
        monkeypatch.delenv("DRY_RUN", raising=False)
        cfg = Config(_env_file=None)
        assert cfg.arb_threshold == 0.995
        assert cfg.min_trade_size == 1.0
        assert cfg.max_trade_size == 50.0
        assert cfg.window_sec == 900
        assert cfg.preload_buffer_sec == 60.0
        assert cfg.expiry_grace_sec == 5.0
        assert cfg.discovery_retry_sec == 10.0
        assert cfg.ws_ping_interval_sec == 30.0
        assert cfg.ws_stale_after_sec == 120.0
        assert cfg.ws_reconnect_delay_sec == 5.0
        assert cfg.updown_assets == ["btc", "eth", "sol", "xrp"]
        assert cfg.dry_run is True
        assert cfg.chain_id == 137

    def test_empty_credentials_allowed_for_dry_run(self, monkeypatch):
        """Credentials default to empty string (dry-run mode needs no wallet)."""
        monkeypatch.delenv("PRIVATE_KEY", raising=False)
        monkeypatch.delenv("POLYMARKET_PROFILE_ADDRESS", raising=False)
        cfg = Config(_env_file=None)
        assert cfg.private_key == ""
        assert cfg.has_credentials is False

    def test_has_credentials_needs_both(self):
        assert Config(_env_file=None, private_key="k", polymarket_profile_address="0x1").has_credentials
        assert not Config(_env_file=None, private_key="k", polymarket_profile_address="").has_credentials

    def test_invalid_signature_type(self):
        with pytest.raises(ValidationError):
            Config(_env_file=None, signature_type=5)

    def test_threshold_must_be_below_one(self):
        with pytest.raises(ValidationError):
            Config(_env_file=None, arb_threshold=1.0)
        with pytest.raises(ValidationError):
            Config(_env_file=None, arb_threshold=0.0)

    def test_min_size_above_max_raises(self):
        with pytest.raises(ValidationError):
            Config(_env_file=None, min_trade_size=60.0, max_trade_size=50.0)

    def test_frozen(self):
        cfg = Config(_env_file=None)
        with pytest.raises(ValidationError):
            cfg.arb_threshold = 0.9

    def test_model_copy_override(self):
        cfg = Config(_env_file=None)
        live = cfg.model_copy(update={"dry_run": False})
        assert live.dry_run is False
        assert cfg.dry_run is True


class TestLoadConfig:
    def test_load_from_env(self, monkeypatch):
        monkeypatch.setenv("ARB_THRESHOLD", "0.98")
        monkeypatch.setenv("MAX_TRADE_SIZE", "25")
        monkeypatch.setenv("DRY_RUN", "false")
        cfg = load_config()
        assert cfg.arb_threshold == 0.98
        assert cfg.max_trade_size == 25.0
        assert cfg.dry_run is False

    def test_asset_list_from_env(self, monkeypatch):
        monkeypatch.setenv("UPDOWN_ASSETS", '["btc", "eth"]')
        cfg = load_config()
        assert cfg.updown_assets == ["btc", "eth"]

    def test_invalid_env_raises(self, monkeypatch):
        monkeypatch.setenv("ARB_THRESHOLD", "1.5")
        with pytest.raises(ValidationError):
            load_config()
