"""Tests for signalhub.config — environment loading and signalhub.json parsing."""

import json

import pytest

from signalhub.config import ConfigError, load_bindings, load_config, load_tiers

_ENV_VARS = [
    "TELEGRAM_BOT_TOKEN",
    "OANDA_API_TOKEN",
    "OANDA_ENVIRONMENT",
    "DB_PATH",
    "LOG_LEVEL",
    "API_PORT",
    "SCAN_INTERVAL_SECONDS",
    "MIN_CONFIDENCE",
    "DISPATCH_INTERVAL_SECONDS",
    "DELIVERY_TIMEOUT_SECONDS",
    "CANDLE_COUNT",
    "CANDLE_FETCH_CONCURRENCY",
    "NEWS_GUARD_MINUTES",
    "SIGNALHUB_JSON",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure SignalHub env vars are cleared between tests."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def no_dotenv(tmp_path):
    """A non-existent env file so load_dotenv never reads a real .env."""
    return str(tmp_path / "nonexistent.env")


def _set_required(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("OANDA_API_TOKEN", "test-token-abc123")


def _write_json(tmp_path, data) -> str:
    path = tmp_path / "signalhub.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


# ── Environment ──────────────────────────────────────────────────────────


class TestLoadConfig:
    def test_loads_required_vars(self, monkeypatch, no_dotenv):
        _set_required(monkeypatch)
        cfg = load_config(no_dotenv)
        assert cfg.telegram_bot_token == "123:abc"
        assert cfg.oanda_api_token == "test-token-abc123"

    def test_defaults(self, monkeypatch, no_dotenv):
        _set_required(monkeypatch)
        cfg = load_config(no_dotenv)
        assert cfg.oanda_environment == "practice"
        assert cfg.db_path == "data/signalhub.db"
        assert cfg.log_level == "INFO"
        assert cfg.api_port == 8080
        assert cfg.scan_interval_seconds == 30
        assert cfg.min_confidence == 40.0
        assert cfg.delivery_timeout_seconds == 10.0
        assert cfg.candle_count == 100
        assert cfg.news_guard_minutes == 10
        assert cfg.signalhub_json.endswith("signalhub.json")

    def test_overrides(self, monkeypatch, no_dotenv):
        _set_required(monkeypatch)
        monkeypatch.setenv("SCAN_INTERVAL_SECONDS", "60")
        monkeypatch.setenv("MIN_CONFIDENCE", "55")
        monkeypatch.setenv("CANDLE_FETCH_CONCURRENCY", "8")
        cfg = load_config(no_dotenv)
        assert cfg.scan_interval_seconds == 60
        assert cfg.min_confidence == 55.0
        assert cfg.candle_fetch_concurrency == 8

    def test_candle_count_floor(self, monkeypatch, no_dotenv):
        _set_required(monkeypatch)
        monkeypatch.setenv("CANDLE_COUNT", "50")
        assert load_config(no_dotenv).candle_count == 100

    def test_missing_var_named(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("OANDA_API_TOKEN", "token")
        with pytest.raises(ValueError, match="TELEGRAM_BOT_TOKEN"):
            load_config(no_dotenv)

    def test_environment_switching(self, monkeypatch, no_dotenv):
        _set_required(monkeypatch)
        assert load_config(no_dotenv).oanda_base_url == "https://api-fxpractice.oanda.com"
        monkeypatch.setenv("OANDA_ENVIRONMENT", "live")
        assert load_config(no_dotenv).oanda_base_url == "https://api-fxtrade.oanda.com"

    def test_reads_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("TELEGRAM_BOT_TOKEN=file-bot\nOANDA_API_TOKEN=file-oanda\nAPI_PORT=9090\n")
        cfg = load_config(str(env_file))
        assert cfg.telegram_bot_token == "file-bot"
        assert cfg.api_port == 9090


# ── Bindings ─────────────────────────────────────────────────────────────


class TestLoadBindings:
    def test_repo_sample_file(self):
        from signalhub.config import DEFAULT_SIGNALHUB_JSON

        bindings = load_bindings(DEFAULT_SIGNALHUB_JSON)
        assert [b.name for b in bindings] == ["gold-momentum", "majors-confirmed"]
        assert bindings[0].symbols == ["XAU_USD"]
        assert bindings[1].execute_trades is False

    def test_defaults_applied(self, tmp_path):
        path = _write_json(tmp_path, {"bindings": [{"name": "a", "account_id": 12345}]})
        (binding,) = load_bindings(path)
        assert binding.account_id == "12345"
        assert binding.strategy == "momentum"
        assert binding.priority == "MEDIUM"
        assert binding.symbols == ["XAU_USD", "EUR_USD", "GBP_USD", "USD_JPY"]
        assert binding.enabled is True

    def test_priority_normalised(self, tmp_path):
        path = _write_json(tmp_path, {"bindings": [{"name": "a", "account_id": "x", "priority": "vip"}]})
        assert load_bindings(path)[0].priority == "VIP"

    def test_unknown_priority(self, tmp_path):
        path = _write_json(tmp_path, {"bindings": [{"name": "a", "account_id": "x", "priority": "urgent"}]})
        with pytest.raises(ConfigError, match="URGENT"):
            load_bindings(path)

    def test_missing_account(self, tmp_path):
        path = _write_json(tmp_path, {"bindings": [{"name": "a"}]})
        with pytest.raises(ConfigError, match="account_id"):
            load_bindings(path)

    def test_missing_file_is_empty(self, tmp_path):
        assert load_bindings(tmp_path / "absent.json") == []

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "signalhub.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError, match="invalid JSON"):
            load_bindings(path)

    def test_top_level_must_be_object(self, tmp_path):
        path = _write_json(tmp_path, [1, 2])
        with pytest.raises(ConfigError):
            load_bindings(path)


# ── Tiers ────────────────────────────────────────────────────────────────


class TestLoadTiers:
    def test_builtin_fallback(self):
        tiers = load_tiers(None)
        assert [t.slug for t in tiers] == ["starter", "basic", "premium", "vip"]

    def test_channels_applied_to_builtin_tiers(self, tmp_path):
        path = _write_json(tmp_path, {"channels": {"vip": "-100123"}})
        tiers = {t.slug: t for t in load_tiers(path)}
        assert tiers["vip"].channel_id == "-100123"
        assert tiers["basic"].channel_id is None

    def test_custom_tiers(self, tmp_path):
        path = _write_json(tmp_path, {"tiers": [
            {"slug": "free", "rank": 0, "allowed_priorities": ["low"], "max_signals_per_day": 1},
            {"slug": "pro", "rank": 1, "allowed_priorities": ["LOW", "MEDIUM", "HIGH"]},
        ]})
        free, pro = load_tiers(path)
        assert free.name == "Free"
        assert free.allowed_priorities == frozenset({"LOW"})
        assert free.max_signals_per_day == 1
        assert pro.max_signals_per_day is None

    def test_tier_needs_slug_and_rank(self, tmp_path):
        path = _write_json(tmp_path, {"tiers": [{"slug": "free"}]})
        with pytest.raises(ConfigError, match="rank"):
            load_tiers(path)

    def test_ordering_violation_logged(self, tmp_path, caplog):
        path = _write_json(tmp_path, {"tiers": [
            {"slug": "low", "rank": 0, "allowed_priorities": ["LOW"]},
            {"slug": "high", "rank": 1, "allowed_priorities": ["HIGH"]},
        ]})
        with caplog.at_level("WARNING", logger="signalhub.config"):
            tiers = load_tiers(path)
        assert len(tiers) == 2
        assert "lacks" in caplog.text
