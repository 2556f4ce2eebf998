"""SignalHub — application configuration.

Loads .env variables into a typed config object and reads the read-only
``signalhub.json`` file that carries strategy bindings and tiers.
Validates required variables on startup.
"""

import json
import logging
import os
import pathlib
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

from signalhub.broadcast.entitlement import DEFAULT_TIERS, validate_tier_ordering
from signalhub.models.binding import StrategyBinding
from signalhub.models.signal import Priority
from signalhub.models.subscription import Tier

logger = logging.getLogger("signalhub.config")

_REQUIRED_VARS = [
    "TELEGRAM_BOT_TOKEN",
    "OANDA_API_TOKEN",
]

DEFAULT_SIGNALHUB_JSON = str(pathlib.Path(__file__).resolve().parent.parent / "signalhub.json")


class ConfigError(ValueError):
    """Raised when ``signalhub.json`` is malformed."""


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    telegram_bot_token: str
    oanda_api_token: str
    oanda_environment: str  # "practice" or "live"
    db_path: str
    log_level: str
    api_port: int
    scan_interval_seconds: int
    min_confidence: float
    dispatch_interval_seconds: float
    delivery_timeout_seconds: float
    candle_count: int
    candle_fetch_concurrency: int
    news_guard_minutes: int
    signalhub_json: str

    @property
    def oanda_base_url(self) -> str:
        """Return the OANDA v20 API base URL based on environment."""
        if self.oanda_environment == "live":
            return "https://api-fxtrade.oanda.com"
        return "https://api-fxpractice.oanda.com"


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        telegram_bot_token=os.environ["TELEGRAM_BOT_TOKEN"],
        oanda_api_token=os.environ["OANDA_API_TOKEN"],
        oanda_environment=os.environ.get("OANDA_ENVIRONMENT", "practice"),
        db_path=os.environ.get("DB_PATH", "data/signalhub.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
        scan_interval_seconds=int(os.environ.get("SCAN_INTERVAL_SECONDS", "30")),
        min_confidence=float(os.environ.get("MIN_CONFIDENCE", "40")),
        dispatch_interval_seconds=float(os.environ.get("DISPATCH_INTERVAL_SECONDS", "5")),
        delivery_timeout_seconds=float(os.environ.get("DELIVERY_TIMEOUT_SECONDS", "10")),
        candle_count=max(100, int(os.environ.get("CANDLE_COUNT", "100"))),
        candle_fetch_concurrency=int(os.environ.get("CANDLE_FETCH_CONCURRENCY", "4")),
        news_guard_minutes=int(os.environ.get("NEWS_GUARD_MINUTES", "10")),
        signalhub_json=os.environ.get("SIGNALHUB_JSON", DEFAULT_SIGNALHUB_JSON),
    )


# ── signalhub.json ───────────────────────────────────────────────────────


def _read_json(path: str | pathlib.Path) -> dict:
    p = pathlib.Path(path)
    if not p.exists():
        return {}
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{p}: invalid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{p}: top-level value must be an object")
    return data


def load_bindings(path: str | pathlib.Path) -> list[StrategyBinding]:
    """Read strategy bindings from the ``bindings`` array of *path*.

    A missing file yields an empty list.  Entries without ``name`` or
    ``account_id`` raise ``ConfigError``.
    """
    bindings: list[StrategyBinding] = []
    for i, raw in enumerate(_read_json(path).get("bindings", [])):
        if not raw.get("name") or not raw.get("account_id"):
            raise ConfigError(f"binding #{i} needs 'name' and 'account_id'")
        priority = str(raw.get("priority", "MEDIUM")).upper()
        if priority not in Priority.__members__:
            raise ConfigError(f"binding '{raw['name']}': unknown priority '{priority}'")
        kwargs = {
            k: raw[k]
            for k in (
                "strategy", "timeframe", "risk_level", "enabled",
                "max_open_positions", "execute_trades", "publish_signals",
            )
            if k in raw
        }
        if "symbols" in raw:
            kwargs["symbols"] = list(raw["symbols"])
        bindings.append(
            StrategyBinding(
                name=raw["name"],
                account_id=str(raw["account_id"]),
                priority=priority,
                **kwargs,
            )
        )
    return bindings


def load_tiers(path: Optional[str | pathlib.Path] = None) -> list[Tier]:
    """Read tiers from the ``tiers`` array of *path*.

    Falls back to the built-in tier table when the file or the key is
    absent.  Ordering violations (a higher tier that can see fewer
    priorities) are logged, not raised.
    """
    data = _read_json(path) if path else {}
    raw_tiers = data.get("tiers")
    channels: dict = data.get("channels", {})

    if not raw_tiers:
        tiers = list(DEFAULT_TIERS)
    else:
        tiers = []
        for i, raw in enumerate(raw_tiers):
            if "slug" not in raw or "rank" not in raw:
                raise ConfigError(f"tier #{i} needs 'slug' and 'rank'")
            tiers.append(
                Tier(
                    slug=raw["slug"],
                    name=raw.get("name", raw["slug"].title()),
                    rank=int(raw["rank"]),
                    allowed_priorities=frozenset(
                        str(p).upper() for p in raw.get("allowed_priorities", [])
                    ),
                    delay_minutes=int(raw.get("delay_minutes", 0)),
                    max_signals_per_day=raw.get("max_signals_per_day"),
                    includes_sl_tp=bool(raw.get("includes_sl_tp", True)),
                    includes_analysis=bool(raw.get("includes_analysis", False)),
                    includes_vip_channel=bool(raw.get("includes_vip_channel", False)),
                    channel_id=raw.get("channel_id"),
                )
            )

    if channels:
        tiers = [
            replace(t, channel_id=channels[t.slug]) if t.slug in channels else t
            for t in tiers
        ]

    for problem in validate_tier_ordering(tiers):
        logger.warning("Tier configuration: %s", problem)
    return tiers
