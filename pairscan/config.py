"""PairScan — application configuration.

Loads .env variables into a typed config object and reads the JSON
strategy / trading configuration files the scan engine consumes each cycle.
Validates required variables on startup.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from pairscan.risk.risk_checks import RiskLimits
from pairscan.scoring import ScoringWeights

logger = logging.getLogger("pairscan.config")

_REQUIRED_VARS = [
    "OANDA_ACCOUNT_ID",
    "OANDA_API_TOKEN",
    "OANDA_ENVIRONMENT",
]

STRATEGY_PROFILES = ("strict", "soft")
DEFAULT_STRATEGY_ID = "h1_trend_m15_pullback"
DEFAULT_WATCHLIST = ("EUR_USD", "USD_JPY", "GBP_USD", "AUD_USD", "USD_CHF", "USD_CAD")

DEFAULT_PROFILES: dict[str, dict] = {
    "strict": {
        "rrTarget": 1.6,
        "pullbackAtrRatio": 0.3,
        "zoneAtrTolerance": 0.35,
        "slAtrBuffer": 0.1,
        "minSlAtr": 0.2,
        "rangeWindowBars": 24,
        "breakoutBufferPips": 1.2,
        "slBufferPips": 2,
    },
    "soft": {
        "rrTarget": 1.45,
        "pullbackAtrRatio": 0.22,
        "zoneAtrTolerance": 0.45,
        "slAtrBuffer": 0.1,
        "minSlAtr": 0.2,
        "rangeWindowBars": 24,
        "breakoutBufferPips": 1,
        "slBufferPips": 2,
    },
}


# ── Environment ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    oanda_account_id: str
    oanda_api_token: str
    oanda_environment: str  # "practice" or "live"
    fixed_units: int = 1000
    risk_per_trade_usd: float = 6.0
    min_risk_reward: float = 1.5
    max_spread_to_sl_ratio: float = 0.2
    m15_candle_count: int = 100
    h1_candle_count: int = 100
    strategy_config_path: str = "config/strategy.json"
    trading_config_path: str = "config/trading.json"
    snapshot_path: str = "data/scanner-status.json"
    db_path: str = "data/pairscan.db"
    poll_interval_seconds: int = 900
    log_level: str = "INFO"
    health_port: int = 8080

    @property
    def oanda_base_url(self) -> str:
        """Return the OANDA v20 API base URL based on environment."""
        if self.oanda_environment == "live":
            return "https://api-fxtrade.oanda.com"
        return "https://api-fxpractice.oanda.com"

    @property
    def risk_limits(self) -> RiskLimits:
        return RiskLimits(
            fixed_units=self.fixed_units,
            risk_per_trade_usd=self.risk_per_trade_usd,
            min_risk_reward=self.min_risk_reward,
            max_spread_to_sl_ratio=self.max_spread_to_sl_ratio,
        )

    @property
    def candle_counts(self) -> dict[str, int]:
        return {"M15": self.m15_candle_count, "H1": self.h1_candle_count}


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
        oanda_account_id=os.environ["OANDA_ACCOUNT_ID"],
        oanda_api_token=os.environ["OANDA_API_TOKEN"],
        oanda_environment=os.environ.get("OANDA_ENVIRONMENT", "practice"),
        fixed_units=int(os.environ.get("FIXED_UNITS", "1000")),
        risk_per_trade_usd=float(os.environ.get("RISK_PER_TRADE_USD", "6.0")),
        min_risk_reward=float(os.environ.get("MIN_RISK_REWARD", "1.5")),
        max_spread_to_sl_ratio=float(os.environ.get("MAX_SPREAD_TO_SL_RATIO", "0.2")),
        m15_candle_count=int(os.environ.get("M15_CANDLE_COUNT", "100")),
        h1_candle_count=int(os.environ.get("H1_CANDLE_COUNT", "100")),
        strategy_config_path=os.environ.get("STRATEGY_CONFIG_PATH", "config/strategy.json"),
        trading_config_path=os.environ.get("TRADING_CONFIG_PATH", "config/trading.json"),
        snapshot_path=os.environ.get("SNAPSHOT_PATH", "data/scanner-status.json"),
        db_path=os.environ.get("DB_PATH", "data/pairscan.db"),
        poll_interval_seconds=int(os.environ.get("POLL_INTERVAL_SECONDS", "900")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=int(os.environ.get("HEALTH_PORT", "8080")),
    )


def _read_json(path: str) -> dict:
    """Read a JSON object from *path*; ``{}`` if missing or invalid."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read config file %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


# ── Strategy configuration ───────────────────────────────────────────────


@dataclass(frozen=True)
class StrategyRuntimeConfig:
    """Active strategy id plus its named parameter profiles."""

    active_strategy_id: str = DEFAULT_STRATEGY_ID
    active_profile: str = "strict"
    profiles: dict[str, dict] = field(default_factory=lambda: {
        name: dict(params) for name, params in DEFAULT_PROFILES.items()
    })
    params: dict = field(default_factory=lambda: dict(DEFAULT_PROFILES["strict"]))

    def to_dict(self) -> dict:
        return {
            "activeStrategyId": self.active_strategy_id,
            "activeProfile": self.active_profile,
            "profiles": self.profiles,
            "params": self.params,
        }


def load_strategy_config(path: str = "config/strategy.json") -> StrategyRuntimeConfig:
    """Load ``{activeStrategyId, activeProfile, profiles}`` from *path*.

    A legacy top-level ``params`` object overrides the active profile.
    A missing or unreadable file yields the built-in defaults.
    """
    data = _read_json(path)
    if not data:
        return StrategyRuntimeConfig()

    active_id = str(data.get("activeStrategyId") or DEFAULT_STRATEGY_ID)
    raw_profiles = data.get("profiles") if isinstance(data.get("profiles"), dict) else {}
    profiles = {
        name: dict(raw_profiles[name]) if isinstance(raw_profiles.get(name), dict)
        else dict(DEFAULT_PROFILES[name])
        for name in STRATEGY_PROFILES
    }
    active_profile = "soft" if data.get("activeProfile") == "soft" else "strict"
    legacy = data.get("params") if isinstance(data.get("params"), dict) else None

    return StrategyRuntimeConfig(
        active_strategy_id=active_id,
        active_profile=active_profile,
        profiles=profiles,
        params=dict(legacy) if legacy is not None else dict(profiles[active_profile]),
    )


def _write_strategy_config(path: str, cfg: StrategyRuntimeConfig) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    content = {
        "activeStrategyId": cfg.active_strategy_id,
        "activeProfile": cfg.active_profile,
        "profiles": cfg.profiles,
    }
    target.write_text(json.dumps(content, indent=2) + "\n", encoding="utf-8")


def set_active_profile(profile: str, path: str = "config/strategy.json") -> StrategyRuntimeConfig:
    """Switch the active parameter profile and persist the file.

    Raises ``ValueError`` for a profile other than ``strict``/``soft``.
    """
    if profile not in STRATEGY_PROFILES:
        raise ValueError(f"Invalid profile '{profile}'. Expected one of: {', '.join(STRATEGY_PROFILES)}")

    current = load_strategy_config(path)
    updated = StrategyRuntimeConfig(
        active_strategy_id=current.active_strategy_id,
        active_profile=profile,
        profiles=current.profiles,
        params=dict(current.profiles[profile]),
    )
    _write_strategy_config(path, updated)
    logger.info("Strategy profile set to %s", profile)
    return updated


def set_active_strategy_id(strategy_id: str, path: str = "config/strategy.json") -> StrategyRuntimeConfig:
    """Switch the active strategy and persist the file.

    Raises ``ValueError`` for a blank id.  Whether the id is registered is
    checked by the caller.
    """
    normalized = (strategy_id or "").strip()
    if not normalized:
        raise ValueError("Invalid strategy_id: must be a non-empty string")

    current = load_strategy_config(path)
    updated = StrategyRuntimeConfig(
        active_strategy_id=normalized,
        active_profile=current.active_profile,
        profiles=current.profiles,
        params=dict(current.profiles[current.active_profile]),
    )
    _write_strategy_config(path, updated)
    logger.info("Active strategy set to %s", normalized)
    return updated


# ── Trading configuration ────────────────────────────────────────────────


@dataclass(frozen=True)
class TradingRuntimeConfig:
    """Watchlist, concurrency cap and scoring weights."""

    watchlist: tuple[str, ...] = DEFAULT_WATCHLIST
    max_concurrent_trades: int = 1
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    auto_select_strategy: bool = False

    def to_dict(self) -> dict:
        return {
            "watchlist": list(self.watchlist),
            "maxConcurrentTrades": self.max_concurrent_trades,
            "scoring": self.scoring.to_dict(),
            "autoSelectStrategy": self.auto_select_strategy,
        }


def _positive_int(value, fallback: int) -> int:
    try:
        parsed = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return fallback
    return parsed if parsed > 0 else fallback


def _weight(scoring: dict, key: str, fallback: float) -> float:
    try:
        return float(scoring.get(key, fallback))
    except (TypeError, ValueError):
        return fallback


def load_trading_config(path: str = "config/trading.json") -> TradingRuntimeConfig:
    """Load the trading configuration from *path*, falling back to defaults."""
    data = _read_json(path)
    if not data:
        return TradingRuntimeConfig()

    raw_watchlist = data.get("watchlist")
    watchlist: tuple[str, ...] = DEFAULT_WATCHLIST
    if isinstance(raw_watchlist, list):
        cleaned = tuple(
            str(p).upper() for p in raw_watchlist if p and "_" in str(p)
        )
        watchlist = cleaned or DEFAULT_WATCHLIST

    defaults = ScoringWeights()
    raw_scoring = data.get("scoring") if isinstance(data.get("scoring"), dict) else {}
    scoring = ScoringWeights(
        rr_weight=_weight(raw_scoring, "rrWeight", defaults.rr_weight),
        trend_clarity_weight=_weight(raw_scoring, "trendClarityWeight", defaults.trend_clarity_weight),
        spread_weight=_weight(raw_scoring, "spreadWeight", defaults.spread_weight),
        distance_from_sr_weight=_weight(raw_scoring, "distanceFromSRWeight", defaults.distance_from_sr_weight),
    )

    return TradingRuntimeConfig(
        watchlist=watchlist,
        max_concurrent_trades=_positive_int(data.get("maxConcurrentTrades"), 1),
        scoring=scoring,
        auto_select_strategy=bool(data.get("autoSelectStrategy", False)),
    )


class FileConfigSource:
    """Config source backed by the strategy and trading JSON files."""

    def __init__(
        self,
        strategy_path: str = "config/strategy.json",
        trading_path: str = "config/trading.json",
    ) -> None:
        self.strategy_path = strategy_path
        self.trading_path = trading_path

    def load_strategy(self) -> StrategyRuntimeConfig:
        return load_strategy_config(self.strategy_path)

    def load_trading(self) -> TradingRuntimeConfig:
        return load_trading_config(self.trading_path)

    def set_active_profile(self, profile: str) -> StrategyRuntimeConfig:
        return set_active_profile(profile, self.strategy_path)

    def set_active_strategy_id(self, strategy_id: str) -> StrategyRuntimeConfig:
        return set_active_strategy_id(strategy_id, self.strategy_path)
