"""
Configuration
Every tunable threshold lives here, overridable through the environment.

Environment variables use the SPREADWATCH_ prefix and "__" for nesting:
    SPREADWATCH_DB_PATH=data/spreadwatch.db
    SPREADWATCH_ENTRY__MAX_CONCURRENT_TRADES=3
    SPREADWATCH_EXIT__HURST_EXIT=0.6

The Hurst exit boundary and the beta-drift ratios were tuned on a small
sample of live trades; treat them as knobs, not constants.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SECTORS_FILE = Path(__file__).parent / "sectors.json"


# =============================================================================
# Sections
# =============================================================================

class AnalysisConfig(BaseModel):
    """Windows and estimator parameters."""
    reactive_days: int = 30
    confirmation_days: int = 7
    hurst_days: int = 60
    cointegration_days: int = 90
    min_cointegration_points: int = 60
    min_hurst_points: int = 40
    min_points: int = 10
    z_window: int = 30
    divergence_thresholds: List[float] = Field(default_factory=lambda: [1.0, 1.5, 2.0, 2.5, 3.0])
    divergence_reversion_fraction: float = 0.5
    divergence_interval: Literal["1h", "4h", "1d"] = "1h"
    divergence_days: int = 30
    min_divergence_points: int = 240
    entry_floor: float = 2.0
    exit_threshold: float = 0.5
    hurst_watch: float = 0.45
    hurst_reject: float = 0.5
    max_half_life_periods: float = 1000.0

    @field_validator("divergence_thresholds")
    @classmethod
    def sorted_thresholds(cls, v):
        if not v:
            raise ValueError("at least one divergence threshold is required")
        return sorted(v)


class EntryConfig(BaseModel):
    """Gates that must all hold before a candidate becomes a trade."""
    min_correlation: float = 0.6
    max_half_life: float = 30.0
    min_half_life: Optional[float] = None
    confirmation_ratio: float = 0.8
    max_concurrent_trades: int = 5
    max_trades_per_asset: int = 1


class ExitConfig(BaseModel):
    """Exit policy, evaluated in priority order."""
    partial_take_profit: float = 3.0
    final_take_profit: float = 5.0
    partial_size: float = 0.5
    exit_threshold: float = 0.5
    stop_loss_entry_multiplier: float = 1.5
    stop_loss_history_multiplier: float = 1.2
    stop_loss_floor: float = 3.0
    drift_warning: float = 0.15
    drift_critical: float = 0.30
    drift_new_high_ratio: float = 1.25
    weak_reversion_progress: float = 0.25
    time_stop_multiplier: float = 2.0
    default_half_life: float = 15.0
    correlation_breakdown: float = 0.4
    hurst_exit: float = 0.55


class ScannerConfig(BaseModel):
    min_volume: float = 500_000
    min_open_interest: float = 100_000
    min_correlation: float = 0.6
    cross_sector_min_correlation: float = 0.7
    cross_sector_top_n: int = 5
    max_half_life: float = 45.0
    top_per_sector: int = 3
    lookback_days: int = 90
    min_coverage: float = 0.8
    min_aligned_points: int = 15
    batch_size: int = 5
    batch_delay_sec: float = 0.5


class SchedulerConfig(BaseModel):
    scan_interval_sec: int = 12 * 60 * 60
    monitor_interval_sec: int = 15 * 60
    autostart: bool = False


# =============================================================================
# Settings
# =============================================================================

class Settings(BaseSettings):
    db_path: str = "data/spreadwatch.db"
    log_level: str = "INFO"
    sectors_file: Path = DEFAULT_SECTORS_FILE
    hyperliquid_url: str = "https://api.hyperliquid.xyz/info"
    http_timeout_sec: int = 30
    http_max_retries: int = 3
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    entry: EntryConfig = Field(default_factory=EntryConfig)
    exit: ExitConfig = Field(default_factory=ExitConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    model_config = SettingsConfigDict(
        env_prefix="SPREADWATCH_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


def load_sector_map(path: Optional[Path] = None) -> Dict[str, str]:
    """
    Load the sector JSON and invert it to symbol → sector.

    File format:
        {"_sectors": ["L1", "DEFI"], "L1": ["BTC", "ETH"], "DEFI": ["AAVE"]}
    """
    path = Path(path or DEFAULT_SECTORS_FILE)
    try:
        with open(path, "r", encoding="utf-8") as fh:
            config = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            "Cannot read sector map", context={"path": str(path)}, cause=e
        ) from e

    symbol_to_sector: Dict[str, str] = {}
    for sector in config.get("_sectors", []):
        for symbol in config.get(sector, []):
            symbol_to_sector[symbol] = sector

    logger.debug("Loaded %d symbols across %d sectors", len(symbol_to_sector),
                 len(config.get("_sectors", [])))
    return symbol_to_sector


# =============================================================================
# Singleton
# =============================================================================

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get singleton settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
