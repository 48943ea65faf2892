"""
Core Module
Domain records, configuration and the trade lifecycle.

Structure:
    core/
    ├── models.py      → Persisted records (pydantic)
    ├── config.py      → Settings, sector map
    ├── exceptions.py  → Error hierarchy
    ├── clock.py       → Naive-UTC now()
    ├── lifecycle.py   → Entry gates, exit policy, health (pure)
    ├── calibration.py → Intraday z history for entry thresholds
    ├── scanner.py     → Universe → watchlist
    ├── monitor.py     → Watchlist / trades → entries, exits
    └── scheduler.py   → Guarded scan / monitor jobs

Only the leaf modules are re-exported here; lifecycle, scanner, monitor
and scheduler depend on analytics and are imported by path.
"""

from .models import (
    Direction,
    EntryStatus,
    ExitReason,
    HealthStatus,
    Candle,
    PriceSeries,
    AssetInfo,
    WatchlistEntry,
    EntrySnapshot,
    ActiveTrade,
    PartialExit,
    HistoryRecord,
    TradeStats,
    BlacklistEntry,
)

from .clock import utcnow
from .config import Settings, get_settings, load_sector_map

from .exceptions import (
    SpreadWatchError,
    InsufficientDataError,
    PriceFeedError,
    StorageError,
    ConfigurationError,
)

__all__ = [
    # Models
    "Direction",
    "EntryStatus",
    "ExitReason",
    "HealthStatus",
    "Candle",
    "PriceSeries",
    "AssetInfo",
    "WatchlistEntry",
    "EntrySnapshot",
    "ActiveTrade",
    "PartialExit",
    "HistoryRecord",
    "TradeStats",
    "BlacklistEntry",
    # Config
    "Settings",
    "get_settings",
    "load_sector_map",
    "utcnow",
    # Errors
    "SpreadWatchError",
    "InsufficientDataError",
    "PriceFeedError",
    "StorageError",
    "ConfigurationError",
]
