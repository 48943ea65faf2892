"""
Domain Models
The SINGLE SOURCE OF TRUTH for persisted records.

Records are plain keyed data (pair key "ASSET1/ASSET2"); behavior lives in
core.lifecycle as pure functions that return updated copies.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .clock import utcnow


def _parse_timestamp(v):
    """Handle datetime, ISO strings and unix seconds / milliseconds"""
    if isinstance(v, datetime):
        return v
    if isinstance(v, str):
        return datetime.fromisoformat(v.replace('Z', '+00:00'))
    if isinstance(v, (int, float)):
        # Unix timestamp (seconds or milliseconds), stored as naive UTC
        if v > 1e12:
            v = v / 1000
        return datetime.fromtimestamp(v, tz=timezone.utc).replace(tzinfo=None)
    return v


# =============================================================================
# Enums
# =============================================================================

class Direction(str, Enum):
    """LONG = long asset1 / short asset2"""
    LONG = "long"
    SHORT = "short"


class EntryStatus(str, Enum):
    CANDIDATE = "candidate"
    ACTIVE = "active"
    BLOCKED = "blocked"


class ExitReason(str, Enum):
    PARTIAL_TP = "PARTIAL_TP"
    FINAL_TP = "FINAL_TP"
    TARGET = "TARGET"
    STOP_LOSS = "STOP_LOSS"
    BETA_DRIFT = "BETA_DRIFT"
    TIME_STOP = "TIME_STOP"
    BREAKDOWN = "BREAKDOWN"
    HURST_REGIME = "HURST_REGIME"
    MANUAL = "MANUAL"


class HealthStatus(str, Enum):
    STRONG = "STRONG"
    OK = "OK"
    WEAK = "WEAK"
    BROKEN = "BROKEN"


# =============================================================================
# Market Data
# =============================================================================

class Candle(BaseModel):
    """One bar from the price feed."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float = Field(..., gt=0)
    volume: float = Field(default=0.0, ge=0)

    @field_validator('timestamp', mode='before')
    @classmethod
    def parse_timestamp(cls, v):
        return _parse_timestamp(v)


class PriceSeries(BaseModel):
    """Ordered candles for one symbol; fixed for an analysis cycle."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    interval: str = "1d"
    candles: Tuple[Candle, ...] = ()

    def closes(self) -> List[float]:
        return [c.close for c in self.candles]

    def __len__(self) -> int:
        return len(self.candles)


class AssetInfo(BaseModel):
    """A row of the tradeable universe."""
    symbol: str
    price: float = 0.0
    volume_24h: float = 0.0
    open_interest: float = 0.0   # Notional
    funding_rate: float = 0.0
    funding_annualized: float = 0.0


# =============================================================================
# Watchlist
# =============================================================================

class WatchlistEntry(BaseModel):
    """
    A candidate pair awaiting an entry signal.

    Created and refreshed by the scanner; flagged ACTIVE or BLOCKED by the
    monitor.
    """
    pair: str
    asset1: str
    asset2: str
    sector: str = ""
    quality_score: float = 0.0
    conviction: Optional[float] = None
    hurst: Optional[float] = None
    hurst_classification: str = "UNKNOWN"
    correlation: float = 0.0
    beta: float = 0.0
    initial_beta: Optional[float] = None
    beta_drift: Optional[float] = None
    half_life: Optional[float] = None
    mean_reversion_rate: float = 0.0
    z_score: Optional[float] = None
    signal_strength: float = 0.0
    direction: Optional[Direction] = None
    is_ready: bool = False
    entry_threshold: float = 2.0
    exit_threshold: float = 0.5
    max_historical_z: float = 0.0
    funding_spread: float = 0.0
    volume1: float = 0.0
    volume2: float = 0.0
    added_manually: bool = False
    status: EntryStatus = EntryStatus.CANDIDATE
    block_reason: Optional[str] = None
    last_scan: datetime = Field(default_factory=utcnow)

    @field_validator('pair')
    @classmethod
    def check_pair(cls, v):
        if v.count("/") != 1:
            raise ValueError("pair must look like ASSET1/ASSET2")
        return v

    @field_validator('last_scan', mode='before')
    @classmethod
    def parse_last_scan(cls, v):
        return _parse_timestamp(v)


# =============================================================================
# Trades
# =============================================================================

class EntrySnapshot(BaseModel):
    """Metrics frozen at entry; never modified afterwards."""
    model_config = ConfigDict(frozen=True)

    time: datetime
    z_score: float
    beta: float
    half_life: Optional[float] = None
    hurst: Optional[float] = None
    max_historical_z: float = 0.0
    correlation: float = 0.0
    entry_threshold: float = 2.0
    price1: float = Field(..., gt=0)
    price2: float = Field(..., gt=0)

    @field_validator('time', mode='before')
    @classmethod
    def parse_time(cls, v):
        return _parse_timestamp(v)


class ActiveTrade(BaseModel):
    """An open position tracked by the monitor."""
    pair: str
    asset1: str
    asset2: str
    sector: str = ""
    direction: Direction
    long_asset: str
    short_asset: str
    long_weight: float
    short_weight: float
    entry: EntrySnapshot

    current_z: Optional[float] = None
    current_correlation: Optional[float] = None
    current_hurst: Optional[float] = None
    current_beta: Optional[float] = None
    current_half_life: Optional[float] = None
    current_price1: Optional[float] = None
    current_price2: Optional[float] = None
    current_pnl: float = 0.0
    beta_drift: Optional[float] = None
    max_beta_drift: float = 0.0

    partial_exit_taken: bool = False
    partial_exit_pnl: Optional[float] = None
    partial_exit_time: Optional[datetime] = None

    health_score: int = 0
    health_status: HealthStatus = HealthStatus.OK
    health_signals: List[str] = Field(default_factory=list)
    last_update: Optional[datetime] = None

    @property
    def trade_id(self) -> str:
        return f"{self.pair}@{self.entry.time.isoformat()}"

    @property
    def assets(self) -> Tuple[str, str]:
        return self.asset1, self.asset2


class PartialExit(BaseModel):
    pair: str
    trade_id: str
    exit_time: datetime
    exit_size: float
    exit_z_score: Optional[float] = None
    partial_pnl: float
    total_pnl_at_exit: float
    reason: ExitReason


class HistoryRecord(BaseModel):
    """A closed trade. Immutable, append-only."""
    model_config = ConfigDict(frozen=True)

    trade_id: str
    pair: str
    asset1: str
    asset2: str
    sector: str = ""
    direction: Direction
    entry: EntrySnapshot
    exit_time: datetime
    exit_z_score: Optional[float] = None
    exit_hurst: Optional[float] = None
    exit_correlation: Optional[float] = None
    exit_beta_drift: Optional[float] = None
    exit_reason: ExitReason
    total_pnl: float
    days_in_trade: float
    partial_exit_taken: bool = False
    partial_exit_pnl: Optional[float] = None

    @property
    def is_win(self) -> bool:
        return self.total_pnl >= 0


class TradeStats(BaseModel):
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    total_pnl: float = 0.0
    win_rate: float = 0.0


class BlacklistEntry(BaseModel):
    asset: str = Field(..., min_length=1, max_length=20)
    reason: str = ""
    added_at: datetime = Field(default_factory=utcnow)

    @field_validator('asset', mode='before')
    @classmethod
    def uppercase_asset(cls, v):
        """Always uppercase symbols"""
        return v.upper() if isinstance(v, str) else v
