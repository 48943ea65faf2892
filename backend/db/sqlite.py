"""
SQLite Storage
Persistent storage layer.

Responsibilities:
- Keyed get / upsert / delete for watchlist, trades, history, blacklist
- Partial-exit ledger
- Scheduler state (last runs, feature toggles)

NOT responsible for:
- Validation (pydantic models upstream)
- Analytics (analytics package)
- Lifecycle decisions (core.lifecycle)

Every write is an idempotent upsert keyed by pair / trade id, so an
interrupted cycle can simply be re-run.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.clock import utcnow
from core.exceptions import StorageError
from core.models import (
    ActiveTrade,
    BlacklistEntry,
    HistoryRecord,
    PartialExit,
    WatchlistEntry,
)

logger = logging.getLogger(__name__)


class SQLiteStorage:
    """
    SQLite persistence for the trade lifecycle.

    Tables:
        - watchlist: Candidate pairs (keyed by pair)
        - trades: Active trades (keyed by pair)
        - trade_history: Closed trades (keyed by trade id, append-only)
        - partial_exits: Partial exit ledger
        - blacklist: Excluded assets
        - scheduler_state: Key/value scheduler state
    """

    def __init__(self, db_path: str = "data/spreadwatch.db"):
        self.db_path = db_path
        self._ensure_directory()
        self._init_schema()

    def _ensure_directory(self):
        """Create data directory"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _connect(self, operation: str):
        """Commit on success; wrap sqlite errors in StorageError."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn
        except sqlite3.Error as e:
            logger.error("Storage operation %s failed: %s", operation, e)
            raise StorageError(f"{operation} failed", context={"db": self.db_path}, cause=e) from e
        finally:
            if conn is not None:
                conn.close()

    def _init_schema(self):
        """Initialize database schema"""
        with self._connect("init_schema") as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS watchlist (
                    pair TEXT PRIMARY KEY,
                    sector TEXT,
                    status TEXT NOT NULL,
                    quality_score REAL DEFAULT 0,
                    data TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS trades (
                    pair TEXT PRIMARY KEY,
                    trade_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS trade_history (
                    trade_id TEXT PRIMARY KEY,
                    pair TEXT NOT NULL,
                    exit_time TEXT NOT NULL,
                    exit_reason TEXT NOT NULL,
                    total_pnl REAL NOT NULL,
                    data TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_history_exit_time
                ON trade_history(exit_time);

                CREATE TABLE IF NOT EXISTS partial_exits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    trade_id TEXT NOT NULL,
                    pair TEXT NOT NULL,
                    exit_time TEXT NOT NULL,
                    data TEXT NOT NULL,
                    UNIQUE(trade_id, exit_time)
                );

                CREATE TABLE IF NOT EXISTS blacklist (
                    asset TEXT PRIMARY KEY,
                    reason TEXT,
                    added_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS scheduler_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
            """)

    # =========================================================================
    # Watchlist
    # =========================================================================

    def get_watchlist(self) -> List[WatchlistEntry]:
        """Entries ordered by quality score, best first"""
        with self._connect("get_watchlist") as conn:
            rows = conn.execute(
                "SELECT data FROM watchlist ORDER BY quality_score DESC, pair"
            ).fetchall()
        return [WatchlistEntry.model_validate_json(row["data"]) for row in rows]

    def get_watchlist_entry(self, pair: str) -> Optional[WatchlistEntry]:
        with self._connect("get_watchlist_entry") as conn:
            row = conn.execute("SELECT data FROM watchlist WHERE pair = ?", [pair]).fetchone()
        return WatchlistEntry.model_validate_json(row["data"]) if row else None

    def upsert_watchlist_entry(self, entry: WatchlistEntry) -> None:
        with self._connect("upsert_watchlist_entry") as conn:
            conn.execute(
                """INSERT OR REPLACE INTO watchlist
                   (pair, sector, status, quality_score, data, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [entry.pair, entry.sector, entry.status.value, entry.quality_score,
                 entry.model_dump_json(), utcnow().isoformat()]
            )

    def delete_watchlist_entry(self, pair: str) -> bool:
        with self._connect("delete_watchlist_entry") as conn:
            cursor = conn.execute("DELETE FROM watchlist WHERE pair = ?", [pair])
            return cursor.rowcount > 0

    # =========================================================================
    # Active Trades
    # =========================================================================

    def get_active_trades(self) -> List[ActiveTrade]:
        with self._connect("get_active_trades") as conn:
            rows = conn.execute("SELECT data FROM trades ORDER BY pair").fetchall()
        return [ActiveTrade.model_validate_json(row["data"]) for row in rows]

    def get_trade(self, pair: str) -> Optional[ActiveTrade]:
        with self._connect("get_trade") as conn:
            row = conn.execute("SELECT data FROM trades WHERE pair = ?", [pair]).fetchone()
        return ActiveTrade.model_validate_json(row["data"]) if row else None

    def upsert_trade(self, trade: ActiveTrade) -> None:
        with self._connect("upsert_trade") as conn:
            conn.execute(
                """INSERT OR REPLACE INTO trades (pair, trade_id, data, updated_at)
                   VALUES (?, ?, ?, ?)""",
                [trade.pair, trade.trade_id, trade.model_dump_json(), utcnow().isoformat()]
            )

    def delete_trade(self, pair: str) -> bool:
        with self._connect("delete_trade") as conn:
            cursor = conn.execute("DELETE FROM trades WHERE pair = ?", [pair])
            return cursor.rowcount > 0

    def record_partial_exit(self, trade: ActiveTrade, partial: PartialExit) -> None:
        """Persist the updated trade and its ledger row atomically."""
        with self._connect("record_partial_exit") as conn:
            conn.execute(
                """INSERT OR REPLACE INTO trades (pair, trade_id, data, updated_at)
                   VALUES (?, ?, ?, ?)""",
                [trade.pair, trade.trade_id, trade.model_dump_json(), utcnow().isoformat()]
            )
            conn.execute(
                """INSERT OR REPLACE INTO partial_exits (trade_id, pair, exit_time, data)
                   VALUES (?, ?, ?, ?)""",
                [partial.trade_id, partial.pair, partial.exit_time.isoformat(), partial.model_dump_json()]
            )

    def get_partial_exits(self, pair: Optional[str] = None) -> List[PartialExit]:
        with self._connect("get_partial_exits") as conn:
            if pair:
                rows = conn.execute(
                    "SELECT data FROM partial_exits WHERE pair = ? ORDER BY exit_time", [pair]
                ).fetchall()
            else:
                rows = conn.execute("SELECT data FROM partial_exits ORDER BY exit_time").fetchall()
        return [PartialExit.model_validate_json(row["data"]) for row in rows]

    # =========================================================================
    # History
    # =========================================================================

    def close_trade(self, record: HistoryRecord) -> None:
        """Append the history record and drop the active trade in one transaction."""
        with self._connect("close_trade") as conn:
            conn.execute(
                """INSERT OR REPLACE INTO trade_history
                   (trade_id, pair, exit_time, exit_reason, total_pnl, data)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [record.trade_id, record.pair, record.exit_time.isoformat(),
                 record.exit_reason.value, record.total_pnl, record.model_dump_json()]
            )
            conn.execute("DELETE FROM trades WHERE pair = ?", [record.pair])

    def get_history(self, limit: int = 100, pair: Optional[str] = None) -> List[HistoryRecord]:
        """Closed trades, most recent first"""
        with self._connect("get_history") as conn:
            if pair:
                rows = conn.execute(
                    """SELECT data FROM trade_history WHERE pair = ?
                       ORDER BY exit_time DESC LIMIT ?""",
                    [pair, limit]
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT data FROM trade_history ORDER BY exit_time DESC LIMIT ?", [limit]
                ).fetchall()
        return [HistoryRecord.model_validate_json(row["data"]) for row in rows]

    def get_all_history(self) -> List[HistoryRecord]:
        with self._connect("get_all_history") as conn:
            rows = conn.execute("SELECT data FROM trade_history ORDER BY exit_time").fetchall()
        return [HistoryRecord.model_validate_json(row["data"]) for row in rows]

    # =========================================================================
    # Blacklist
    # =========================================================================

    def get_blacklist(self) -> List[BlacklistEntry]:
        with self._connect("get_blacklist") as conn:
            rows = conn.execute("SELECT asset, reason, added_at FROM blacklist ORDER BY asset").fetchall()
        return [
            BlacklistEntry(asset=row["asset"], reason=row["reason"] or "",
                           added_at=datetime.fromisoformat(row["added_at"]))
            for row in rows
        ]

    def add_to_blacklist(self, entry: BlacklistEntry) -> None:
        with self._connect("add_to_blacklist") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO blacklist (asset, reason, added_at) VALUES (?, ?, ?)",
                [entry.asset, entry.reason, entry.added_at.isoformat()]
            )

    def remove_from_blacklist(self, asset: str) -> bool:
        with self._connect("remove_from_blacklist") as conn:
            cursor = conn.execute("DELETE FROM blacklist WHERE asset = ?", [asset.upper()])
            return cursor.rowcount > 0

    # =========================================================================
    # Scheduler State
    # =========================================================================

    def get_scheduler_state(self) -> Dict[str, Any]:
        with self._connect("get_scheduler_state") as conn:
            rows = conn.execute("SELECT key, value FROM scheduler_state").fetchall()
        return {row["key"]: json.loads(row["value"]) for row in rows}

    def save_scheduler_state(self, state: Dict[str, Any]) -> None:
        with self._connect("save_scheduler_state") as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO scheduler_state (key, value) VALUES (?, ?)",
                [(key, json.dumps(value)) for key, value in state.items()]
            )

    # =========================================================================
    # Management
    # =========================================================================

    def get_stats(self) -> dict:
        """Get storage statistics"""
        with self._connect("get_stats") as conn:
            watchlist = conn.execute("SELECT COUNT(*) FROM watchlist").fetchone()[0]
            trades = conn.execute("SELECT COUNT(*) FROM trades").fetchone()[0]
            history = conn.execute("SELECT COUNT(*) FROM trade_history").fetchone()[0]
            blacklist = conn.execute("SELECT COUNT(*) FROM blacklist").fetchone()[0]

        return {
            "watchlist_count": watchlist,
            "active_trades": trades,
            "history_count": history,
            "blacklist_count": blacklist,
            "db_path": self.db_path,
        }


# =============================================================================
# Singleton
# =============================================================================

_storage: Optional[SQLiteStorage] = None


def get_storage() -> SQLiteStorage:
    """Get singleton storage instance"""
    global _storage
    if _storage is None:
        from core.config import get_settings
        _storage = SQLiteStorage(get_settings().db_path)
    return _storage
