"""
Scheduler
Guarded scan and monitor jobs.

Each job has a lock; a job that is already running is never started a
second time, the overlapping call returns a skip marker instead:

    {"skipped": True, "reason": "already_running"}

A completed run returns {"success", "duration", "timestamp", ...result}.
A run that raises returns {"success": False, "error": ...}.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .clock import utcnow
from .config import Settings, get_settings, load_sector_map
from .monitor import TradeMonitor
from .scanner import PairScanner

logger = logging.getLogger(__name__)

SKIPPED = {"skipped": True, "reason": "already_running"}


@dataclass
class SchedulerContext:
    """
    Shared state for scheduled jobs.

    feed, storage and notifier are injected so tests can run cycles
    against in-memory fakes.
    """
    feed: Any
    storage: Any
    notifier: Any = None
    settings: Settings = field(default_factory=get_settings)
    sector_map: Optional[Dict[str, str]] = None
    scan_running: bool = False
    monitor_running: bool = False
    last_scan_time: Optional[datetime] = None
    last_monitor_time: Optional[datetime] = None
    cross_sector_enabled: bool = False
    scan_lock: threading.Lock = field(default_factory=threading.Lock)
    monitor_lock: threading.Lock = field(default_factory=threading.Lock)

    def load_state(self):
        """Restore last-run times and toggles persisted by a previous process."""
        state = self.storage.get_scheduler_state()
        if state.get("last_scan_time"):
            self.last_scan_time = datetime.fromisoformat(state["last_scan_time"])
        if state.get("last_monitor_time"):
            self.last_monitor_time = datetime.fromisoformat(state["last_monitor_time"])
        self.cross_sector_enabled = bool(state.get("cross_sector_enabled", False))

    def save_state(self):
        self.storage.save_scheduler_state({
            "last_scan_time": self.last_scan_time.isoformat() if self.last_scan_time else None,
            "last_monitor_time": self.last_monitor_time.isoformat() if self.last_monitor_time else None,
            "cross_sector_enabled": self.cross_sector_enabled,
        })

    def set_cross_sector(self, enabled: bool):
        self.cross_sector_enabled = enabled
        self.save_state()

    def status(self) -> Dict[str, Any]:
        return {
            "scan": {
                "is_running": self.scan_running,
                "last_run": self.last_scan_time.isoformat() if self.last_scan_time else None,
                "interval_sec": self.settings.scheduler.scan_interval_sec,
            },
            "monitor": {
                "is_running": self.monitor_running,
                "last_run": self.last_monitor_time.isoformat() if self.last_monitor_time else None,
                "interval_sec": self.settings.scheduler.monitor_interval_sec,
            },
            "cross_sector_enabled": self.cross_sector_enabled,
        }


def _guarded(ctx: SchedulerContext, name: str, lock: threading.Lock, flag: str,
             job: Callable[[datetime], Dict[str, Any]]) -> Dict[str, Any]:
    if not lock.acquire(blocking=False):
        logger.info("%s already running, skipping", name.capitalize())
        return dict(SKIPPED)

    setattr(ctx, flag, True)
    started = time.monotonic()
    now = utcnow()
    logger.info("Running %s at %s", name, now.isoformat())
    try:
        result = job(now)
    except Exception as e:
        logger.exception("%s failed", name.capitalize())
        return {"success": False, "error": str(e)}
    finally:
        setattr(ctx, flag, False)
        lock.release()

    duration = round(time.monotonic() - started, 1)
    logger.info("%s completed in %.1fs", name.capitalize(), duration)
    return {"success": True, "duration": duration, "timestamp": now.isoformat(), **result}


def run_scan(ctx: SchedulerContext) -> Dict[str, Any]:
    """Discover pairs and refresh the watchlist."""
    def job(now: datetime) -> Dict[str, Any]:
        if ctx.sector_map is None:
            ctx.sector_map = load_sector_map(ctx.settings.sectors_file)
        scanner = PairScanner(ctx.feed, ctx.storage, ctx.sector_map,
                              ctx.settings.scanner, ctx.settings.analysis)
        result = scanner.scan(cross_sector=ctx.cross_sector_enabled, now=now)

        ctx.last_scan_time = now
        ctx.save_state()
        if ctx.notifier is not None:
            from services.notifier import format_scan_report
            ctx.notifier.send(format_scan_report(result))
        return result.to_dict()

    return _guarded(ctx, "scan", ctx.scan_lock, "scan_running", job)


def run_monitor(ctx: SchedulerContext) -> Dict[str, Any]:
    """Check exits for open trades and entries for the watchlist."""
    def job(now: datetime) -> Dict[str, Any]:
        monitor = TradeMonitor(ctx.feed, ctx.storage, ctx.settings.analysis,
                               ctx.settings.entry, ctx.settings.exit)
        result = monitor.run(now)

        ctx.last_monitor_time = now
        ctx.save_state()
        if ctx.notifier is not None and result.has_news:
            from services.notifier import format_monitor_report
            ctx.notifier.send(format_monitor_report(result))
        return result.to_dict()

    return _guarded(ctx, "monitor", ctx.monitor_lock, "monitor_running", job)


# =============================================================================
# Singleton
# =============================================================================

_context: Optional[SchedulerContext] = None


def get_context() -> SchedulerContext:
    """Context wired to the live feed, SQLite storage and Telegram notifier"""
    global _context
    if _context is None:
        from db import get_storage
        from services.notifier import get_notifier
        from services.price_feed import get_price_feed

        _context = SchedulerContext(feed=get_price_feed(), storage=get_storage(), notifier=get_notifier())
        _context.load_state()
    return _context
