"""
Services
External integrations and background execution.

    price_feed.py  → Hyperliquid candles and universe
    notifier.py    → Telegram cycle reports
    job_runner.py  → Periodic scan / monitor thread
"""

from .price_feed import (
    HyperliquidClient,
    PriceFeed,
    align_closes,
    align_series,
    fetch_history,
    fetch_many,
    fetch_pair,
    get_price_feed,
)
from .notifier import TelegramNotifier, format_monitor_report, format_scan_report, get_notifier
from .job_runner import JobRunner, current_job_runner, get_job_runner

__all__ = [
    "HyperliquidClient",
    "PriceFeed",
    "align_closes",
    "align_series",
    "fetch_history",
    "fetch_many",
    "fetch_pair",
    "get_price_feed",
    "TelegramNotifier",
    "format_monitor_report",
    "format_scan_report",
    "get_notifier",
    "JobRunner",
    "get_job_runner",
    "current_job_runner",
]
