"""
Notifier Service
One Telegram message per scan / monitor cycle.

Usage:
    from services import get_notifier, format_monitor_report

    notifier = get_notifier()
    notifier.send(format_monitor_report(result))

Delivery is best-effort: a failed send is logged and never interrupts
the cycle that produced the report.
"""

import logging
from typing import Optional

import requests

from core.config import get_settings

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


class TelegramNotifier:
    """Telegram Bot API sender; disabled without a token and chat id."""

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        timeout: int = 10,
        session: Optional[requests.Session] = None
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self.sent = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def send(self, text: str) -> bool:
        """Send a message; returns True when Telegram accepted it."""
        if not self.enabled:
            logger.debug("Notifier disabled, dropping %d chars", len(text))
            return False

        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[:MAX_MESSAGE_LENGTH - 3] + "..."

        try:
            response = self.session.post(
                self.API_URL.format(token=self.bot_token),
                json={"chat_id": self.chat_id, "text": text, "disable_web_page_preview": True},
                timeout=self.timeout,
            )
            response.raise_for_status()
            ok = bool(response.json().get("ok", False))
        except (requests.RequestException, ValueError) as e:
            logger.warning("Telegram send failed: %s", e)
            self.failed += 1
            return False

        if ok:
            self.sent += 1
        else:
            self.failed += 1
        return ok


# =============================================================================
# Report Formatting
# =============================================================================

def _signed(value: float) -> str:
    return f"{value:+.2f}%"


def _z(value: Optional[float]) -> str:
    return f"{value:.2f}" if value is not None else "n/a"


def format_monitor_report(result) -> str:
    """Status message for a monitor cycle (a core.monitor.MonitorResult)."""
    lines = []

    if result.entries or result.exits:
        lines.append("ACTIONS")
        for trade in result.entries:
            lines.append(f"+ {trade.pair} → long {trade.long_asset} / short {trade.short_asset}")
        for ex in result.exits:
            tag = "partial" if ex.partial else "close"
            lines.append(f"- {ex.pair} {ex.reason.value} ({tag}) {_signed(ex.pnl)}")
        lines.append("")

    if not result.trades:
        lines.append("No active trades")
    else:
        lines.append(f"POSITIONS ({len(result.trades)})")
        lines.append("")
        portfolio = 0.0
        for t in result.trades:
            partial = " [partial]" if t.partial_exit_taken else ""
            lines.append(f"{t.pair} ({t.sector or '-'}){partial} {t.health_status.value}")
            lines.append(
                f"   L {t.long_asset} {t.long_weight * 100:.0f}% / S {t.short_asset} {t.short_weight * 100:.0f}%"
            )
            lines.append(f"   Z: {_z(t.entry.z_score)}→{_z(t.current_z)}")
            if t.beta_drift is not None:
                lines.append(f"   Beta drift: {t.beta_drift:.0%}")
            lines.append(f"   {_signed(t.current_pnl)}")
            portfolio += t.current_pnl
        lines.append(f"Total: {_signed(portfolio)}")

    if result.approaching:
        lines.append("")
        lines.append("APPROACHING ENTRY")
        for p in result.approaching:
            notes = []
            if p.hurst_blocked:
                notes.append("hurst")
            if p.overlap_blocked:
                notes.append("overlap")
            note = f" [blocked: {', '.join(notes)}]" if notes else ""
            lines.append(f"{p.pair} ({p.sector or '-'}){note}")
            lines.append(f"   Z: {p.z_score:.2f} → entry@{p.entry_threshold:.1f} [{p.proximity:.0%}]")

    stats = result.stats
    if stats is not None and stats.total_trades:
        lines.append("")
        lines.append(f"{stats.wins}W/{stats.losses}L • {_signed(stats.total_pnl)}")

    if result.errors:
        lines.append("")
        lines.append(f"{len(result.errors)} pair(s) failed")

    return "\n".join(lines)


def format_scan_report(result) -> str:
    """Summary message for a scan cycle (a core.scanner.ScanResult)."""
    lines = [
        "SCAN COMPLETE",
        f"Assets: {result.assets_screened} • Pairs: {result.pairs_evaluated} • "
        f"Passed: {result.pairs_passed}",
    ]
    if result.cross_sector:
        lines.append("Cross-sector: on")

    if result.watchlist:
        lines.append("")
        lines.append(f"WATCHLIST ({len(result.watchlist)})")
        for entry in result.watchlist:
            hl = f"{entry.half_life:.1f}d" if entry.half_life is not None else "n/a"
            lines.append(
                f"{entry.pair} ({entry.sector}) Q {entry.quality_score:.1f} • "
                f"Z {_z(entry.z_score)} • HL {hl}"
            )
    else:
        lines.append("No pairs passed the filters")

    if result.removed:
        lines.append("")
        lines.append(f"Removed: {', '.join(result.removed)}")

    if result.errors:
        lines.append(f"{len(result.errors)} pair(s) failed")

    return "\n".join(lines)


# Singleton
_notifier: Optional[TelegramNotifier] = None


def get_notifier() -> TelegramNotifier:
    """Get or create notifier singleton"""
    global _notifier
    if _notifier is None:
        settings = get_settings()
        _notifier = TelegramNotifier(settings.telegram_bot_token, settings.telegram_chat_id)
    return _notifier
