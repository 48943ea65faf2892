"""
Price Feed Service
Daily / hourly candles and the tradeable universe from Hyperliquid.

Usage:
    from services import get_price_feed, fetch_pair

    feed = get_price_feed()
    universe = feed.fetch_universe()
    prices1, prices2 = fetch_pair(feed, "ETH", "BTC", days=90)

Anything with fetch_universe() and fetch_candles() works as a feed;
tests plug in an in-memory one.
"""

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import numpy as np
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from core.clock import utcnow
from core.config import get_settings
from core.exceptions import InsufficientDataError, PriceFeedError
from core.models import AssetInfo, Candle, PriceSeries

logger = logging.getLogger(__name__)

INTERVAL_SECONDS = {"1h": 3600, "4h": 4 * 3600, "1d": 86400}


def _ms(dt: datetime) -> int:
    """Epoch milliseconds; naive datetimes are UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


class PriceFeed(Protocol):
    def fetch_universe(self) -> List[AssetInfo]:
        ...

    def fetch_candles(self, symbol: str, interval: str, start: datetime, end: datetime) -> PriceSeries:
        ...


class HyperliquidClient:
    """
    Hyperliquid info API client.

    Retries transient HTTP errors with exponential backoff and keeps a
    minimum gap between requests to stay under the upstream quota.
    """

    DEFAULT_URL = "https://api.hyperliquid.xyz/info"

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        timeout: int = 30,
        max_retries: int = 3,
        min_interval_sec: float = 0.1,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.min_interval_sec = min_interval_sec
        self._last_request = 0.0
        self._lock = threading.Lock()

        self.session = session or requests.Session()
        self.session.headers["Content-Type"] = "application/json"
        retry = Retry(
            total=max_retries,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    def _throttle(self):
        with self._lock:
            wait = self.min_interval_sec - (time.monotonic() - self._last_request)
            if wait > 0:
                time.sleep(wait)
            self._last_request = time.monotonic()

    def _post(self, payload: dict):
        self._throttle()
        try:
            response = self.session.post(self.base_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise PriceFeedError(
                "Hyperliquid request failed",
                context={"type": payload.get("type")},
                cause=e,
            ) from e

    def fetch_universe(self) -> List[AssetInfo]:
        """All perpetuals with 24h notional volume, OI and funding."""
        data = self._post({"type": "metaAndAssetCtxs"})
        try:
            meta, contexts = data[0], data[1]
            universe = meta["universe"]
        except (IndexError, KeyError, TypeError) as e:
            raise PriceFeedError("Unexpected metaAndAssetCtxs payload", cause=e) from e

        assets = []
        for info, ctx in zip(universe, contexts):
            if not ctx:
                continue
            mark = float(ctx.get("markPx") or 0)
            funding = float(ctx.get("funding") or 0)
            assets.append(AssetInfo(
                symbol=info["name"].replace("-PERP", ""),
                price=mark,
                volume_24h=float(ctx.get("dayNtlVlm") or 0),
                open_interest=float(ctx.get("openInterest") or 0) * mark,
                funding_rate=funding,
                funding_annualized=funding * 24 * 365 * 100,
            ))
        return assets

    def fetch_candles(self, symbol: str, interval: str, start: datetime, end: datetime) -> PriceSeries:
        """Candles for [start, end], oldest first."""
        data = self._post({
            "type": "candleSnapshot",
            "req": {
                "coin": symbol,
                "interval": interval,
                "startTime": _ms(start),
                "endTime": _ms(end),
            },
        })
        candles = []
        for row in data or []:
            try:
                candles.append(Candle(
                    timestamp=row["t"],
                    open=float(row["o"]),
                    high=float(row["h"]),
                    low=float(row["l"]),
                    close=float(row["c"]),
                    volume=float(row.get("v") or 0),
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("Skipping malformed candle for %s: %s", symbol, e)
        candles.sort(key=lambda c: c.timestamp)
        return PriceSeries(symbol=symbol, interval=interval, candles=tuple(candles))


# =============================================================================
# Helpers
# =============================================================================

def fetch_history(
    feed: PriceFeed,
    symbol: str,
    days: int,
    interval: str = "1d",
    now: Optional[datetime] = None
) -> PriceSeries:
    """Last `days` worth of candles (a few extra bars requested as slack)."""
    end = now or utcnow()
    start = end - timedelta(days=days + 5)
    series = feed.fetch_candles(symbol, interval, start, end)
    keep = int(days * 86400 / INTERVAL_SECONDS.get(interval, 86400))
    if len(series.candles) > keep:
        series = PriceSeries(symbol=series.symbol, interval=series.interval, candles=series.candles[-keep:])
    return series


def _bucket(ts: datetime, interval: str):
    if interval == "1d":
        return ts.date()
    return ts.replace(minute=0, second=0, microsecond=0)


def align_series(
    series1: PriceSeries,
    series2: PriceSeries,
    min_points: int = 10
) -> Tuple[List[datetime], np.ndarray, np.ndarray]:
    """Timestamps both series share with their closes, oldest first."""
    map2 = {_bucket(c.timestamp, series2.interval): c.close for c in series2.candles}
    times, p1, p2 = [], [], []
    for c in series1.candles:
        key = _bucket(c.timestamp, series1.interval)
        if key in map2:
            times.append(c.timestamp)
            p1.append(c.close)
            p2.append(map2[key])

    if len(p1) < min_points:
        raise InsufficientDataError(
            "Not enough overlapping candles",
            context={"asset1": series1.symbol, "asset2": series2.symbol, "points": len(p1)},
        )
    return times, np.array(p1), np.array(p2)


def align_closes(
    series1: PriceSeries,
    series2: PriceSeries,
    min_points: int = 10
) -> Tuple[np.ndarray, np.ndarray]:
    """Closes on the timestamps both series share, oldest first."""
    _, p1, p2 = align_series(series1, series2, min_points)
    return p1, p2


def fetch_pair(
    feed: PriceFeed,
    asset1: str,
    asset2: str,
    days: int,
    interval: str = "1d",
    now: Optional[datetime] = None,
    min_points: int = 10
) -> Tuple[np.ndarray, np.ndarray]:
    """Fetch both legs and align them."""
    series1 = fetch_history(feed, asset1, days, interval, now)
    series2 = fetch_history(feed, asset2, days, interval, now)
    return align_closes(series1, series2, min_points)


def fetch_many(
    feed: PriceFeed,
    symbols: Iterable[str],
    days: int,
    batch_size: int = 5,
    batch_delay_sec: float = 0.5,
    min_coverage: float = 0.8,
    now: Optional[datetime] = None
) -> Dict[str, PriceSeries]:
    """
    Daily history for many symbols in small batches.

    Symbols that fail or cover less than min_coverage × days are skipped.
    """
    symbols = list(symbols)
    result: Dict[str, PriceSeries] = {}

    for i in range(0, len(symbols), batch_size):
        for symbol in symbols[i:i + batch_size]:
            try:
                series = fetch_history(feed, symbol, days, "1d", now)
            except PriceFeedError as e:
                logger.warning("Skipping %s: %s", symbol, e)
                continue
            if len(series) >= days * min_coverage:
                result[symbol] = series
            else:
                logger.debug("Skipping %s: %d/%d candles", symbol, len(series), days)

        if batch_delay_sec and i + batch_size < len(symbols):
            time.sleep(batch_delay_sec)

    return result


# Singleton
_price_feed: Optional[HyperliquidClient] = None


def get_price_feed() -> HyperliquidClient:
    """Get or create price feed singleton"""
    global _price_feed
    if _price_feed is None:
        settings = get_settings()
        _price_feed = HyperliquidClient(
            base_url=settings.hyperliquid_url,
            timeout=settings.http_timeout_sec,
            max_retries=settings.http_max_retries,
        )
    return _price_feed
