"""
Tests for the Hyperliquid client and history helpers.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import numpy as np
import pytest
import requests

from core.exceptions import InsufficientDataError, PriceFeedError
from core.models import Candle, PriceSeries
from services.price_feed import HyperliquidClient, align_closes, fetch_history, fetch_many, fetch_pair

from conftest import NOW, FakeFeed


def client_with(payload=None, error=None):
    session = MagicMock()
    session.headers = {}
    response = MagicMock()
    response.json.return_value = payload
    if error is not None:
        session.post.side_effect = error
    else:
        session.post.return_value = response
    return HyperliquidClient(min_interval_sec=0, session=session), session


def series(symbol, closes, start=datetime(2026, 1, 1)):
    candles = tuple(
        Candle(timestamp=start + timedelta(days=i), open=c, high=c, low=c, close=c)
        for i, c in enumerate(closes)
    )
    return PriceSeries(symbol=symbol, candles=candles)


class TestHyperliquidClient:

    def test_universe(self):
        payload = [
            {"universe": [{"name": "BTC"}, {"name": "ETH"}, {"name": "DEAD"}]},
            [
                {"markPx": "60000", "dayNtlVlm": "1000000000", "openInterest": "100", "funding": "0.0001"},
                {"markPx": "3000", "dayNtlVlm": "500000000", "openInterest": "1000", "funding": "-0.00005"},
                {},
            ],
        ]
        client, session = client_with(payload)
        assets = client.fetch_universe()

        assert [a.symbol for a in assets] == ["BTC", "ETH"]
        btc = assets[0]
        assert btc.open_interest == pytest.approx(6_000_000)
        assert btc.funding_annualized == pytest.approx(0.0001 * 24 * 365 * 100)
        assert session.post.call_args.kwargs["json"] == {"type": "metaAndAssetCtxs"}

    def test_malformed_universe(self):
        client, _ = client_with({"nope": 1})
        with pytest.raises(PriceFeedError):
            client.fetch_universe()

    def test_candles_sorted_and_malformed_rows_skipped(self):
        t0 = int(datetime(2026, 1, 1).timestamp() * 1000)
        day = 86_400_000
        payload = [
            {"t": t0 + day, "o": "2", "h": "2", "l": "2", "c": "2", "v": "10"},
            {"t": t0, "o": "1", "h": "1", "l": "1", "c": "1", "v": "10"},
            {"t": t0 + 2 * day, "o": "x"},
        ]
        client, session = client_with(payload)
        result = client.fetch_candles("ETH", "1d", datetime(2026, 1, 1), datetime(2026, 1, 5))

        assert result.closes() == [1.0, 2.0]
        request = session.post.call_args.kwargs["json"]
        assert request["type"] == "candleSnapshot"
        assert request["req"]["coin"] == "ETH"

    def test_http_failure_wrapped(self):
        client, _ = client_with(error=requests.ConnectionError("down"))
        with pytest.raises(PriceFeedError) as exc_info:
            client.fetch_candles("ETH", "1d", NOW - timedelta(days=3), NOW)
        assert isinstance(exc_info.value.cause, requests.ConnectionError)


class TestHelpers:

    def test_align_on_shared_days(self):
        s1 = series("A", [1.0, 2.0, 3.0, 4.0])
        s2 = series("B", [10.0, 20.0, 30.0], start=datetime(2026, 1, 2))

        p1, p2 = align_closes(s1, s2, min_points=3)
        np.testing.assert_array_equal(p1, [2.0, 3.0, 4.0])
        np.testing.assert_array_equal(p2, [10.0, 20.0, 30.0])

    def test_align_too_short(self):
        with pytest.raises(InsufficientDataError):
            align_closes(series("A", [1.0, 2.0]), series("B", [1.0, 2.0]), min_points=10)

    def test_fetch_history_trims_to_days(self):
        feed = FakeFeed(closes={"ETH": np.arange(1, 101, dtype=float)})
        history = fetch_history(feed, "ETH", 30, now=NOW)
        assert len(history) == 30
        assert history.closes()[-1] == 100.0

    def test_fetch_pair(self):
        feed = FakeFeed(closes={"ETH": np.linspace(100, 110, 60), "BTC": np.linspace(50, 52, 60)})
        p1, p2 = fetch_pair(feed, "ETH", "BTC", 40, now=NOW)
        assert len(p1) == len(p2) == 40

    def test_fetch_many_skips_failures_and_thin_history(self):
        feed = FakeFeed(closes={
            "ETH": np.linspace(100, 110, 90),
            "BTC": np.linspace(50, 52, 90),
            "NEW": np.linspace(1, 2, 20),
        })
        feed.failing.add("BTC")

        result = fetch_many(feed, ["ETH", "BTC", "NEW"], 90, batch_size=2, batch_delay_sec=0, now=NOW)
        assert set(result) == {"ETH"}
        assert feed.candle_calls == ["ETH", "BTC", "NEW"]
