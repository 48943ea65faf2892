"""
Threshold Calibration
Intraday z history for the divergence profile.

Daily bars give a handful of divergence episodes per quarter; hourly bars
over the last month give enough to tell a 3σ pair from a 2σ one. When the
intraday history is unavailable the daily z path is used instead.
"""

import logging
from datetime import datetime
from typing import Optional

import numpy as np

from analytics.divergence import z_history
from services.price_feed import PriceFeed, fetch_pair

from .config import AnalysisConfig
from .exceptions import InsufficientDataError, PriceFeedError

logger = logging.getLogger(__name__)


def divergence_z(
    feed: PriceFeed,
    asset1: str,
    asset2: str,
    config: AnalysisConfig,
    now: Optional[datetime] = None
) -> Optional[np.ndarray]:
    """
    Z path at config.divergence_interval over config.divergence_days.

    Returns None when the interval is daily, or when the intraday history
    cannot be fetched or is too short; callers then calibrate on daily bars.
    """
    interval = config.divergence_interval
    if interval == "1d":
        return None

    try:
        p1, p2 = fetch_pair(feed, asset1, asset2, config.divergence_days, interval, now,
                            config.min_divergence_points)
        zs = z_history(p1, p2)
    except (InsufficientDataError, PriceFeedError) as e:
        logger.info("%s/%s: no %s calibration history (%s), using daily bars", asset1, asset2, interval, e)
        return None

    if len(zs) == 0:
        return None
    return zs
