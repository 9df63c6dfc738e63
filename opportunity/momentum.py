from __future__ import annotations
from datetime import date, timedelta
from typing import Optional

import pandas as pd

from opportunity.seasonal import load_periods_for_window, window_seasonal_weight, GLOBAL_SCOPE

DEFAULT_LOOKBACK_DAYS = 7
MIN_POINTS = 2
# |first| below this is treated as this, so a series starting at 0 doesn't blow up
DENOMINATOR_FLOOR = 1.0
MIN_SEASONAL_DIVISOR = 0.1


def _safe_pct(a: float, b: float) -> float:
    denom = b if abs(b) >= DENOMINATOR_FLOOR else DENOMINATOR_FLOOR
    return (a - b) / abs(denom)


def momentum_from_frame(frame: pd.DataFrame, as_of: date,
                        lookback_days: int = DEFAULT_LOOKBACK_DAYS) -> Optional[float]:
    """
    Signed % change of demand between the earliest and latest points in
    [as_of - lookback_days, as_of]. Gaps are fine; < 2 points -> None.
    Not rounded, so any strict rise stays > 0.
    """
    if lookback_days <= 0:
        raise ValueError("lookback_days must be positive")
    if frame.empty:
        return None
    start = as_of - timedelta(days=lookback_days)
    mask = (frame["collected_on"] >= start) & (frame["collected_on"] <= as_of)
    s = (
        frame.loc[mask, ["collected_on", "demand"]]
        .dropna(subset=["demand"])
        .sort_values("collected_on")
    )
    if len(s) < MIN_POINTS:
        return None
    first = float(s["demand"].iloc[0])
    last = float(s["demand"].iloc[-1])
    return _safe_pct(last, first) * 100.0


def deseason_momentum(momentum: Optional[float], seasonal_weight: float) -> Optional[float]:
    if momentum is None:
        return None
    return momentum / max(seasonal_weight, MIN_SEASONAL_DIVISOR)


def compute_trend_momentum(store, keyword_id: str, as_of: date, source: str,
                           lookback_days: int = DEFAULT_LOOKBACK_DAYS) -> Optional[float]:
    frame = store.get_daily_metrics(keyword_id, source, as_of - timedelta(days=lookback_days), as_of)
    return momentum_from_frame(frame, as_of, lookback_days)


def compute_deseasoned_momentum(store, keyword_id: str, as_of: date, source: str,
                                lookback_days: int = DEFAULT_LOOKBACK_DAYS,
                                country: str = GLOBAL_SCOPE) -> Optional[float]:
    momentum = compute_trend_momentum(store, keyword_id, as_of, source, lookback_days)
    if momentum is None:
        return None
    periods = load_periods_for_window(store, as_of - timedelta(days=lookback_days), as_of)
    return deseason_momentum(momentum, window_seasonal_weight(periods, as_of, lookback_days, country))
