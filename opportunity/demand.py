from __future__ import annotations
from datetime import date, timedelta
from typing import Optional, Dict
import math

import numpy as np
import pandas as pd

from opportunity.seasonal import resolve_seasonal_weight, GLOBAL_SCOPE

INDEX_MIN = 0.0
INDEX_MAX = 100.0

DEMAND_WINDOW_DAYS = 14
RECENCY_HALFLIFE_DAYS = 2.0

# Fixed blend. Components missing from every row in the window drop out and the rest are renormalized.
COMPONENT_WEIGHTS: Dict[str, float] = {
    "demand": 0.6,
    "supply": 0.2,        # inverse: crowded supply lowers the index
    "competition": 0.2,   # inverse
}

SUPPLY_LOG_CEILING = 1_000_000


def clamp(value: float, lo: float = INDEX_MIN, hi: float = INDEX_MAX) -> float:
    return max(lo, min(hi, value))


def supply_pressure(supply: pd.Series) -> pd.Series:
    """Raw listing count -> 0..100 on a log scale (1M+ listings saturates)."""
    s = supply.clip(lower=0)
    return (np.log(s + 1.0) / math.log(SUPPLY_LOG_CEILING) * 100.0).clip(upper=INDEX_MAX)


def index_components(frame: pd.DataFrame) -> pd.DataFrame:
    """Per-row component scores on 0..100, NaN where the input is missing."""
    return pd.DataFrame({
        "demand": frame["demand"].astype(float).clip(INDEX_MIN, INDEX_MAX),
        "supply": INDEX_MAX - supply_pressure(frame["supply"].astype(float)),
        "competition": INDEX_MAX - frame["competition_score"].astype(float).clip(INDEX_MIN, INDEX_MAX),
    }, index=frame.index)


def window_rows(frame: pd.DataFrame, as_of: date, window_days: int) -> pd.DataFrame:
    start = as_of - timedelta(days=window_days - 1)
    if frame.empty:
        return frame
    mask = (frame["collected_on"] >= start) & (frame["collected_on"] <= as_of)
    return frame.loc[mask].sort_values("collected_on")


def base_demand_index_from_frame(frame: pd.DataFrame, as_of: date,
                                 window_days: int = DEMAND_WINDOW_DAYS,
                                 halflife_days: float = RECENCY_HALFLIFE_DAYS) -> Optional[float]:
    """
    Recency-weighted blend of demand / inverse supply / inverse competition over
    the trailing window ending at as_of. None when the window holds no usable rows.
    """
    if window_days <= 0:
        raise ValueError("window_days must be positive")
    rows = window_rows(frame, as_of, window_days)
    if rows.empty:
        return None

    ages = np.array([(as_of - d).days for d in rows["collected_on"]], dtype=float)
    recency = np.power(0.5, ages / halflife_days)
    comps = index_components(rows)

    score = 0.0
    weight_total = 0.0
    for name, w in COMPONENT_WEIGHTS.items():
        values = comps[name].to_numpy(dtype=float)
        ok = ~np.isnan(values)
        if not ok.any():
            continue
        mean = float(np.sum(values[ok] * recency[ok]) / np.sum(recency[ok]))
        score += w * mean
        weight_total += w

    if weight_total == 0.0:
        return None
    return round(clamp(score / weight_total), 3)


def adjusted_demand_index(base: Optional[float], seasonal_weight: float) -> Optional[float]:
    if base is None:
        return None
    return round(clamp(base * seasonal_weight), 3)


def compute_base_demand_index(store, keyword_id: str, as_of: date, source: str,
                              window_days: int = DEMAND_WINDOW_DAYS) -> Optional[float]:
    start = as_of - timedelta(days=window_days - 1)
    frame = store.get_daily_metrics(keyword_id, source, start, as_of)
    return base_demand_index_from_frame(frame, as_of, window_days)


def compute_adjusted_demand_index(store, keyword_id: str, as_of: date, source: str,
                                  country: str = GLOBAL_SCOPE,
                                  window_days: int = DEMAND_WINDOW_DAYS) -> Optional[float]:
    base = compute_base_demand_index(store, keyword_id, as_of, source, window_days)
    if base is None:
        return None
    weight, _ = resolve_seasonal_weight(store, as_of, country)
    return adjusted_demand_index(base, weight)
