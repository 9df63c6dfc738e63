from __future__ import annotations
from datetime import date, timedelta
from typing import Optional, Dict, Any

import pandas as pd

from opportunity.models import WeeklyMetric, opt_float


def week_start_of(d: date) -> date:
    """Monday of d's ISO week."""
    return d - timedelta(days=d.weekday())


def _mean(s: pd.Series) -> Optional[float]:
    v = opt_float(s.mean())
    return round(v, 3) if v is not None else None


def weekly_metrics_from_frame(frame: pd.DataFrame) -> Dict[str, Any]:
    return {
        "days": int(len(frame)),
        "demand_avg": _mean(frame["demand"]),
        "supply_avg": _mean(frame["supply"]),
        "competition_avg": _mean(frame["competition_score"]),
        "social_mentions_sum": round(float(frame["social_mentions"].fillna(0.0).sum()), 3),
        "social_sentiment_avg": _mean(frame["social_sentiment"]),
        "engagement_sum": round(float(frame["engagement_score"].fillna(0.0).sum()), 3),
    }


def rollup_week(store, keyword_id: str, source: str, week_start: date) -> Optional[WeeklyMetric]:
    week_start = week_start_of(week_start)
    frame = store.get_daily_metrics(keyword_id, source, week_start, week_start + timedelta(days=6))
    if frame.empty:
        return None
    wm = WeeklyMetric(
        keyword_id=keyword_id,
        week_start=week_start,
        source=source,
        metrics=weekly_metrics_from_frame(frame),
    )
    store.upsert_weekly_metric(wm)
    return wm
