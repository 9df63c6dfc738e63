# opportunity/backfill.py
from __future__ import annotations

import argparse
from datetime import date, timedelta
from typing import Optional, List, Dict, Any

import pandas as pd

from opportunity.config import settings, configure_logging
from opportunity.db import get_engine, init_schema
from opportunity.main import scores_from_frame
from opportunity.seasonal import load_periods_for_window
from opportunity.storage_pg import SignalStore

COLUMNS = [
    "as_of_date", "keyword_id", "opportunity_badge",
    "base_demand_index", "adjusted_demand_index",
    "trend_momentum", "deseasoned_trend_momentum",
    "seasonal_weight", "seasonal_label",
]


def backfill_scores(
    store: SignalStore,
    days: int = 30,
    source: str = "lexyhub",
    country: str = "global",
    lookback_days: int = 7,
    window_days: int = 14,
    end: Optional[date] = None,
    only_badges: Optional[List[str]] = None,
) -> pd.DataFrame:
    """
    Recompute historical scores day by day from stored daily metrics. Read only.

    - days: how many as-of dates to REPORT (ending at `end`)
    - each keyword's rows are read once, with enough warmup before the first
      as-of date for the demand window and the momentum lookback
    - only_badges: e.g. ["hot", "rising"]
    """
    end = end or date.today()
    report_start = end - timedelta(days=days - 1)
    warmup = max(window_days - 1, lookback_days)
    pull_start = report_start - timedelta(days=warmup)

    periods = load_periods_for_window(store, report_start - timedelta(days=lookback_days), end)
    keyword_ids = store.keywords_to_score(source, pull_start, end)

    rows: List[Dict[str, Any]] = []
    for kid in keyword_ids:
        frame = store.get_daily_metrics(kid, source, pull_start, end)
        if frame.empty:
            continue
        for i in range(days):
            as_of = report_start + timedelta(days=i)
            sc = scores_from_frame(kid, frame, as_of, country, periods, lookback_days, window_days)
            if sc.base_demand_index is None:
                continue
            if only_badges and sc.opportunity_badge not in only_badges:
                continue
            rows.append({
                "as_of_date": as_of.isoformat(),
                "keyword_id": kid,
                "opportunity_badge": sc.opportunity_badge,
                "base_demand_index": sc.base_demand_index,
                "adjusted_demand_index": sc.adjusted_demand_index,
                "trend_momentum": sc.trend_momentum,
                "deseasoned_trend_momentum": sc.deseasoned_trend_momentum,
                "seasonal_weight": sc.seasonal_weight,
                "seasonal_label": sc.seasonal_label,
            })

    out = pd.DataFrame(rows, columns=COLUMNS)
    if out.empty:
        return out

    # newest first, then strongest demand
    out = out.sort_values(
        ["as_of_date", "adjusted_demand_index", "keyword_id"],
        ascending=[False, False, True],
    ).reset_index(drop=True)
    return out


def main():
    parser = argparse.ArgumentParser(description="Backfill daily opportunity scores from keyword_metrics_daily.")
    parser.add_argument("--days", type=int, default=30, help="Number of as-of dates to report.")
    parser.add_argument("--end", type=str, default=None, help="Last as-of date YYYY-MM-DD (default: today).")
    parser.add_argument("--source", type=str, default=settings.scoring_source)
    parser.add_argument("--country", type=str, default=settings.scoring_country)
    parser.add_argument("--out", type=str, default="backfill_scores.csv", help="Output CSV path.")
    parser.add_argument("--badge", type=str, default="",
                        help="Comma-separated badges to keep (default: all)")
    args = parser.parse_args()

    configure_logging()
    engine = get_engine()
    init_schema(engine)

    badges = [b.strip().lower() for b in args.badge.split(",") if b.strip()]
    df = backfill_scores(
        SignalStore(engine),
        days=args.days,
        source=args.source,
        country=args.country,
        lookback_days=settings.momentum_lookback_days,
        window_days=settings.demand_window_days,
        end=date.fromisoformat(args.end) if args.end else None,
        only_badges=badges or None,
    )

    if df.empty:
        print("No scores found in the window.")
        return

    df.to_csv(args.out, index=False, encoding="utf-8")
    print(f"Saved {len(df)} rows -> {args.out}")
    print(df.head(20).to_string(index=False))


if __name__ == "__main__":
    main()
