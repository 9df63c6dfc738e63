"""
Multi-source fusion.

Per-platform social rows for one normalized term are merged into a single
CompositeTrendRecord. A term seen on fewer than `min_platforms` platforms is
dropped (single-source noise). Within the window, mentions/engagement are summed
per platform and sentiment is last-write-wins.
"""
from __future__ import annotations
import argparse
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional, Dict, Any, List, Tuple

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError

from opportunity.config import settings, configure_logging, CollectorConfig
from opportunity.keys import normalize_term
from opportunity.models import CompositeTrendRecord, opt_float

logger = logging.getLogger(__name__)

DEFAULT_MIN_PLATFORMS = 2
DEFAULT_LOOKBACK_DAYS = 7
DEFAULT_LIMIT = 50
MAX_LIMIT = 100

SENTIMENT_THRESHOLD = 0.2
SENTIMENT_BUCKETS = ("positive", "negative", "neutral")

PLATFORM_WEIGHTS: Dict[str, float] = {
    "pinterest": 0.40,  # purchase intent
    "reddit": 0.35,
    "twitter": 0.20,
    "tiktok": 0.05,
}
DEFAULT_PLATFORM_WEIGHT = 0.10


@dataclass
class FusionFilters:
    min_platforms: int = DEFAULT_MIN_PLATFORMS
    sentiment: Optional[str] = None
    platforms: Optional[List[str]] = None  # enabled collectors; None = ENABLED_COLLECTORS
    platform_weights: Dict[str, float] = field(default_factory=lambda: dict(PLATFORM_WEIGHTS))

    def __post_init__(self):
        # the marketplace scoring source is never a social platform
        if self.platforms is None:
            self.platforms = CollectorConfig.from_settings().enabled
        self.platforms = sorted({p.strip().lower() for p in self.platforms if p.strip()})
        if self.sentiment is not None:
            self.sentiment = self.sentiment.strip().lower() or None
        if self.sentiment is not None and self.sentiment not in SENTIMENT_BUCKETS:
            raise ValueError(f"sentiment must be one of {SENTIMENT_BUCKETS}, got {self.sentiment!r}")
        if self.min_platforms < 1:
            raise ValueError("min_platforms must be >= 1")

    def cache_part(self) -> str:
        return json.dumps({
            "min": self.min_platforms,
            "sentiment": self.sentiment,
            "platforms": self.platforms,
            "weights": sorted(self.platform_weights.items()),
        }, sort_keys=True)


def sentiment_bucket(avg_sentiment: float) -> str:
    if avg_sentiment > SENTIMENT_THRESHOLD:
        return "positive"
    if avg_sentiment < -SENTIMENT_THRESHOLD:
        return "negative"
    return "neutral"


# ------------------------------
# process-local TTL cache
# ------------------------------
_CACHE: Dict[str, Dict[str, Any]] = {}
_CACHE_LOCK = threading.Lock()
CACHE_TTL_SEC = settings.fusion_cache_ttl_seconds


def cache_get(key: str) -> Tuple[bool, Any]:
    with _CACHE_LOCK:
        row = _CACHE.get(key)
        if row is None:
            return False, None
        if (time.monotonic() - row["ts"]) > CACHE_TTL_SEC:
            _CACHE.pop(key, None)
            return False, None
        return True, row["val"]


def cache_set(key: str, val: Any) -> None:
    with _CACHE_LOCK:
        _CACHE[key] = {"ts": time.monotonic(), "val": val}


def clear_cache() -> None:
    with _CACHE_LOCK:
        _CACHE.clear()


def make_cache_key(*parts) -> str:
    return "|".join(str(p) for p in parts)


# ------------------------------
# fusion
# ------------------------------
def fuse_rows(term: str, rows: pd.DataFrame, filters: Optional[FusionFilters] = None) -> Optional[CompositeTrendRecord]:
    """
    rows: social rows for ONE normalized term
          (keyword_id, term, trend_momentum, collected_on, source, social_mentions, social_sentiment, engagement_score)
    """
    filters = filters or FusionFilters()
    if rows.empty:
        return None
    collectors = CollectorConfig(enabled=filters.platforms)
    rows = rows[rows["source"].map(collectors.is_enabled)]
    if rows.empty:
        return None

    rows = rows.sort_values(["collected_on", "keyword_id", "source"], kind="mergesort")

    breakdown: Dict[str, Dict[str, Any]] = {}
    for platform, g in rows.groupby("source", sort=True):
        latest = g.iloc[-1]
        breakdown[platform] = {
            "mentions": float(g["social_mentions"].fillna(0.0).sum()),
            "engagement": float(g["engagement_score"].fillna(0.0).sum()),
            "sentiment": opt_float(latest["social_sentiment"]) or 0.0,
            "last_collected": latest["collected_on"],
        }

    platforms = sorted(breakdown)
    if len(platforms) < filters.min_platforms:
        return None

    total_mentions = sum(b["mentions"] for b in breakdown.values())
    weighted_engagement = sum(
        b["engagement"] * filters.platform_weights.get(p.lower(), DEFAULT_PLATFORM_WEIGHT)
        for p, b in breakdown.items()
    )
    # highest raw engagement; ties go to the first platform by name
    dominant = max(platforms, key=lambda p: breakdown[p]["engagement"])
    if breakdown[dominant]["engagement"] <= 0:
        dominant = None
    sentiments = [b["sentiment"] for b in breakdown.values() if b["sentiment"] != 0.0]
    avg_sentiment = sum(sentiments) / len(sentiments) if sentiments else 0.0

    if filters.sentiment is not None and sentiment_bucket(avg_sentiment) != filters.sentiment:
        return None

    newest = rows.iloc[-1]
    return CompositeTrendRecord(
        keyword_id=str(newest["keyword_id"]),
        term=str(newest["term"]) if "term" in rows.columns else term,
        platform_count=len(platforms),
        platforms=platforms,
        total_mentions=round(total_mentions, 2),
        weighted_engagement=round(weighted_engagement, 2),
        avg_sentiment=round(avg_sentiment, 3),
        trend_momentum=opt_float(newest.get("trend_momentum")),
        platform_breakdown=breakdown,
        last_collected=newest["collected_on"],
        dominant_platform=dominant,
    )


def fuse_signals_for_term(store, term: str, lookback_days: int = DEFAULT_LOOKBACK_DAYS,
                          filters: Optional[FusionFilters] = None, as_of: Optional[date] = None,
                          use_cache: bool = True) -> Optional[CompositeTrendRecord]:
    filters = filters or FusionFilters()
    as_of = as_of or date.today()
    nt = normalize_term(term)
    if not nt:
        return None

    key = make_cache_key("term", nt, lookback_days, as_of.isoformat(), filters.cache_part())
    if use_cache:
        hit, val = cache_get(key)
        if hit:
            return val

    try:
        rows = store.get_social_rows(as_of - timedelta(days=lookback_days), as_of, normalized_term=nt)
    except SQLAlchemyError as e:
        logger.warning("social read failed for %r, no composite: %s", nt, e)
        return None
    result = fuse_rows(term, rows, filters)
    if use_cache:
        cache_set(key, result)
    return result


def top_composite_trends(store, min_platforms: int = DEFAULT_MIN_PLATFORMS, sentiment: Optional[str] = None,
                         lookback_days: int = DEFAULT_LOOKBACK_DAYS, limit: int = DEFAULT_LIMIT,
                         as_of: Optional[date] = None, platforms: Optional[List[str]] = None,
                         use_cache: bool = True) -> List[CompositeTrendRecord]:
    """
    Top-N composites by weighted engagement (desc). "No trending data" is a valid state,
    so datastore failures come back as [].
    """
    filters = FusionFilters(min_platforms=min_platforms, sentiment=sentiment, platforms=platforms)
    limit = max(0, min(int(limit), MAX_LIMIT))
    as_of = as_of or date.today()

    key = make_cache_key("top", lookback_days, limit, as_of.isoformat(), filters.cache_part())
    if use_cache:
        hit, val = cache_get(key)
        if hit:
            return val

    try:
        rows = store.get_social_rows(as_of - timedelta(days=lookback_days), as_of)
    except SQLAlchemyError as e:
        logger.warning("social trends read failed, returning empty result: %s", e)
        return []

    out: List[CompositeTrendRecord] = []
    if not rows.empty:
        for nt, g in rows.groupby("normalized_term", sort=True):
            rec = fuse_rows(nt, g, filters)
            if rec is not None:
                out.append(rec)

    out.sort(key=lambda r: (-r.weighted_engagement, r.term))
    out = out[:limit]
    if use_cache:
        cache_set(key, out)
    return out


def main():
    parser = argparse.ArgumentParser(description="Print top multi-platform composite trends.")
    parser.add_argument("--min-platforms", type=int, default=settings.fusion_min_platforms)
    parser.add_argument("--sentiment", type=str, default=None, choices=list(SENTIMENT_BUCKETS))
    parser.add_argument("--lookback-days", type=int, default=settings.fusion_lookback_days)
    parser.add_argument("--limit", type=int, default=20)
    args = parser.parse_args()

    configure_logging()
    from opportunity.db import get_engine
    from opportunity.storage_pg import SignalStore

    trends = top_composite_trends(
        SignalStore(get_engine()),
        min_platforms=args.min_platforms,
        sentiment=args.sentiment,
        lookback_days=args.lookback_days,
        limit=args.limit,
        use_cache=False,
    )
    if not trends:
        print("No multi-platform trends in the window.")
        return
    for r in trends:
        print(
            f"- {r.term} | eng {r.weighted_engagement:.2f} | mentions {r.total_mentions:.0f} | "
            f"{r.platform_count} platforms ({', '.join(r.platforms)}, top {r.dominant_platform or '-'}) | "
            f"sentiment {r.avg_sentiment:+.2f}"
        )


if __name__ == "__main__":
    main()
