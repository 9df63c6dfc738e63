from __future__ import annotations
import logging
import math
from datetime import date, datetime, timezone
from typing import Iterable, List, Dict, Any, Tuple, Optional

from opportunity.keys import normalize_term
from opportunity.models import TrendSignal, TrendSeriesRecord

logger = logging.getLogger(__name__)

GROWTH_HORIZON_DAYS = 30
CHANGE_WINDOW_DAYS = 7
MIN_CHANGE_RATIO = -0.99


def normalize_score(score: float, max_score: float = 100.0) -> float:
    if score is None or not math.isfinite(score) or max_score <= 0:
        return 0.0
    return max(0.0, min(1.0, score / max_score))


def make_signal(term: str, source: str, raw_score: float, change_ratio: float,
                max_score: float = 100.0, metadata: Optional[Dict[str, Any]] = None) -> TrendSignal:
    return TrendSignal(
        term=term,
        source=source,
        raw_score=float(raw_score),
        normalized_score=normalize_score(raw_score, max_score),
        change_ratio=float(change_ratio or 0.0),
        metadata=dict(metadata or {}),
    )


def project_growth_30d(change_ratio: float) -> float:
    """Compound a weekly change ratio over the next 30 days, in %."""
    r = max(float(change_ratio), MIN_CHANGE_RATIO)
    return ((1.0 + r) ** (GROWTH_HORIZON_DAYS / CHANGE_WINDOW_DAYS) - 1.0) * 100.0


def reduce_trend_signals(signals: Iterable[TrendSignal], recorded_on: date
                         ) -> Tuple[List[TrendSeriesRecord], Dict[str, Dict[str, Any]]]:
    """
    Collapse one collection run into persisted series rows + per-term momentum.
    One row per (normalized term, source); the strongest normalized score wins.
    """
    best: Dict[Tuple[str, str], TrendSignal] = {}
    for s in signals:
        nt = normalize_term(s.term)
        if not nt:
            continue
        key = (nt, s.source)
        cur = best.get(key)
        if cur is None or s.normalized_score > cur.normalized_score:
            best[key] = s

    records: List[TrendSeriesRecord] = []
    by_term: Dict[str, List[TrendSignal]] = {}
    for (nt, source), s in sorted(best.items()):
        records.append(TrendSeriesRecord(
            term=nt,
            source=source,
            recorded_on=recorded_on,
            trend_score=round(s.normalized_score * 100.0, 3),
            velocity=round(s.change_ratio * 100.0, 3),
            expected_growth_30d=round(project_growth_30d(s.change_ratio), 3),
            extras={"raw_score": s.raw_score, **s.metadata},
        ))
        by_term.setdefault(nt, []).append(s)

    momentum_by_term: Dict[str, Dict[str, Any]] = {}
    for nt, group in by_term.items():
        weights = [max(s.normalized_score, 0.0) for s in group]
        total = sum(weights)
        if total > 0:
            change = sum(w * s.change_ratio for w, s in zip(weights, group)) / total
        else:
            change = sum(s.change_ratio for s in group) / len(group)
        momentum_by_term[nt] = {
            "momentum": round(change * 100.0, 3),
            "expected_growth_30d": round(project_growth_30d(change), 3),
            "contributors": sorted(s.source for s in group),
        }
    return records, momentum_by_term


def apply_trend_signals(store, signals: Iterable[TrendSignal], recorded_on: date) -> Dict[str, int]:
    """Upsert series rows, then stamp extras['trend'] on every keyword sharing the term."""
    records, momentum_by_term = reduce_trend_signals(signals, recorded_on)
    if not records:
        logger.info("no trend signals to apply for %s", recorded_on)
        return {"records": 0, "keywords_updated": 0}

    store.upsert_trend_series(records)

    updated = 0
    now = datetime.now(timezone.utc).isoformat()
    for nt, m in momentum_by_term.items():
        for kw in store.get_keywords_by_term(nt):
            store.merge_keyword_extras(kw.id, "trend", {
                "momentum": m["momentum"],
                "expected_growth_30d": m["expected_growth_30d"],
                "contributors": m["contributors"],
                "recorded_on": recorded_on.isoformat(),
                "updated_at": now,
            })
            updated += 1
    logger.info("applied %d trend series rows, %d keywords updated", len(records), updated)
    return {"records": len(records), "keywords_updated": updated}
