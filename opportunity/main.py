from __future__ import annotations
import argparse
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed, Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional, Dict, Any, List

from sqlalchemy.exc import SQLAlchemyError
from tqdm import tqdm

from opportunity.classifier import classify
from opportunity.config import settings, BatchConfig, CollectorConfig, configure_logging
from opportunity.db import get_engine, init_schema
from opportunity.demand import base_demand_index_from_frame, adjusted_demand_index
from opportunity.fusion import FusionFilters, fuse_signals_for_term
from opportunity.models import KeywordScores, SeasonalPeriod, to_date
from opportunity.momentum import momentum_from_frame, deseason_momentum
from opportunity.seasonal import resolve_from_periods, window_seasonal_weight, load_periods_for_window
from opportunity.storage_pg import SignalStore
from opportunity.weekly import rollup_week

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    run_id: str
    as_of: date
    candidates: int
    scored: int = 0
    failed: int = 0
    cancelled: int = 0
    status: str = "success"
    badges: Dict[str, int] = field(default_factory=dict)
    elapsed_sec: float = 0.0

    def stats(self) -> Dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "candidates": self.candidates,
            "scored": self.scored,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "badges": dict(self.badges),
            "elapsed_sec": round(self.elapsed_sec, 3),
        }


def score_keyword(store: SignalStore, keyword_id: str, as_of: date, source: str,
                  country: str, periods: List[SeasonalPeriod],
                  lookback_days: int = 7, window_days: int = 14) -> KeywordScores:
    """All scores for one keyword from a single read of its rows."""
    start = as_of - timedelta(days=max(window_days - 1, lookback_days))
    frame = store.get_daily_metrics(keyword_id, source, start, as_of)
    return scores_from_frame(keyword_id, frame, as_of, country, periods, lookback_days, window_days)


def scores_from_frame(keyword_id: str, frame, as_of: date, country: str, periods: List[SeasonalPeriod],
                      lookback_days: int = 7, window_days: int = 14) -> KeywordScores:
    base = base_demand_index_from_frame(frame, as_of, window_days)
    weight, contributing = resolve_from_periods(periods, as_of, country)
    adjusted = adjusted_demand_index(base, weight)

    tm = momentum_from_frame(frame, as_of, lookback_days)
    dtm = deseason_momentum(tm, window_seasonal_weight(periods, as_of, lookback_days, country))

    return KeywordScores(
        keyword_id=keyword_id,
        as_of=as_of,
        base_demand_index=base,
        adjusted_demand_index=adjusted,
        trend_momentum=tm,
        deseasoned_trend_momentum=dtm,
        opportunity_badge=classify(adjusted, dtm),
        seasonal_weight=weight,
        seasonal_label=contributing[0] if contributing else None,
    )


def _score_and_persist(store: SignalStore, keyword_id: str, as_of: date, config: BatchConfig,
                       collectors: CollectorConfig, periods: List[SeasonalPeriod]) -> KeywordScores:
    scores = score_keyword(
        store, keyword_id, as_of, config.source, config.country, periods,
        lookback_days=config.lookback_days, window_days=config.window_days,
    )
    store.update_keyword_scores(scores)

    if config.fuse_social and collectors.enabled:
        kw = store.get_keyword(keyword_id)
        if kw is not None:
            composite = fuse_signals_for_term(
                store, kw.term,
                lookback_days=config.lookback_days,
                filters=FusionFilters(min_platforms=config.min_platforms, platforms=collectors.enabled),
                as_of=as_of,
                use_cache=False,
            )
            if composite is not None:
                store.merge_keyword_extras(keyword_id, "social", composite.to_dict())

    if config.rollup_weekly:
        rollup_week(store, keyword_id, config.source, as_of)
    return scores


def run_batch(store: SignalStore, config: BatchConfig, collectors: CollectorConfig,
              as_of: Optional[date] = None) -> BatchResult:
    """
    Score every keyword with rows in the demand window.

    - bounded worker pool, one keyword per task
    - wall-clock budget: unfinished work is cancelled, finished work stays written (status=partial)
    - a keyword whose reads/writes fail is logged and skipped
    - resume=True skips keywords already scored for as_of
    """
    as_of = as_of or date.today()
    started = time.monotonic()
    run_id = store.start_run(config.window_days)

    window_start = as_of - timedelta(days=max(config.window_days - 1, config.lookback_days))
    try:
        ids = store.keywords_to_score(
            config.source, window_start, as_of,
            skip_scored_on=as_of if config.resume else None,
        )
    except SQLAlchemyError as e:
        store.finish_run(run_id, "error", {"as_of": as_of.isoformat()}, error=str(e))
        raise

    periods = load_periods_for_window(store, as_of - timedelta(days=config.lookback_days), as_of)
    result = BatchResult(run_id=run_id, as_of=as_of, candidates=len(ids))
    logger.info("run %s: %d keywords, source=%s country=%s as_of=%s",
                run_id, len(ids), config.source, config.country, as_of)

    if not ids:
        result.elapsed_sec = time.monotonic() - started
        store.finish_run(run_id, "success", result.stats())
        return result

    seen = set()

    def collect(fut: Future, keyword_id: str):
        seen.add(fut)
        if fut.cancelled():
            result.cancelled += 1
            return
        try:
            scores = fut.result()
        except SQLAlchemyError as e:
            result.failed += 1
            logger.warning("keyword %s skipped: %s", keyword_id, e)
            return
        except Exception:
            result.failed += 1
            logger.exception("keyword %s skipped", keyword_id)
            return
        result.scored += 1
        result.badges[scores.opportunity_badge] = result.badges.get(scores.opportunity_badge, 0) + 1

    pool = ThreadPoolExecutor(max_workers=max(1, min(config.workers, len(ids))))
    futures = {
        pool.submit(_score_and_persist, store, kid, as_of, config, collectors, periods): kid
        for kid in ids
    }
    try:
        try:
            with tqdm(total=len(futures), desc="scoring keywords", unit="kw") as bar:
                for fut in as_completed(futures, timeout=config.budget_seconds):
                    collect(fut, futures[fut])
                    bar.update(1)
        except FuturesTimeoutError:
            logger.warning("run %s hit the %.0fs budget; remaining keywords left for the next run",
                           run_id, config.budget_seconds)
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

        # tasks that finished (or were cancelled) after the budget ran out
        for fut, kid in futures.items():
            if fut not in seen:
                collect(fut, kid)
    except Exception as e:
        result.elapsed_sec = time.monotonic() - started
        result.status = "error"
        store.finish_run(run_id, "error", result.stats(), error=str(e))
        raise

    result.elapsed_sec = time.monotonic() - started
    if result.cancelled or result.failed:
        result.status = "partial"
    store.finish_run(run_id, result.status, result.stats())
    logger.info("run %s %s: scored=%d failed=%d cancelled=%d",
                run_id, result.status, result.scored, result.failed, result.cancelled)
    return result


def main():
    parser = argparse.ArgumentParser(description="Score keyword demand, momentum and opportunity badges.")
    parser.add_argument("--as-of", type=str, default=None, help="YYYY-MM-DD (default: today)")
    parser.add_argument("--source", type=str, default=None)
    parser.add_argument("--country", type=str, default=None)
    parser.add_argument("--lookback", type=int, default=None, help="momentum lookback days")
    parser.add_argument("--window", type=int, default=None, help="demand index window days")
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--budget-seconds", type=float, default=None)
    parser.add_argument("--resume", action="store_true", help="skip keywords already scored for --as-of")
    parser.add_argument("--no-social", action="store_true", help="skip multi-platform fusion")
    parser.add_argument("--weekly", action="store_true", help="also roll up the current week")
    args = parser.parse_args()

    configure_logging()

    engine = get_engine()
    init_schema(engine)
    store = SignalStore(engine)

    config = BatchConfig.from_settings(
        settings,
        source=args.source,
        country=args.country,
        lookback_days=args.lookback,
        window_days=args.window,
        workers=args.workers,
        budget_seconds=args.budget_seconds,
        resume=args.resume or None,
        fuse_social=False if args.no_social else None,
        rollup_weekly=args.weekly or None,
    )
    collectors = CollectorConfig.from_settings(settings)
    as_of = to_date(args.as_of) if args.as_of else None

    result = run_batch(store, config, collectors, as_of=as_of)

    print(f"run {result.run_id} ({result.status}) as_of={result.as_of.isoformat()}")
    print(f"- keywords: {result.candidates} / scored {result.scored} / failed {result.failed} / cancelled {result.cancelled}")
    if result.badges:
        print("- badges: " + ", ".join(f"{k} {v}" for k, v in sorted(result.badges.items())))
    print(f"- elapsed: {result.elapsed_sec:.1f}s")


if __name__ == "__main__":
    main()
