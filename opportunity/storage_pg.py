from __future__ import annotations
from datetime import date, datetime
from typing import Iterable, List, Dict, Any, Optional
import json
import uuid

import pandas as pd
from sqlalchemy import text
from sqlalchemy.engine import Engine

from opportunity.models import (
    Keyword, DailyMetric, WeeklyMetric, SeasonalPeriod, TrendSeriesRecord,
    KeywordScores, to_date,
)

METRIC_COLUMNS = [
    "demand", "supply", "competition_score",
    "social_mentions", "social_sentiment", "engagement_score",
]


def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d is not None else None


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def row_lock_clause(dialect_name: str) -> str:
    # SQLite (tests) has no FOR UPDATE
    return " FOR UPDATE" if dialect_name == "postgresql" else ""


def _load_json(value: Any, default):
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


class SignalStore:
    """
    Data access over the raw signal tables.
    Every write is an idempotent upsert (or a keyed UPDATE), so concurrent reruns converge.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    # ------------------------------
    # keywords
    # ------------------------------
    def ensure_keyword(self, term: str, market: str, source: str) -> str:
        """Create the keyword on first ingestion; returns its deterministic id."""
        kw = Keyword.new(term, market, source)
        q = text("""
            INSERT INTO keywords(id, term, normalized_term, market, source)
            VALUES (:id, :term, :normalized_term, :market, :source)
            ON CONFLICT (id) DO NOTHING
        """)
        with self.engine.begin() as conn:
            conn.execute(q, {
                "id": kw.id, "term": kw.term, "normalized_term": kw.normalized_term,
                "market": kw.market, "source": kw.source,
            })
        return kw.id

    def _keyword_from_row(self, r) -> Keyword:
        return Keyword(
            id=r["id"],
            term=r["term"],
            normalized_term=r["normalized_term"],
            market=r["market"],
            source=r["source"],
            base_demand_index=r["base_demand_index"],
            adjusted_demand_index=r["adjusted_demand_index"],
            trend_momentum=r["trend_momentum"],
            deseasoned_trend_momentum=r["deseasoned_trend_momentum"],
            opportunity_badge=r["opportunity_badge"],
            seasonal_label=r["seasonal_label"],
            scored_on=to_date(r["scored_on"]) if r["scored_on"] is not None else None,
            extras=_load_json(r["extras"], {}),
            updated_at=_to_datetime(r["updated_at"]),
        )

    def get_keyword(self, keyword_id: str) -> Optional[Keyword]:
        q = text("SELECT * FROM keywords WHERE id = :id")
        with self.engine.begin() as conn:
            row = conn.execute(q, {"id": keyword_id}).mappings().fetchone()
        return self._keyword_from_row(row) if row else None

    def get_keywords_by_term(self, normalized_term: str) -> List[Keyword]:
        q = text("""
            SELECT * FROM keywords
            WHERE normalized_term = :nt
            ORDER BY id
        """)
        with self.engine.begin() as conn:
            rows = conn.execute(q, {"nt": normalized_term}).mappings().fetchall()
        return [self._keyword_from_row(r) for r in rows]

    def update_keyword_scores(self, scores: KeywordScores) -> None:
        q = text("""
            UPDATE keywords
            SET base_demand_index=:base,
                adjusted_demand_index=:adjusted,
                trend_momentum=:tm,
                deseasoned_trend_momentum=:dtm,
                opportunity_badge=:badge,
                seasonal_label=:label,
                scored_on=:scored_on,
                updated_at=CURRENT_TIMESTAMP
            WHERE id=:id
        """)
        with self.engine.begin() as conn:
            conn.execute(q, {
                "id": scores.keyword_id,
                "base": scores.base_demand_index,
                "adjusted": scores.adjusted_demand_index,
                "tm": scores.trend_momentum,
                "dtm": scores.deseasoned_trend_momentum,
                "badge": scores.opportunity_badge,
                "label": scores.seasonal_label,
                "scored_on": _iso(scores.as_of),
            })

    def merge_keyword_extras(self, keyword_id: str, key: str, payload: Dict[str, Any]) -> None:
        """
        extras[key] = payload; other extras keys are kept.
        The row stays locked between read and write, so concurrent writers of different keys don't drop each other.
        """
        with self.engine.begin() as conn:
            row = conn.execute(
                text(f"SELECT extras FROM keywords WHERE id=:id{row_lock_clause(conn.dialect.name)}"),
                {"id": keyword_id},
            ).fetchone()
            if row is None:
                return
            extras = _load_json(row[0], {})
            extras[key] = payload
            conn.execute(
                text("UPDATE keywords SET extras=:extras, updated_at=CURRENT_TIMESTAMP WHERE id=:id"),
                {"id": keyword_id, "extras": json.dumps(extras, default=str)},
            )

    def keywords_to_score(self, source: str, start: date, end: date,
                          skip_scored_on: Optional[date] = None) -> List[str]:
        """Keywords with rows for `source` in [start, end]; optionally skip ones already scored for a date."""
        resume_clause = ""
        params: Dict[str, Any] = {"source": source, "start": _iso(start), "end": _iso(end)}
        if skip_scored_on is not None:
            resume_clause = "AND (k.scored_on IS NULL OR k.scored_on <> :scored_on)"
            params["scored_on"] = _iso(skip_scored_on)
        q = text(f"""
            SELECT DISTINCT m.keyword_id
            FROM keyword_metrics_daily m
            JOIN keywords k ON k.id = m.keyword_id
            WHERE m.source = :source
              AND m.collected_on >= :start
              AND m.collected_on <= :end
              {resume_clause}
            ORDER BY m.keyword_id
        """)
        with self.engine.begin() as conn:
            rows = conn.execute(q, params).fetchall()
        return [r[0] for r in rows]

    # ------------------------------
    # daily / weekly metrics
    # ------------------------------
    def upsert_daily_metrics(self, metrics: Iterable[DailyMetric]) -> int:
        """
        (keyword_id, collected_on, source) upsert.
        Duplicate keys inside one payload collapse to the last one (ON CONFLICT can't touch a row twice).
        """
        latest: Dict[tuple, DailyMetric] = {}
        for m in metrics:
            latest[m.natural_key] = m
        if not latest:
            return 0

        q = text("""
            INSERT INTO keyword_metrics_daily(
              keyword_id, collected_on, source, demand, supply, competition_score,
              social_mentions, social_sentiment, engagement_score
            ) VALUES (
              :keyword_id, :collected_on, :source, :demand, :supply, :competition_score,
              :social_mentions, :social_sentiment, :engagement_score
            )
            ON CONFLICT (keyword_id, collected_on, source)
            DO UPDATE SET demand=EXCLUDED.demand,
                          supply=EXCLUDED.supply,
                          competition_score=EXCLUDED.competition_score,
                          social_mentions=EXCLUDED.social_mentions,
                          social_sentiment=EXCLUDED.social_sentiment,
                          engagement_score=EXCLUDED.engagement_score,
                          collected_at=CURRENT_TIMESTAMP
        """)
        payload = [
            {
                "keyword_id": m.keyword_id,
                "collected_on": _iso(m.collected_on),
                "source": m.source,
                **{c: getattr(m, c) for c in METRIC_COLUMNS},
            }
            for m in latest.values()
        ]
        with self.engine.begin() as conn:
            conn.execute(q, payload)
        return len(payload)

    def _frame(self, q, params: Dict[str, Any], date_cols: List[str], num_cols: List[str]) -> pd.DataFrame:
        with self.engine.connect() as conn:
            df = pd.read_sql(q, conn, params=params)
        for c in date_cols:
            df[c] = pd.to_datetime(df[c]).dt.date
        for c in num_cols:
            df[c] = pd.to_numeric(df[c], errors="coerce").astype(float)
        return df

    def get_daily_metrics(self, keyword_id: str, source: str, start: date, end: date) -> pd.DataFrame:
        """Rows in [start, end] ordered by collected_on. One read = one consistent snapshot for the keyword."""
        q = text("""
            SELECT keyword_id, collected_on, source, demand, supply, competition_score,
                   social_mentions, social_sentiment, engagement_score
            FROM keyword_metrics_daily
            WHERE keyword_id = :kw
              AND source = :source
              AND collected_on >= :start
              AND collected_on <= :end
            ORDER BY collected_on ASC
        """)
        return self._frame(
            q,
            {"kw": keyword_id, "source": source, "start": _iso(start), "end": _iso(end)},
            date_cols=["collected_on"],
            num_cols=METRIC_COLUMNS,
        )

    def get_social_rows(self, start: date, end: date, normalized_term: Optional[str] = None) -> pd.DataFrame:
        """Rows carrying social signal (mentions or engagement), joined with their keyword."""
        term_clause = "AND k.normalized_term = :nt" if normalized_term is not None else ""
        q = text(f"""
            SELECT m.keyword_id, k.term, k.normalized_term, k.trend_momentum,
                   m.collected_on, m.source, m.social_mentions, m.social_sentiment, m.engagement_score
            FROM keyword_metrics_daily m
            JOIN keywords k ON k.id = m.keyword_id
            WHERE m.collected_on >= :start
              AND m.collected_on <= :end
              AND (m.social_mentions IS NOT NULL OR m.engagement_score IS NOT NULL)
              {term_clause}
            ORDER BY m.collected_on ASC, m.keyword_id ASC, m.source ASC
        """)
        params: Dict[str, Any] = {"start": _iso(start), "end": _iso(end)}
        if normalized_term is not None:
            params["nt"] = normalized_term
        return self._frame(
            q, params,
            date_cols=["collected_on"],
            num_cols=["trend_momentum", "social_mentions", "social_sentiment", "engagement_score"],
        )

    def upsert_weekly_metric(self, wm: WeeklyMetric) -> None:
        q = text("""
            INSERT INTO keyword_metrics_weekly(keyword_id, week_start, source, metrics)
            VALUES (:keyword_id, :week_start, :source, :metrics)
            ON CONFLICT (keyword_id, week_start, source)
            DO UPDATE SET metrics=EXCLUDED.metrics, computed_at=CURRENT_TIMESTAMP
        """)
        with self.engine.begin() as conn:
            conn.execute(q, {
                "keyword_id": wm.keyword_id,
                "week_start": _iso(wm.week_start),
                "source": wm.source,
                "metrics": json.dumps(wm.metrics),
            })

    def get_weekly_metrics(self, keyword_id: str, source: str) -> List[WeeklyMetric]:
        q = text("""
            SELECT keyword_id, week_start, source, metrics
            FROM keyword_metrics_weekly
            WHERE keyword_id = :kw AND source = :source
            ORDER BY week_start ASC
        """)
        with self.engine.begin() as conn:
            rows = conn.execute(q, {"kw": keyword_id, "source": source}).fetchall()
        return [
            WeeklyMetric(keyword_id=r[0], week_start=to_date(r[1]), source=r[2], metrics=_load_json(r[3], {}))
            for r in rows
        ]

    # ------------------------------
    # seasonal catalog
    # ------------------------------
    def upsert_seasonal_periods(self, periods: Iterable[SeasonalPeriod]) -> int:
        q = text("""
            INSERT INTO seasonal_periods(name, country_scope, start_date, end_date, weight, tags)
            VALUES (:name, :country_scope, :start_date, :end_date, :weight, :tags)
            ON CONFLICT (name, country_scope, start_date)
            DO UPDATE SET end_date=EXCLUDED.end_date,
                          weight=EXCLUDED.weight,
                          tags=EXCLUDED.tags
        """)
        payload = [
            {
                "name": p.name,
                "country_scope": (p.country_scope or "global"),
                "start_date": _iso(p.start_date),
                "end_date": _iso(p.end_date),
                "weight": float(p.weight),
                "tags": json.dumps(list(p.tags)),
            }
            for p in periods
        ]
        if not payload:
            return 0
        with self.engine.begin() as conn:
            conn.execute(q, payload)
        return len(payload)

    def get_seasonal_periods(self, start: date, end: date) -> List[SeasonalPeriod]:
        """Periods overlapping [start, end]."""
        q = text("""
            SELECT name, country_scope, start_date, end_date, weight, tags
            FROM seasonal_periods
            WHERE start_date <= :end AND end_date >= :start
            ORDER BY start_date ASC, name ASC
        """)
        with self.engine.begin() as conn:
            rows = conn.execute(q, {"start": _iso(start), "end": _iso(end)}).fetchall()
        return [
            SeasonalPeriod(
                name=r[0],
                country_scope=r[1],
                start_date=to_date(r[2]),
                end_date=to_date(r[3]),
                weight=float(r[4]),
                tags=_load_json(r[5], []),
            )
            for r in rows
        ]

    # ------------------------------
    # trend series
    # ------------------------------
    def upsert_trend_series(self, records: Iterable[TrendSeriesRecord]) -> int:
        q = text("""
            INSERT INTO trend_series(term, source, recorded_on, trend_score, velocity, expected_growth_30d, extras)
            VALUES (:term, :source, :recorded_on, :trend_score, :velocity, :expected_growth_30d, :extras)
            ON CONFLICT (term, source, recorded_on)
            DO UPDATE SET trend_score=EXCLUDED.trend_score,
                          velocity=EXCLUDED.velocity,
                          expected_growth_30d=EXCLUDED.expected_growth_30d,
                          extras=EXCLUDED.extras,
                          collected_at=CURRENT_TIMESTAMP
        """)
        payload = [
            {
                "term": r.term,
                "source": r.source,
                "recorded_on": _iso(r.recorded_on),
                "trend_score": r.trend_score,
                "velocity": r.velocity,
                "expected_growth_30d": r.expected_growth_30d,
                "extras": json.dumps(r.extras, default=str),
            }
            for r in records
        ]
        if not payload:
            return 0
        with self.engine.begin() as conn:
            conn.execute(q, payload)
        return len(payload)

    def get_trend_series(self, term: str, source: Optional[str] = None) -> List[Dict[str, Any]]:
        source_clause = "AND source = :source" if source else ""
        q = text(f"""
            SELECT term, source, recorded_on, trend_score, velocity, expected_growth_30d, extras
            FROM trend_series
            WHERE term = :term {source_clause}
            ORDER BY recorded_on ASC, source ASC
        """)
        params = {"term": term}
        if source:
            params["source"] = source
        with self.engine.begin() as conn:
            rows = conn.execute(q, params).fetchall()
        return [{
            "term": r[0],
            "source": r[1],
            "recorded_on": to_date(r[2]),
            "trend_score": float(r[3]),
            "velocity": float(r[4]),
            "expected_growth_30d": float(r[5]),
            "extras": _load_json(r[6], {}),
        } for r in rows]

    # ------------------------------
    # run log
    # ------------------------------
    def start_run(self, window_days: int) -> str:
        run_id = str(uuid.uuid4())
        q = text("""
            INSERT INTO demand_trend_runs(id, window_days, status)
            VALUES (:id, :window_days, 'running')
        """)
        with self.engine.begin() as conn:
            conn.execute(q, {"id": run_id, "window_days": int(window_days)})
        return run_id

    def finish_run(self, run_id: str, status: str, stats: Dict[str, Any], error: Optional[str] = None) -> None:
        q = text("""
            UPDATE demand_trend_runs
            SET status=:status, stats=:stats, error=:error
            WHERE id=:id
        """)
        with self.engine.begin() as conn:
            conn.execute(q, {"id": run_id, "status": status, "stats": json.dumps(stats, default=str), "error": error})

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        q = text("SELECT id, window_days, status, stats, error FROM demand_trend_runs WHERE id=:id")
        with self.engine.begin() as conn:
            row = conn.execute(q, {"id": run_id}).fetchone()
        if not row:
            return None
        return {
            "id": row[0],
            "window_days": int(row[1]),
            "status": row[2],
            "stats": _load_json(row[3], {}),
            "error": row[4],
        }
