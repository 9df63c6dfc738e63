from __future__ import annotations
from typing import Optional
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from opportunity.config import settings

_engine: Optional[Engine] = None

# Portable DDL: runs on Postgres (prod) and SQLite (tests).
# JSON payloads are stored as TEXT so both backends accept plain json.dumps() params.
SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS keywords (
      id TEXT PRIMARY KEY,
      term TEXT NOT NULL,
      normalized_term TEXT NOT NULL,
      market TEXT NOT NULL,
      source TEXT NOT NULL,
      base_demand_index DOUBLE PRECISION,
      adjusted_demand_index DOUBLE PRECISION,
      trend_momentum DOUBLE PRECISION,
      deseasoned_trend_momentum DOUBLE PRECISION,
      opportunity_badge TEXT,
      seasonal_label TEXT,
      scored_on DATE,
      extras TEXT NOT NULL DEFAULT '{}',
      created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
      updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_keywords_normalized_term
      ON keywords(normalized_term)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_keywords_adjusted_di
      ON keywords(adjusted_demand_index DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS keyword_metrics_daily (
      keyword_id TEXT NOT NULL REFERENCES keywords(id),
      collected_on DATE NOT NULL,
      source TEXT NOT NULL,
      demand DOUBLE PRECISION,
      supply DOUBLE PRECISION,
      competition_score DOUBLE PRECISION,
      social_mentions DOUBLE PRECISION,
      social_sentiment DOUBLE PRECISION,
      engagement_score DOUBLE PRECISION,
      collected_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
      PRIMARY KEY (keyword_id, collected_on, source)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_metrics_daily_date
      ON keyword_metrics_daily(collected_on DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS keyword_metrics_weekly (
      keyword_id TEXT NOT NULL REFERENCES keywords(id),
      week_start DATE NOT NULL,
      source TEXT NOT NULL,
      metrics TEXT NOT NULL DEFAULT '{}',
      computed_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
      PRIMARY KEY (keyword_id, week_start, source)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS seasonal_periods (
      name TEXT NOT NULL,
      country_scope TEXT NOT NULL DEFAULT 'global',
      start_date DATE NOT NULL,
      end_date DATE NOT NULL,
      weight DOUBLE PRECISION NOT NULL DEFAULT 1.0,
      tags TEXT NOT NULL DEFAULT '[]',
      PRIMARY KEY (name, country_scope, start_date)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_seasonal_periods_dates
      ON seasonal_periods(start_date, end_date)
    """,
    """
    CREATE TABLE IF NOT EXISTS trend_series (
      term TEXT NOT NULL,
      source TEXT NOT NULL,
      recorded_on DATE NOT NULL,
      trend_score DOUBLE PRECISION NOT NULL,
      velocity DOUBLE PRECISION NOT NULL,
      expected_growth_30d DOUBLE PRECISION NOT NULL,
      extras TEXT NOT NULL DEFAULT '{}',
      collected_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
      PRIMARY KEY (term, source, recorded_on)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS demand_trend_runs (
      id TEXT PRIMARY KEY,
      ran_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
      window_days INT NOT NULL,
      status TEXT NOT NULL,
      stats TEXT NOT NULL DEFAULT '{}',
      error TEXT
    )
    """,
]


def get_engine(dsn: Optional[str] = None) -> Engine:
    """Shared engine for POSTGRES_DSN; pass dsn to build a dedicated one."""
    global _engine
    if dsn:
        return create_engine(dsn, pool_pre_ping=True)
    if _engine is None:
        if not settings.postgres_dsn:
            raise RuntimeError("POSTGRES_DSN is empty.")
        _engine = create_engine(
            settings.postgres_dsn,
            pool_pre_ping=True,
            # one connection per batch worker
            pool_size=max(settings.batch_workers, 1),
            max_overflow=0,
        )
    return _engine


def init_schema(engine: Engine) -> None:
    with engine.begin() as conn:
        for ddl in SCHEMA:
            conn.execute(text(ddl))
