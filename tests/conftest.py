"""Shared fixtures: a throwaway SQLite file per test, with the full schema."""

from datetime import date, timedelta

import pandas as pd
import pytest

from opportunity import fusion
from opportunity.db import get_engine, init_schema
from opportunity.models import DailyMetric
from opportunity.storage_pg import SignalStore

AS_OF = date(2025, 3, 10)

FRAME_COLUMNS = [
    "keyword_id", "collected_on", "source", "demand", "supply", "competition_score",
    "social_mentions", "social_sentiment", "engagement_score",
]


@pytest.fixture
def engine(tmp_path):
    eng = get_engine(f"sqlite:///{tmp_path / 'signals.db'}")
    init_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return SignalStore(engine)


@pytest.fixture(autouse=True)
def _fresh_fusion_cache():
    fusion.clear_cache()
    yield
    fusion.clear_cache()


@pytest.fixture
def seed_series(store):
    """
    seed_series(term, demands, end=AS_OF, source="lexyhub", market="us", **metric_overrides) -> keyword_id

    One daily row per demand value, the last one on `end`. None skips the day.
    """
    def _seed(term, demands, end=AS_OF, source="lexyhub", market="us", **overrides):
        kid = store.ensure_keyword(term, market, source)
        n = len(demands)
        rows = []
        for i, v in enumerate(demands):
            if v is None:
                continue
            rows.append(DailyMetric(
                keyword_id=kid,
                collected_on=end - timedelta(days=n - 1 - i),
                source=source,
                demand=float(v),
                **overrides,
            ))
        store.upsert_daily_metrics(rows)
        return kid
    return _seed


@pytest.fixture
def make_frame():
    """make_frame([(date, demand, supply, competition), ...]) -> frame shaped like get_daily_metrics()."""
    def _make(rows):
        records = []
        for r in rows:
            d, demand = r[0], r[1]
            supply = r[2] if len(r) > 2 else None
            competition = r[3] if len(r) > 3 else None
            records.append({
                "keyword_id": "kw",
                "collected_on": d,
                "source": "lexyhub",
                "demand": demand,
                "supply": supply,
                "competition_score": competition,
                "social_mentions": None,
                "social_sentiment": None,
                "engagement_score": None,
            })
        df = pd.DataFrame(records, columns=FRAME_COLUMNS)
        for c in FRAME_COLUMNS[3:]:
            df[c] = pd.to_numeric(df[c], errors="coerce").astype(float)
        return df
    return _make
