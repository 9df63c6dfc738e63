"""End-to-end batch scoring over a SQLite store."""

import time
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from opportunity.config import BatchConfig, CollectorConfig
from opportunity.main import run_batch, score_keyword
from opportunity.models import DailyMetric, SeasonalPeriod

AS_OF = date(2025, 3, 10)
RAMP = [40.0 + 30.0 * i / 13 for i in range(14)]  # 40 -> 70 over 14 days


def _config(**kw):
    base = dict(source="lexyhub", country="global", workers=2, budget_seconds=60)
    base.update(kw)
    return BatchConfig(**base)


NO_COLLECTORS = CollectorConfig(enabled=[])


class TestScoreKeyword:

    def test_rising_ramp(self, store, seed_series):
        kid = seed_series("boho lamp", RAMP)
        sc = score_keyword(store, kid, AS_OF, "lexyhub", "global", [])
        assert 60.0 <= sc.base_demand_index <= 75.0
        assert sc.adjusted_demand_index == sc.base_demand_index
        assert sc.trend_momentum == pytest.approx(30.0)
        assert sc.deseasoned_trend_momentum == sc.trend_momentum
        assert sc.opportunity_badge in ("hot", "rising")
        assert sc.seasonal_label is None

    def test_season_lifts_demand_and_damps_momentum(self, store, seed_series):
        kid = seed_series("boho lamp", RAMP)
        spring = SeasonalPeriod(name="Spring Sale", start_date=date(2025, 3, 1),
                                end_date=date(2025, 3, 31), weight=1.5)
        plain = score_keyword(store, kid, AS_OF, "lexyhub", "global", [])
        sc = score_keyword(store, kid, AS_OF, "lexyhub", "global", [spring])
        assert sc.base_demand_index == plain.base_demand_index
        assert sc.adjusted_demand_index == pytest.approx(min(100.0, plain.base_demand_index * 1.5), abs=1e-3)
        assert sc.deseasoned_trend_momentum == pytest.approx(20.0)
        assert sc.seasonal_weight == 1.5
        assert sc.seasonal_label == "Spring Sale"
        assert sc.opportunity_badge == "hot"

    def test_no_history(self, store, seed_series):
        kid = seed_series("boho lamp", [50.0], end=date(2025, 1, 1))
        sc = score_keyword(store, kid, AS_OF, "lexyhub", "global", [])
        assert sc.base_demand_index is None
        assert sc.trend_momentum is None
        assert sc.opportunity_badge == "unknown"


class TestRunBatch:

    def test_scores_are_written(self, store, seed_series):
        kid = seed_series("boho lamp", RAMP)
        flat = seed_series("linen apron", [45.0] * 14)
        result = run_batch(store, _config(), NO_COLLECTORS, as_of=AS_OF)

        assert result.status == "success"
        assert result.candidates == 2
        assert result.scored == 2

        kw = store.get_keyword(kid)
        assert 60.0 <= kw.base_demand_index <= 75.0
        assert kw.opportunity_badge in ("hot", "rising")
        assert kw.scored_on == AS_OF
        assert store.get_keyword(flat).opportunity_badge == "stable"

        run = store.get_run(result.run_id)
        assert run["status"] == "success"
        assert run["stats"]["scored"] == 2
        assert run["window_days"] == 14

    def test_rerun_is_idempotent(self, store, seed_series):
        kid = seed_series("boho lamp", RAMP)
        run_batch(store, _config(), NO_COLLECTORS, as_of=AS_OF)
        first = store.get_keyword(kid)
        run_batch(store, _config(), NO_COLLECTORS, as_of=AS_OF)
        second = store.get_keyword(kid)
        for col in ("base_demand_index", "adjusted_demand_index", "trend_momentum",
                    "deseasoned_trend_momentum", "opportunity_badge", "seasonal_label", "scored_on"):
            assert getattr(first, col) == getattr(second, col)

    def test_resume_skips_scored(self, store, seed_series):
        seed_series("boho lamp", RAMP)
        run_batch(store, _config(), NO_COLLECTORS, as_of=AS_OF)
        seed_series("linen apron", [45.0] * 14)
        result = run_batch(store, _config(resume=True), NO_COLLECTORS, as_of=AS_OF)
        assert result.candidates == 1
        assert result.scored == 1

    def test_no_candidates(self, store):
        result = run_batch(store, _config(), NO_COLLECTORS, as_of=AS_OF)
        assert result.candidates == 0
        assert result.status == "success"
        assert store.get_run(result.run_id)["status"] == "success"

    def test_failing_keyword_is_skipped(self, store, seed_series, monkeypatch):
        bad = seed_series("boho lamp", RAMP)
        good = seed_series("linen apron", [45.0] * 14)
        real = store.get_daily_metrics

        def flaky(keyword_id, *args, **kwargs):
            if keyword_id == bad:
                raise OperationalError("SELECT", {}, Exception("statement timeout"))
            return real(keyword_id, *args, **kwargs)

        monkeypatch.setattr(store, "get_daily_metrics", flaky)
        result = run_batch(store, _config(), NO_COLLECTORS, as_of=AS_OF)

        assert result.scored == 1
        assert result.failed == 1
        assert result.status == "partial"
        assert store.get_keyword(good).opportunity_badge == "stable"
        assert store.get_keyword(bad).scored_on is None
        assert store.get_run(result.run_id)["status"] == "partial"

    def test_bad_row_in_one_keyword_does_not_stop_the_batch(self, store, seed_series, monkeypatch):
        bad = seed_series("boho lamp", RAMP)
        good = seed_series("linen apron", [45.0] * 14)
        real = store.get_daily_metrics

        def malformed(keyword_id, *args, **kwargs):
            if keyword_id == bad:
                raise ValueError("could not convert string to float: 'n/a'")
            return real(keyword_id, *args, **kwargs)

        monkeypatch.setattr(store, "get_daily_metrics", malformed)
        result = run_batch(store, _config(), NO_COLLECTORS, as_of=AS_OF)

        assert (result.scored, result.failed, result.status) == (1, 1, "partial")
        assert store.get_keyword(good).scored_on == AS_OF
        run = store.get_run(result.run_id)
        assert run["status"] == "partial"
        assert run["stats"]["failed"] == 1

    def test_social_read_failure_keeps_keyword_scored(self, store, seed_series, monkeypatch):
        kid = seed_series("boho lamp", RAMP)

        def down(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("statement timeout"))

        monkeypatch.setattr(store, "get_social_rows", down)
        result = run_batch(store, _config(), CollectorConfig(enabled=["reddit", "pinterest"]), as_of=AS_OF)

        assert (result.scored, result.failed, result.status) == (1, 0, "success")
        kw = store.get_keyword(kid)
        assert kw.scored_on == AS_OF
        assert "social" not in kw.extras

    def test_budget_leaves_partial_progress(self, store, seed_series, monkeypatch):
        ids = [seed_series(f"term {i}", [45.0] * 14) for i in range(3)]
        real = store.get_daily_metrics

        def slow(*args, **kwargs):
            time.sleep(0.5)
            return real(*args, **kwargs)

        monkeypatch.setattr(store, "get_daily_metrics", slow)
        result = run_batch(store, _config(workers=1, budget_seconds=0.2), NO_COLLECTORS, as_of=AS_OF)

        assert result.status == "partial"
        assert result.cancelled >= 1
        assert result.scored + result.cancelled == 3
        scored = [kid for kid in ids if store.get_keyword(kid).scored_on == AS_OF]
        assert len(scored) == result.scored

        rerun = run_batch(store, _config(resume=True), NO_COLLECTORS, as_of=AS_OF)
        assert rerun.candidates == result.cancelled

    def test_candidate_read_failure_is_logged_and_raised(self, store, monkeypatch):
        def boom(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(store, "keywords_to_score", boom)
        with pytest.raises(OperationalError):
            run_batch(store, _config(), NO_COLLECTORS, as_of=AS_OF)

    def test_social_composite_lands_in_extras(self, store, seed_series):
        kid = seed_series("boho lamp", RAMP)
        for platform, engagement in (("reddit", 100.0), ("pinterest", 200.0)):
            pid = store.ensure_keyword("boho lamp", "us", platform)
            store.upsert_daily_metrics([DailyMetric(
                pid, AS_OF, platform, social_mentions=5.0, engagement_score=engagement, social_sentiment=0.4,
            )])

        run_batch(store, _config(), CollectorConfig(enabled=["reddit", "pinterest"]), as_of=AS_OF)
        social = store.get_keyword(kid).extras["social"]
        assert social["platforms"] == ["pinterest", "reddit"]
        assert social["weighted_engagement"] == 115.0
        assert social["last_collected"] == "2025-03-10"
        assert social["dominant_platform"] == "pinterest"

    def test_weekly_rollup(self, store, seed_series):
        kid = seed_series("boho lamp", RAMP)
        run_batch(store, _config(rollup_weekly=True), NO_COLLECTORS, as_of=AS_OF)
        [wm] = store.get_weekly_metrics(kid, "lexyhub")
        assert wm.week_start == date(2025, 3, 10)
        assert wm.metrics["days"] == 1
