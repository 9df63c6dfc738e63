"""Tests for seasonal.py: weight resolution, catalog loading, seasonal context."""

from datetime import date
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from opportunity.models import SeasonalPeriod
from opportunity.seasonal import (
    NEUTRAL_WEIGHT,
    resolve_from_periods,
    resolve_seasonal_weight,
    window_seasonal_weight,
    load_catalog,
    period_from_dict,
    seasonal_context,
    has_high_priority_seasons,
    seasonal_summary,
)

CATALOG = Path(__file__).resolve().parent.parent / "opportunity" / "seasonal_periods.yaml"


def _p(name, start, end, weight, scope="global"):
    return SeasonalPeriod(name=name, start_date=start, end_date=end, weight=weight, country_scope=scope)


HOLIDAYS = [
    _p("Q4 Global Uplift", date(2024, 10, 1), date(2024, 12, 31), 1.2),
    _p("Singles' Day", date(2024, 11, 1), date(2024, 11, 12), 1.6, scope="CN"),
    _p("Black Friday", date(2024, 11, 20), date(2024, 12, 1), 1.5),
    _p("Cyber Monday", date(2024, 12, 1), date(2024, 12, 3), 1.3),
    _p("Christmas", date(2024, 12, 1), date(2024, 12, 31), 1.8),
]


class _BrokenStore:
    def get_seasonal_periods(self, start, end):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


class TestResolveWeight:

    def test_no_match_is_neutral(self):
        assert resolve_from_periods(HOLIDAYS, date(2025, 3, 1)) == (NEUTRAL_WEIGHT, [])

    def test_overlap_takes_max_and_reports_all(self):
        weight, names = resolve_from_periods(HOLIDAYS, date(2024, 12, 1))
        assert weight == 1.8
        assert names == ["Christmas", "Black Friday", "Cyber Monday", "Q4 Global Uplift"]

    def test_bounds_are_inclusive(self):
        assert resolve_from_periods(HOLIDAYS, date(2024, 12, 31))[0] == 1.8
        assert resolve_from_periods(HOLIDAYS, date(2025, 1, 1))[0] == NEUTRAL_WEIGHT

    def test_country_scope(self):
        assert resolve_from_periods(HOLIDAYS, date(2024, 11, 11), "CN")[0] == 1.6
        assert resolve_from_periods(HOLIDAYS, date(2024, 11, 11), "cn")[0] == 1.6
        assert resolve_from_periods(HOLIDAYS, date(2024, 11, 11), "US")[0] == 1.2

    def test_global_query_skips_scoped_periods(self):
        weight, names = resolve_from_periods(HOLIDAYS, date(2024, 11, 11), "global")
        assert weight == 1.2
        assert "Singles' Day" not in names

    def test_catalog_failure_degrades_to_neutral(self):
        assert resolve_seasonal_weight(_BrokenStore(), date(2024, 12, 1)) == (NEUTRAL_WEIGHT, [])

    def test_from_store(self, store):
        store.upsert_seasonal_periods(HOLIDAYS)
        weight, names = resolve_seasonal_weight(store, date(2024, 11, 25), "US")
        assert weight == 1.5
        assert names == ["Black Friday", "Q4 Global Uplift"]


class TestWindowWeight:

    def test_mean_over_lookback_days(self):
        periods = [_p("One Day", date(2025, 3, 10), date(2025, 3, 10), 2.0)]
        assert window_seasonal_weight(periods, date(2025, 3, 10), 3) == pytest.approx(1.25)

    def test_no_periods_is_neutral(self):
        assert window_seasonal_weight([], date(2025, 3, 10), 7) == NEUTRAL_WEIGHT


class TestCatalog:

    def test_packaged_catalog_loads(self):
        periods = load_catalog(str(CATALOG))
        assert len(periods) == 16
        christmas = next(p for p in periods if p.name == "Christmas")
        assert christmas.weight == 1.8
        assert christmas.start_date == date(2024, 12, 1)
        assert all(p.end_date >= p.start_date for p in periods)

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            period_from_dict({"name": "Bad", "start_date": "2025-02-10", "end_date": "2025-02-01", "weight": 1.2})

    def test_non_positive_weight_rejected(self):
        with pytest.raises(ValueError):
            period_from_dict({"name": "Zero", "start_date": "2025-02-01", "end_date": "2025-02-10", "weight": 0})

    def test_scope_defaults_to_global(self, tmp_path):
        path = tmp_path / "periods.yaml"
        path.write_text(
            "periods:\n"
            "  - {name: Spring, start_date: 2025-03-20, end_date: 2025-04-20, weight: 1.1}\n",
            encoding="utf-8",
        )
        [p] = load_catalog(str(path))
        assert p.country_scope == "global"
        assert p.tags == []

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_catalog(str(path)) == []


class TestSeasonalContext:

    def test_current_and_upcoming(self):
        ctx = seasonal_context(HOLIDAYS, date(2024, 11, 5), "global", lookahead_days=60)
        assert [p["name"] for p in ctx["current_periods"]] == ["Q4 Global Uplift"]
        assert ctx["current_periods"][0]["days_remaining"] == 56
        assert [p["name"] for p in ctx["upcoming_periods"]] == ["Black Friday", "Christmas", "Cyber Monday"]
        assert ctx["upcoming_periods"][0]["days_until"] == 15

    def test_high_priority_when_big_season_is_near(self):
        ctx = seasonal_context(HOLIDAYS, date(2024, 11, 5))
        assert has_high_priority_seasons(ctx)
        assert seasonal_summary(ctx) == "Active: Q4 Global Uplift | Coming soon: Christmas"

    def test_not_high_priority_when_far_out(self):
        ctx = seasonal_context(HOLIDAYS, date(2024, 10, 5))
        assert not has_high_priority_seasons(ctx)
        assert seasonal_summary(ctx) == "Active: Q4 Global Uplift"

    def test_active_strong_season_is_high_priority(self):
        ctx = seasonal_context(HOLIDAYS, date(2024, 11, 25))
        assert has_high_priority_seasons(ctx)

    def test_empty_context(self):
        assert not has_high_priority_seasons(None)
        assert seasonal_summary({}) == ""
