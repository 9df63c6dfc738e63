"""
Seasonal weight resolution.

A seasonal period is a named calendar interval (inclusive) with a demand multiplier
and a country scope. Overlapping periods resolve to the MAXIMUM weight among matches;
every match is reported back as a contributing period.
"""
from __future__ import annotations
import logging
from datetime import date, timedelta
from typing import List, Tuple, Optional, Dict, Any, Iterable

import yaml
from sqlalchemy.exc import SQLAlchemyError

from opportunity.models import SeasonalPeriod, to_date

logger = logging.getLogger(__name__)

NEUTRAL_WEIGHT = 1.0
GLOBAL_SCOPE = "global"

HIGH_PRIORITY_CURRENT_WEIGHT = 1.5
HIGH_PRIORITY_UPCOMING_WEIGHT = 1.8
HIGH_PRIORITY_UPCOMING_DAYS = 30


def scope_matches(period: SeasonalPeriod, country: Optional[str]) -> bool:
    scope = (period.country_scope or GLOBAL_SCOPE).strip().lower()
    if scope == GLOBAL_SCOPE:
        return True
    return scope == (country or GLOBAL_SCOPE).strip().lower()


def resolve_from_periods(periods: Iterable[SeasonalPeriod], as_of: date,
                         country: Optional[str] = GLOBAL_SCOPE) -> Tuple[float, List[str]]:
    matches = [p for p in periods if p.covers(as_of) and scope_matches(p, country)]
    if not matches:
        return NEUTRAL_WEIGHT, []
    matches.sort(key=lambda p: (-p.weight, p.name))
    return float(matches[0].weight), [p.name for p in matches]


def resolve_seasonal_weight(store, as_of: date, country: Optional[str] = GLOBAL_SCOPE) -> Tuple[float, List[str]]:
    """
    (weight, contributing period names) for as_of/country.
    Catalog lookup failures degrade to the neutral weight.
    """
    try:
        periods = store.get_seasonal_periods(as_of, as_of)
    except SQLAlchemyError as e:
        logger.warning("seasonal lookup failed for %s/%s, using neutral weight: %s", as_of, country, e)
        return NEUTRAL_WEIGHT, []
    return resolve_from_periods(periods, as_of, country)


def load_periods_for_window(store, start: date, end: date) -> List[SeasonalPeriod]:
    """All periods overlapping [start, end]; [] (= neutral everywhere) when the catalog can't be read."""
    try:
        return store.get_seasonal_periods(start, end)
    except SQLAlchemyError as e:
        logger.warning("seasonal catalog unavailable for %s..%s, scoring with neutral weight: %s", start, end, e)
        return []


def window_seasonal_weight(periods: Iterable[SeasonalPeriod], as_of: date, lookback_days: int,
                           country: Optional[str] = GLOBAL_SCOPE) -> float:
    """Mean resolved weight over every day of [as_of - lookback_days, as_of]."""
    periods = list(periods)
    days = [as_of - timedelta(days=i) for i in range(max(lookback_days, 0) + 1)]
    weights = [resolve_from_periods(periods, d, country)[0] for d in days]
    return sum(weights) / len(weights)


# ------------------------------
# catalog file
# ------------------------------
def period_from_dict(row: Dict[str, Any]) -> SeasonalPeriod:
    p = SeasonalPeriod(
        name=str(row["name"]).strip(),
        start_date=to_date(row["start_date"]),
        end_date=to_date(row["end_date"]),
        weight=float(row.get("weight", NEUTRAL_WEIGHT)),
        country_scope=(row.get("country_scope") or GLOBAL_SCOPE),
        tags=[str(t) for t in (row.get("tags") or [])],
    )
    if p.end_date < p.start_date:
        raise ValueError(f"seasonal period {p.name!r} ends before it starts")
    if p.weight <= 0:
        raise ValueError(f"seasonal period {p.name!r} has non-positive weight {p.weight}")
    return p


def load_catalog(path: str) -> List[SeasonalPeriod]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return [period_from_dict(r) for r in (data.get("periods") or [])]


# ------------------------------
# seasonal context (current / upcoming)
# ------------------------------
def seasonal_context(periods: Iterable[SeasonalPeriod], as_of: date,
                     country: Optional[str] = GLOBAL_SCOPE, lookahead_days: int = 60) -> Dict[str, List[Dict[str, Any]]]:
    current, upcoming = [], []
    horizon = as_of + timedelta(days=lookahead_days)
    for p in periods:
        if not scope_matches(p, country):
            continue
        item = {"name": p.name, "start_date": p.start_date, "end_date": p.end_date,
                "weight": p.weight, "tags": list(p.tags)}
        if p.covers(as_of):
            item["days_remaining"] = (p.end_date - as_of).days
            current.append(item)
        elif as_of < p.start_date <= horizon:
            item["days_until"] = (p.start_date - as_of).days
            upcoming.append(item)
    current.sort(key=lambda x: (-x["weight"], x["name"]))
    upcoming.sort(key=lambda x: (x["days_until"], x["name"]))
    return {"current_periods": current, "upcoming_periods": upcoming}


def has_high_priority_seasons(context: Optional[Dict[str, List[Dict[str, Any]]]]) -> bool:
    if not context:
        return False
    if any(p["weight"] >= HIGH_PRIORITY_CURRENT_WEIGHT for p in context.get("current_periods", [])):
        return True
    return any(
        p["weight"] >= HIGH_PRIORITY_UPCOMING_WEIGHT and p.get("days_until", 999) <= HIGH_PRIORITY_UPCOMING_DAYS
        for p in context.get("upcoming_periods", [])
    )


def seasonal_summary(context: Optional[Dict[str, List[Dict[str, Any]]]]) -> str:
    if not context:
        return ""
    parts = []
    current = context.get("current_periods", [])
    if current:
        parts.append("Active: " + ", ".join(p["name"] for p in current))
    critical = [
        p for p in context.get("upcoming_periods", [])
        if p["weight"] >= HIGH_PRIORITY_UPCOMING_WEIGHT and p.get("days_until", 999) <= HIGH_PRIORITY_UPCOMING_DAYS
    ]
    if critical:
        parts.append("Coming soon: " + ", ".join(p["name"] for p in critical))
    return " | ".join(parts)
