# opportunity/seed_seasons.py
from __future__ import annotations

import argparse
from datetime import date
from typing import List, Dict, Tuple

from opportunity.config import settings, configure_logging
from opportunity.db import get_engine, init_schema
from opportunity.models import SeasonalPeriod, to_date
from opportunity.seasonal import (
    load_catalog, seasonal_context, has_high_priority_seasons, seasonal_summary, GLOBAL_SCOPE,
)
from opportunity.storage_pg import SignalStore


def period_key(p: SeasonalPeriod) -> Tuple[str, str, date]:
    return (p.name, (p.country_scope or GLOBAL_SCOPE), p.start_date)


def diff_catalog(catalog: List[SeasonalPeriod], stored: List[SeasonalPeriod]) -> Dict[str, List[SeasonalPeriod]]:
    """
    Split the catalog into new / changed / unchanged against what the table holds.
    Rows only in the table are left alone (the catalog never deletes).
    """
    by_key = {period_key(p): p for p in stored}
    out: Dict[str, List[SeasonalPeriod]] = {"new": [], "changed": [], "unchanged": []}
    for p in catalog:
        cur = by_key.get(period_key(p))
        if cur is None:
            out["new"].append(p)
        elif (cur.end_date, cur.weight, list(cur.tags)) != (p.end_date, p.weight, list(p.tags)):
            out["changed"].append(p)
        else:
            out["unchanged"].append(p)
    return out


def seed_periods(store: SignalStore, catalog: List[SeasonalPeriod], apply: bool = False) -> Dict[str, List[SeasonalPeriod]]:
    """Dry-run unless apply=True. Returns the diff either way."""
    if not catalog:
        return {"new": [], "changed": [], "unchanged": []}
    start = min(p.start_date for p in catalog)
    end = max(p.end_date for p in catalog)
    diff = diff_catalog(catalog, store.get_seasonal_periods(start, end))
    if apply:
        store.upsert_seasonal_periods(diff["new"] + diff["changed"])
    return diff


def main():
    parser = argparse.ArgumentParser(
        description="Load the seasonal period catalog (YAML) into seasonal_periods. Dry-run unless --apply."
    )
    parser.add_argument("--catalog", default=settings.seasonal_catalog_path, help="Path to seasonal_periods.yaml")
    parser.add_argument("--apply", action="store_true", help="Write new/changed periods to the DB")
    parser.add_argument("--as-of", type=str, default=None, help="Show seasonal context for YYYY-MM-DD (default: today)")
    parser.add_argument("--country", type=str, default=settings.scoring_country)
    parser.add_argument("--lookahead-days", type=int, default=60)
    args = parser.parse_args()

    configure_logging()
    engine = get_engine()
    init_schema(engine)
    store = SignalStore(engine)

    catalog = load_catalog(args.catalog)
    diff = seed_periods(store, catalog, apply=args.apply)

    mode = "APPLIED" if args.apply else "DRY-RUN"
    print(f"[{mode}] catalog={args.catalog} periods={len(catalog)}")
    print(f"- new: {len(diff['new'])} / changed: {len(diff['changed'])} / unchanged: {len(diff['unchanged'])}")
    for label in ("new", "changed"):
        for p in diff[label]:
            print(f"   {label:<7} {p.name} ({p.country_scope}) {p.start_date}..{p.end_date} x{p.weight}")
    if not args.apply and (diff["new"] or diff["changed"]):
        print("Re-run with --apply to write these periods.")

    as_of = to_date(args.as_of) if args.as_of else date.today()
    ctx = seasonal_context(catalog, as_of, args.country, lookahead_days=args.lookahead_days)

    print(f"\nseasonal context {as_of.isoformat()} / {args.country}")
    for p in ctx["current_periods"]:
        print(f"- active   {p['name']} x{p['weight']} ({p['days_remaining']}d left)")
    for p in ctx["upcoming_periods"]:
        print(f"- upcoming {p['name']} x{p['weight']} (in {p['days_until']}d)")
    summary = seasonal_summary(ctx)
    if summary:
        print(summary)
    if has_high_priority_seasons(ctx):
        print("High-priority season active or imminent.")


if __name__ == "__main__":
    main()
