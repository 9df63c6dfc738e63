"""
Opportunity badge: adjusted demand index x deseasoned momentum -> label.

Labels are user visible; the boundaries below are pinned by tests.

    unknown    either input missing
    hot        demand >= 70 and momentum >= 10
    stable     |momentum| <= 2, any demand
    rising     momentum > 2 and demand >= 40
    cooling    -10 < momentum < -2
    declining  momentum <= -10

Positive momentum on low demand (< 40) has no label and reads as unknown.
"""
from __future__ import annotations
from typing import Optional

HOT = "hot"
RISING = "rising"
STABLE = "stable"
COOLING = "cooling"
DECLINING = "declining"
UNKNOWN = "unknown"

BADGES = (HOT, RISING, STABLE, COOLING, DECLINING, UNKNOWN)

HOT_DEMAND_MIN = 70.0
HOT_MOMENTUM_MIN = 10.0
RISING_DEMAND_MIN = 40.0
STABLE_BAND = 2.0
DECLINING_MOMENTUM_MAX = -10.0


def classify(adjusted_demand_index: Optional[float], deseasoned_momentum: Optional[float]) -> str:
    if adjusted_demand_index is None or deseasoned_momentum is None:
        return UNKNOWN
    d = float(adjusted_demand_index)
    m = float(deseasoned_momentum)

    if d >= HOT_DEMAND_MIN and m >= HOT_MOMENTUM_MIN:
        return HOT
    if abs(m) <= STABLE_BAND:
        return STABLE
    if m > STABLE_BAND:
        return RISING if d >= RISING_DEMAND_MIN else UNKNOWN
    if m <= DECLINING_MOMENTUM_MAX:
        return DECLINING
    return COOLING
