from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Optional, Dict, Any, List
import math

from opportunity.keys import normalize_term, keyword_id as make_keyword_id


def to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def opt_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    # NaN / inf coming from pandas frames are treated as missing
    return f if math.isfinite(f) else None


@dataclass
class Keyword:
    id: str
    term: str
    normalized_term: str
    market: str
    source: str
    base_demand_index: Optional[float] = None
    adjusted_demand_index: Optional[float] = None
    trend_momentum: Optional[float] = None
    deseasoned_trend_momentum: Optional[float] = None
    opportunity_badge: Optional[str] = None
    seasonal_label: Optional[str] = None
    scored_on: Optional[date] = None
    extras: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    @classmethod
    def new(cls, term: str, market: str, source: str) -> "Keyword":
        return cls(
            id=make_keyword_id(source, market, term),
            term=term.strip(),
            normalized_term=normalize_term(term),
            market=market,
            source=source,
        )


@dataclass
class DailyMetric:
    keyword_id: str
    collected_on: date
    source: str
    demand: Optional[float] = None
    supply: Optional[float] = None
    competition_score: Optional[float] = None
    social_mentions: Optional[float] = None
    social_sentiment: Optional[float] = None
    engagement_score: Optional[float] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DailyMetric":
        """
        Collector row -> DailyMetric.
        row: {keyword_id, collected_on, source, demand, supply, competition_score,
              social_mentions, social_sentiment, engagement_score}
        """
        if not row.get("keyword_id") or not row.get("source"):
            raise ValueError(f"metric row needs keyword_id and source: {row!r}")
        return cls(
            keyword_id=str(row["keyword_id"]),
            collected_on=to_date(row["collected_on"]),
            source=str(row["source"]),
            demand=opt_float(row.get("demand")),
            supply=opt_float(row.get("supply")),
            competition_score=opt_float(row.get("competition_score")),
            social_mentions=opt_float(row.get("social_mentions")),
            social_sentiment=opt_float(row.get("social_sentiment")),
            engagement_score=opt_float(row.get("engagement_score")),
        )

    @property
    def natural_key(self):
        return (self.keyword_id, self.collected_on, self.source)


@dataclass
class WeeklyMetric:
    keyword_id: str
    week_start: date
    source: str
    metrics: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SeasonalPeriod:
    name: str
    start_date: date
    end_date: date
    weight: float = 1.0
    country_scope: Optional[str] = "global"
    tags: List[str] = field(default_factory=list)

    def covers(self, d: date) -> bool:
        return self.start_date <= d <= self.end_date


@dataclass
class TrendSignal:
    term: str
    source: str
    raw_score: float
    normalized_score: float  # 0..1
    change_ratio: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TrendSeriesRecord:
    term: str
    source: str
    recorded_on: date
    trend_score: float
    velocity: float
    expected_growth_30d: float
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CompositeTrendRecord:
    keyword_id: str
    term: str
    platform_count: int
    platforms: List[str]
    total_mentions: float
    weighted_engagement: float
    avg_sentiment: float
    trend_momentum: Optional[float]
    platform_breakdown: Dict[str, Dict[str, Any]]
    last_collected: Optional[date] = None
    dominant_platform: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["last_collected"] = self.last_collected.isoformat() if self.last_collected else None
        return d


@dataclass
class KeywordScores:
    keyword_id: str
    as_of: date
    base_demand_index: Optional[float]
    adjusted_demand_index: Optional[float]
    trend_momentum: Optional[float]
    deseasoned_trend_momentum: Optional[float]
    opportunity_badge: str
    seasonal_weight: float = 1.0
    seasonal_label: Optional[str] = None
