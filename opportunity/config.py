from __future__ import annotations
from typing import List
from pydantic import BaseModel
from dotenv import load_dotenv
import logging
import os

load_dotenv()

# shipped next to this module as package data
DEFAULT_CATALOG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "seasonal_periods.yaml")


def _csv(value: str) -> List[str]:
    return [x.strip().lower() for x in value.split(",") if x.strip()]


class Settings(BaseModel):
    postgres_dsn: str = os.getenv("POSTGRES_DSN", "")

    scoring_source: str = os.getenv("SCORING_SOURCE", "lexyhub")
    scoring_country: str = os.getenv("SCORING_COUNTRY", "global")

    demand_window_days: int = int(os.getenv("DEMAND_WINDOW_DAYS", "14"))
    momentum_lookback_days: int = int(os.getenv("MOMENTUM_LOOKBACK_DAYS", "7"))

    batch_workers: int = int(os.getenv("BATCH_WORKERS", "4"))
    batch_budget_seconds: float = float(os.getenv("BATCH_BUDGET_SECONDS", "300"))

    fusion_min_platforms: int = int(os.getenv("FUSION_MIN_PLATFORMS", "2"))
    fusion_lookback_days: int = int(os.getenv("FUSION_LOOKBACK_DAYS", "7"))
    fusion_cache_ttl_seconds: int = int(os.getenv("FUSION_CACHE_TTL_SECONDS", "300"))

    seasonal_catalog_path: str = os.getenv("SEASONAL_CATALOG_PATH", DEFAULT_CATALOG_PATH)

    enabled_collectors: List[str] = _csv(
        os.getenv("ENABLED_COLLECTORS", "reddit,twitter,pinterest,tiktok,google_trends")
    )

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()


class CollectorConfig(BaseModel):
    """Which collector platforms feed this run. Passed explicitly at batch start-up."""
    enabled: List[str] = []

    def is_enabled(self, platform: str) -> bool:
        return platform.strip().lower() in self.enabled

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "CollectorConfig":
        return cls(enabled=list(s.enabled_collectors))


class BatchConfig(BaseModel):
    source: str = "lexyhub"
    country: str = "global"
    lookback_days: int = 7
    window_days: int = 14
    workers: int = 4
    budget_seconds: float = 300.0
    resume: bool = False
    fuse_social: bool = True
    min_platforms: int = 2
    rollup_weekly: bool = False

    @classmethod
    def from_settings(cls, s: Settings = settings, **overrides) -> "BatchConfig":
        base = dict(
            source=s.scoring_source,
            country=s.scoring_country,
            lookback_days=s.momentum_lookback_days,
            window_days=s.demand_window_days,
            workers=s.batch_workers,
            budget_seconds=s.batch_budget_seconds,
            min_platforms=s.fusion_min_platforms,
        )
        base.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**base)


def configure_logging(level: str = settings.log_level) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
