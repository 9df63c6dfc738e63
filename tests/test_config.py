"""Tests for config.py: settings defaults and run configuration objects."""

import os

from opportunity.config import DEFAULT_CATALOG_PATH, BatchConfig, CollectorConfig, Settings
from opportunity.seasonal import load_catalog


class TestCatalogPath:

    def test_default_is_next_to_the_package(self):
        assert os.path.isabs(DEFAULT_CATALOG_PATH)
        assert os.path.isfile(DEFAULT_CATALOG_PATH)

    def test_independent_of_working_directory(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert len(load_catalog(DEFAULT_CATALOG_PATH)) == 16


class TestCollectorConfig:

    def test_is_enabled(self):
        collectors = CollectorConfig(enabled=["reddit", "pinterest"])
        assert collectors.is_enabled(" Reddit ")
        assert not collectors.is_enabled("lexyhub")


class TestBatchConfig:

    def test_none_overrides_are_ignored(self):
        s = Settings(scoring_source="etsy", batch_workers=8)
        cfg = BatchConfig.from_settings(s, source=None, workers=2, resume=None)
        assert cfg.source == "etsy"
        assert cfg.workers == 2
        assert cfg.resume is False
