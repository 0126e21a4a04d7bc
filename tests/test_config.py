"""Tests for configuration loading and validation."""

import pytest
from pydantic import ValidationError

from bear_core.config import (
    BearCoreConfig,
    CacheConfig,
    ScannerConfig,
    ScorerConfig,
)


class TestEnvironmentOverrides:
    """Defaults are read from BEAR_CORE_* variables at construction time."""

    def test_cache_settings(self, monkeypatch):
        monkeypatch.setenv("BEAR_CORE_CACHE_MAX_ENTRIES", "5")
        monkeypatch.setenv("BEAR_CORE_CACHE_TTL", "10")
        monkeypatch.setenv("BEAR_CORE_CACHE_SHARDS", "2")
        cache = CacheConfig()
        assert (cache.max_entries, cache.ttl_seconds, cache.shards) == (5, 10, 2)

    def test_boolean_flags(self, monkeypatch):
        monkeypatch.setenv("BEAR_CORE_FUZZY_MATCH", "yes")
        monkeypatch.setenv("BEAR_CORE_WHOLE_WORDS", "0")
        scorer = ScorerConfig()
        assert scorer.fuzzy_match is True
        assert scorer.whole_words is False

    def test_scanner_settings(self, monkeypatch):
        monkeypatch.setenv("BEAR_CORE_BATCH_SIZE", "50")
        monkeypatch.setenv("BEAR_CORE_MIN_SCORE", "1.5")
        scanner = ScannerConfig()
        assert scanner.batch_size == 50
        assert scanner.min_score_threshold == 1.5

    def test_database_path(self, monkeypatch, tmp_path):
        monkeypatch.setenv("BEAR_CORE_DATABASE_PATH", str(tmp_path / "bear.sqlite"))
        assert BearCoreConfig().database_path == tmp_path / "bear.sqlite"

    def test_no_database_path(self, monkeypatch):
        monkeypatch.delenv("BEAR_CORE_DATABASE_PATH", raising=False)
        assert BearCoreConfig().database_path is None

    def test_metrics_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("BEAR_CORE_METRICS_FILE", str(tmp_path / "metrics.json"))
        assert BearCoreConfig().metrics_file == tmp_path / "metrics.json"
        monkeypatch.delenv("BEAR_CORE_METRICS_FILE")
        assert BearCoreConfig().metrics_file is None

    def test_explicit_values_win(self, monkeypatch):
        monkeypatch.setenv("BEAR_CORE_CACHE_MAX_ENTRIES", "5")
        assert CacheConfig(max_entries=7).max_entries == 7


class TestValidation:
    """Invalid settings are rejected by pydantic."""

    @pytest.mark.parametrize("kwargs", [
        {"max_entries": -1},
        {"ttl_seconds": -1},
        {"shards": 0},
    ])
    def test_cache_rejects(self, kwargs):
        with pytest.raises(ValidationError):
            CacheConfig(**kwargs)

    @pytest.mark.parametrize("kwargs", [
        {"title_weight": 0},
        {"fuzzy_weight": 1.5},
        {"phrase_bonus": -1},
        {"snippet_window": 5},
        {"max_snippets": -1},
    ])
    def test_scorer_rejects(self, kwargs):
        with pytest.raises(ValidationError):
            ScorerConfig(**kwargs)

    def test_scanner_rejects_empty_batches(self):
        with pytest.raises(ValidationError):
            ScannerConfig(batch_size=0)

    def test_core_rejects(self):
        with pytest.raises(ValidationError):
            BearCoreConfig(max_tag_length=0)
        with pytest.raises(ValidationError):
            BearCoreConfig(sweep_interval_seconds=-1)

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            CacheConfig(size=10)

    def test_assignment_is_validated(self):
        scanner = ScannerConfig(batch_size=10)
        with pytest.raises(ValidationError):
            scanner.batch_size = 0

    def test_zero_capacity_or_ttl_disables_cache(self):
        assert not CacheConfig(max_entries=0, ttl_seconds=60).enabled
        assert not CacheConfig(max_entries=10, ttl_seconds=0).enabled
        assert CacheConfig(max_entries=10, ttl_seconds=60).enabled

    def test_sweeper_without_cache_warns(self, caplog):
        BearCoreConfig(
            cache=CacheConfig(max_entries=0, ttl_seconds=60),
            sweep_interval_seconds=5,
        )
        assert "caching is disabled" in caplog.text


class TestDatabaseUrl:
    """Tests for get_db_url()."""

    def test_read_only_url(self, tmp_path):
        core_config = BearCoreConfig(database_path=tmp_path / "bear.sqlite")
        url = core_config.get_db_url()
        assert url.startswith("sqlite:///file:")
        assert url.endswith("?mode=ro&uri=true")
        assert str(tmp_path.resolve()) in url

    def test_writable_url(self, tmp_path):
        core_config = BearCoreConfig(database_path=tmp_path / "bear.sqlite")
        assert core_config.get_db_url(read_only=False) == (
            f"sqlite:///{(tmp_path / 'bear.sqlite').resolve()}"
        )

    def test_missing_path(self):
        with pytest.raises(ValueError):
            BearCoreConfig(database_path=None).get_db_url()
