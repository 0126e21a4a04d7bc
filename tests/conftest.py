"""Common test fixtures for the Bear notes core."""

import datetime
from datetime import timezone

import pytest
from sqlalchemy import create_engine

from bear_core.config import (
    BearCoreConfig,
    CacheConfig,
    ScannerConfig,
    ScorerConfig,
)
from bear_core.models.db_models import create_tables
from bear_core.models.schema import Record
from bear_core.services.cache_service import ResultCache
from bear_core.services.search_service import SearchService
from bear_core.storage.memory_store import InMemoryNoteStore
from bear_core.storage.sql_store import SqlNoteStore
from tests.fakes import FakeClock, FakeWallClock

BASE_TIME = datetime.datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_record(record_id: int, title: str = "", body: str = "", **kwargs) -> Record:
    """Build a record with deterministic timestamps derived from its id."""
    kwargs.setdefault("created_at", BASE_TIME + datetime.timedelta(minutes=record_id))
    kwargs.setdefault("modified_at", BASE_TIME + datetime.timedelta(minutes=record_id))
    return Record(id=record_id, title=title, body=body, **kwargs)


@pytest.fixture
def sample_records():
    """A small corpus covering titles, bodies, tags and flags."""
    return [
        make_record(1, "Bear facts", "Polar animals live in the Arctic.",
                    tags=("animals",)),
        make_record(2, "Hiking notes", "We saw a bear near the trail. The bear ran off.",
                    tags=("outdoors", "outdoors/hiking")),
        make_record(3, "Groceries", "Milk, eggs, honey for the bear-shaped jar.",
                    tags=("home",)),
        make_record(4, "Project plan", "Quarterly roadmap for the #work/projects team.",
                    tags=("work/projects",)),
        make_record(5, "Old bear draft", "Archived bear thoughts.", archived=True),
        make_record(6, "Deleted bear", "Trashed bear note.", trashed=True),
        make_record(7, "Secret bear", "ciphertext bear bear bear", encrypted=True),
    ]


@pytest.fixture
def wall_clock():
    """Wall clock for store mutations, starting after every sample record."""
    return FakeWallClock(BASE_TIME + datetime.timedelta(days=1))


@pytest.fixture
def memory_store(sample_records, wall_clock):
    """In-memory store seeded with the sample corpus."""
    return InMemoryNoteStore(sample_records, clock=wall_clock)


@pytest.fixture
def fake_clock():
    """Monotonic clock for cache TTL tests."""
    return FakeClock()


@pytest.fixture
def core_config():
    """Configuration with explicit values, independent of the environment."""
    return BearCoreConfig(
        cache=CacheConfig(max_entries=100, ttl_seconds=60, shards=4),
        scorer=ScorerConfig(
            title_weight=3.0,
            fuzzy_match=False,
            fuzzy_max_distance=1,
            fuzzy_weight=0.5,
            case_sensitive=False,
            whole_words=True,
            phrase_bonus=5.0,
            snippet_window=150,
            max_snippets=3,
        ),
        scanner=ScannerConfig(batch_size=3, min_score_threshold=0.0),
        max_tag_length=100,
        sweep_interval_seconds=0,
        database_path=None,
        metrics_file=None,
        log_level="INFO",
    )


@pytest.fixture
def result_cache(core_config, fake_clock):
    """Result cache driven by the fake clock."""
    return ResultCache(core_config.cache, clock=fake_clock)


@pytest.fixture
def search_service(memory_store, core_config, result_cache):
    """Search service over the in-memory sample corpus."""
    service = SearchService(memory_store, config=core_config, cache=result_cache)
    yield service
    service.close()


@pytest.fixture
def sql_engine(tmp_path):
    """SQLite engine with the Bear tables created."""
    engine = create_engine(f"sqlite:///{tmp_path / 'bear.sqlite'}")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_store(sql_engine, wall_clock):
    """SQL-backed store on an empty Bear database."""
    return SqlNoteStore(sql_engine, clock=wall_clock)
