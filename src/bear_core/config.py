"""Configuration module for the Bear notes core."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from bear_core import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config
_USER_ENV = Path.home() / ".bear_core" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class CacheConfig(BaseModel):
    """Result cache sizing and expiry."""

    max_entries: int = Field(
        default_factory=lambda: int(os.getenv("BEAR_CORE_CACHE_MAX_ENTRIES", "1000"))
    )
    ttl_seconds: int = Field(
        default_factory=lambda: int(os.getenv("BEAR_CORE_CACHE_TTL", "300"))
    )
    # Number of independently locked partitions
    shards: int = Field(
        default_factory=lambda: int(os.getenv("BEAR_CORE_CACHE_SHARDS", "8"))
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @model_validator(mode="after")
    def _validate_cache(self) -> "CacheConfig":
        if self.max_entries < 0:
            raise ValueError("max_entries must be >= 0")
        if self.ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        if self.shards < 1:
            raise ValueError("shards must be >= 1")
        return self

    @property
    def enabled(self) -> bool:
        """Caching is disabled when either capacity or TTL is zero."""
        return self.max_entries > 0 and self.ttl_seconds > 0


class ScorerConfig(BaseModel):
    """Relevance scoring and snippet options.

    Case sensitivity and whole-word matching change how tokens are compared,
    never the scoring formula itself.
    """

    title_weight: float = Field(
        default_factory=lambda: float(os.getenv("BEAR_CORE_TITLE_WEIGHT", "3.0"))
    )
    fuzzy_match: bool = Field(
        default_factory=lambda: _env_bool("BEAR_CORE_FUZZY_MATCH", "false")
    )
    fuzzy_max_distance: int = Field(
        default_factory=lambda: int(os.getenv("BEAR_CORE_FUZZY_MAX_DISTANCE", "1"))
    )
    fuzzy_weight: float = Field(
        default_factory=lambda: float(os.getenv("BEAR_CORE_FUZZY_WEIGHT", "0.5"))
    )
    # Shorter terms produce too many accidental neighbours
    fuzzy_min_term_length: int = Field(default=4)
    case_sensitive: bool = Field(
        default_factory=lambda: _env_bool("BEAR_CORE_CASE_SENSITIVE", "false")
    )
    whole_words: bool = Field(
        default_factory=lambda: _env_bool("BEAR_CORE_WHOLE_WORDS", "true")
    )
    phrase_bonus: float = Field(
        default_factory=lambda: float(os.getenv("BEAR_CORE_PHRASE_BONUS", "5.0"))
    )
    snippet_window: int = Field(
        default_factory=lambda: int(os.getenv("BEAR_CORE_SNIPPET_WINDOW", "150"))
    )
    max_snippets: int = Field(
        default_factory=lambda: int(os.getenv("BEAR_CORE_MAX_SNIPPETS", "3"))
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @model_validator(mode="after")
    def _validate_scorer(self) -> "ScorerConfig":
        if self.title_weight <= 0:
            raise ValueError("title_weight must be > 0")
        if self.fuzzy_max_distance < 0:
            raise ValueError("fuzzy_max_distance must be >= 0")
        if not 0 <= self.fuzzy_weight <= 1:
            raise ValueError("fuzzy_weight must be between 0 and 1")
        if self.phrase_bonus < 0:
            raise ValueError("phrase_bonus must be >= 0")
        if self.snippet_window < 10:
            raise ValueError("snippet_window must be >= 10")
        if self.max_snippets < 0:
            raise ValueError("max_snippets must be >= 0")
        return self


class ScannerConfig(BaseModel):
    """Batch streaming options for the index scanner."""

    batch_size: int = Field(
        default_factory=lambda: int(os.getenv("BEAR_CORE_BATCH_SIZE", "200"))
    )
    min_score_threshold: float = Field(
        default_factory=lambda: float(os.getenv("BEAR_CORE_MIN_SCORE", "0.0"))
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @model_validator(mode="after")
    def _validate_scanner(self) -> "ScannerConfig":
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.min_score_threshold < 0:
            raise ValueError("min_score_threshold must be >= 0")
        return self


class BearCoreConfig(BaseModel):
    """Configuration for the Bear notes core."""

    cache: CacheConfig = Field(default_factory=CacheConfig)
    scorer: ScorerConfig = Field(default_factory=ScorerConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    # Tag sanitization
    max_tag_length: int = Field(
        default_factory=lambda: int(os.getenv("BEAR_CORE_MAX_TAG_LENGTH", "100"))
    )
    # Background sweep of expired cache entries; 0 disables the sweeper
    sweep_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("BEAR_CORE_SWEEP_INTERVAL", "0"))
    )
    # Database used by the command line entry point
    database_path: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("BEAR_CORE_DATABASE_PATH"))
            if os.getenv("BEAR_CORE_DATABASE_PATH")
            else None
        )
    )
    # Operation metrics persist here across runs; unset keeps them in memory
    metrics_file: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("BEAR_CORE_METRICS_FILE"))
            if os.getenv("BEAR_CORE_METRICS_FILE")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("BEAR_CORE_LOG_LEVEL", "INFO")
    )
    version: str = Field(default=__version__)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @model_validator(mode="after")
    def _validate_core(self) -> "BearCoreConfig":
        if self.max_tag_length < 1:
            raise ValueError("max_tag_length must be >= 1")
        if self.sweep_interval_seconds < 0:
            raise ValueError("sweep_interval_seconds must be >= 0")
        if self.sweep_interval_seconds and not self.cache.enabled:
            logger.warning(
                "Cache sweeper configured (interval=%.1fs) but caching is disabled",
                self.sweep_interval_seconds,
            )
        return self

    def get_db_url(self, read_only: bool = True) -> str:
        """Get the SQLite URL for the configured database path."""
        if self.database_path is None:
            raise ValueError("database_path is not configured")
        db_path = self.database_path.expanduser().resolve()
        if read_only:
            return f"sqlite:///file:{db_path}?mode=ro&uri=true"
        return f"sqlite:///{db_path}"


# Create a global config instance
config = BearCoreConfig()
