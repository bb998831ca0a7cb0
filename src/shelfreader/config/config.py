"""
Configuration management for ShelfReader using Pydantic.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List

import yaml
from pydantic import BaseModel, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Setup Logging ---
log = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".shelfreader"

# --- Nested Configuration Models ---


class CacheConfig(BaseModel):
    """Chapter cache configuration."""

    path: Path = Field(default_factory=lambda: DEFAULT_HOME / "cache")
    cache_enabled: bool = Field(default=True, description="Whether chapter text is cached on disk.")
    max_cache_size_mb: int = Field(default=100, ge=1, description="Upper bound for the cache tree size.")
    max_cache_age_days: int = Field(default=7, ge=0, description="Entries older than this are stale.")
    min_free_space_mb: int = Field(default=100, ge=0, description="Writes are skipped below this free space.")

    @field_validator("path", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser()


class FetcherConfig(BaseModel):
    """Retrying fetcher configuration."""

    timeout: float = Field(default=18.0, gt=0, description="Hard wall-clock timeout per attempt in seconds.")
    max_retries: int = Field(default=3, ge=0, description="Retry attempts after the first request.")
    retry_base_delay_ms: int = Field(default=1000, ge=0, description="Delay before the first retry.")
    max_delay_ms: int = Field(default=10000, ge=0, description="Cap for any single backoff delay.")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Growth factor between retries.")
    jitter_min: float = Field(default=0.1, ge=0.0, le=1.0)
    jitter_max: float = Field(default=0.3, ge=0.0, le=1.0)
    pool_size: int = Field(
        default_factory=lambda: max(4, (os.cpu_count() or 1) * 2),
        ge=1,
        description="Max concurrent sockets.",
    )
    user_agent: str | None = Field(default=None, description="Fixed User-Agent; rotates browser UAs when unset.")
    accept_language: str = Field(default="zh-CN,zh;q=0.9,en;q=0.8")

    @field_validator("jitter_max")
    @classmethod
    def validate_jitter(cls, v: float, info: ValidationInfo) -> float:
        jitter_min = info.data.get("jitter_min", 0.0)
        if v < jitter_min:
            raise ValueError("jitter_max must not be lower than jitter_min")
        return v


class EncodingConfig(BaseModel):
    """Encoding resolution candidates and garbage-score weights."""

    candidates: List[str] = Field(default=["utf-8", "gbk", "gb2312", "gb18030", "big5"])
    replacement_weight: int = Field(default=10, ge=0)
    run_weight: int = Field(default=5, ge=0)
    missing_punctuation_weight: int = Field(default=50, ge=0)
    sample_size: int = Field(default=4000, ge=100, description="Characters of the content block that get scored.")

    @field_validator("candidates")
    @classmethod
    def validate_candidates(cls, v: List[str]) -> List[str]:
        import codecs

        if not v:
            raise ValueError("candidates must contain at least one encoding")
        for name in v:
            codecs.lookup(name)
        return v


class ExtractionSettings(BaseModel):
    """Configuration for the content block strategy chain."""

    strategy_order: List[str] = Field(default=["signature", "density"], description="Order of block strategies.")
    min_text_length: int = Field(default=50, ge=1)
    max_link_density: float = Field(default=0.5, ge=0.0, le=1.0)
    worker_threads: int = Field(default=4, ge=1, description="Threads for CPU-bound text work.")

    @field_validator("strategy_order")
    @classmethod
    def validate_strategy_order(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("strategy_order must contain at least one strategy")
        return v


class PreloadConfig(BaseModel):
    """Adjacent chapter preloading."""

    enabled: bool = True
    count: int = Field(default=50, ge=0)
    behind: int = Field(default=2, ge=0, description="Chapters before the current one to warm.")
    delay_ms: int = Field(default=1000, ge=0)


class StorageConfig(BaseModel):
    """Book store location."""

    path: Path = Field(default_factory=lambda: DEFAULT_HOME / "books")

    @field_validator("path", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser()


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics."""

    enabled: bool = True
    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: str | None = Field(default=None, description="Path to log file. If None, logs to console.")
    prometheus_port: int | None = Field(default=None, description="Port for Prometheus exporter. None to disable.")

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


# --- Main Configuration Class ---


class Config(BaseSettings):
    project_name: str = "ShelfReader"
    version: str = "0.1.0"
    cache: CacheConfig = Field(default_factory=CacheConfig)
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    encoding: EncodingConfig = Field(default_factory=EncodingConfig)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    preload: PreloadConfig = Field(default_factory=PreloadConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(env_prefix="SHELF_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls.model_validate({})
        return cls.model_validate(yaml_data)


def find_config_file() -> Path | None:
    current_dir = Path.cwd()
    paths_to_check = [
        current_dir / "shelfreader.yaml",
        current_dir / "shelfreader.yml",
        current_dir / "config.yaml",
        DEFAULT_HOME / "config.yaml",
    ]
    for path in paths_to_check:
        if path.exists():
            return path
    return None
