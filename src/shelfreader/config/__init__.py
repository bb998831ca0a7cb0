"""Configuration models and config file discovery."""

from .config import (
    CacheConfig,
    Config,
    EncodingConfig,
    ExtractionSettings,
    FetcherConfig,
    MonitoringConfig,
    PreloadConfig,
    StorageConfig,
    find_config_file,
)

__all__ = [
    "CacheConfig",
    "Config",
    "EncodingConfig",
    "ExtractionSettings",
    "FetcherConfig",
    "MonitoringConfig",
    "PreloadConfig",
    "StorageConfig",
    "find_config_file",
]
