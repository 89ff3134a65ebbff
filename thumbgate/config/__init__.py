"""
Config Module - Black Box Interface

Purpose: Application configuration management
Interface: get_config_provider(), ConfigProvider
Hidden: Config sources (environment, YAML file), validation logic
"""

from .provider import (
    APIConfig,
    ConfigProvider,
    EnvConfigProvider,
    OmeroConfig,
    SessionStoreConfig,
    WorkerConfig,
    YamlConfigProvider,
    get_config_provider,
)

__all__ = [
    "APIConfig",
    "ConfigProvider",
    "EnvConfigProvider",
    "OmeroConfig",
    "SessionStoreConfig",
    "WorkerConfig",
    "YamlConfigProvider",
    "get_config_provider",
]
