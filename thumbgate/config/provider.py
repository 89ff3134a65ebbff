"""Configuration provider following Black Box Design principles."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import yaml

SESSION_STORE_TYPES = ("redis", "postgres", "sql")

DEFAULT_CONFIG_PATH = "conf/config.yaml"


@dataclass
class OmeroConfig:
    """OMERO server connection configuration."""
    host: str
    port: int


@dataclass
class SessionStoreConfig:
    """OMERO.web session store configuration."""
    type: str
    uri: str
    key_prefix: str = ""
    key_version: int = 1
    cookie_name: str = "sessionid"

    @property
    def is_redis(self) -> bool:
        """Check if the key-value cache backend is selected."""
        return self.type == "redis"


@dataclass
class WorkerConfig:
    """Worker pool and dispatch configuration."""
    pool_size: int
    max_pending: int
    dispatch_timeout: float
    timeout_status: int


@dataclass
class APIConfig:
    """API configuration."""
    port: int
    host: str
    debug: bool
    log_level: str


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def get_omero_config(self) -> OmeroConfig:
        """Get OMERO server configuration."""
        ...

    def get_session_store_config(self) -> SessionStoreConfig:
        """Get session store configuration."""
        ...

    def get_worker_config(self) -> WorkerConfig:
        """Get worker pool configuration."""
        ...

    def get_api_config(self) -> APIConfig:
        """Get API configuration."""
        ...


def _validate_session_store(config: SessionStoreConfig) -> SessionStoreConfig:
    if config.type not in SESSION_STORE_TYPES:
        raise ValueError(
            f"Missing/invalid value for session store type: {config.type!r}. "
            f"Expected one of: {', '.join(SESSION_STORE_TYPES)}"
        )
    if not config.uri:
        raise ValueError("Missing value for session store URI")
    return config


def _validate_worker(config: WorkerConfig) -> WorkerConfig:
    if config.pool_size < 1:
        raise ValueError(f"Worker pool size must be at least 1, got {config.pool_size}")
    if config.max_pending < 0:
        raise ValueError(f"Worker max pending must not be negative, got {config.max_pending}")
    if config.dispatch_timeout <= 0:
        raise ValueError(f"Dispatch timeout must be positive, got {config.dispatch_timeout}")
    return config


def _default_pool_size() -> int:
    return min(32, (os.cpu_count() or 1) * 4)


class EnvConfigProvider:
    """Environment-based configuration provider."""

    def get_omero_config(self) -> OmeroConfig:
        """Get OMERO server configuration from environment variables."""
        return OmeroConfig(
            host=os.getenv("OMERO_HOST", "localhost"),
            port=int(os.getenv("OMERO_PORT", "4064")),
        )

    def get_session_store_config(self) -> SessionStoreConfig:
        """Get session store configuration from environment variables."""
        return _validate_session_store(SessionStoreConfig(
            type=os.getenv("SESSION_STORE_TYPE", "redis").lower(),
            uri=os.getenv("SESSION_STORE_URI", "redis://localhost:6379/0"),
            key_prefix=os.getenv("SESSION_KEY_PREFIX", ""),
            key_version=int(os.getenv("SESSION_KEY_VERSION", "1")),
            cookie_name=os.getenv("SESSION_COOKIE_NAME", "sessionid"),
        ))

    def get_worker_config(self) -> WorkerConfig:
        """Get worker pool configuration from environment variables."""
        return _validate_worker(WorkerConfig(
            pool_size=int(os.getenv("WORKER_POOL_SIZE", str(_default_pool_size()))),
            max_pending=int(os.getenv("WORKER_MAX_PENDING", "0")),
            dispatch_timeout=float(os.getenv("DISPATCH_TIMEOUT", "30")),
            timeout_status=int(os.getenv("DISPATCH_TIMEOUT_STATUS", "404")),
        ))

    def get_api_config(self) -> APIConfig:
        """Get API configuration from environment variables."""
        debug = os.getenv("DEBUG", "false").lower() == "true"
        return APIConfig(
            port=int(os.getenv("API_PORT", "8080")),
            host=os.getenv("API_HOST", "0.0.0.0"),
            debug=debug,
            log_level=os.getenv("LOG_LEVEL", "DEBUG" if debug else "INFO"),
        )


class YamlConfigProvider:
    """
    YAML file configuration provider.

    Reads the layout used by the OMERO microservice deployments::

        port: 8080
        debug: false
        omero:
          host: localhost
          port: 4064
        session-store:
          type: redis
          uri: redis://:@localhost:6379/1
        worker-pool-size: 16
    """

    def __init__(self, path: str):
        self.path = path
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        self._data: Dict[str, Any] = data

    def _block(self, name: str) -> Dict[str, Any]:
        block = self._data.get(name)
        if block is None:
            raise ValueError(f"'{name}' block missing from configuration")
        if not isinstance(block, dict):
            raise ValueError(f"'{name}' block must be a mapping")
        return block

    def get_omero_config(self) -> OmeroConfig:
        """Get OMERO server configuration from the 'omero' block."""
        omero = self._block("omero")
        return OmeroConfig(
            host=str(omero.get("host", "localhost")),
            port=int(omero.get("port", 4064)),
        )

    def get_session_store_config(self) -> SessionStoreConfig:
        """Get session store configuration from the 'session-store' block."""
        store = self._block("session-store")
        return _validate_session_store(SessionStoreConfig(
            type=str(store.get("type", "")).lower(),
            uri=str(store.get("uri", "")),
            key_prefix=str(store.get("key-prefix", "")),
            key_version=int(store.get("key-version", 1)),
            cookie_name=str(store.get("cookie-name", "sessionid")),
        ))

    def get_worker_config(self) -> WorkerConfig:
        """Get worker pool configuration from top-level keys."""
        return _validate_worker(WorkerConfig(
            pool_size=int(self._data.get("worker-pool-size", _default_pool_size())),
            max_pending=int(self._data.get("worker-max-pending", 0)),
            dispatch_timeout=float(self._data.get("dispatch-timeout", 30)),
            timeout_status=int(self._data.get("dispatch-timeout-status", 404)),
        ))

    def get_api_config(self) -> APIConfig:
        """Get API configuration from top-level keys."""
        debug = bool(self._data.get("debug", False))
        return APIConfig(
            port=int(self._data.get("port", 8080)),
            host=str(self._data.get("host", "0.0.0.0")),
            debug=debug,
            log_level=str(self._data.get("log-level", "DEBUG" if debug else "INFO")),
        )


def get_config_provider(path: Optional[str] = None) -> ConfigProvider:
    """
    Select a configuration provider.

    A YAML file is used when ``path`` or ``THUMBGATE_CONFIG`` names one, or
    when the default ``conf/config.yaml`` exists. Otherwise configuration
    comes from the environment.
    """
    path = path or os.getenv("THUMBGATE_CONFIG")
    if path:
        if not Path(path).is_file():
            raise ValueError(f"Configuration file not found: {path}")
        return YamlConfigProvider(path)
    if Path(DEFAULT_CONFIG_PATH).is_file():
        return YamlConfigProvider(DEFAULT_CONFIG_PATH)
    return EnvConfigProvider()
