"""
Session Store Factory following Black Box Design principles.

This factory:
- Selects the session store backend from configuration
- Wires the backend client and codec together
- Returns only the SessionStore interface
"""

import logging

from ...config.provider import SessionStoreConfig
from .interfaces import SessionStore
from .redis_store import RedisSessionStore
from .sql_store import SqlSessionStore

logger = logging.getLogger(__name__)


class SessionStoreFactory:
    """Composition root for OMERO.web session stores."""

    @staticmethod
    def build(config: SessionStoreConfig) -> SessionStore:
        """
        Build the session store selected by configuration.

        Args:
            config: Session store configuration

        Returns:
            SessionStore for the configured backend

        Raises:
            ValueError: If the backend type is unknown
        """
        if config.type == "redis":
            logger.info("Building Redis OMERO.web session store")
            return RedisSessionStore.from_url(
                config.uri,
                key_prefix=config.key_prefix,
                key_version=config.key_version,
            )
        if config.type in ("postgres", "sql"):
            logger.info("Building relational OMERO.web session store")
            return SqlSessionStore.from_url(config.uri)
        raise ValueError(
            f"Missing/invalid value for session store type: {config.type!r}"
        )
