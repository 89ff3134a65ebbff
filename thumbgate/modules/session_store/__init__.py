"""
Session Store Module - Black Box Interface

Purpose: Resolve OMERO.web session cookies to OMERO session keys
Interface: SessionStore.resolve(), SessionStore.get_connector(), SessionStore.close()
Hidden: Backend access (Redis, SQL), key format, session record decoding

Replaceable with any backend that can read OMERO.web sessions.
"""

from .codec import Connector, DjangoDatabaseCodec, DjangoPickleCodec, SessionRecordCodec
from .factory import SessionStoreFactory
from .interfaces import SessionStore
from .redis_store import KEY_FORMAT, RedisSessionStore
from .sql_store import SqlSessionStore

__all__ = [
    "Connector",
    "DjangoDatabaseCodec",
    "DjangoPickleCodec",
    "KEY_FORMAT",
    "RedisSessionStore",
    "SessionRecordCodec",
    "SessionStore",
    "SessionStoreFactory",
    "SqlSessionStore",
]
