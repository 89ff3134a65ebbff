"""
Redis backed OMERO.web session store.

OMERO.web configured with the Django cache session engine keeps each
session under a key built by Django's default cache key function. The
format has to match the writer byte for byte.
"""

import logging
from typing import Optional

import redis.asyncio as redis

from ...errors import SessionDecodeError
from ...logging_config import redact, stopwatch
from .codec import Connector, DjangoPickleCodec, SessionRecordCodec

logger = logging.getLogger(__name__)

# Django cache key: "<KEY_PREFIX>:<VERSION>:<cache session engine prefix><session key>"
KEY_FORMAT = "{prefix}:{version}:django.contrib.sessions.cache{session_key}"


class RedisSessionStore:
    def __init__(
        self,
        redis_client,
        key_prefix: str = "",
        key_version: int = 1,
        codec: Optional[SessionRecordCodec] = None,
    ):
        """
        Initialize Redis session store.

        Args:
            redis_client: Async Redis client returning raw bytes
            key_prefix: OMERO.web cache KEY_PREFIX
            key_version: OMERO.web cache VERSION
            codec: Session record codec (defaults to pickled Django sessions)
        """
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.key_version = key_version
        self.codec = codec or DjangoPickleCodec()

    @classmethod
    def from_url(cls, uri: str, **kwargs) -> "RedisSessionStore":
        """Create a store with its own client from a Redis connection URI."""
        # Binary retrieval; pickled sessions are not valid UTF-8
        client = redis.from_url(uri, decode_responses=False)
        return cls(client, **kwargs)

    def make_key(self, session_key: str) -> str:
        """Build the Redis key OMERO.web stores a session under."""
        return KEY_FORMAT.format(
            prefix=self.key_prefix,
            version=self.key_version,
            session_key=session_key,
        )

    async def get_connector(self, session_key: str) -> Optional[Connector]:
        """
        Get the OMERO.web connector for a session.

        Logic:
        1. Build the Django cache key
        2. Fetch the pickled session (single GET)
        3. Decode the connector; undecodable sessions count as missing
        """
        if not session_key:
            return None

        key = self.make_key(session_key)
        with stopwatch("getConnector", logger):
            data = await self.redis.get(key)

        if data is None:
            logger.debug(f"No OMERO.web session for cookie {redact(session_key)}")
            return None

        try:
            connector = self.codec.decode(data)
        except SessionDecodeError as e:
            logger.warning(
                f"Undecodable OMERO.web session for cookie {redact(session_key)}: {e}"
            )
            return None

        logger.debug(f"Session connector: {connector!r}")
        return connector

    async def resolve(self, session_key: str) -> Optional[str]:
        """Resolve a session cookie value to an OMERO session key."""
        connector = await self.get_connector(session_key)
        if connector is None:
            return None
        return connector.omero_session_key

    async def close(self) -> None:
        """Close the Redis client and its connection pool."""
        await self.redis.aclose()
