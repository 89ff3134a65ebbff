"""
Relational OMERO.web session store.

Reads the Django database session engine's ``django_session`` table. The
queries are blocking, so each lookup runs in a worker thread inside its own
scoped connection.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, create_engine, select
from sqlalchemy.engine import Engine

from ...errors import SessionDecodeError
from ...logging_config import redact, stopwatch
from .codec import Connector, DjangoDatabaseCodec, SessionRecordCodec

logger = logging.getLogger(__name__)

# Dialects that compare against timestamptz columns when Django has USE_TZ on
TIMEZONE_AWARE_DIALECTS = ("postgresql",)

metadata = MetaData()

django_session = Table(
    "django_session",
    metadata,
    Column("session_key", String(40), primary_key=True),
    Column("session_data", Text, nullable=False),
    Column("expire_date", DateTime, nullable=False, index=True),
)


class SqlSessionStore:
    """Session store backed by the ``django_session`` table."""

    def __init__(self, engine: Engine, codec: Optional[SessionRecordCodec] = None):
        self.engine = engine
        self.codec = codec or DjangoDatabaseCodec()

    @classmethod
    def from_url(cls, uri: str, **kwargs) -> "SqlSessionStore":
        """Create a store from an SQLAlchemy database URL."""
        engine = create_engine(uri, pool_pre_ping=True)
        return cls(engine, **kwargs)

    def _now(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self.engine.dialect.name in TIMEZONE_AWARE_DIALECTS:
            return now
        # Naive UTC, as Django stores it without time zone support
        return now.replace(tzinfo=None)

    def _fetch(self, session_key: str) -> Optional[str]:
        now = self._now()
        query = select(django_session.c.session_data).where(
            django_session.c.session_key == session_key,
            django_session.c.expire_date > now,
        )
        with self.engine.connect() as connection:
            return connection.execute(query).scalar_one_or_none()

    async def get_connector(self, session_key: str) -> Optional[Connector]:
        """Get the OMERO.web connector for an unexpired session."""
        if not session_key:
            return None

        with stopwatch("getConnector", logger):
            data = await asyncio.to_thread(self._fetch, session_key)

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
        """Dispose of the engine's connection pool."""
        await asyncio.to_thread(self.engine.dispose)
