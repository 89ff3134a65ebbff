"""
Shared pytest fixtures for Thumbgate tests.

This module provides common fixtures including:
- FakeOmeroClient: In-memory stand-in for the OMERO server
- OMERO.web session record builders (pickled Django sessions)
- Redis mocks for session store tests
- Static configuration for FastAPI test apps
"""

import base64
import hashlib
import hmac
import pickle
import sys
import threading
import types
import zlib
from typing import Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, patch

import pytest

from thumbgate.config.provider import APIConfig, OmeroConfig, SessionStoreConfig, WorkerConfig
from thumbgate.modules.omero.client import ImageRef


# =============================================================================
# OMERO.web session records
# =============================================================================

# Protocol 0 pickle of {"connector": Connector(...)} as written by a
# Python 2 OMERO.web.
PY2_SESSION_RECORD = (
    b"(dp0\n"
    b"S'connector'\n"
    b"p1\n"
    b"ccopy_reg\n_reconstructor\n"
    b"p2\n"
    b"(comeroweb.connector\nConnector\n"
    b"p3\n"
    b"c__builtin__\nobject\n"
    b"p4\n"
    b"Ntp5\n"
    b"Rp6\n"
    b"(dp7\n"
    b"S'omero_session_key'\n"
    b"p8\n"
    b"S'sess-123'\n"
    b"p9\n"
    b"sS'server_id'\n"
    b"p10\n"
    b"I1\n"
    b"sS'is_secure'\n"
    b"p11\n"
    b"I00\n"
    b"sbs."
)


def make_session_record(
    omero_session_key: Optional[str] = "sess-123",
    protocol: int = 2,
    extra: Optional[dict] = None,
    with_connector: bool = True,
) -> bytes:
    """
    Pickle an OMERO.web session the way OMERO.web does.

    A throwaway ``omeroweb.connector`` module is registered only while
    pickling so the connector is written under its real class path.
    """
    package = types.ModuleType("omeroweb")
    module = types.ModuleType("omeroweb.connector")

    class Connector:
        pass

    Connector.__module__ = "omeroweb.connector"
    Connector.__qualname__ = "Connector"
    module.Connector = Connector
    package.connector = module

    session = {"_auth_user_id": 2, "server_settings": {"ui": {"tree": {}}}}
    if extra:
        session.update(extra)
    if with_connector:
        connector = Connector()
        connector.server_id = 1
        connector.is_secure = False
        connector.is_public = False
        connector.user_id = 2
        connector.omero_session_key = omero_session_key
        session["connector"] = connector

    with patch.dict(sys.modules, {"omeroweb": package, "omeroweb.connector": module}):
        return pickle.dumps(session, protocol=protocol)


def make_database_record(record: bytes, session_hash: bytes = b"0a1b2c3d") -> str:
    """Encode a pickled session the way the pre 4.0 Django database backend stores it."""
    return base64.b64encode(session_hash + b":" + record).decode("ascii")


DJANGO_SESSION_SALT = "django.contrib.sessions.SessionStore"


def make_signed_database_record(
    record: bytes,
    compress: bool = True,
    timestamp: str = "1rK9Qx",
    secret_key: str = "omeroweb-secret-key",
) -> str:
    """
    Encode a pickled session the way current Django database backends do.

    Mirrors ``signing.dumps(session, compress=True)`` signed with a
    ``TimestampSigner``: ``[.]<urlsafe base64>:<timestamp>:<signature>``.
    """
    payload = zlib.compress(record) if compress else record
    value = base64.urlsafe_b64encode(payload).rstrip(b"=").decode("ascii")
    if compress:
        value = "." + value
    value = f"{value}:{timestamp}"

    key = hashlib.sha256(
        (DJANGO_SESSION_SALT + "signer" + secret_key).encode("utf-8")
    ).digest()
    digest = hmac.new(key, value.encode("ascii"), hashlib.sha256).digest()
    signature = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return f"{value}:{signature}"


@pytest.fixture
def session_record():
    return make_session_record()


# =============================================================================
# OMERO server fake
# =============================================================================

IMAGES = [
    ImageRef(image_id=42, pixels_id=420, group_id=3),
    ImageRef(image_id=43, pixels_id=430, group_id=3),
    ImageRef(image_id=44, pixels_id=440, group_id=5),
]

THUMBNAILS = {
    420: bytes([1, 2, 3]),
    430: bytes([4, 5, 6]),
    440: bytes([7, 8, 9]),
}


class FakeOmeroClient:
    """
    In-memory RemoteClient.

    Records every call so tests can assert on the session lifecycle.
    """

    def __init__(
        self,
        images: Sequence[ImageRef] = IMAGES,
        thumbnails: Optional[Dict[int, bytes]] = None,
        join_error: Optional[BaseException] = None,
        close_error: Optional[BaseException] = None,
        query_error: Optional[BaseException] = None,
        block: Optional[threading.Event] = None,
    ):
        self.images = list(images)
        self.thumbnails = dict(THUMBNAILS if thumbnails is None else thumbnails)
        self.join_error = join_error
        self.close_error = close_error
        self.query_error = query_error
        self.block = block

        self.host = None
        self.port = None
        self.joined_with: Optional[str] = None
        self.close_calls = 0
        self.thumbnail_calls: List[tuple] = []

    def join_session(self, session_key: str) -> None:
        if self.join_error is not None:
            raise self.join_error
        self.joined_with = session_key

    def find_images(self, image_ids: Sequence[int]) -> List[ImageRef]:
        if self.block is not None:
            self.block.wait(5)
        if self.query_error is not None:
            raise self.query_error
        return [image for image in self.images if image.image_id in image_ids]

    def get_thumbnails(self, longest_side, pixels_ids, group_id) -> Dict[int, bytes]:
        self.thumbnail_calls.append((longest_side, sorted(pixels_ids), group_id))
        return {p: self.thumbnails[p] for p in pixels_ids if p in self.thumbnails}

    def close_session(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


class FakeClientFactory:
    """ClientFactory handing out FakeOmeroClients built with fixed options."""

    def __init__(self, **client_options):
        self.client_options = client_options
        self.clients: List[FakeOmeroClient] = []
        self._lock = threading.Lock()

    def __call__(self, host: str, port: int) -> FakeOmeroClient:
        client = FakeOmeroClient(**self.client_options)
        client.host = host
        client.port = port
        with self._lock:
            self.clients.append(client)
        return client


@pytest.fixture
def client_factory():
    return FakeClientFactory()


# =============================================================================
# Redis Mocking Infrastructure
# =============================================================================


@pytest.fixture
def redis_records():
    """Raw Redis contents keyed by Redis key."""
    return {}


@pytest.fixture
def mock_redis(redis_records):
    """Create a mock async Redis client backed by ``redis_records``."""
    redis = AsyncMock()

    async def mock_get(key):
        return redis_records.get(key)

    redis.get = AsyncMock(side_effect=mock_get)
    redis.aclose = AsyncMock()
    return redis


# =============================================================================
# Configuration
# =============================================================================


class StaticConfigProvider:
    """ConfigProvider returning fixed test configuration."""

    def __init__(
        self,
        pool_size: int = 2,
        max_pending: int = 0,
        dispatch_timeout: float = 5.0,
        timeout_status: int = 404,
        cookie_name: str = "sessionid",
    ):
        self.worker = WorkerConfig(
            pool_size=pool_size,
            max_pending=max_pending,
            dispatch_timeout=dispatch_timeout,
            timeout_status=timeout_status,
        )
        self.cookie_name = cookie_name

    def get_omero_config(self) -> OmeroConfig:
        return OmeroConfig(host="omero.example.org", port=4064)

    def get_session_store_config(self) -> SessionStoreConfig:
        return SessionStoreConfig(
            type="redis", uri="redis://localhost:6379/1", cookie_name=self.cookie_name
        )

    def get_worker_config(self) -> WorkerConfig:
        return self.worker

    def get_api_config(self) -> APIConfig:
        return APIConfig(port=8080, host="127.0.0.1", debug=False, log_level="INFO")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: Integration tests requiring infrastructure"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take a long time to run"
    )
