"""
OMERO.web session record decoding.

OMERO.web is a Django application that keeps its sessions either in a cache
(Redis) or in the ``django_session`` table. In both cases the session is a
pickled dictionary whose ``"connector"`` entry is an
``omeroweb.connector.Connector`` instance carrying the OMERO session key.

The records are written by a foreign process, so unpickling is restricted
to the connector class and a handful of plain value types.
"""

import base64
import binascii
import io
import logging
import pickle
import zlib
from typing import Any, Optional, Protocol

from ...errors import SessionDecodeError

logger = logging.getLogger(__name__)

CONNECTOR_KEY = "connector"

CONNECTOR_GLOBAL = ("omeroweb.connector", "Connector")

# Python 2 writers use the pre-3.0 module names; the base Unpickler maps them.
SAFE_GLOBALS = frozenset({
    ("copy_reg", "_reconstructor"),
    ("copyreg", "_reconstructor"),
    ("__builtin__", "object"),
    ("builtins", "object"),
    ("__builtin__", "set"),
    ("builtins", "set"),
    ("__builtin__", "frozenset"),
    ("builtins", "frozenset"),
    ("collections", "OrderedDict"),
    ("datetime", "date"),
    ("datetime", "datetime"),
    ("datetime", "time"),
    ("datetime", "timedelta"),
    ("datetime", "timezone"),
})


class Connector:
    """
    Local stand-in for ``omeroweb.connector.Connector``.

    Only ``omero_session_key`` is needed; the other attributes are kept so
    that the decoded record is easy to inspect while debugging.
    """

    # Unpickling bypasses __init__; older writers omit some attributes
    omero_session_key = None
    server_id = None
    is_secure = False
    is_public = False
    user_id = None

    def __init__(
        self,
        omero_session_key: Optional[str] = None,
        server_id: Any = None,
        is_secure: bool = False,
        is_public: bool = False,
        user_id: Optional[int] = None,
    ):
        self.omero_session_key = omero_session_key
        self.server_id = server_id
        self.is_secure = is_secure
        self.is_public = is_public
        self.user_id = user_id

    def __setstate__(self, state):
        # (dict, slots) tuples come from classes that define __slots__
        if isinstance(state, tuple) and len(state) == 2:
            state = {**(state[0] or {}), **(state[1] or {})}
        if not isinstance(state, dict):
            raise SessionDecodeError(f"Unexpected connector state: {type(state).__name__}")
        for key, value in state.items():
            if isinstance(key, bytes):
                key = key.decode("latin-1")
            setattr(self, key, value)

    def __repr__(self) -> str:
        return (
            f"Connector(server_id={self.server_id!r}, user_id={self.user_id!r}, "
            f"is_secure={self.is_secure!r}, is_public={self.is_public!r})"
        )


class _RestrictedUnpickler(pickle.Unpickler):
    """Unpickler that only resolves the connector class and plain value types."""

    def find_class(self, module, name):
        if (module, name) == CONNECTOR_GLOBAL:
            return Connector
        if (module, name) in SAFE_GLOBALS:
            return super().find_class(module, name)
        raise SessionDecodeError(f"Refusing to load global {module}.{name}")


class SessionRecordCodec(Protocol):
    """Protocol for session record codecs - one per foreign format."""

    def decode(self, data: bytes) -> Connector:
        """
        Decode a raw session record into its connector.

        Raises:
            SessionDecodeError: If the record is malformed or has no connector
        """
        ...


class DjangoPickleCodec:
    """Codec for pickled Django session dictionaries (cache backend)."""

    def decode(self, data: bytes) -> Connector:
        if not isinstance(data, (bytes, bytearray)):
            raise SessionDecodeError(f"Expected bytes, got {type(data).__name__}")
        if not data:
            raise SessionDecodeError("Empty session record")

        try:
            session = _RestrictedUnpickler(
                io.BytesIO(bytes(data)), encoding="latin1"
            ).load()
        except SessionDecodeError:
            raise
        except Exception as e:
            raise SessionDecodeError(f"Malformed session record: {e}") from e

        return extract_connector(session)


class DjangoDatabaseCodec:
    """
    Codec for ``django_session.session_data`` column values.

    Two layouts are read:

    * signed (Django 3.1 and later): ``[.]<urlsafe base64>:<timestamp>:<signature>``
      where a leading ``.`` marks a zlib compressed payload
    * legacy (before Django 4.0): base64 of ``<hash>:<pickled session>``

    Neither the signature nor the hash is verified; this service only reads
    sessions.
    """

    def __init__(self, inner: Optional[SessionRecordCodec] = None):
        self.inner = inner or DjangoPickleCodec()

    def decode(self, data: bytes) -> Connector:
        if isinstance(data, (bytes, bytearray)):
            data = bytes(data).decode("ascii", errors="replace")
        if not isinstance(data, str):
            raise SessionDecodeError(f"Expected bytes, got {type(data).__name__}")

        # Base64 has no ':', so only signed values carry the two trailing fields
        if data.count(":") >= 2:
            serialized = self._signed_payload(data)
        else:
            serialized = self._legacy_payload(data)
        return self.inner.decode(serialized)

    def _signed_payload(self, value: str) -> bytes:
        payload, _timestamp, _signature = value.rsplit(":", 2)
        compressed = payload.startswith(".")
        if compressed:
            payload = payload[1:]

        try:
            raw = base64.b64decode(
                payload + "=" * (-len(payload) % 4), altchars=b"-_", validate=True
            )
        except (binascii.Error, ValueError) as e:
            raise SessionDecodeError(f"Signed session data is not base64: {e}") from e

        if compressed:
            try:
                raw = zlib.decompress(raw)
            except zlib.error as e:
                raise SessionDecodeError(f"Signed session data is not compressed: {e}") from e
        return raw

    def _legacy_payload(self, value: str) -> bytes:
        try:
            raw = base64.b64decode(value.encode("ascii", errors="replace"), validate=True)
        except (binascii.Error, ValueError) as e:
            raise SessionDecodeError(f"Session data is not base64: {e}") from e

        _hash, sep, serialized = raw.partition(b":")
        if not sep:
            raise SessionDecodeError("Session data has no hash separator")
        return serialized


def extract_connector(session: Any) -> Connector:
    """
    Pull the connector out of a decoded session dictionary.

    Raises:
        SessionDecodeError: If the session has no usable connector
    """
    if not isinstance(session, dict):
        raise SessionDecodeError(f"Session is not a dictionary: {type(session).__name__}")

    connector = session.get(CONNECTOR_KEY)
    if connector is None:
        connector = session.get(CONNECTOR_KEY.encode("ascii"))
    if connector is None:
        raise SessionDecodeError("Session has no connector")
    if not isinstance(connector, Connector):
        raise SessionDecodeError(f"Unexpected connector type: {type(connector).__name__}")

    key = connector.omero_session_key
    if isinstance(key, bytes):
        key = key.decode("latin-1")
        connector.omero_session_key = key
    if not isinstance(key, str) or not key:
        raise SessionDecodeError("Connector has no OMERO session key")

    return connector
