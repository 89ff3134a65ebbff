"""Session store interfaces following Black Box Design principles."""
from typing import Optional, Protocol

from .codec import Connector


class SessionStore(Protocol):
    """
    Protocol for OMERO.web session stores - allows swappable backends.

    Stores only read sessions; the OMERO.web application owns their
    creation and expiry.
    """

    async def get_connector(self, session_key: str) -> Optional[Connector]:
        """
        Look up the OMERO.web connector for a session cookie value.

        Args:
            session_key: Value of the OMERO.web session cookie

        Returns:
            Connector, or None if there is no usable session
        """
        ...

    async def resolve(self, session_key: str) -> Optional[str]:
        """
        Resolve a session cookie value to an OMERO session key.

        Returns:
            OMERO session key, or None if there is no usable session
        """
        ...

    async def close(self) -> None:
        """Release backend clients on shutdown."""
        ...
