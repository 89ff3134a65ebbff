import logging
from typing import Callable, Optional, TypeVar

from ...errors import JoinFailedError
from ...logging_config import redact, stopwatch
from ..omero.client import ClientFactory, RemoteClient, RemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OmeroRequest:
    """
    OMERO session aware request.

    Joins an OMERO session on construction and owns it until ``close()``.
    Use as a context manager so the session is closed on every exit path::

        with OmeroRequest(host, port, key, client_factory) as request:
            thumbnail = request.handler(handler.render_thumbnail)
    """

    def __init__(
        self,
        host: str,
        port: int,
        omero_session_key: str,
        client_factory: ClientFactory,
    ):
        """
        Initialize and join the OMERO session.

        Args:
            host: OMERO server host
            port: OMERO server port
            omero_session_key: Key of the session to join
            client_factory: Creates the OMERO client

        Raises:
            JoinFailedError: If the session could not be joined
        """
        self.omero_session_key = omero_session_key
        self._closed = False
        self.client: RemoteClient = client_factory(host, port)

        with stopwatch("joinSession", logger):
            try:
                self.client.join_session(omero_session_key)
            except RemoteError as e:
                logger.debug(f"Unable to join session: {omero_session_key}", exc_info=True)
                self.close()
                raise JoinFailedError(
                    f"Unable to join session {redact(omero_session_key)}", cause=e
                ) from e
            except BaseException:
                self.close()
                raise

        logger.debug(f"Successfully joined session: {omero_session_key}")

    def handler(self, handler: Callable[[RemoteClient], T]) -> T:
        """Run a unit of work against the joined session."""
        if self._closed:
            raise RuntimeError("OMERO request is closed")
        return handler(self.client)

    def close(self) -> None:
        """
        Close the OMERO session.

        Failures are logged and swallowed so they never replace the outcome
        of the unit of work.
        """
        if self._closed:
            return
        self._closed = True

        with stopwatch("closeSession", logger):
            try:
                self.client.close_session()
                logger.debug(f"Successfully closed session: {self.omero_session_key}")
            except Exception:
                logger.error(
                    f"Exception while closing session: {redact(self.omero_session_key)}",
                    exc_info=True,
                )

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "OmeroRequest":
        return self

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        self.close()
        return None


def with_session(
    host: str,
    port: int,
    omero_session_key: str,
    unit_of_work: Callable[[RemoteClient], T],
    client_factory: ClientFactory,
) -> T:
    """
    Join a session, run one unit of work and close the session.

    Returns:
        Whatever the unit of work returns (None means "not found")

    Raises:
        JoinFailedError: If the session could not be joined
        Exception: Anything raised by the unit of work, after the session
            has been closed
    """
    with OmeroRequest(host, port, omero_session_key, client_factory) as request:
        return request.handler(unit_of_work)
