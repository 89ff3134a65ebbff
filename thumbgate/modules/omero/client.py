"""OMERO client interfaces following Black Box Design principles."""
from dataclasses import dataclass
from typing import Dict, List, Protocol, Sequence


class RemoteError(Exception):
    """Error raised by a remote OMERO call."""


class PermissionDeniedError(RemoteError):
    """The OMERO server refused to join the session."""


class CannotCreateSessionError(RemoteError):
    """The OMERO server could not create or find the session."""


@dataclass(frozen=True)
class ImageRef:
    """An image as loaded from the server with its primary pixels."""
    image_id: int
    pixels_id: int
    group_id: int


class RemoteClient(Protocol):
    """
    Protocol for a stateful OMERO client.

    One client holds at most one joined session and must not be used by
    more than one unit of work at a time.
    """

    def join_session(self, session_key: str) -> None:
        """
        Join an existing OMERO session.

        Raises:
            PermissionDeniedError: If the key is not accepted
            CannotCreateSessionError: If the session cannot be created
        """
        ...

    def find_images(self, image_ids: Sequence[int]) -> List[ImageRef]:
        """Load the images (and their primary pixels) that exist and are visible."""
        ...

    def get_thumbnails(
        self, longest_side: int, pixels_ids: Sequence[int], group_id: int
    ) -> Dict[int, bytes]:
        """Fetch JPEG thumbnails keyed by pixels identifier."""
        ...

    def close_session(self) -> None:
        """Close the joined session and release client resources."""
        ...


class ClientFactory(Protocol):
    """Protocol for creating OMERO clients for a server."""

    def __call__(self, host: str, port: int) -> RemoteClient:
        ...


class OmeroClientFactory:
    """Creates Ice based OMERO clients (requires the ``omero`` extra)."""

    def __call__(self, host: str, port: int) -> RemoteClient:
        # omero-py pulls in zeroc-ice; only load it when a client is needed
        from .blitz import BlitzClient

        return BlitzClient(host, port)
