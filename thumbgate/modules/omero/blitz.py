"""
OMERO Ice client adapter.

Wraps ``omero.client`` behind the RemoteClient interface. Requires
``omero-py`` (install with the ``omero`` extra).
"""

import logging
from typing import Dict, List, Sequence

import Glacier2
import omero
import omero.clients  # noqa: F401  registers the model object factories
from omero.rtypes import rint, unwrap
from omero.sys import ParametersI

from ...logging_config import redact, stopwatch
from .client import CannotCreateSessionError, ImageRef, PermissionDeniedError, RemoteError

logger = logging.getLogger(__name__)

IMAGES_QUERY = (
    "SELECT i FROM Image as i "
    "JOIN FETCH i.pixels as p WHERE i.id IN (:ids)"
)


class BlitzClient:
    """RemoteClient backed by an ``omero.client``."""

    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self._client = omero.client(host, port)

    def join_session(self, session_key: str) -> None:
        try:
            self._client.joinSession(session_key).detachOnDestroy()
        except Glacier2.PermissionDeniedException as e:
            raise PermissionDeniedError(
                f"Permission denied joining session {redact(session_key)}"
            ) from e
        except Glacier2.CannotCreateSessionException as e:
            raise CannotCreateSessionError(
                f"Cannot create session {redact(session_key)}"
            ) from e

    def find_images(self, image_ids: Sequence[int]) -> List[ImageRef]:
        params = ParametersI()
        params.addIds(list(image_ids))
        # Search across all groups the user can see
        ctx = {"omero.group": "-1"}
        with stopwatch("getImages", logger):
            try:
                images = self._client.getSession().getQueryService().findAllByQuery(
                    IMAGES_QUERY, params, ctx
                )
            except omero.ServerError as e:
                raise RemoteError(f"Image query failed: {e}") from e

        return [
            ImageRef(
                image_id=unwrap(image.getId()),
                pixels_id=unwrap(image.getPrimaryPixels().getId()),
                group_id=unwrap(image.getDetails().getGroup().getId()),
            )
            for image in images
        ]

    def get_thumbnails(
        self, longest_side: int, pixels_ids: Sequence[int], group_id: int
    ) -> Dict[int, bytes]:
        ctx = {"omero.group": str(group_id)}
        thumbnail_store = self._client.getSession().createThumbnailStore()
        try:
            with stopwatch("getThumbnailByLongestSideSet", logger):
                return dict(thumbnail_store.getThumbnailByLongestSideSet(
                    rint(longest_side), list(pixels_ids), ctx
                ))
        except omero.ServerError as e:
            raise RemoteError(f"Thumbnail retrieval failed: {e}") from e
        finally:
            thumbnail_store.close()

    def close_session(self) -> None:
        self._client.closeSession()
