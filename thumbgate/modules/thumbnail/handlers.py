"""
OMERO session aware thumbnail handlers.

Each handler method takes a joined RemoteClient, which makes it usable as
the unit of work of an OmeroRequest.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from ...logging_config import stopwatch
from ..omero.client import ImageRef, RemoteClient

logger = logging.getLogger(__name__)


class ThumbnailsRequestHandler:
    def __init__(self, longest_side: int, image_ids: Sequence[int]):
        """
        Initialize thumbnails handler.

        Args:
            longest_side: Size to confine or upscale the longest side of
                each thumbnail to; the other side scales by aspect ratio
            image_ids: Image identifiers to request thumbnails for
        """
        self.longest_side = longest_side
        self.image_ids = list(image_ids)

    def render_thumbnails(self, client: RemoteClient) -> Optional[Dict[int, bytes]]:
        """
        Retrieve JPEG thumbnails from the server.

        Returns:
            Map of image identifier to JPEG bytes, or None if none of the
            images exist or are visible to the session's user
        """
        images = self.get_images(client, self.image_ids)
        if not images:
            logger.debug(f"Cannot find any Images with Ids {self.image_ids}")
            return None
        return self.get_thumbnails(client, images, self.longest_side)

    def get_images(self, client: RemoteClient, image_ids: Sequence[int]) -> List[ImageRef]:
        with stopwatch("getImages", logger):
            return client.find_images(image_ids)

    def get_thumbnails(
        self, client: RemoteClient, images: Sequence[ImageRef], longest_side: int
    ) -> Dict[int, bytes]:
        """
        Retrieve thumbnails for loaded images, one server call per group.

        Returns:
            Map of image identifier to JPEG bytes
        """
        by_group: Dict[int, Dict[int, int]] = defaultdict(dict)
        for image in images:
            by_group[image.group_id][image.pixels_id] = image.image_id

        thumbnails: Dict[int, bytes] = {}
        for group_id, pixels_to_image in by_group.items():
            with stopwatch("getThumbnailByLongestSideSet", logger):
                by_pixels = client.get_thumbnails(
                    longest_side, list(pixels_to_image), group_id
                )
            for pixels_id, thumbnail in by_pixels.items():
                image_id = pixels_to_image.get(pixels_id)
                if image_id is not None and thumbnail is not None:
                    thumbnails[image_id] = thumbnail
        return thumbnails


class ThumbnailRequestHandler(ThumbnailsRequestHandler):
    def __init__(self, longest_side: int, image_id: int):
        super().__init__(longest_side, [image_id])
        self.image_id = image_id

    def render_thumbnail(self, client: RemoteClient) -> Optional[bytes]:
        """Retrieve one JPEG thumbnail, or None if the image is not found."""
        thumbnails = self.render_thumbnails(client)
        if thumbnails is None:
            return None
        return thumbnails.get(self.image_id)
