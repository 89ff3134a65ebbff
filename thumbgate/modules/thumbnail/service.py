"""
Thumbnail dispatch endpoints.

Decodes ThumbnailCtx payloads into worker pool jobs and encodes their
results as replies.
"""

import base64
import json
from typing import Dict

from ..api.models import ThumbnailCtx
from ..worker.pool import Job, WorkerPool
from .handlers import ThumbnailRequestHandler, ThumbnailsRequestHandler

RENDER_THUMBNAIL_EVENT = "omero.render_thumbnail"
GET_THUMBNAILS_EVENT = "omero.get_thumbnails"

DATA_URI_PREFIX = "data:image/jpeg;base64,"


def prepare_render_thumbnail(body) -> Job:
    """Decode a render thumbnail payload into a job replying JPEG bytes."""
    ctx = ThumbnailCtx.model_validate_json(body)
    image_id = ctx.image_id if ctx.image_id is not None else ctx.image_ids[0]
    handler = ThumbnailRequestHandler(ctx.longest_side, image_id)
    return Job(
        omero_session_key=ctx.omero_session_key,
        unit_of_work=handler.render_thumbnail,
    )


def encode_thumbnails(thumbnails: Dict[int, bytes]) -> str:
    """Encode thumbnails as a JSON object of image id to JPEG data URI."""
    return json.dumps({
        str(image_id): DATA_URI_PREFIX + base64.b64encode(thumbnail).decode("ascii")
        for image_id, thumbnail in sorted(thumbnails.items())
    })


def prepare_get_thumbnails(body) -> Job:
    """Decode a get thumbnails payload into a job replying JSON text."""
    ctx = ThumbnailCtx.model_validate_json(body)
    image_ids = ctx.image_ids or [ctx.image_id]
    handler = ThumbnailsRequestHandler(ctx.longest_side, image_ids)
    return Job(
        omero_session_key=ctx.omero_session_key,
        unit_of_work=handler.render_thumbnails,
        encode=encode_thumbnails,
    )


def register_thumbnail_endpoints(pool: WorkerPool) -> None:
    """Bind the thumbnail endpoints to a worker pool."""
    pool.bind(RENDER_THUMBNAIL_EVENT, prepare_render_thumbnail)
    pool.bind(GET_THUMBNAILS_EVENT, prepare_get_thumbnails)
