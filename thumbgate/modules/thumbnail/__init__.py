"""
Thumbnail Module - Black Box Interface

Purpose: OMERO thumbnail units of work and their dispatch endpoints
Interface: register_thumbnail_endpoints(), RENDER_THUMBNAIL_EVENT, GET_THUMBNAILS_EVENT
Hidden: Image lookup, per-group thumbnail retrieval, reply encoding
"""

from .handlers import ThumbnailRequestHandler, ThumbnailsRequestHandler
from .service import (
    GET_THUMBNAILS_EVENT,
    RENDER_THUMBNAIL_EVENT,
    encode_thumbnails,
    prepare_get_thumbnails,
    prepare_render_thumbnail,
    register_thumbnail_endpoints,
)

__all__ = [
    "GET_THUMBNAILS_EVENT",
    "RENDER_THUMBNAIL_EVENT",
    "ThumbnailRequestHandler",
    "ThumbnailsRequestHandler",
    "encode_thumbnails",
    "prepare_get_thumbnails",
    "prepare_render_thumbnail",
    "register_thumbnail_endpoints",
]
