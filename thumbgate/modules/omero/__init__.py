"""
OMERO Module - Black Box Interface

Purpose: Boundary to the remote OMERO server
Interface: RemoteClient, ClientFactory, OmeroClientFactory
Hidden: Ice/Glacier2 specifics, HQL queries, thumbnail store handling

Any object implementing RemoteClient can stand in for the OMERO server.
"""

from .client import (
    CannotCreateSessionError,
    ClientFactory,
    ImageRef,
    OmeroClientFactory,
    PermissionDeniedError,
    RemoteClient,
    RemoteError,
)

__all__ = [
    "CannotCreateSessionError",
    "ClientFactory",
    "ImageRef",
    "OmeroClientFactory",
    "PermissionDeniedError",
    "RemoteClient",
    "RemoteError",
]
