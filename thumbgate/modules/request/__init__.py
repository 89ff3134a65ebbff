"""
Request Module - Black Box Interface

Purpose: Scope one OMERO session to one unit of work
Interface: OmeroRequest (context manager), with_session()
Hidden: Join/close sequencing, close failure handling

Sessions are never shared between units of work.
"""

from .context import OmeroRequest, with_session

__all__ = ["OmeroRequest", "with_session"]
