"""
Thumbgate - OMERO Thumbnail Gateway

Serves OMERO thumbnails to browsers that are logged in to OMERO.web.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- session_store: OMERO.web session lookup (Redis, SQL)
- omero: Remote OMERO server boundary
- request: Per-request OMERO session handling
- dispatch: Internal request/reply message bus
- worker: Bounded pool of blocking worker slots
- thumbnail: Thumbnail units of work and endpoints
- api: Shared data models
"""

__version__ = "1.0.0"
