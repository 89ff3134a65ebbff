#!/usr/bin/env python3
"""
Thumbgate - Main Entry Point

This is the thin orchestration layer that:
1. Loads configuration
2. Initializes modules
3. Runs the HTTP server

All business logic is in the modules, following black box principles.
"""

import logging
import logging.config as log_config
import re
from contextlib import asynccontextmanager
from typing import List, Optional

import redis.asyncio as redis
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from thumbgate import __version__
from thumbgate.config.provider import ConfigProvider, get_config_provider
from thumbgate.errors import DispatchFailure, FailureCode
from thumbgate.logging_config import get_logging_config, redact

# Import modules through their black box interfaces
from thumbgate.modules.api import (
    DEFAULT_LONGEST_SIDE,
    HealthResponse,
    MicroserviceDetails,
    ThumbnailCtx,
)
from thumbgate.modules.dispatch import DispatchBus
from thumbgate.modules.omero import ClientFactory, OmeroClientFactory
from thumbgate.modules.session_store import SessionStore, SessionStoreFactory
from thumbgate.modules.thumbnail import (
    GET_THUMBNAILS_EVENT,
    RENDER_THUMBNAIL_EVENT,
    register_thumbnail_endpoints,
)
from thumbgate.modules.worker import WorkerPool

logger = logging.getLogger(__name__)

JSONP_CALLBACK = re.compile(r"^[A-Za-z_$][\w$.]*$")


# Dependency injection helpers


async def require_omero_session(request: Request) -> str:
    """
    Resolve the OMERO.web session cookie to an OMERO session key.

    Returns:
        OMERO session key, also stored as ``request.state.omero_session_key``

    Raises:
        HTTPException: 403 when there is no usable session
    """
    session_store: Optional[SessionStore] = getattr(request.app.state, "session_store", None)
    if session_store is None:
        raise HTTPException(503, "Service not initialized")

    cookie_name = request.app.state.session_store_config.cookie_name
    cookie = request.cookies.get(cookie_name)
    if not cookie:
        logger.debug(f"Request to {request.url.path} without {cookie_name} cookie")
        raise HTTPException(403, "Forbidden")

    omero_session_key = await session_store.resolve(cookie)
    if omero_session_key is None:
        raise HTTPException(403, "Forbidden")

    request.state.omero_session_key = omero_session_key
    return omero_session_key


async def dispatch(request: Request, endpoint: str, ctx: ThumbnailCtx):
    """Send a payload to a dispatch endpoint and wait for the reply."""
    bus: Optional[DispatchBus] = getattr(request.app.state, "bus", None)
    if bus is None:
        raise HTTPException(503, "Service not initialized")
    return await bus.send(endpoint, ctx.to_json())


# Thumbnail Endpoints

router = APIRouter()


@router.get("/webclient/render_thumbnail/size/{longest_side}/{image_id}")
@router.get("/webclient/render_thumbnail/{image_id}")
@router.get("/webgateway/render_thumbnail/{image_id}/{longest_side}")
@router.get("/webgateway/render_thumbnail/{image_id}")
@router.get("/webclient/render_birds_eye_view/{image_id}/{longest_side}")
@router.get("/webclient/render_birds_eye_view/{image_id}")
@router.get("/webgateway/render_birds_eye_view/{image_id}/{longest_side}")
@router.get("/webgateway/render_birds_eye_view/{image_id}")
async def render_thumbnail(
    request: Request,
    image_id: int,
    longest_side: Optional[int] = None,
    rdef_id: Optional[int] = Query(None, alias="rdefId"),
    omero_session_key: str = Depends(require_omero_session),
):
    """
    Render a single thumbnail.

    Returns:
        200: image/jpeg body
        403: No usable OMERO.web session
        404: Image does not exist or is not visible to the user
    """
    ctx = ThumbnailCtx(
        omero_session_key=omero_session_key,
        longest_side=DEFAULT_LONGEST_SIDE if longest_side is None else longest_side,
        image_id=image_id,
        rendering_def_id=rdef_id,
    )
    thumbnail = await dispatch(request, RENDER_THUMBNAIL_EVENT, ctx)
    return Response(content=thumbnail, media_type="image/jpeg")


@router.get("/webgateway/get_thumbnails/{longest_side}")
@router.get("/webgateway/get_thumbnails")
@router.get("/webclient/get_thumbnails/{longest_side}")
@router.get("/webclient/get_thumbnails")
async def get_thumbnails(
    request: Request,
    longest_side: Optional[int] = None,
    image_ids: List[int] = Query([], alias="id"),
    callback: Optional[str] = None,
    omero_session_key: str = Depends(require_omero_session),
):
    """
    Render several thumbnails.

    Responds with a JSON object of Base64 encoded JPEG data URIs keyed by
    image identifier, wrapped in ``callback(...)`` for JSONP requests.
    """
    if not image_ids:
        raise HTTPException(400, "No image identifiers given")
    if callback is not None and not JSONP_CALLBACK.match(callback):
        raise HTTPException(400, "Invalid callback")

    ctx = ThumbnailCtx(
        omero_session_key=omero_session_key,
        longest_side=DEFAULT_LONGEST_SIDE if longest_side is None else longest_side,
        image_ids=image_ids,
    )
    body = await dispatch(request, GET_THUMBNAILS_EVENT, ctx)
    if callback is not None:
        return Response(content=f"{callback}({body});", media_type="application/javascript")
    return Response(content=body, media_type="application/json")


def create_app(
    config_provider: Optional[ConfigProvider] = None,
    session_store: Optional[SessionStore] = None,
    client_factory: Optional[ClientFactory] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config_provider: Configuration source (defaults to file or environment)
        session_store: Session store to use instead of the configured backend
        client_factory: OMERO client factory (defaults to the Ice client)
    """
    config_provider = config_provider or get_config_provider()
    omero_config = config_provider.get_omero_config()
    session_store_config = config_provider.get_session_store_config()
    worker_config = config_provider.get_worker_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle - initialize and cleanup resources.
        """
        logger.info("Starting Thumbgate...")

        store = session_store or SessionStoreFactory.build(session_store_config)
        bus = DispatchBus(default_timeout=worker_config.dispatch_timeout)
        pool = WorkerPool(
            bus,
            omero_config.host,
            omero_config.port,
            client_factory or OmeroClientFactory(),
            size=worker_config.pool_size,
            max_pending=worker_config.max_pending,
        )
        register_thumbnail_endpoints(pool)
        await pool.start()

        app.state.session_store = store
        app.state.bus = bus
        app.state.pool = pool
        logger.info(
            f"Thumbgate started (OMERO {omero_config.host}:{omero_config.port}, "
            f"{session_store_config.type} session store, {worker_config.pool_size} workers)"
        )

        yield

        # Shutdown
        logger.info("Shutting down Thumbgate...")
        await pool.stop()
        await bus.close()
        await store.close()
        app.state.session_store = None
        app.state.bus = None
        app.state.pool = None
        logger.info("Thumbgate shutdown complete")

    app = FastAPI(
        title="Thumbgate",
        description="OMERO thumbnail gateway for OMERO.web sessions",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.session_store_config = session_store_config
    app.state.worker_config = worker_config
    app.include_router(router)

    @app.options("/{path:path}", response_model=MicroserviceDetails)
    async def microservice_details(path: str):
        """Identify this service as the thumbnail microservice."""
        logger.info("Getting Microservice Details")
        return MicroserviceDetails(version=__version__)

    @app.get("/health")
    async def health(request: Request):
        """
        Health check endpoint.

        Returns:
            200: Service healthy
            503: Service unhealthy
        """
        pool: Optional[WorkerPool] = getattr(request.app.state, "pool", None)
        if pool is None or not pool.running:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "modules": "not initialized"},
            )
        pool_health = pool.health()
        return HealthResponse(
            status="healthy",
            session_store=session_store_config.type,
            pool_size=pool_health.size,
            busy_slots=pool_health.busy,
            pending=pool_health.pending,
            version=__version__,
        )

    # Error handlers

    @app.exception_handler(DispatchFailure)
    async def dispatch_failure_handler(request: Request, exc: DispatchFailure):
        """Convert dispatch failures into bare HTTP status responses."""
        status_code = exc.code
        if exc.failure_code is FailureCode.TIMEOUT:
            status_code = request.app.state.worker_config.timeout_status
        if not 400 <= status_code <= 599:
            status_code = 500
        session_key = getattr(request.state, "omero_session_key", None)
        logger.debug(
            f"Dispatch failed for {request.url.path} "
            f"(session {redact(session_key)}): {exc}"
        )
        return Response(status_code=status_code)

    @app.exception_handler(redis.RedisError)
    async def redis_error_handler(request, exc):
        """Handle Redis session store errors."""
        logger.error(f"Redis session store error: {exc}")
        return JSONResponse(status_code=503, content={"error": "Session store unavailable"})

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request, exc):
        """Handle relational session store errors."""
        logger.error(f"Database session store error: {exc}")
        return JSONResponse(status_code=503, content={"error": "Session store unavailable"})

    @app.exception_handler(ValueError)
    async def validation_error_handler(request, exc):
        """Handle validation errors."""
        logger.warning(f"Validation error: {exc}")
        return JSONResponse(status_code=400, content={"error": "Invalid request"})

    return app


app = create_app()


def main() -> None:
    """Run the HTTP server."""
    config_provider = get_config_provider()
    api_config = config_provider.get_api_config()
    logging_config = get_logging_config(api_config.log_level)
    log_config.dictConfig(logging_config)

    logger.info(f"Starting HTTP server {api_config.host}:{api_config.port}")
    uvicorn.run(
        create_app(config_provider),
        host=api_config.host,
        port=api_config.port,
        log_level=api_config.log_level.lower(),
        log_config=logging_config,
    )


if __name__ == "__main__":
    main()
