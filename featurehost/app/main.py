"""
featurehost - Manifest-Driven Feature Host

FastAPI application entry point.

Every registered feature is served by one catch-all route that resolves
`(METHOD, path)` in the registry and runs the feature's pipeline.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from featurehost import __version__
from featurehost.app.dependencies import (
    get_registry,
    get_settings,
    initialize_services,
    shutdown_services,
)
from featurehost.errors import FeatureError
from featurehost.pipeline import FeatureRequest, ResponseEnvelope
from featurehost.registry import FeatureRegistry

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting featurehost services...")
    try:
        await initialize_services()
        logger.info(f"featurehost ready: {len(get_registry())} features registered")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise

    yield

    # Shutdown
    logger.info("Shutting down featurehost services...")
    try:
        await shutdown_services()
        logger.info("featurehost services shut down successfully")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}", exc_info=True)


# Create FastAPI application
app = FastAPI(
    title="featurehost",
    description="Manifest-driven feature host - validate, rate limit, execute and normalize third-party features",
    version=__version__,
    lifespan=lifespan,
    debug=settings.debug,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def envelope_response(envelope: ResponseEnvelope) -> JSONResponse:
    return JSONResponse(
        envelope.to_dict(),
        status_code=envelope.status_code,
        headers=envelope.headers or None,
    )


@app.exception_handler(FeatureError)
async def feature_error_handler(request: Request, exc: FeatureError) -> JSONResponse:
    """Errors raised outside a pipeline (e.g. unknown route) use the same envelope."""
    return envelope_response(
        ResponseEnvelope.fail(exc.public_message, exc.status_code, headers=exc.headers)
    )


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Root endpoint with service info."""
    return {
        "service": settings.service_name,
        "version": __version__,
        "status": "running",
    }


@app.get("/health", tags=["health"])
async def health_check(registry: FeatureRegistry = Depends(get_registry)) -> dict[str, Any]:
    """Health check endpoint with registered feature count."""
    return {
        "status": "healthy",
        "environment": settings.environment,
        "features": len(registry),
    }


@app.get("/features", tags=["catalog"])
async def list_features(registry: FeatureRegistry = Depends(get_registry)) -> dict[str, Any]:
    """Catalog of registered features for UI and prompt discovery."""
    manifests = sorted(registry.manifests(), key=lambda m: m.id)
    return {
        "features": [manifest.to_catalog_entry() for manifest in manifests],
    }


@app.api_route("/{path:path}", methods=["GET", "POST"], tags=["features"])
async def dispatch_feature(
    path: str,
    request: Request,
    registry: FeatureRegistry = Depends(get_registry),
) -> JSONResponse:
    """Run the feature registered for this method and path."""
    pipeline, test_mode = registry.resolve(request.method, request.url.path)

    feature_request = FeatureRequest(
        method=request.method,
        path=request.url.path,
        query=dict(request.query_params),
        body=await request.body() if request.method == "POST" else None,
        headers=dict(request.headers),
        client_ip=request.client.host if request.client else "",
    )
    envelope = await pipeline.handle(feature_request, test_mode=test_mode)
    return envelope_response(envelope)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "featurehost.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
