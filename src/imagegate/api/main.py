"""imagegate — FastAPI application.

This module defines the application factory, the module-level ``app``
instance served by uvicorn, and the ``main()`` CLI function.

Architecture
------------
The service exposes exactly one operation and is stateless:

- **Configuration** comes from :class:`~imagegate.core.config.ImageGateConfig`
  (``IMAGEGATE_*`` environment variables), passed to the handler at
  construction.
- **Image generation** is delegated to a backend selected by
  :func:`~imagegate.core.backends.create_backend`, created on startup and
  closed on shutdown.
- **Routing** is a single catch-all route.  Every method and path reaches
  :class:`~imagegate.api.handler.ImageRequestHandler`, which answers 405 for
  anything but ``POST /`` and 204 for pre-flight requests.  The OpenAPI and
  docs routes are disabled so they cannot shadow that rule.
- **Response headers** (CORS and security headers) are stamped on every
  response, errors included, by one HTTP middleware.

Endpoints
---------
========  ========  ==========================================
Method    Path      Purpose
========  ========  ==========================================
POST      ``/``     Generate one image and return it as PNG
OPTIONS   any       CORS pre-flight (204, no body)
other     any       405 with ``Allow: POST, OPTIONS``
========  ========  ==========================================

Usage
-----
CLI (installed entry point)::

    imagegate

Direct invocation::

    python -m imagegate.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from imagegate import __version__
from imagegate.api.errors import ALLOWED_METHODS, ImageGateError
from imagegate.api.handler import ImageRequestHandler
from imagegate.core.backends import ImageBackend, create_backend
from imagegate.core.config import ImageGateConfig
from imagegate.core.config import config as default_config

logger = logging.getLogger(__name__)

# Every method is routed to the handler so that it, not the router, decides
# between 204, 405 and the real work.
ROUTED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"]

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "X-Frame-Options": "DENY",
}


def cors_headers(allow_origin: str) -> dict[str, str]:
    """Return the CORS headers attached to every response."""
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": "Authorization, Content-Type",
        "Access-Control-Max-Age": "600",
    }


# ---------------------------------------------------------------------------
# Application lifecycle: backend setup and teardown.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the backend on startup (unless one was injected) and close it on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    owned: ImageBackend | None = None
    if app.state.handler is None:
        owned = create_backend(app.state.config)
        app.state.handler = ImageRequestHandler(app.state.config, owned)
    if not app.state.config.api_key.get_secret_value():
        logger.warning("IMAGEGATE_API_KEY is not set; every request will be rejected.")

    yield

    if owned is not None:
        await owned.aclose()
        app.state.handler = None
        logger.info("Image backend closed on shutdown.")


async def _render_error(request: Request, exc: ImageGateError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=exc.headers)


def create_app(config: ImageGateConfig | None = None, backend: ImageBackend | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Service configuration.  Defaults to the global instance
            loaded from the environment.
        backend: Generation backend to use.  When omitted, one is created
            from *config* on startup and closed on shutdown.

    Returns:
        The configured application.
    """
    if config is None:
        config = default_config

    app = FastAPI(
        title="imagegate",
        description="Authenticated text-to-image gateway.",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.handler = ImageRequestHandler(config, backend) if backend is not None else None

    extra_headers = {**cors_headers(config.cors_allow_origin), **SECURITY_HEADERS}

    @app.middleware("http")
    async def add_response_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(extra_headers)
        return response

    app.add_exception_handler(ImageGateError, _render_error)

    @app.api_route("/{path:path}", methods=ROUTED_METHODS, include_in_schema=False)
    async def image_endpoint(request: Request) -> Response:
        handler: ImageRequestHandler = request.app.state.handler
        return await handler.handle(request)

    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from
    :data:`~imagegate.core.config.config` (``IMAGEGATE_SERVER_HOST``,
    ``IMAGEGATE_SERVER_PORT``, ``IMAGEGATE_LOG_LEVEL``).

    This function is registered as the ``imagegate`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=default_config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "imagegate.api.main:app",
        host=default_config.server_host,
        port=default_config.server_port,
        log_level=default_config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
