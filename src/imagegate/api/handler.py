"""The image request handler.

:class:`ImageRequestHandler` runs every request through the same linear
sequence:

1. Pre-flight ``OPTIONS`` short-circuits with 204.
2. Access gate: method/path, then bearer token (no body read yet).
3. Request validation: content type, JSON body, prompt, model.
4. Dimension resolution.
5. One backend call; its bytes become the response body.

The handler holds only immutable configuration and the backend reference, so
one instance serves any number of concurrent requests.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import Request, Response

from imagegate.api import access
from imagegate.api.errors import GenerationFailed
from imagegate.api.models import ImageRequest
from imagegate.api.validation import (
    build_image_request,
    parse_json_body,
    require_json_content_type,
)
from imagegate.core.backends import ImageBackend
from imagegate.core.config import ImageGateConfig
from imagegate.core.dimensions import ResolvedDimensions, resolve_dimensions

logger = logging.getLogger(__name__)


class ImageRequestHandler:
    """Authenticate, validate, size and forward one image request."""

    def __init__(self, config: ImageGateConfig, backend: ImageBackend) -> None:
        self._config = config
        self._backend = backend
        self._secret = config.api_key.get_secret_value()

    async def handle(self, request: Request) -> Response:
        if access.is_preflight(request.method):
            return Response(status_code=204)

        access.check_route(request.method, request.url.path)
        access.authenticate(request.headers.get("authorization"), self._secret)

        require_json_content_type(request.headers.get("content-type"))
        body = parse_json_body(await request.body())
        image_request = build_image_request(body, self._config)

        dims = self.resolve(image_request)
        image = await self._invoke_backend(image_request, dims)

        return Response(
            content=image,
            media_type="image/png",
            headers={
                "Cache-Control": "no-store",
                "Content-Disposition": f'inline; filename="image-{dims.width}x{dims.height}.png"',
            },
        )

    def resolve(self, image_request: ImageRequest) -> ResolvedDimensions:
        """Apply the configured dimension policy to *image_request*."""
        cfg = self._config
        return resolve_dimensions(
            image_request.width,
            image_request.height,
            image_request.aspect_ratio,
            image_request.long_edge,
            min_dim=cfg.min_dimension,
            max_dim=cfg.max_dimension,
            alignment=cfg.alignment,
            default_dim=cfg.default_dimension,
            default_long_edge=cfg.default_long_edge,
        )

    async def _invoke_backend(self, image_request: ImageRequest, dims: ResolvedDimensions) -> bytes:
        try:
            image = await asyncio.wait_for(
                self._backend.generate(
                    image_request.model,
                    prompt=image_request.prompt,
                    width=dims.width,
                    height=dims.height,
                ),
                timeout=self._config.generation_timeout,
            )
        except asyncio.CancelledError:
            logger.warning("Generation with '%s' cancelled before completion.", image_request.model)
            raise
        except Exception as exc:
            logger.exception("Generation with '%s' failed.", image_request.model)
            raise GenerationFailed() from exc

        if not image:
            logger.error("Backend returned no image data for '%s'.", image_request.model)
            raise GenerationFailed()

        logger.info(
            "Generated %dx%d image with '%s' (%d bytes).",
            dims.width,
            dims.height,
            image_request.model,
            len(image),
        )
        return image
