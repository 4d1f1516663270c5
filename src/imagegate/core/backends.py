"""Image generation backend interface and selection.

A backend is the collaborator that actually produces pixels.  The request
handler only relies on the small async interface below, so the hosted
Workers AI binding and the local diffusers pipeline are interchangeable.

Backends
--------
``workers-ai``
    :class:`~imagegate.core.workers_ai.WorkersAIBackend`: Cloudflare Workers
    AI over its REST API.
``diffusers``
    :class:`~imagegate.core.model_manager.DiffusersBackend`: a local
    HuggingFace diffusers pipeline managed by
    :class:`~imagegate.core.model_manager.ModelManager`.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from imagegate.core.config import ImageGateConfig

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Raised by a backend when an image could not be produced.

    The message may contain upstream details.  It is logged, never returned
    to the caller.
    """


@runtime_checkable
class ImageBackend(Protocol):
    """Interface every generation backend implements."""

    async def generate(self, model_id: str, *, prompt: str, width: int, height: int) -> bytes:
        """Return encoded image bytes for *prompt* at ``width`` x ``height``."""
        ...

    async def aclose(self) -> None:
        """Release network clients, pipelines, or GPU memory."""
        ...


def create_backend(config: ImageGateConfig) -> ImageBackend:
    """Instantiate the backend named by ``config.backend``.

    Imports are local so the diffusers stack is only touched when selected.

    Raises:
        ValueError: If the backend name is unknown.
    """
    if config.backend == "workers-ai":
        from imagegate.core.workers_ai import WorkersAIBackend

        backend: ImageBackend = WorkersAIBackend.from_config(config)
    elif config.backend == "diffusers":
        from imagegate.core.model_manager import DiffusersBackend

        backend = DiffusersBackend(config)
    else:
        raise ValueError(f"Unknown backend: {config.backend}")

    logger.info("Using '%s' image backend.", config.backend)
    return backend
