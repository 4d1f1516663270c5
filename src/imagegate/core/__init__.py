"""Core components: configuration, dimension resolution and generation backends."""

from imagegate.core.backends import BackendError, ImageBackend, create_backend
from imagegate.core.config import ImageGateConfig, config
from imagegate.core.dimensions import ResolvedDimensions, resolve_dimensions

__all__ = [
    "BackendError",
    "ImageBackend",
    "ImageGateConfig",
    "ResolvedDimensions",
    "config",
    "create_backend",
    "resolve_dimensions",
]
