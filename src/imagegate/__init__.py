"""imagegate - authenticated text-to-image gateway."""

__version__ = "0.1.0"

from imagegate.core.config import ImageGateConfig, config
from imagegate.core.dimensions import ResolvedDimensions, parse_aspect_ratio, resolve_dimensions

__all__ = [
    "ImageGateConfig",
    "ResolvedDimensions",
    "config",
    "parse_aspect_ratio",
    "resolve_dimensions",
]
