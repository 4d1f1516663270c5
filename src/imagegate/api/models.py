"""Pydantic request model for the image generation endpoint.

ImageRequest
    The validated payload of ``POST /``.  Built by
    :func:`imagegate.api.validation.build_image_request` once the prompt has
    been checked and the model resolved against the allow-list.

The sizing fields are deliberately untyped: callers may send numbers, numeric
strings or junk, and the dimension resolver decides what is usable rather
than failing the request.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ImageRequest(BaseModel):
    """Request body for ``POST /``.

    Attributes:
        prompt: Trimmed, non-empty prompt text.
        model: Allow-listed model identifier (the default model when the
            caller sent none or an unknown one).
        width: Requested width in pixels, if any.
        height: Requested height in pixels, if any.
        aspect_ratio: Width/height ratio such as ``"16:9"``, ``"4/3"`` or
            ``"1.5"`` (JSON key ``aspectRatio``).
        long_edge: Longer side in pixels when only a ratio is given (JSON
            key ``longEdge``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    prompt: str = Field(
        ...,
        description="Prompt text, 1-800 characters after trimming.",
    )
    model: str = Field(
        ...,
        description="Allow-listed backend model identifier.",
    )
    width: Any = Field(default=None, description="Requested width in pixels.")
    height: Any = Field(default=None, description="Requested height in pixels.")
    aspect_ratio: Any = Field(
        default=None,
        alias="aspectRatio",
        description="Aspect ratio as 'w:h', 'w/h' or a decimal.",
    )
    long_edge: Any = Field(
        default=None,
        alias="longEdge",
        description="Long edge in pixels used with aspectRatio (default 1024).",
    )
