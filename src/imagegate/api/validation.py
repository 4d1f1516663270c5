"""Request validation: content type, JSON body, prompt and model selection."""

from __future__ import annotations

import json
import logging
from typing import Any

from imagegate.api.errors import (
    InvalidBody,
    PromptMissingOrEmpty,
    PromptTooLong,
    UnsupportedMediaType,
)
from imagegate.api.models import ImageRequest
from imagegate.core.config import ImageGateConfig

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"


def require_json_content_type(content_type: str | None) -> None:
    """Raise :class:`UnsupportedMediaType` unless the header names JSON.

    Parameters such as ``; charset=utf-8`` are allowed; matching is a
    case-insensitive substring test.
    """
    if JSON_MEDIA_TYPE not in (content_type or "").lower():
        raise UnsupportedMediaType()


def parse_json_body(raw: bytes) -> dict[str, Any]:
    """Decode the request body as a JSON object.

    Raises:
        InvalidBody: If the body is not valid UTF-8 JSON or is not an object.
            Decoder messages are not propagated.
    """
    try:
        body = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        logger.debug("Rejected request body: %s", exc)
        raise InvalidBody() from None
    if not isinstance(body, dict):
        raise InvalidBody()
    return body


def validate_prompt(value: Any, max_length: int = 800) -> str:
    """Return the trimmed prompt.

    Raises:
        PromptMissingOrEmpty: If *value* is not a string or is blank.
        PromptTooLong: If the trimmed prompt exceeds *max_length* characters.
    """
    if not isinstance(value, str):
        raise PromptMissingOrEmpty()
    prompt = value.strip()
    if not prompt:
        raise PromptMissingOrEmpty()
    if len(prompt) > max_length:
        raise PromptTooLong(max_length)
    return prompt


def select_model(value: Any, allowed_models: tuple[str, ...], default_model: str) -> str:
    """Return *value* if it is allow-listed, else *default_model*.

    Unknown identifiers are replaced silently: they never reach the backend
    and the caller gets no error.
    """
    if isinstance(value, str) and value in allowed_models:
        return value
    if value is not None:
        logger.warning("Replacing non-allow-listed model %r with '%s'.", str(value)[:100], default_model)
    return default_model


def build_image_request(body: dict[str, Any], config: ImageGateConfig) -> ImageRequest:
    """Validate a decoded body into an :class:`ImageRequest`."""
    prompt = validate_prompt(body.get("prompt"), config.max_prompt_length)
    model = select_model(body.get("model"), config.allowed_models, config.default_model)
    return ImageRequest(
        prompt=prompt,
        model=model,
        width=body.get("width"),
        height=body.get("height"),
        aspect_ratio=body.get("aspectRatio"),
        long_edge=body.get("longEdge"),
    )
