"""Client-facing error taxonomy.

Every rejection the handler can produce is an :class:`ImageGateError`
subclass carrying its HTTP status, a short public message and any extra
response headers.  One exception handler in :mod:`imagegate.api.main`
renders them as ``{"error": message}``.

Messages are fixed strings; nothing from parsers or backends is ever copied
into them.
"""

from __future__ import annotations

ALLOWED_METHODS = "POST, OPTIONS"


class ImageGateError(Exception):
    """Base class for errors returned to the caller."""

    status_code: int = 500
    message: str = "Internal error"

    def __init__(self, message: str | None = None, headers: dict[str, str] | None = None) -> None:
        self.message = message or self.message
        self.headers: dict[str, str] = dict(headers or {})
        super().__init__(self.message)


class MethodNotAllowed(ImageGateError):
    status_code = 405
    message = "Method not allowed"

    def __init__(self) -> None:
        super().__init__(headers={"Allow": ALLOWED_METHODS})


class Unauthorized(ImageGateError):
    """Missing, malformed or wrong bearer token."""

    status_code = 401
    message = "Unauthorized"

    def __init__(self, challenge: str = "Bearer") -> None:
        super().__init__(headers={"WWW-Authenticate": challenge})


class UnsupportedMediaType(ImageGateError):
    status_code = 415
    message = "Unsupported Media Type, expected application/json"


class InvalidBody(ImageGateError):
    status_code = 400
    message = "Invalid JSON body"


class PromptMissingOrEmpty(ImageGateError):
    status_code = 400
    message = "Prompt is required"


class PromptTooLong(ImageGateError):
    status_code = 413
    message = "Prompt is too long"

    def __init__(self, max_length: int) -> None:
        super().__init__(f"Prompt exceeds {max_length} characters")


class GenerationFailed(ImageGateError):
    """Any backend failure, collapsed so no internals reach the caller."""

    status_code = 500
    message = "Failed to generate image"
