"""Access gate: method/path filtering and bearer-token authentication.

Both checks run on request metadata only, before the body is read.  The
order is fixed: method and path first, then authentication, so callers
probing unsupported routes never reach the credential comparison.
"""

from __future__ import annotations

import hmac
import logging

from imagegate.api.errors import MethodNotAllowed, Unauthorized

logger = logging.getLogger(__name__)

ENDPOINT_PATH = "/"
ENDPOINT_METHOD = "POST"
PREFLIGHT_METHOD = "OPTIONS"


def is_preflight(method: str) -> bool:
    return method.upper() == PREFLIGHT_METHOD


def check_route(method: str, path: str) -> None:
    """Raise :class:`MethodNotAllowed` unless this is ``POST /``."""
    if method.upper() != ENDPOINT_METHOD or path != ENDPOINT_PATH:
        raise MethodNotAllowed()


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token of an ``Authorization: Bearer <token>`` header.

    The scheme is matched case-insensitively.

    Raises:
        Unauthorized: If the header is absent, uses another scheme, or
            carries no token.
    """
    if not authorization:
        raise Unauthorized()
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise Unauthorized('Bearer error="invalid_request"')
    return token


def verify_token(token: str, secret: str) -> None:
    """Compare *token* with *secret* in constant time.

    An empty *secret* never matches, so an unconfigured deployment rejects
    every caller.

    Raises:
        Unauthorized: On mismatch.
    """
    if not secret or not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        logger.warning("Rejected request with an invalid bearer token.")
        raise Unauthorized('Bearer error="invalid_token"')


def authenticate(authorization: str | None, secret: str) -> None:
    """Extract the bearer token from *authorization* and verify it."""
    verify_token(extract_bearer_token(authorization), secret)
