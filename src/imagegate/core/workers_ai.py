"""Cloudflare Workers AI text-to-image client.

Posts ``{prompt, width, height}`` to the Workers AI REST endpoint
``{api_base}/accounts/{account_id}/ai/run/{model_id}`` and returns the encoded
image.

Response formats
----------------
- Stable Diffusion models answer with raw ``image/png`` bytes.
- FLUX models answer with JSON ``{"result": {"image": "<base64>"}, ...}``.

Both are normalized to bytes.  Anything else (non-2xx status, JSON without an
image, an empty body) raises :class:`~imagegate.core.backends.BackendError`.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

import httpx

from imagegate.core.backends import BackendError
from imagegate.core.config import ImageGateConfig

logger = logging.getLogger(__name__)


class WorkersAIBackend:
    """Async client for Workers AI image models."""

    def __init__(
        self,
        *,
        account_id: str,
        api_token: str,
        api_base: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._account_id = account_id
        self._base_url = f"{api_base.rstrip('/')}/accounts/{account_id}/ai/run"
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_token}"},
            transport=transport,
        )
        if not account_id or not api_token:
            logger.warning("Workers AI account id or API token is empty; generation will fail.")

    @classmethod
    def from_config(cls, config: ImageGateConfig, **kwargs: Any) -> "WorkersAIBackend":
        return cls(
            account_id=config.cloudflare_account_id,
            api_token=config.cloudflare_api_token.get_secret_value(),
            api_base=config.cloudflare_api_base,
            timeout=config.generation_timeout,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(self, model_id: str, *, prompt: str, width: int, height: int) -> bytes:
        """Run *model_id* and return the encoded image.

        Raises:
            BackendError: On transport failure, a non-2xx answer, or a
                response without image data.
        """
        url = f"{self._base_url}/{model_id}"
        payload = {"prompt": prompt, "width": width, "height": height}

        try:
            resp = await self._client.post(url, json=payload)
        except httpx.TimeoutException as exc:
            raise BackendError(f"Workers AI request timed out for {model_id}") from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Workers AI request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise BackendError(f"Workers AI error {resp.status_code}: {resp.text[:500]}")

        content_type = resp.headers.get("content-type", "").lower()
        if "application/json" in content_type:
            image = self._decode_json_image(resp)
        else:
            image = resp.content

        if not image:
            raise BackendError(f"Workers AI returned an empty image for {model_id}")
        return image

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _decode_json_image(resp: httpx.Response) -> bytes:
        try:
            data = resp.json()
        except ValueError as exc:
            raise BackendError("Workers AI returned malformed JSON") from exc

        if not isinstance(data, dict):
            raise BackendError("Workers AI returned an unexpected JSON document")
        if data.get("success") is False:
            raise BackendError(f"Workers AI reported failure: {data.get('errors')}")

        result = data.get("result")
        encoded = result.get("image") if isinstance(result, dict) else None
        if not isinstance(encoded, str):
            raise BackendError("Workers AI JSON response carried no image")

        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise BackendError("Workers AI image was not valid base64") from exc
