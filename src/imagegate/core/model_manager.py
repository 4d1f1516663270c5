"""Local diffusers backend for imagegate.

This module provides :class:`ModelManager`, which loads, switches and invokes
HuggingFace diffusers pipelines, and :class:`DiffusersBackend`, which exposes
it through the async backend interface used by the request handler.

Key Responsibilities
--------------------
- **Lazy model loading** — a pipeline is only loaded when the first request
  for its model arrives.
- **Model switching** — when a different model is requested the current
  pipeline is unloaded and CUDA memory is freed before loading the new one.
- **Turbo-model enforcement** — models whose identifier contains ``"turbo"``
  or ``"lightning"`` (case-insensitive) have ``guidance_scale`` forced to 0.0.
- **PNG encoding** — pipeline output is encoded with Pillow so the handler
  always receives ``image/png`` bytes.
- **Serialised access** — the pipeline is not re-entrant, so calls are run in
  a worker thread one at a time.  Queued calls whose caller has gone are
  skipped.

With this backend the allow-list holds HuggingFace identifiers, e.g.::

    IMAGEGATE_BACKEND=diffusers
    IMAGEGATE_ALLOWED_MODELS='["stabilityai/sdxl-turbo"]'
    IMAGEGATE_DEFAULT_MODEL=stabilityai/sdxl-turbo

See Also
--------
- :mod:`imagegate.core.config` — device, dtype and inference settings.
- :mod:`imagegate.core.backends` — the backend interface.
"""

from __future__ import annotations

import asyncio
import gc
import io
import logging
import random
import threading

from PIL import Image
from starlette.concurrency import run_in_threadpool

from imagegate.core.backends import BackendError
from imagegate.core.config import ImageGateConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Dtype string → torch dtype mapping, built on first use so that ``torch`` is
# not imported at module level.
# ---------------------------------------------------------------------------
_DTYPE_MAP: dict | None = None

_DISTILLED_MARKERS = ("turbo", "lightning")


def _get_dtype_map() -> dict:
    """Return the dtype string → ``torch.dtype`` mapping.

    Returns:
        Dictionary mapping ``"bfloat16"``, ``"float16"``, and ``"float32"``
        to their corresponding ``torch.dtype`` values.
    """
    global _DTYPE_MAP
    if _DTYPE_MAP is None:
        import torch

        _DTYPE_MAP = {
            "bfloat16": torch.bfloat16,
            "float16": torch.float16,
            "float32": torch.float32,
        }
    return _DTYPE_MAP


class ModelManager:
    """Manages the lifecycle of a single diffusers pipeline.

    At any given time, at most one pipeline is loaded.  When a different
    model is requested the current pipeline is unloaded first.

    Attributes:
        _config (ImageGateConfig):
            Application configuration — device, dtype, cache directory and
            inference defaults.
        _pipeline:
            The currently loaded diffusers pipeline, or ``None``.
        _current_model_id (str | None):
            HuggingFace identifier of the loaded model, or ``None``.
    """

    def __init__(self, config: ImageGateConfig) -> None:
        self._config = config
        self._pipeline = None
        self._current_model_id: str | None = None

    # -- Public interface ---------------------------------------------------

    def load_model(self, hf_id: str) -> None:
        """Load a diffusers pipeline by HuggingFace model identifier.

        No-op when *hf_id* is already loaded; any other loaded model is
        unloaded first.

        Args:
            hf_id: HuggingFace model identifier, e.g.
                ``"stabilityai/stable-diffusion-xl-base-1.0"``.

        Raises:
            Exception: Whatever diffusers raises (network error, out of
                memory, incompatible model).  State is reset before re-raising.
        """
        if self._current_model_id == hf_id and self._pipeline is not None:
            logger.debug("Model '%s' is already loaded — skipping.", hf_id)
            return

        if self._pipeline is not None:
            logger.info(
                "Switching from '%s' to '%s' — unloading current model.",
                self._current_model_id,
                hf_id,
            )
            self.unload()

        import torch
        from diffusers import AutoPipelineForText2Image

        torch_dtype = _get_dtype_map().get(self._config.torch_dtype, torch.float16)

        logger.info(
            "Loading model '%s' (dtype=%s, device=%s, cache=%s).",
            hf_id,
            self._config.torch_dtype,
            self._config.device,
            self._config.models_dir,
        )

        try:
            pipeline = AutoPipelineForText2Image.from_pretrained(
                hf_id,
                torch_dtype=torch_dtype,
                cache_dir=str(self._config.models_dir),
            )
            pipeline = pipeline.to(self._config.device)

            self._pipeline = pipeline
            self._current_model_id = hf_id
            logger.info("Model '%s' loaded successfully.", hf_id)

        except Exception:
            # Never leave a half-loaded pipeline behind.
            self._pipeline = None
            self._current_model_id = None
            logger.exception("Failed to load model '%s'.", hf_id)
            raise

    def generate(
        self,
        prompt: str,
        width: int,
        height: int,
        steps: int,
        guidance_scale: float,
        seed: int,
    ) -> Image.Image:
        """Generate a single image using the currently loaded pipeline.

        Raises:
            RuntimeError: If no model is currently loaded.
        """
        if self._pipeline is None:
            raise RuntimeError("No model is loaded.  Call load_model(hf_id) before generate().")

        import torch

        model_id = (self._current_model_id or "").lower()
        if guidance_scale != 0.0 and any(marker in model_id for marker in _DISTILLED_MARKERS):
            logger.warning(
                "Distilled model detected ('%s') — forcing guidance_scale from %.1f to 0.0.",
                self._current_model_id,
                guidance_scale,
            )
            guidance_scale = 0.0

        generator = torch.Generator(device=self._config.device).manual_seed(seed)

        logger.info(
            "Generating image: %dx%d, %d steps, guidance=%.1f, seed=%d.",
            width,
            height,
            steps,
            guidance_scale,
            seed,
        )

        output = self._pipeline(
            prompt=prompt,
            width=width,
            height=height,
            num_inference_steps=steps,
            guidance_scale=guidance_scale,
            generator=generator,
        )
        return output.images[0]

    def unload(self) -> None:
        """Unload the current model and free GPU memory.  Safe when empty."""
        if self._pipeline is None:
            return

        model_id = self._current_model_id
        logger.info("Unloading model '%s'.", model_id)

        del self._pipeline
        self._pipeline = None
        self._current_model_id = None

        gc.collect()

        try:
            import torch

            if torch.cuda.is_available():
                torch.cuda.empty_cache()
                torch.cuda.synchronize()
                logger.info("CUDA cache cleared after unloading '%s'.", model_id)
        except ImportError:
            pass

    # -- Properties ---------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        """Whether a model pipeline is currently loaded in memory."""
        return self._pipeline is not None

    @property
    def current_model_id(self) -> str | None:
        """HuggingFace ID of the currently loaded model, or ``None``."""
        return self._current_model_id


def encode_png(image: Image.Image) -> bytes:
    """Encode a PIL image as PNG bytes."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class DiffusersBackend:
    """Async backend adapter around :class:`ModelManager`.

    Calls are queued on a lock because the pipeline is not re-entrant.  A
    caller that gives up (timeout or disconnect) marks its queued call as
    abandoned, and the worker thread skips it once it reaches the lock.  A
    generation already running on the GPU cannot be interrupted.
    """

    def __init__(self, config: ImageGateConfig, manager: ModelManager | None = None) -> None:
        self._config = config
        self._manager = manager or ModelManager(config)
        self._lock = threading.Lock()

    async def generate(self, model_id: str, *, prompt: str, width: int, height: int) -> bytes:
        abandoned = threading.Event()
        try:
            return await run_in_threadpool(self._generate_sync, model_id, prompt, width, height, abandoned)
        except asyncio.CancelledError:
            abandoned.set()
            raise

    async def aclose(self) -> None:
        await run_in_threadpool(self._unload_sync)

    def _generate_sync(
        self,
        model_id: str,
        prompt: str,
        width: int,
        height: int,
        abandoned: threading.Event,
    ) -> bytes:
        with self._lock:
            if abandoned.is_set():
                logger.info("Skipping abandoned generation with '%s'.", model_id)
                raise BackendError(f"Generation with '{model_id}' abandoned by caller")
            try:
                self._manager.load_model(model_id)
                image = self._manager.generate(
                    prompt=prompt,
                    width=width,
                    height=height,
                    steps=self._config.num_inference_steps,
                    guidance_scale=self._config.guidance_scale,
                    seed=random.randint(0, 2**32 - 1),
                )
                return encode_png(image)
            except Exception as exc:
                raise BackendError(f"Local generation with '{model_id}' failed: {exc}") from exc

    def _unload_sync(self) -> None:
        with self._lock:
            self._manager.unload()
