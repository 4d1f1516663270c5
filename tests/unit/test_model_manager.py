"""Tests for imagegate.core.model_manager — the local diffusers backend.

All tests use mocked torch and diffusers imports so that no real model
loading or GPU access occurs.  Tests cover:

- Initial state (no model loaded).
- Model loading, switching, and failure cleanup.
- Distilled (turbo/lightning) model guidance enforcement.
- PNG encoding and the async DiffusersBackend wrapper.
- Unload safety (no-op when nothing loaded).

Implementation Note
-------------------
``ModelManager.load_model()`` and ``generate()`` import ``torch`` and
``diffusers`` lazily inside the method body.  To mock these we use
``sys.modules`` injection rather than ``@patch`` decorators, since the
module-level names don't exist until the import statement executes.
"""

from __future__ import annotations

import asyncio
import io
import sys
import time
from unittest.mock import MagicMock

import pytest
from PIL import Image

from imagegate.core.backends import BackendError
from imagegate.core.config import ImageGateConfig
from imagegate.core.model_manager import DiffusersBackend, ModelManager, encode_png

# ---------------------------------------------------------------------------
# Shared helpers for mocking torch and diffusers.
# ---------------------------------------------------------------------------


def _create_mock_torch() -> MagicMock:
    """Create a mock ``torch`` module with the attributes ModelManager uses."""
    mock_torch = MagicMock()
    mock_torch.bfloat16 = "mock_bfloat16"
    mock_torch.float16 = "mock_float16"
    mock_torch.float32 = "mock_float32"

    mock_generator = MagicMock()
    mock_generator.manual_seed.return_value = mock_generator
    mock_torch.Generator.return_value = mock_generator

    mock_torch.cuda.is_available.return_value = False
    return mock_torch


def _create_mock_pipeline():
    """Create a mock diffusers pipeline that returns a 64x64 red image.

    Returns:
        Tuple of (pipeline_instance, AutoPipelineForText2Image_class).
    """
    mock_pipeline = MagicMock()
    mock_output = MagicMock()
    mock_output.images = [Image.new("RGB", (64, 64), color=(255, 0, 0))]
    mock_pipeline.return_value = mock_output
    mock_pipeline.to.return_value = mock_pipeline

    mock_auto_class = MagicMock()
    mock_auto_class.from_pretrained.return_value = mock_pipeline

    return mock_pipeline, mock_auto_class


class _MockContext:
    """Context manager that injects mock torch and diffusers into sys.modules."""

    def __init__(self):
        self.mock_torch = _create_mock_torch()
        self.mock_pipeline, self.mock_auto_class = _create_mock_pipeline()
        self.mock_diffusers = MagicMock()
        self.mock_diffusers.AutoPipelineForText2Image = self.mock_auto_class
        self._saved: dict[str, object] = {}

    def __enter__(self):
        import imagegate.core.model_manager as mm

        mm._DTYPE_MAP = None
        for name, module in (("torch", self.mock_torch), ("diffusers", self.mock_diffusers)):
            self._saved[name] = sys.modules.get(name)
            sys.modules[name] = module
        return self

    def __exit__(self, *args):
        for name, saved in self._saved.items():
            if saved is not None:
                sys.modules[name] = saved
            else:
                sys.modules.pop(name, None)

        import imagegate.core.model_manager as mm

        mm._DTYPE_MAP = None


@pytest.fixture
def local_config() -> ImageGateConfig:
    return ImageGateConfig(
        _env_file=None,
        backend="diffusers",
        device="cpu",
        torch_dtype="float32",
        num_inference_steps=4,
        guidance_scale=7.5,
        allowed_models=("stabilityai/sdxl-turbo", "stabilityai/stable-diffusion-xl-base-1.0"),
        default_model="stabilityai/sdxl-turbo",
    )


# ---------------------------------------------------------------------------
# Tests.
# ---------------------------------------------------------------------------


class TestModelManagerInit:
    """Test ModelManager initial state."""

    def test_no_model_loaded_initially(self, local_config: ImageGateConfig):
        mgr = ModelManager(local_config)
        assert mgr.is_loaded is False
        assert mgr.current_model_id is None


class TestModelLoading:
    """Test model loading behaviour."""

    def test_load_model_sets_state(self, local_config: ImageGateConfig):
        with _MockContext() as ctx:
            mgr = ModelManager(local_config)
            mgr.load_model("stabilityai/sdxl-turbo")

            assert mgr.is_loaded is True
            assert mgr.current_model_id == "stabilityai/sdxl-turbo"
            ctx.mock_pipeline.to.assert_called_once_with("cpu")

    def test_load_uses_configured_dtype_and_cache(self, local_config: ImageGateConfig):
        with _MockContext() as ctx:
            ModelManager(local_config).load_model("some/model")

            kwargs = ctx.mock_auto_class.from_pretrained.call_args[1]
            assert kwargs["torch_dtype"] == "mock_float32"
            assert kwargs["cache_dir"] == str(local_config.models_dir)

    def test_load_same_model_is_noop(self, local_config: ImageGateConfig):
        with _MockContext() as ctx:
            mgr = ModelManager(local_config)
            mgr.load_model("stabilityai/sdxl-turbo")
            mgr.load_model("stabilityai/sdxl-turbo")

            assert ctx.mock_auto_class.from_pretrained.call_count == 1

    def test_switching_unloads_previous(self, local_config: ImageGateConfig):
        with _MockContext() as ctx:
            mgr = ModelManager(local_config)
            mgr.load_model("model-a")
            mgr.load_model("model-b")

            assert mgr.current_model_id == "model-b"
            assert ctx.mock_auto_class.from_pretrained.call_count == 2

    def test_load_failure_clears_state(self, local_config: ImageGateConfig):
        with _MockContext() as ctx:
            ctx.mock_auto_class.from_pretrained.side_effect = RuntimeError("Out of memory")
            mgr = ModelManager(local_config)

            with pytest.raises(RuntimeError, match="Out of memory"):
                mgr.load_model("some/model")

            assert mgr.is_loaded is False
            assert mgr.current_model_id is None


class TestGeneration:
    """Test image generation."""

    def test_generate_without_model_raises(self, local_config: ImageGateConfig):
        mgr = ModelManager(local_config)
        with pytest.raises(RuntimeError, match="No model is loaded"):
            mgr.generate(prompt="test", width=512, height=512, steps=4, guidance_scale=0.0, seed=42)

    def test_generate_passes_dimensions(self, local_config: ImageGateConfig):
        with _MockContext() as ctx:
            mgr = ModelManager(local_config)
            mgr.load_model("stabilityai/stable-diffusion-xl-base-1.0")

            image = mgr.generate(prompt="a fox", width=1024, height=576, steps=20, guidance_scale=7.5, seed=1)

            assert isinstance(image, Image.Image)
            kwargs = ctx.mock_pipeline.call_args[1]
            assert kwargs["width"] == 1024
            assert kwargs["height"] == 576
            assert kwargs["num_inference_steps"] == 20
            assert kwargs["guidance_scale"] == 7.5
            ctx.mock_torch.Generator.return_value.manual_seed.assert_called_with(1)

    @pytest.mark.parametrize("model_id", ["stabilityai/sdxl-turbo", "ByteDance/SDXL-Lightning", "some/TURBO-MODEL"])
    def test_distilled_models_force_guidance_zero(self, local_config: ImageGateConfig, model_id):
        with _MockContext() as ctx:
            mgr = ModelManager(local_config)
            mgr.load_model(model_id)
            mgr.generate(prompt="test", width=512, height=512, steps=4, guidance_scale=7.5, seed=42)

            assert ctx.mock_pipeline.call_args[1]["guidance_scale"] == 0.0


class TestUnload:
    """Test model unloading and cleanup."""

    def test_unload_noop_when_empty(self, local_config: ImageGateConfig):
        mgr = ModelManager(local_config)
        mgr.unload()
        assert mgr.is_loaded is False

    def test_unload_clears_state(self, local_config: ImageGateConfig):
        with _MockContext():
            mgr = ModelManager(local_config)
            mgr.load_model("test/model")
            mgr.unload()

            assert mgr.is_loaded is False
            assert mgr.current_model_id is None


class TestEncodePng:
    """Test PNG encoding."""

    def test_round_trips_through_pillow(self):
        data = encode_png(Image.new("RGB", (32, 16), color=(0, 0, 255)))
        assert data.startswith(b"\x89PNG")
        assert Image.open(io.BytesIO(data)).size == (32, 16)


class TestDiffusersBackend:
    """Test the async DiffusersBackend wrapper."""

    def test_generate_returns_png(self, local_config: ImageGateConfig):
        with _MockContext() as ctx:
            backend = DiffusersBackend(local_config)
            data = asyncio.run(
                backend.generate("stabilityai/sdxl-turbo", prompt="a fox", width=512, height=256)
            )

            assert data.startswith(b"\x89PNG")
            kwargs = ctx.mock_pipeline.call_args[1]
            assert kwargs["prompt"] == "a fox"
            assert kwargs["num_inference_steps"] == 4
            asyncio.run(backend.aclose())

    def test_failures_become_backend_error(self, local_config: ImageGateConfig):
        with _MockContext() as ctx:
            ctx.mock_auto_class.from_pretrained.side_effect = OSError("not found")
            backend = DiffusersBackend(local_config)

            with pytest.raises(BackendError, match="not found"):
                asyncio.run(backend.generate("missing/model", prompt="p", width=512, height=512))

    def test_abandoned_calls_are_skipped(self, local_config: ImageGateConfig):
        """Calls whose caller timed out while queued never reach the pipeline."""

        class SlowManager:
            def __init__(self):
                self.calls = 0

            def load_model(self, model_id):
                pass

            def generate(self, **kwargs):
                self.calls += 1
                time.sleep(0.3)
                return Image.new("RGB", (8, 8))

            def unload(self):
                pass

        manager = SlowManager()
        backend = DiffusersBackend(local_config, manager=manager)

        async def run():
            for _ in range(3):
                with pytest.raises(asyncio.TimeoutError):
                    await asyncio.wait_for(
                        backend.generate("some/model", prompt="p", width=512, height=512),
                        timeout=0.05,
                    )
            # Let the running call finish and the queued ones reach the lock.
            await asyncio.sleep(0.8)

        asyncio.run(run())
        assert manager.calls <= 1

    def test_completed_call_is_not_marked_abandoned(self, local_config: ImageGateConfig):
        with _MockContext():
            backend = DiffusersBackend(local_config)

            async def run():
                first = await backend.generate("stabilityai/sdxl-turbo", prompt="a", width=64, height=64)
                second = await backend.generate("stabilityai/sdxl-turbo", prompt="b", width=64, height=64)
                return first, second

            first, second = asyncio.run(run())
            assert first.startswith(b"\x89PNG")
            assert second.startswith(b"\x89PNG")
