"""Configuration management for the imagegate service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the IMAGEGATE_ prefix,
allowing deployment-specific values (the shared API key, the backend binding)
to be supplied without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (IMAGEGATE_* prefix)
2. .env file in the project root
3. Default values defined in ImageGateConfig

Example .env file:
    IMAGEGATE_API_KEY=change-me
    IMAGEGATE_BACKEND=workers-ai
    IMAGEGATE_CLOUDFLARE_ACCOUNT_ID=0123456789abcdef
    IMAGEGATE_CLOUDFLARE_API_TOKEN=...
    IMAGEGATE_ALLOWED_MODELS='["@cf/stabilityai/stable-diffusion-xl-base-1.0"]'

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The application factory accepts an explicit instance as well, which is how the
tests build isolated apps.

Usage Example
-------------
    from imagegate.core.config import config

    print(config.default_model)
    print(config.allowed_models)

    # Configuration is frozen after initialization
    # To change values, set environment variables and restart

Dimension Policy
----------------
Resolved image sizes are clamped to [min_dimension, max_dimension] and snapped
to a multiple of `alignment`.  The default alignment of 8 matches the latent
tiling of the Stable Diffusion family served by Workers AI; set it to 1 to
disable snapping.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MODEL = "@cf/stabilityai/stable-diffusion-xl-base-1.0"

DEFAULT_ALLOWED_MODELS: tuple[str, ...] = (
    DEFAULT_MODEL,
    "@cf/bytedance/stable-diffusion-xl-lightning",
    "@cf/lykon/dreamshaper-8-lcm",
    "@cf/black-forest-labs/flux-1-schnell",
)


class ImageGateConfig(BaseSettings):
    """Main configuration for the imagegate service.

    Values are loaded from environment variables with the IMAGEGATE_ prefix,
    with fallback to the defaults defined here.  Instances are frozen: the
    allow-list and the shared secret cannot change while the process runs.

    Attributes
    ----------
    Access Settings:
        api_key : SecretStr
            Shared bearer secret.  Empty means every request is rejected.
            Must not contain whitespace, which a bearer token cannot carry.
        cors_allow_origin : str
            Value of Access-Control-Allow-Origin on every response.

    Model Settings:
        allowed_models : tuple[str, ...]
            Model identifiers callers may request directly
        default_model : str
            Model used when the request names none or an unknown one

    Dimension Settings:
        min_dimension / max_dimension : int
            Inclusive clamp range for both sides
        default_dimension : int
            Fallback for a side that could not be resolved
        default_long_edge : int
            Long edge used when only an aspect ratio is given
        alignment : int
            Both sides are snapped to a multiple of this (1 disables)
        max_prompt_length : int
            Longest accepted prompt after trimming

    Backend Settings:
        backend : Literal["workers-ai", "diffusers"]
            Which generation collaborator to bind
        cloudflare_account_id / cloudflare_api_token / cloudflare_api_base
            Workers AI REST credentials and endpoint
        generation_timeout : float
            Seconds allowed for one backend call
        models_dir, device, torch_dtype, num_inference_steps, guidance_scale
            Local diffusers pipeline settings

    Server Settings:
        server_host, server_port, log_level

    Examples
    --------
    Create a custom configuration:

        >>> custom = ImageGateConfig(api_key="secret", alignment=1)
        >>> custom.api_key.get_secret_value()
        'secret'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="IMAGEGATE_",
        case_sensitive=False,
        frozen=True,
    )

    # Access settings
    api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Shared bearer token expected in the Authorization header (no whitespace)",
    )
    cors_allow_origin: str = Field(
        default="*",
        description="Access-Control-Allow-Origin value (use your site origin in production)",
    )

    # Model allow-list
    allowed_models: tuple[str, ...] = Field(
        default=DEFAULT_ALLOWED_MODELS,
        description="Model identifiers callers may select",
    )
    default_model: str = Field(
        default=DEFAULT_MODEL,
        description="Model substituted for missing or unknown identifiers",
    )

    # Dimension policy
    min_dimension: int = Field(default=256, ge=8)
    max_dimension: int = Field(default=2048, ge=8)
    default_dimension: int = Field(default=1024, ge=8)
    default_long_edge: int = Field(default=1024, ge=8)
    alignment: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Snap both sides to a multiple of this value (1 disables)",
    )
    max_prompt_length: int = Field(default=800, ge=1)

    # Backend binding
    backend: Literal["workers-ai", "diffusers"] = Field(
        default="workers-ai",
        description="Image generation collaborator",
    )
    cloudflare_account_id: str = Field(
        default="",
        description="Cloudflare account owning the Workers AI binding",
    )
    cloudflare_api_token: SecretStr = Field(
        default=SecretStr(""),
        description="Cloudflare API token with Workers AI permissions",
    )
    cloudflare_api_base: str = Field(
        default="https://api.cloudflare.com/client/v4",
        description="Cloudflare REST API base URL",
    )
    generation_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Seconds allowed for a single backend call",
    )

    # Local diffusers backend
    models_dir: Path = Field(
        default=Path("models"),
        description="Directory to cache downloaded pipelines",
    )
    device: str = Field(
        default="cuda",
        description="Device to run local inference on (cuda/mps/cpu)",
    )
    torch_dtype: Literal["bfloat16", "float16", "float32"] = Field(
        default="float16",
        description="Torch dtype for local inference",
    )
    num_inference_steps: int = Field(default=30, ge=1, le=100)
    guidance_scale: float = Field(default=7.5, ge=0.0)

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=8787,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @model_validator(mode="after")
    def _check_policy(self) -> "ImageGateConfig":
        """Reject configurations the resolver or allow-list cannot honour."""
        if any(ch.isspace() for ch in self.api_key.get_secret_value()):
            raise ValueError("api_key must not contain whitespace")
        if self.min_dimension > self.max_dimension:
            raise ValueError("min_dimension must not exceed max_dimension")
        if self.alignment > self.min_dimension:
            raise ValueError("alignment must not exceed min_dimension")
        if not self.allowed_models:
            raise ValueError("allowed_models must name at least one model")
        if self.default_model not in self.allowed_models:
            raise ValueError(f"default_model '{self.default_model}' is not in allowed_models")
        return self


# Global configuration instance
# Loads values from environment variables (IMAGEGATE_* prefix) and .env file.
config = ImageGateConfig()
