"""Environment-based configuration for IdentifyX."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from IDENTIFYX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="IDENTIFYX_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082

    # Authentication for /api/v1 (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    model_name: str = "mobilenet_v2"
    models_dir: str = "models"
    top_k: int = Field(default=3, ge=1)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # One classification at a time
    max_concurrent: int = Field(default=1, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    # Encyclopedia lookup
    lookup_endpoint: str = "https://en.wikipedia.org/w/api.php"
    lookup_limit: int = Field(default=20, ge=1, le=500)
    user_agent: str = "IdentifyX/0.1 (image identification demo)"

    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
