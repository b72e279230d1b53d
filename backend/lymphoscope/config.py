"""Application configuration from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    lymphoscope_env: str = "development"
    lymphoscope_log_level: str = "info"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    # Model resource: http(s) URL, file:// URL or plain path
    model_url: str = "web-model/model.onnx"

    # Artificial pacing between progress events, per stage name (ms).
    # Zero keeps headless runs fast; interactive builds set e.g. {"analyzing": 400}.
    stage_delay_ms: dict[str, int] = {}

    # Rendering
    heatmap_size: int = 256
    overlay_opacity: float = 0.2

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "protected_namespaces": ()}


settings = Settings()
