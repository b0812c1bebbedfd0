"""Configuration settings for the site cloning pipeline."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load .env file
load_dotenv()

_GEMINI_FALLBACK = [
    "gemini/gemini-2.5-pro",
    "gemini/gemini-2.5-flash",
    "gemini/gemini-pro-latest",
    "gemini/gemini-2.0-flash-001",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys (litellm reads these from the environment)
    gemini_api_key: str = os.getenv("GEMINI_API_KEY", os.getenv("GOOGLE_API_KEY", ""))
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")

    # Model candidates, in preference order (overridden by models_file when present)
    text_models: list[str] = list(_GEMINI_FALLBACK)
    vision_models: list[str] = list(_GEMINI_FALLBACK)
    llm_timeout_seconds: float = 300.0
    architect_temperature: float = 0.3
    coder_temperature: float = 0.2
    qa_temperature: float = 0.0
    max_tokens: int = 16384

    # Retry / acceptance
    max_retries: int = 3
    pass_threshold: int = 90
    fail_on_low_score: bool = False
    stage_timeout_seconds: float = 900.0  # 0 disables

    # Context chunking
    chunk_size: int = 300
    max_chunks: int = 20
    compact_every: int = 3
    summary_chars: int = 1500

    # Job state persistence
    redis_url: Optional[str] = os.getenv("REDIS_URL") or None
    job_ttl_seconds: int = 86400
    job_key_prefix: str = "clone:"

    # Streaming
    stream_poll_interval: float = 2.0
    stream_timeout_seconds: float = 600.0

    # Browser capture
    viewport_width: int = 1440
    viewport_height: int = 900
    navigation_timeout_ms: int = 30000
    settle_delay_ms: int = 3000
    scroll_step_px: int = 100
    scroll_pause_ms: int = 500
    preview_render_delay_ms: int = 2000
    max_assets: int = 20
    max_prompt_assets: int = 20

    # Paths
    project_root: Path = Path(__file__).parent.parent.parent
    config_dir: Path = Path(__file__).parent
    assets_dir: Path = project_root / "public" / "temp" / "assets"
    public_assets_prefix: str = "/temp/assets"
    output_dir: Path = project_root / "output" / "runs"

    # Config files
    models_file: Path = config_dir / "models.yaml"

    class Config:
        env_file = ".env"
        extra = "ignore"


# Global settings instance
settings = Settings()
