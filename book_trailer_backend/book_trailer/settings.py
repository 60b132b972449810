import os
import logging
from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

# Configure logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

_BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Process-wide configuration, built once and handed to each component."""

    model_config = ConfigDict(frozen=True)

    openrouter_api_key: str = ""
    openrouter_model: str = "google/gemini-flash-1.5"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_image_model: str = "google/gemini-3-pro-image-preview"
    openrouter_app_title: str = "BookTok"

    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"

    replicate_api_token: str = ""
    replicate_model_version: str = ""
    replicate_poll_interval_ms: int = 1500
    replicate_poll_timeout_s: int = 120

    elevenlabs_api_key: str = ""
    elevenlabs_model_id: str = "eleven_turbo_v2_5"

    temp_dir: str = os.path.join(_BACKEND_DIR, "temp")
    output_dir: str = os.path.join(_BACKEND_DIR, "output")
    ffmpeg_binary: str = "ffmpeg"
    ffmpeg_timeout_s: int = 600

    # Disables every outbound provider call; images fall back to placeholders.
    offline_mode: bool = False

    kv_rest_api_url: str = ""
    kv_rest_api_token: str = ""

    s3_bucket: str = ""
    s3_region: str = "us-east-1"
    s3_prefix: str = "booktok-videos"

    video_cleanup_delay_s: int = 60
    allowed_origins: List[str] = ["*"]

    @classmethod
    def from_env(cls) -> "Settings":
        # Comma-separated list of allowed origins for CORS; wildcard when unset.
        _allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
        if _allowed_origins_env:
            allowed_origins = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
        else:
            allowed_origins = ["*"]

        defaults = cls()
        return cls(
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY", ""),
            openrouter_model=os.getenv("OPENROUTER_MODEL", defaults.openrouter_model),
            openrouter_base_url=os.getenv("OPENROUTER_BASE_URL", defaults.openrouter_base_url),
            openrouter_image_model=os.getenv("OPENROUTER_IMAGE_MODEL", defaults.openrouter_image_model),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            gemini_model=os.getenv("GEMINI_MODEL", defaults.gemini_model),
            replicate_api_token=os.getenv("REPLICATE_API_TOKEN", ""),
            replicate_model_version=os.getenv("REPLICATE_MODEL_VERSION", ""),
            replicate_poll_interval_ms=int(os.getenv("REPLICATE_POLL_INTERVAL_MS", "1500")),
            replicate_poll_timeout_s=int(os.getenv("REPLICATE_POLL_TIMEOUT_S", "120")),
            elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY", ""),
            elevenlabs_model_id=os.getenv("ELEVENLABS_MODEL_ID", defaults.elevenlabs_model_id),
            temp_dir=os.getenv("TEMP_DIR", defaults.temp_dir),
            output_dir=os.getenv("OUTPUT_DIR", defaults.output_dir),
            ffmpeg_binary=os.getenv("FFMPEG_BINARY", "ffmpeg"),
            ffmpeg_timeout_s=int(os.getenv("FFMPEG_TIMEOUT_S", "600")),
            offline_mode=_flag("OFFLINE_MODE"),
            kv_rest_api_url=os.getenv("KV_REST_API_URL", "").strip(),
            kv_rest_api_token=os.getenv("KV_REST_API_TOKEN", "").strip(),
            s3_bucket=os.getenv("S3_BUCKET", "").strip(),
            s3_region=os.getenv("S3_REGION", defaults.s3_region),
            s3_prefix=os.getenv("S3_PREFIX", defaults.s3_prefix),
            video_cleanup_delay_s=int(os.getenv("VIDEO_CLEANUP_DELAY_S", "60")),
            allowed_origins=allowed_origins,
        )

    def missing_keys(self) -> List[str]:
        missing = []
        if not self.openrouter_api_key:
            missing.append("OPENROUTER_API_KEY")
        if not self.elevenlabs_api_key:
            missing.append("ELEVENLABS_API_KEY")
        if missing:
            logger.warning(f"Missing API keys: {', '.join(missing)}")
        return missing


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
