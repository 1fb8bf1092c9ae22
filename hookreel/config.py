from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings

# This is the root directory of *entire* project
PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):
    """
    Main application settings. Loads from .env file.
    """

    # --- Project Paths ---
    ASSETS_PATH: Path = PROJECT_ROOT / "assets"
    FONTS_PATH: Path = ASSETS_PATH / "fonts"
    BACKGROUNDS_PATH: Path = ASSETS_PATH / "backgrounds"
    JOBS_OUTPUT_PATH: Path = PROJECT_ROOT / "jobs"

    # --- API Keys (Loaded from .env) ---
    OPENAI_API_KEY: str = ""

    # --- Object storage ---
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_REGION: str = "us-east-1"
    AWS_BUCKET_NAME: str = "hookreel-media"
    S3_PUBLIC_BASE_URL: Optional[str] = None  # e.g. a CDN in front of the bucket
    BACKGROUNDS_PREFIX: str = "backgrounds"

    # --- Speech / classification models ---
    TTS_MODEL: str = "gpt-4o-mini-tts"
    DEFAULT_VOICE: str = "onyx"
    STT_MODEL: str = "whisper-1"
    STT_MAX_FILE_MB: float = 25.0
    CLASSIFIER_MODELS: List[str] = ["gpt-4o-mini", "gpt-4o", "gpt-4.1-mini"]

    # --- Retry policy (transcription + classification) ---
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_DELAY_SECONDS: float = 2.0

    # --- Audio fitting ---
    HOOK_SPEED_FACTOR: float = 1.3
    SCRIPT_SPEED_FACTOR: float = 1.2
    HOOK_PITCH_FACTOR: float = 1.3  # empirically tuned, 1.3-1.4 both sound fine
    HOOK_SILENCE_THRESHOLD_DB: float = -35.0
    SCRIPT_SILENCE_THRESHOLD_DB: float = -37.0
    HOOK_SILENCE_DURATION: float = 0.05
    SCRIPT_SILENCE_DURATION: float = 0.08
    FFMPEG_BINARY: Optional[str] = None

    # --- Video & Text Settings ---
    VIDEO_FPS: int = 30
    VIDEO_WIDTH: int = 1080
    VIDEO_HEIGHT: int = 1920
    VIDEO_CODEC: str = "libx264"
    VIDEO_BITRATE: str = "6M"
    RENDER_TIMEOUT_SECONDS: float = 600.0
    DEFAULT_FONT: str = str(FONTS_PATH / "Jellee-Bold.ttf")

    # Caption colors (RGB)
    CAPTION_COLORS: dict = {
        "white": (255, 255, 255),
        "yellow": (255, 214, 10),
        "red": (255, 59, 48),
        "green": (52, 199, 89),
        "purple": (175, 82, 222),
    }

    class Config:
        env_file = PROJECT_ROOT / ".env"
        case_sensitive = False


settings = Settings()
