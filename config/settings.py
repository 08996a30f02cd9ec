import os
import tomllib
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env
BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")


class Settings:
    DISCORD_TOKEN: str | None = os.getenv("DISCORD_TOKEN")
    REPLICATE_TOKEN: str | None = os.getenv("REPLICATE_TOKEN")
    STABILITY_API_KEY: str | None = os.getenv("STABILITY_API_KEY")

    # "replicate" (submit-and-poll) or "stability" (synchronous multipart)
    IMAGE_BACKEND: str = os.getenv("IMAGE_BACKEND", "replicate")

    REPLICATE_API_URL: str = os.getenv("REPLICATE_API_URL", "https://api.replicate.com/v1")
    STABLE_DIFFUSION_VERSION: str = os.getenv(
        "STABLE_DIFFUSION_VERSION",
        "f178fa7a1ae43a9a9af01b833b9d2ecf97b1bcb0acfd2dc5dd04895e042863f1",
    )

    STABILITY_API_URL: str = os.getenv("STABILITY_API_URL", "https://api.stability.ai/v2beta")
    STABILITY_ENGINE: str = os.getenv("STABILITY_ENGINE", "sd3")
    STABILITY_MODEL: str | None = os.getenv("STABILITY_MODEL")

    POLL_INTERVAL: float = 0.5  # seconds
    MAX_POLL_ATTEMPTS: int = int(os.getenv("MAX_POLL_ATTEMPTS", "600"))
    REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "300"))

    BOT_CONFIG_PATH: str = os.getenv("BOT_CONFIG_PATH", "bot.toml")

    def require(self, name: str) -> str:
        value = getattr(self, name, None)
        if not value:
            raise RuntimeError(f"{name} environment variable must be set")
        return value


class BotConfig(BaseModel):
    allowed_channels: List[int]
    attempts: int = Field(default=3, ge=1, le=10)
    # sent with every request when set
    negative_prompt: Optional[str] = None


def load_bot_config(path: str | Path) -> BotConfig:
    """
    Read bot.toml (channel allow-list, fan-out attempt count).
    Loaded once at startup; there is no reload.
    """
    with Path(path).open("rb") as f:
        raw = tomllib.load(f)
    return BotConfig.model_validate(raw)


settings = Settings()
