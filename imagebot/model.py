# imagebot/model.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, List, Literal, Optional

StylePreset = Literal[
    "anime",
    "analog-film",
    "cinematic",
    "comic-book",
    "digital-art",
    "enhance",
    "fantasy-art",
    "isometric",
    "line-art",
    "low-poly",
    "neon-punk",
    "origami",
    "photographic",
    "pixel-art",
]

# Replicate statuses that mean the job is still running; anything else is terminal.
PENDING_STATUSES = ("starting", "processing")


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str = Field(min_length=1)
    negative_prompt: Optional[str] = None
    # Output size; the backend caps it at 1024x768 / 768x1024
    width: Optional[int] = Field(default=None, ge=64, le=1024)
    height: Optional[int] = Field(default=None, ge=64, le=1024)
    num_inference_steps: Optional[int] = Field(default=None, ge=10, le=150)
    guidance_scale: Optional[float] = Field(default=None, ge=0, le=35)
    num_outputs: Optional[int] = Field(default=None, ge=1, le=10)
    style_preset: Optional[StylePreset] = None
    seed: Optional[int] = Field(default=None, ge=0)


class PredictionResponse(BaseModel):
    id: str
    status: str
    output: Optional[List[str]] = None
    error: Optional[str] = None

    @field_validator("output", mode="before")
    @classmethod
    def _single_output(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status not in PENDING_STATUSES


class ImageResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    urls: List[str] = Field(default_factory=list)
    content: Optional[bytes] = None
    content_type: Optional[str] = None


class Outcome(BaseModel):
    images: List[ImageResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return bool(self.images)
