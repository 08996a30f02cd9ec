# imagebot/payload_builder.py

from math import gcd
from typing import Any, Dict, Optional

from .model import GenerationRequest


# Ratios accepted by the stable-image generate endpoints
SUPPORTED_ASPECT_RATIOS = ("16:9", "1:1", "21:9", "2:3", "3:2", "4:5", "5:4", "9:16", "9:21")

PREDICTION_FIELDS = (
    "negative_prompt",
    "width",
    "height",
    "num_inference_steps",
    "guidance_scale",
    "num_outputs",
    "seed",
)


def _styled_prompt(request: GenerationRequest) -> str:
    """
    Replicate's stable-diffusion model has no preset parameter,
    so the preset is appended to the prompt text.
    """
    if request.style_preset is None:
        return request.prompt
    return f"{request.prompt}, {request.style_preset.replace('-', ' ')} style"


def aspect_ratio(width: Optional[int], height: Optional[int]) -> Optional[str]:
    if not width or not height:
        return None
    d = gcd(width, height)
    ratio = f"{width // d}:{height // d}"
    return ratio if ratio in SUPPORTED_ASPECT_RATIOS else None


def build_prediction_input(request: GenerationRequest) -> Dict[str, Any]:
    """
    Build the `input` object for POST /predictions.
    Unset fields are left out so the model's own defaults apply.
    """
    payload: Dict[str, Any] = {"prompt": _styled_prompt(request)}
    for name in PREDICTION_FIELDS:
        value = getattr(request, name)
        if value is not None:
            payload[name] = value
    return payload


def build_text_to_image_form(request: GenerationRequest, model: Optional[str] = None) -> Dict[str, str]:
    """
    Build the multipart fields for POST /stable-image/generate/<engine>.
    Step count, guidance and sample count have no counterpart there.
    """
    form = {"prompt": request.prompt, "output_format": "png"}

    ar = aspect_ratio(request.width, request.height)
    if ar:
        form["aspect_ratio"] = ar

    if request.negative_prompt:
        form["negative_prompt"] = request.negative_prompt

    if model:
        form["model"] = model

    if request.seed is not None:
        form["seed"] = str(request.seed)

    if request.style_preset is not None:
        form["style_preset"] = request.style_preset

    return form
