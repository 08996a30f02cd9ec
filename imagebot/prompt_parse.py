# imagebot/prompt_parse.py

import re
from typing import Any, Dict, Mapping, Optional, Tuple, get_args

from pydantic import BaseModel, ConfigDict

from .errors import ConflictingPreset, EmptyPrompt, UnsupportedModifier
from .model import GenerationRequest, StylePreset


MODIFIER_RE = re.compile(r"!([a-zA-Z_-]+)\b")


class ModifierTable(BaseModel):
    """
    Style presets, quality directives and request defaults.
    Built once at startup and handed to translate(); never mutated.
    """

    model_config = ConfigDict(frozen=True)

    presets: Tuple[str, ...]
    # directive name -> fields it overrides
    directives: Mapping[str, Mapping[str, Any]]
    defaults: Mapping[str, Any]


DEFAULT_MODIFIERS = ModifierTable(
    presets=get_args(StylePreset),
    directives={
        "quality": {"num_outputs": 1, "num_inference_steps": 100},
        "strict": {"guidance_scale": 15.0},
        "large": {"width": 768, "height": 768},
    },
    defaults={"width": 512, "height": 512, "num_outputs": 2},
)


def _clean_prompt(raw_text: str, has_modifiers: bool) -> str:
    if not has_modifiers:
        return raw_text.strip()
    return " ".join(MODIFIER_RE.sub(" ", raw_text).split())


def translate(raw_text: str, modifiers: ModifierTable = DEFAULT_MODIFIERS) -> GenerationRequest:
    """
    Turn a chat message into a GenerationRequest.

    `!name` tokens are looked up left to right: a style preset sets
    style_preset (only one allowed), a directive overrides fixed fields.
    The first bad token is the one reported. Tokens are stripped from the
    prompt and unset fields fall back to the table defaults.
    """
    tokens = [m.group(1) for m in MODIFIER_RE.finditer(raw_text)]

    fields: Dict[str, Any] = {}
    preset: Optional[str] = None

    for token in tokens:
        name = token.lower()
        if name in modifiers.presets:
            if preset is not None:
                raise ConflictingPreset(preset, token)
            preset = name
        elif name in modifiers.directives:
            fields.update(modifiers.directives[name])
        else:
            raise UnsupportedModifier(
                token,
                directives=sorted(modifiers.directives),
                presets=modifiers.presets,
            )

    prompt = _clean_prompt(raw_text, has_modifiers=bool(tokens))
    if not prompt:
        raise EmptyPrompt()

    for key, value in modifiers.defaults.items():
        fields.setdefault(key, value)

    return GenerationRequest(prompt=prompt, style_preset=preset, **fields)


def with_defaults(modifiers: ModifierTable, **defaults: Any) -> ModifierTable:
    """Copy of the table with extra or replaced defaults; None values are skipped."""
    merged = dict(modifiers.defaults)
    merged.update({key: value for key, value in defaults.items() if value is not None})
    return modifiers.model_copy(update={"defaults": merged})
