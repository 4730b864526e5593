import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from fractions import Fraction

import structlog

from src.config import Settings
from src.schemas.domain import (
    AppliedElement,
    Element,
    ElementSelection,
    GenerationRequest,
    StyleControl,
)

logger = structlog.get_logger()

RESOLUTION_STEP = 8
WEIGHT_STEPS = 50
DEFAULT_ELEMENT_MAX_WEIGHT = 1.5
# The styled image-to-image call snaps element weights from a higher floor.
STYLED_ELEMENT_MIN_WEIGHT = 0.75
DEFAULT_ELEMENT_MIN_WEIGHT = 0.5


@dataclass(frozen=True)
class DimensionLimits:
    default_width: int = 512
    default_height: int = 512
    min_dimension: int = 512
    max_dimension: int = 768
    pixel_limit: int = 589824

    @classmethod
    def from_settings(cls, settings: Settings) -> "DimensionLimits":
        return cls(
            default_width=settings.default_width,
            default_height=settings.default_height,
            min_dimension=settings.min_dimension,
            max_dimension=settings.max_dimension,
            pixel_limit=settings.pixel_limit,
        )


def _floor8(value: Fraction | float | int) -> int:
    return math.floor(value / RESOLUTION_STEP) * RESOLUTION_STEP


def normalize_dimensions(
    width: int | None,
    height: int | None,
    limits: DimensionLimits = DimensionLimits(),
) -> tuple[int, int]:
    """Fit (width, height) to the provider's resolution rules, keeping the aspect ratio.

    Both sides are floored to multiples of 8. The short side starts at
    ``min_dimension``; the long side is clamped to ``max_dimension`` and the
    pair is scaled down when it exceeds ``pixel_limit``. The ratio is kept as
    an exact fraction so the output is a fixed point of the function.
    """
    if not width or not height or width <= 0 or height <= 0:
        return limits.default_width, limits.default_height

    ratio = Fraction(width) / Fraction(height)
    min_dim, max_dim = limits.min_dimension, limits.max_dimension

    if ratio >= 1:
        out_height = max(min_dim, _floor8(min_dim))
        out_width = _floor8(out_height * ratio)
        if out_width > max_dim:
            out_width = _floor8(max_dim)
            out_height = _floor8(out_width / ratio)
            if out_height < min_dim:
                out_height = _floor8(min_dim)
    else:
        out_width = max(min_dim, _floor8(min_dim))
        out_height = _floor8(out_width / ratio)
        if out_height > max_dim:
            out_height = _floor8(max_dim)
            out_width = _floor8(out_height * ratio)
            if out_width < min_dim:
                out_width = _floor8(min_dim)

    pixel_count = out_width * out_height
    if pixel_count > limits.pixel_limit:
        scale = math.sqrt(limits.pixel_limit / pixel_count)
        out_width = max(_floor8(out_width * scale), _floor8(min_dim))
        out_height = max(_floor8(out_height * scale), _floor8(min_dim))
        logger.debug("dimensions_scaled_to_pixel_limit", scale=round(scale, 4), width=out_width, height=out_height)

    logger.debug(
        "dimensions_normalized",
        original=f"{width}x{height}",
        normalized=f"{out_width}x{out_height}",
    )
    return out_width, out_height


def normalize_element_weight(weight: float, minimum: float, maximum: float) -> float:
    """Snap ``weight`` to one of the 51 points that split [minimum, maximum] into 50 steps."""
    if maximum <= minimum:
        return minimum
    step = (maximum - minimum) / WEIGHT_STEPS
    steps = math.floor((weight - minimum) / step + 0.5)
    snapped = round(minimum + steps * step, 2)
    return max(minimum, min(maximum, snapped))


def apply_elements(
    selections: Iterable[ElementSelection],
    available: Sequence[Element],
    model_id: str,
    min_weight: float = DEFAULT_ELEMENT_MIN_WEIGHT,
) -> list[AppliedElement]:
    by_id = {element.ak_uuid: element for element in available}
    applied = []
    for selection in selections:
        element = by_id.get(selection.element_id)
        if element is None:
            logger.warning("element_unknown", element_id=selection.element_id)
            continue
        if not element.is_compatible_with(model_id):
            logger.warning("element_incompatible", element=element.name, model_id=model_id)
            continue
        weight = normalize_element_weight(selection.weight, min_weight, element.max_weight or DEFAULT_ELEMENT_MAX_WEIGHT)
        applied.append(AppliedElement(ak_uuid=element.ak_uuid, weight=weight))
        logger.info("element_added", element=element.name, weight=weight)
    return applied


def style_reference_control(
    settings: Settings,
    image_id: str,
    image_type: str = "UPLOADED",
    strength_type: str = "Max",
) -> StyleControl:
    return StyleControl(
        init_image_id=image_id,
        init_image_type=image_type,
        preprocessor_id=settings.controlnet_style_reference,
        strength_type=strength_type,
    )


def character_reference_control(settings: Settings, image_id: str, strength_type: str = "Mid") -> StyleControl:
    return StyleControl(
        init_image_id=image_id,
        init_image_type="UPLOADED",
        preprocessor_id=settings.controlnet_character_reference,
        strength_type=strength_type,
    )


def compose_prompt(description: str, settings: Settings) -> str:
    if description:
        return f"{description}. {settings.default_style_prompt}"
    return settings.default_style_prompt


def build_styled_request(
    settings: Settings,
    *,
    init_image_id: str,
    description: str = "",
    dimensions: tuple[int, int] | None = None,
    selections: Sequence[ElementSelection] = (),
    available_elements: Sequence[Element] = (),
    style_image_id: str | None = None,
    fast_mode: bool = True,
) -> GenerationRequest:
    """Image-to-image request on the uploaded photo, optionally biased by a style reference."""
    width, height = normalize_dimensions(*(dimensions or (None, None)), DimensionLimits.from_settings(settings))
    model_id = settings.leonardo_model_albedo_xl

    elements = []
    if selections:
        elements = apply_elements(selections, available_elements, model_id, min_weight=STYLED_ELEMENT_MIN_WEIGHT)

    style_controls = []
    if style_image_id:
        style_controls.append(style_reference_control(settings, style_image_id))

    return GenerationRequest(
        width=width,
        height=height,
        prompt=compose_prompt(description, settings),
        model_id=model_id,
        init_image_id=init_image_id,
        init_strength=settings.init_strength_fast if fast_mode else settings.init_strength_quality,
        style_controls=style_controls,
        elements=elements,
        fast_mode=fast_mode,
        preset_style="ANIME",
        alchemy=True,
        photo_real=False,
        high_resolution=False,
        num_inference_steps=settings.inference_steps_fast if fast_mode else settings.inference_steps_quality,
        guidance_scale=settings.guidance_scale_fast if fast_mode else settings.guidance_scale_quality,
        prompt_magic=False,
    )


def build_reference_request(settings: Settings, prompt: str | None = None) -> GenerationRequest:
    """Text-only request whose output serves as a generated style reference."""
    return GenerationRequest(
        width=settings.reference_width,
        height=settings.reference_height,
        prompt=prompt or settings.style_reference_prompt,
        model_id=settings.leonardo_model_kino_xl,
        alchemy=True,
    )


def build_character_request(
    settings: Settings,
    *,
    character_image_id: str,
    description: str = "",
    dimensions: tuple[int, int] | None = None,
    style_image_id: str | None = None,
    fast_mode: bool = True,
) -> GenerationRequest:
    """Request that keeps the pet as a character reference and takes style from a generated image."""
    width, height = normalize_dimensions(*(dimensions or (None, None)), DimensionLimits.from_settings(settings))
    style_controls = [character_reference_control(settings, character_image_id)]
    if style_image_id:
        style_controls.append(style_reference_control(settings, style_image_id, image_type="GENERATED"))

    return GenerationRequest(
        width=width,
        height=height,
        prompt=description or settings.default_generation_prompt,
        model_id=settings.leonardo_model_kino_xl,
        style_controls=style_controls,
        fast_mode=fast_mode,
        preset_style="CINEMATIC",
        photo_real=True,
        photo_real_version="v2",
        alchemy=True,
        guidance_scale=settings.guidance_scale_fast if fast_mode else settings.guidance_scale_quality,
    )
