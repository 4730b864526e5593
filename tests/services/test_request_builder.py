import pytest

from src.schemas.domain import Element, ElementSelection
from src.services import request_builder
from src.services.request_builder import (
    DimensionLimits,
    apply_elements,
    build_character_request,
    build_reference_request,
    build_styled_request,
    normalize_dimensions,
    normalize_element_weight,
)

_SIZES = [
    (1, 1),
    (100, 100),
    (640, 480),
    (480, 640),
    (1920, 1080),
    (1080, 1920),
    (4000, 3000),
    (3000, 4000),
    (513, 512),
    (777, 333),
    (333, 777),
    (10000, 10),
    (10, 10000),
    (1023, 769),
]


class TestNormalizeDimensions:
    @pytest.mark.parametrize(("width", "height"), [(None, None), (0, 512), (512, 0), (-5, 100)])
    def test_defaults_for_missing_input(self, width, height) -> None:
        assert normalize_dimensions(width, height) == (512, 512)

    def test_square(self) -> None:
        assert normalize_dimensions(1000, 1000) == (512, 512)

    def test_landscape_four_three(self) -> None:
        assert normalize_dimensions(640, 480) == (680, 512)

    def test_portrait_four_three(self) -> None:
        assert normalize_dimensions(480, 640) == (512, 680)

    def test_wide_is_clamped(self) -> None:
        assert normalize_dimensions(1920, 1080) == (768, 512)

    def test_tall_is_clamped(self) -> None:
        assert normalize_dimensions(1080, 1920) == (512, 768)

    @pytest.mark.parametrize(("width", "height"), _SIZES)
    def test_bounds(self, width, height) -> None:
        out_w, out_h = normalize_dimensions(width, height)
        assert out_w % 8 == 0 and out_h % 8 == 0
        assert 512 <= out_w <= 768
        assert 512 <= out_h <= 768
        assert out_w * out_h <= 589824

    @pytest.mark.parametrize(("width", "height"), _SIZES)
    def test_idempotent(self, width, height) -> None:
        once = normalize_dimensions(width, height)
        assert normalize_dimensions(*once) == once

    def test_pixel_limit_scales_down(self) -> None:
        limits = DimensionLimits(min_dimension=512, max_dimension=1024, pixel_limit=512 * 600)
        out_w, out_h = normalize_dimensions(1000, 800, limits)
        assert (out_w, out_h) == (616, 512)


class TestNormalizeElementWeight:
    def test_within_bounds_and_on_grid(self) -> None:
        allowed = {round(0.5 + i * 0.02, 2) for i in range(51)}
        for raw in [x / 100 for x in range(-50, 250)]:
            weight = normalize_element_weight(raw, 0.5, 1.5)
            assert 0.5 <= weight <= 1.5
            assert weight in allowed

    def test_takes_all_51_values(self) -> None:
        values = {normalize_element_weight(0.5 + i * 0.02, 0.5, 1.5) for i in range(51)}
        assert len(values) == 51

    def test_snaps_to_nearest_step(self) -> None:
        assert normalize_element_weight(0.515, 0.5, 1.5) == 0.52
        assert normalize_element_weight(0.505, 0.5, 1.5) == 0.5

    def test_clamps(self) -> None:
        assert normalize_element_weight(3.0, 0.75, 1.5) == 1.5
        assert normalize_element_weight(0.1, 0.75, 1.5) == 0.75

    def test_degenerate_range(self) -> None:
        assert normalize_element_weight(1.0, 1.5, 1.5) == 1.5


def _element(ak_uuid: str, compatible: list[str] | None = None, max_weight: float = 1.5) -> Element:
    return Element(ak_uuid=ak_uuid, name=ak_uuid, max_weight=max_weight, compatible_models=compatible or [])


class TestApplyElements:
    def test_skips_unknown_and_incompatible(self) -> None:
        available = [_element("a"), _element("b", compatible=["other-model"])]
        selections = [
            ElementSelection(element_id="a", weight=1.0),
            ElementSelection(element_id="b", weight=1.0),
            ElementSelection(element_id="missing", weight=1.0),
        ]
        applied = apply_elements(selections, available, "model-x")
        assert [e.ak_uuid for e in applied] == ["a"]
        assert applied[0].weight == 1.0

    def test_uses_call_site_minimum(self) -> None:
        applied = apply_elements([ElementSelection(element_id="a", weight=0.1)], [_element("a")], "m", min_weight=0.75)
        assert applied[0].weight == 0.75


class TestBuildStyledRequest:
    def test_fast_mode_payload(self, test_settings) -> None:
        request = build_styled_request(
            test_settings,
            init_image_id="init-1",
            description="A fluffy cat",
            dimensions=(640, 480),
            style_image_id="style-1",
        )
        payload = request.to_payload()
        assert payload["width"] == 680 and payload["height"] == 512
        assert payload["modelId"] == test_settings.leonardo_model_albedo_xl
        assert payload["init_image_id"] == "init-1"
        assert payload["init_strength"] == 0.88
        assert payload["num_inference_steps"] == 30
        assert payload["guidance_scale"] == 18
        assert payload["presetStyle"] == "ANIME"
        assert payload["alchemy"] is True
        assert payload["prompt"] == f"A fluffy cat. {test_settings.default_style_prompt}"
        assert payload["controlnets"] == [
            {
                "initImageId": "style-1",
                "initImageType": "UPLOADED",
                "preprocessorId": 67,
                "strengthType": "Max",
            }
        ]
        assert "fast_mode" not in payload
        assert "elements" not in payload

    def test_quality_mode(self, test_settings) -> None:
        request = build_styled_request(test_settings, init_image_id="init-1", fast_mode=False)
        assert request.init_strength == 0.85
        assert request.num_inference_steps == 50
        assert request.guidance_scale == 15
        assert request.prompt == test_settings.default_style_prompt
        assert (request.width, request.height) == (512, 512)
        assert "controlnets" not in request.to_payload()

    def test_elements_use_styled_minimum(self, test_settings) -> None:
        element = _element("el-1", compatible=[test_settings.leonardo_model_albedo_xl])
        request = build_styled_request(
            test_settings,
            init_image_id="init-1",
            selections=[ElementSelection(element_id="el-1", weight=0.2)],
            available_elements=[element],
        )
        assert request.to_payload()["elements"] == [{"akUUID": "el-1", "weight": 0.75}]


class TestOtherRequests:
    def test_reference_request(self, test_settings) -> None:
        request = build_reference_request(test_settings)
        assert (request.width, request.height) == (1024, 768)
        assert request.prompt == test_settings.style_reference_prompt
        assert request.model_id == test_settings.leonardo_model_kino_xl
        assert request.init_image_id is None

    def test_character_request(self, test_settings) -> None:
        request = build_character_request(
            test_settings,
            character_image_id="pet-1",
            description="A corgi",
            dimensions=(480, 640),
            style_image_id="gen-style",
        )
        controls = request.to_payload()["controlnets"]
        assert controls[0]["preprocessorId"] == 133
        assert controls[0]["strengthType"] == "Mid"
        assert controls[1]["initImageType"] == "GENERATED"
        assert controls[1]["preprocessorId"] == 67
        assert request.photo_real is True
        assert request.prompt == "A corgi"
        assert (request.width, request.height) == (512, 680)

    def test_character_request_without_style(self, test_settings) -> None:
        request = build_character_request(test_settings, character_image_id="pet-1")
        assert len(request.style_controls) == 1
        assert request.prompt == test_settings.default_generation_prompt


def test_weight_constants() -> None:
    assert request_builder.STYLED_ELEMENT_MIN_WEIGHT == 0.75
    assert request_builder.DEFAULT_ELEMENT_MIN_WEIGHT == 0.5
