"""Tests for generation request building."""

import pytest

from nodebanana.errors import InvalidOptionError, RequestFailureError
from nodebanana.generation.request_builder import (
    DEFAULT_SAFETY_SETTING,
    OptionDescriptor,
    OptionKind,
    build_generation_request,
    strip_internal_fields,
)

IMAGEN = "vertexai/imagen-3.0-generate-001"
GEMINI_IMAGE = "googleai/gemini-2.5-flash-image"
IMAGEN_UPSCALE = "vertexai/imagen-4.0-upscale-preview"


class TestModelRules:
    def test_imagen_with_seed(self):
        request = build_generation_request({"model": IMAGEN, "aspectRatio": "1:1", "seed": 7}, "a cat", [])

        assert request["safetySetting"] == DEFAULT_SAFETY_SETTING
        assert request["addWatermark"] is False
        assert request["aspectRatio"] == "1:1"
        assert request["seed"] == 7

    def test_non_imagen_drops_imagen_only_options(self):
        request = build_generation_request(
            {"model": GEMINI_IMAGE, "aspectRatio": "1:1", "safetySetting": "block_none"}, "a cat", []
        )

        assert "aspectRatio" not in request
        assert "safetySetting" not in request

    def test_upscale(self):
        request = build_generation_request(
            {"model": IMAGEN_UPSCALE, "upscaleFactor": "x2", "aspectRatio": "1:1", "sampleImageSize": "2K"},
            "",
            ["data:image/png;base64,AAAA"],
        )

        assert request["upscaleConfig"] == {"upscaleFactor": "x2"}
        assert request["mode"] == "upscale"
        assert "aspectRatio" not in request
        assert "upscaleFactor" not in request
        assert "sampleImageSize" not in request

    def test_explicit_safety_setting_is_kept_for_imagen(self):
        request = build_generation_request({"model": IMAGEN, "safetySetting": "block_most"}, "a cat", [])

        assert request["safetySetting"] == "block_most"

    def test_seed_turns_watermark_off(self):
        request = build_generation_request({"model": IMAGEN, "seed": 3, "addWatermark": True}, "a cat", [])

        assert request["addWatermark"] is False
        assert request["seed"] == 3

    def test_watermark_without_seed_is_untouched(self):
        request = build_generation_request({"model": IMAGEN, "addWatermark": True}, "a cat", [])

        assert request["addWatermark"] is True
        assert "seed" not in request


class TestRequestShape:
    def test_core_fields(self):
        images = ["data:image/png;base64,AAAA", "https://cdn.test/b.png"]

        request = build_generation_request({"model": GEMINI_IMAGE, "temperature": 0.4}, "two cats", images)

        assert request["model"] == GEMINI_IMAGE
        assert request["prompt"] == "two cats"
        assert request["images"] == images
        assert request["temperature"] == 0.4

    def test_internal_fields_never_reach_the_provider(self):
        config = {
            "model": IMAGEN,
            "outputImage": "x",
            "outputImages": ["x"],
            "inputImages": ["y"],
            "inputPrompt": "old",
            "operationId": "op-1",
            "status": "success",
            "error": None,
            "resolution": "1K",
            "useGoogleSearch": True,
            "aspectRatio": "4:3",
        }

        request = build_generation_request(config, "a cat", [])

        assert set(request) == {"images", "prompt", "model", "aspectRatio", "safetySetting"}

    def test_strip_internal_fields(self):
        assert strip_internal_fields({"status": "idle", "model": IMAGEN, "seed": 1}) == {"seed": 1}


class TestOptionDescriptors:
    DESCRIPTORS = [
        OptionDescriptor(key="aspectRatio", kind=OptionKind.ENUM, values=["1:1", "16:9"]),
        OptionDescriptor(key="seed", kind=OptionKind.NUMBER, min=0),
        OptionDescriptor(key="addWatermark", kind=OptionKind.BOOLEAN),
        OptionDescriptor(key="negativePrompt", kind=OptionKind.STRING),
    ]

    def test_matching_kinds_pass(self):
        config = {"model": IMAGEN, "aspectRatio": "16:9", "seed": 5, "addWatermark": False, "negativePrompt": "blur"}

        request = build_generation_request(config, "a cat", [], self.DESCRIPTORS)

        assert request["negativePrompt"] == "blur"

    @pytest.mark.parametrize(
        "key,value",
        [
            ("seed", "seven"),
            ("seed", True),
            ("addWatermark", "yes"),
            ("negativePrompt", 3),
        ],
    )
    def test_wrong_kind_is_rejected(self, key, value):
        with pytest.raises(InvalidOptionError) as exc_info:
            build_generation_request({"model": IMAGEN, key: value}, "a cat", [], self.DESCRIPTORS)

        assert exc_info.value.key == key
        assert isinstance(exc_info.value, RequestFailureError)

    def test_values_outside_range_are_left_to_the_provider(self):
        request = build_generation_request(
            {"model": IMAGEN, "seed": -5, "aspectRatio": "7:3"}, "a cat", [], self.DESCRIPTORS
        )

        assert request["seed"] == -5
        assert request["aspectRatio"] == "7:3"

    def test_undeclared_and_unset_options_are_not_checked(self):
        request = build_generation_request(
            {"model": IMAGEN, "mystery": object, "seed": None}, "a cat", [], self.DESCRIPTORS
        )

        assert request["mystery"] is object

    def test_descriptor_reads_type_key(self):
        descriptor = OptionDescriptor.model_validate({"key": "seed", "type": "number"})

        assert descriptor.kind == OptionKind.NUMBER
