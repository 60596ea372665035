"""
Generation Request Builder - turns a generator node's configuration into the
body of a generate call.

Generator data is an open key/value map: a few keys are engine/UI state, the
rest are provider options discovered from model metadata. Internal keys are
stripped, the remainder passes through, then provider constraints are
applied in a fixed order:

1. ``upscaleFactor`` moves under ``upscaleConfig`` and forces upscale mode
2. non-Imagen models never receive ``aspectRatio``
3. Imagen models get a default ``safetySetting``; other models never get one
4. a ``seed`` turns the watermark off
5. an explicit watermark with a leftover ``seed`` drops the seed

Model matching is by substring of the model id.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from nodebanana.errors import InvalidOptionError

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_SETTING = "block_few"

# Engine/UI state that must never reach the provider
INTERNAL_KEYS = frozenset(
    {
        "model",
        "outputImage",
        "outputImages",
        "output",
        "image",
        "inputImages",
        "inputPrompt",
        "operationId",
        "status",
        "error",
        "userPrompt",
        "resolution",
        "useGoogleSearch",
    }
)


class OptionKind(StrEnum):
    """Closed set of model option kinds."""

    ENUM = "enum"
    NUMBER = "number"
    BOOLEAN = "boolean"
    STRING = "string"


class OptionDescriptor(BaseModel):
    """
    One configurable model option.

    ``values`` applies to enum options and ``min``/``max`` to number options.
    They describe the option for editors; range checking is left to the
    provider.
    """

    model_config = ConfigDict(populate_by_name=True)

    key: str
    kind: OptionKind = Field(alias="type")
    label: str | None = None
    description: str | None = None
    values: list[Any] | None = None
    min: float | None = None
    max: float | None = None

    def accepts(self, value: Any) -> bool:
        """True when ``value`` has the right kind for this option."""
        match self.kind:
            case OptionKind.BOOLEAN:
                return isinstance(value, bool)
            case OptionKind.NUMBER:
                return isinstance(value, int | float) and not isinstance(value, bool)
            case OptionKind.STRING:
                return isinstance(value, str)
            case OptionKind.ENUM:
                return isinstance(value, str | int | float) and not isinstance(value, bool)
        return False


def strip_internal_fields(config: Mapping[str, Any]) -> dict[str, Any]:
    """Return the pass-through generation options of a generator config."""
    return {key: value for key, value in config.items() if key not in INTERNAL_KEYS}


def check_option_kinds(options: Mapping[str, Any], descriptors: Iterable[OptionDescriptor]) -> None:
    """
    Raise InvalidOptionError for the first option whose value has the wrong kind.

    Options without a descriptor, and unset (None) values, are not checked.
    """
    by_key = {descriptor.key: descriptor for descriptor in descriptors}
    for key, value in options.items():
        descriptor = by_key.get(key)
        if descriptor is None or value is None:
            continue
        if not descriptor.accepts(value):
            raise InvalidOptionError(key, descriptor.kind.value, value)


def build_generation_request(
    config: Mapping[str, Any],
    prompt: str,
    images: Sequence[str],
    descriptors: Iterable[OptionDescriptor] | None = None,
) -> dict[str, Any]:
    """
    Build the generate request body for a generator node.

    Args:
        config: Generator node data in document form (camelCase keys)
        prompt: Resolved text prompt
        images: Resolved input images, in edge order
        descriptors: Option descriptors of the model, when known

    Returns:
        ``{"images", "prompt", "model", ...options}``

    Raises:
        InvalidOptionError: an option value does not match its descriptor's kind
    """
    model = str(config.get("model") or "")
    options = strip_internal_fields(config)
    if descriptors is not None:
        check_option_kinds(options, descriptors)

    request: dict[str, Any] = {"images": list(images), "prompt": prompt, "model": model, **options}

    if request.get("upscaleFactor"):
        request["upscaleConfig"] = {"upscaleFactor": request.pop("upscaleFactor")}
        request["mode"] = "upscale"
        request.pop("sampleImageSize", None)
        request.pop("aspectRatio", None)

    is_imagen = "imagen" in model
    if not is_imagen:
        request.pop("aspectRatio", None)

    if is_imagen and not request.get("safetySetting"):
        request["safetySetting"] = DEFAULT_SAFETY_SETTING
    elif not is_imagen and "safetySetting" in request:
        del request["safetySetting"]

    if request.get("seed"):
        request["addWatermark"] = False

    if request.get("addWatermark") is True and request.get("seed"):
        del request["seed"]

    logger.debug(f"Built generation request for {model}")
    return request
