"""
Model Catalog - model descriptions with capabilities and option descriptors.

Provider metadata is inconsistent, so capabilities are read from the
``supports`` flags where present and otherwise guessed from the model id.
"""

import logging
import re
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from nodebanana.generation.request_builder import OptionDescriptor, OptionKind

logger = logging.getLogger(__name__)

ASPECT_RATIOS = ["1:1", "9:16", "16:9", "3:4", "4:3"]
UPSCALE_FACTORS = ["x2", "x4"]

# Option keys never shown to users
HIDDEN_OPTIONS = {"apiKey"}


class ModelCapabilities(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    supports_image_input: bool = Field(default=False, alias="supportsImageInput")
    supports_video: bool = Field(default=False, alias="supportsVideo")
    supports_audio: bool = Field(default=False, alias="supportsAudio")
    supports_aspect_ratio: bool = Field(default=False, alias="supportsAspectRatio")
    supports_resolution: bool = Field(default=False, alias="supportsResolution")
    supports_code_execution: bool = Field(default=False, alias="supportsCodeExecution")
    supports_tools: bool = Field(default=False, alias="supportsTools")
    supports_multimodal: bool = Field(default=False, alias="supportsMultimodal")
    supports_google_search: bool = Field(default=False, alias="supportsGoogleSearch")
    options: list[OptionDescriptor] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)


class ModelInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    label: str
    provider: str
    description: str = ""
    capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)


def _title_case(key: str) -> str:
    spaced = re.sub(r"([A-Z])", r" \1", key)
    return spaced[:1].upper() + spaced[1:]


def describe_option(key: str, schema: dict[str, Any]) -> OptionDescriptor | None:
    """Build a descriptor from a JSON-schema property. Unsupported kinds yield None."""
    schema_type = schema.get("type")
    kind: OptionKind
    if schema.get("enum"):
        kind = OptionKind.ENUM
    elif schema_type == "boolean":
        kind = OptionKind.BOOLEAN
    elif schema_type in ("number", "integer"):
        kind = OptionKind.NUMBER
    elif schema_type == "string":
        kind = OptionKind.STRING
    else:
        logger.debug(f"Skipping option {key} of unsupported type {schema_type!r}")
        return None

    return OptionDescriptor(
        key=key,
        kind=kind,
        label=_title_case(key),
        description=schema.get("description"),
        values=list(schema["enum"]) if kind == OptionKind.ENUM else None,
        min=schema.get("minimum") if kind == OptionKind.NUMBER else None,
        max=schema.get("maximum") if kind == OptionKind.NUMBER else None,
    )


def describe_model(
    model_id: str,
    description: str = "",
    custom_options: dict[str, Any] | None = None,
    supports: dict[str, Any] | None = None,
) -> ModelInfo | None:
    """
    Describe one provider model.

    Returns None for models hidden from the catalog: Imagen served through
    Google AI (the Vertex AI route is the complete one) and Gemini 3 served
    through Vertex AI (only the Google AI route works).
    """
    provider = model_id.split("/")[0]
    label = model_id.split("/")[-1] or model_id

    if provider == "googleai" and "imagen" in model_id:
        return None
    if provider == "vertexai" and "gemini-3" in model_id:
        return None

    supports = supports or {}
    options: list[OptionDescriptor] = []
    for key, schema in ((custom_options or {}).get("properties") or {}).items():
        if key in HIDDEN_OPTIONS:
            continue
        descriptor = describe_option(key, schema or {})
        if descriptor is not None:
            options.append(descriptor)

    lowered = description.lower()
    is_gemini = "gemini" in model_id or "nano-banana" in model_id
    is_gemini_image = is_gemini and ("image" in model_id or "image" in lowered)
    is_imagen = "imagen" in model_id
    is_dalle = "dall-e" in model_id
    is_upscaler = "upscale" in model_id

    def has_option(key: str) -> bool:
        return any(option.key == key for option in options)

    if is_imagen and is_upscaler and not has_option("upscaleFactor"):
        options.append(
            OptionDescriptor(key="upscaleFactor", kind=OptionKind.ENUM, label="Upscale Factor", values=UPSCALE_FACTORS)
        )

    is_image_generator = is_imagen or is_gemini_image or is_dalle
    if is_image_generator and not is_upscaler and not has_option("aspectRatio"):
        options.append(
            OptionDescriptor(
                key="aspectRatio",
                kind=OptionKind.ENUM,
                label="Aspect Ratio",
                values=ASPECT_RATIOS,
                description="The aspect ratio of the generated image.",
            )
        )

    if is_imagen:
        image_input = is_upscaler
    else:
        image_input = bool(supports["media"]) if "media" in supports else is_gemini

    capabilities = ModelCapabilities(
        supports_image_input=image_input,
        supports_video="veo" in model_id,
        supports_audio="speech" in model_id or "tts" in model_id,
        supports_aspect_ratio=has_option("aspectRatio"),
        supports_resolution=has_option("resolution"),
        supports_code_execution=bool(supports.get("codeExecution")),
        supports_tools=bool(supports.get("tools")),
        supports_multimodal=bool(supports.get("multimodal") or supports.get("media")),
        supports_google_search=bool(supports.get("googleSearchRetrieval")) or (is_gemini and not is_gemini_image),
        options=options,
        raw=supports,
    )
    return ModelInfo(id=model_id, label=label, provider=provider, description=description, capabilities=capabilities)


class ModelSource(Protocol):
    async def list_models(self) -> list[dict[str, Any]]: ...


class ModelCatalog:
    """
    Cached model descriptions fetched from the generation service.

    The service may answer with entries already described (``capabilities``
    present) or with raw provider metadata; both are accepted.
    """

    def __init__(self, client: ModelSource):
        self.client = client
        self._models: dict[str, ModelInfo] = {}

    async def refresh(self) -> list[ModelInfo]:
        entries = await self.client.list_models()
        models: dict[str, ModelInfo] = {}
        for entry in entries:
            info = self._parse_entry(entry)
            if info is not None:
                models[info.id] = info
        self._models = models
        logger.info(f"Model catalog loaded: {len(models)} model(s)")
        return list(models.values())

    @staticmethod
    def _parse_entry(entry: dict[str, Any]) -> ModelInfo | None:
        if "capabilities" in entry:
            capabilities = dict(entry["capabilities"] or {})
            kinds = {kind.value for kind in OptionKind}
            capabilities["options"] = [
                option for option in capabilities.get("options") or [] if option.get("type") in kinds
            ]
            return ModelInfo.model_validate({**entry, "capabilities": capabilities})
        metadata = (entry.get("metadata") or {}).get("model") or {}
        return describe_model(
            str(entry.get("name") or entry.get("id") or ""),
            description=entry.get("description") or "",
            custom_options=metadata.get("customOptions"),
            supports=metadata.get("supports"),
        )

    def get(self, model_id: str) -> ModelInfo | None:
        return self._models.get(model_id)

    def descriptors_for(self, model_id: str) -> list[OptionDescriptor] | None:
        """Option descriptors of a known model; None when the model is not catalogued."""
        info = self._models.get(model_id)
        return info.capabilities.options if info else None

    @property
    def models(self) -> list[ModelInfo]:
        return list(self._models.values())
