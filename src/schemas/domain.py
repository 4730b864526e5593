from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MIME_TO_EXTENSION = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


class SourceImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: bytes
    mime_type: str = "image/jpeg"
    width: int | None = None
    height: int | None = None

    @property
    def extension(self) -> str:
        return MIME_TO_EXTENSION.get(self.mime_type, "jpg")

    @property
    def dimensions(self) -> tuple[int, int] | None:
        if self.width and self.height:
            return self.width, self.height
        return None


class Description(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary_text: str
    secondary_text: str
    raw_text: str
    used_fallback: bool = False

    @property
    def chinese_text(self) -> str:
        return self.primary_text

    @property
    def english_text(self) -> str:
        return self.secondary_text


class UploadTarget(BaseModel):
    url: str
    fields: dict[str, str]
    upload_id: str


class UploadHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    mime_type: str
    transferred: bool = True


class PipelineState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    POLLING = "polling"
    COMPLETE = "complete"
    FAILED = "failed"


class StyleMode(str, Enum):
    UPLOADED = "uploaded"
    GENERATED = "generated"


class GenerationStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class GeneratedImage(BaseModel):
    id: str
    url: str | None = None


class GenerationJob(BaseModel):
    id: str
    status: GenerationStatus
    images: list[GeneratedImage] = []

    @property
    def result_image_url(self) -> str | None:
        return self.images[0].url if self.images else None

    @property
    def result_image_id(self) -> str | None:
        return self.images[0].id if self.images else None


class StyleControl(BaseModel):
    """A ControlNet entry of a generation request."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    init_image_id: str = Field(alias="initImageId")
    init_image_type: Literal["UPLOADED", "GENERATED"] = Field(alias="initImageType")
    preprocessor_id: int = Field(alias="preprocessorId")
    strength_type: str | None = Field(default=None, alias="strengthType")
    influence: float | None = None


class Element(BaseModel):
    ak_uuid: str
    name: str
    description: str = ""
    weight: float = 0.5
    min_weight: float = 0.1
    max_weight: float = 2.0
    sd_versions: list[str] = ["v1_5", "SDXL"]
    compatible_models: list[str] = []

    def is_compatible_with(self, model_id: str) -> bool:
        return not self.compatible_models or model_id in self.compatible_models


class ElementSelection(BaseModel):
    element_id: str
    weight: float


class AppliedElement(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ak_uuid: str = Field(alias="akUUID")
    weight: float


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    width: int
    height: int
    prompt: str
    model_id: str = Field(alias="modelId")
    init_image_id: str | None = None
    init_strength: float | None = None
    style_controls: list[StyleControl] = Field(default=[], alias="controlnets")
    elements: list[AppliedElement] = []
    fast_mode: bool = Field(default=False, exclude=True)
    preset_style: str | None = Field(default=None, alias="presetStyle")
    alchemy: bool | None = None
    photo_real: bool | None = Field(default=None, alias="photoReal")
    photo_real_version: str | None = Field(default=None, alias="photoRealVersion")
    high_resolution: bool | None = Field(default=None, alias="highResolution")
    num_inference_steps: int | None = None
    guidance_scale: float | None = None
    num_images: int = 1
    prompt_magic: bool | None = Field(default=None, alias="promptMagic")

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(by_alias=True, exclude_none=True)
        if not self.style_controls:
            payload.pop("controlnets", None)
        if not self.elements:
            payload.pop("elements", None)
        return payload


class PipelineResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    image_url: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, image_url: str) -> "PipelineResult":
        return cls(success=True, image_url=image_url)

    @classmethod
    def failed(cls, error: str) -> "PipelineResult":
        return cls(success=False, error=error)
