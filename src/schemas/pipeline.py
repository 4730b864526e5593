from pydantic import BaseModel, Field

from src.schemas.domain import ElementSelection, PipelineState, StyleMode


class AnalyzeRequest(BaseModel):
    image: str
    hint: str = ""


class DescriptionResponse(BaseModel):
    chinese_text: str
    english_text: str
    raw_text: str
    used_fallback: bool


class RunRequest(BaseModel):
    image: str
    hint: str = ""
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)
    elements: list[ElementSelection] = []
    fast_mode: bool = True
    style_mode: StyleMode = StyleMode.UPLOADED


class PipelineResultResponse(BaseModel):
    success: bool
    image_url: str | None = None
    error: str | None = None


class PipelineStatusResponse(BaseModel):
    session_id: str
    state: PipelineState
    running: bool
    message: str | None = None
    logs: list[str] = []
    result: PipelineResultResponse | None = None
    description: DescriptionResponse | None = None


class ElementResponse(BaseModel):
    ak_uuid: str
    name: str
    description: str
    weight: float
    min_weight: float
    max_weight: float
    compatible_models: list[str]


class UploadRelayResponse(BaseModel):
    success: bool
