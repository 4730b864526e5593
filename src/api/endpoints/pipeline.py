import structlog
from fastapi import APIRouter, Depends

from src.api.deps import get_container
from src.api.validation import validate_path_segment
from src.core.exceptions import AppError
from src.schemas.domain import Description, PipelineResult
from src.schemas.pipeline import (
    AnalyzeRequest,
    DescriptionResponse,
    PipelineResultResponse,
    PipelineStatusResponse,
    RunRequest,
)
from src.services.container import ServiceContainer
from src.services.pipeline import PipelineOrchestrator
from src.services.source_image import load_source_image

logger = structlog.get_logger()

router = APIRouter(prefix="/pipelines")


def _description_response(description: Description) -> DescriptionResponse:
    return DescriptionResponse(
        chinese_text=description.chinese_text,
        english_text=description.english_text,
        raw_text=description.raw_text,
        used_fallback=description.used_fallback,
    )


def _result_response(result: PipelineResult) -> PipelineResultResponse:
    return PipelineResultResponse(success=result.success, image_url=result.image_url, error=result.error)


def _status_response(session_id: str, pipeline: PipelineOrchestrator) -> PipelineStatusResponse:
    return PipelineStatusResponse(
        session_id=session_id,
        state=pipeline.state,
        running=pipeline.running,
        message=pipeline.message,
        logs=list(pipeline.logs),
        result=_result_response(pipeline.result) if pipeline.result else None,
        description=_description_response(pipeline.description) if pipeline.description else None,
    )


@router.post("/{session_id}/analyze", response_model=DescriptionResponse)
async def analyze(
    session_id: str,
    body: AnalyzeRequest,
    container: ServiceContainer = Depends(get_container),
) -> DescriptionResponse:
    validate_path_segment(session_id, "session_id")
    image = load_source_image(body.image)
    pipeline = container.pipelines.get(session_id)
    description = await pipeline.analyze(image, body.hint)
    return _description_response(description)


@router.post("/{session_id}/runs", response_model=PipelineResultResponse)
async def run_pipeline(
    session_id: str,
    body: RunRequest,
    container: ServiceContainer = Depends(get_container),
) -> PipelineResultResponse:
    validate_path_segment(session_id, "session_id")
    image = load_source_image(body.image)
    dimensions = (body.width, body.height) if body.width and body.height else None
    pipeline = container.pipelines.get(session_id)
    logger.info("pipeline_run_requested", session_id=session_id, style_mode=body.style_mode.value)
    result = await pipeline.run(
        image,
        hint=body.hint,
        dimensions=dimensions,
        selections=body.elements,
        fast_mode=body.fast_mode,
        style_mode=body.style_mode,
    )
    return _result_response(result)


@router.get("/{session_id}", response_model=PipelineStatusResponse)
async def get_pipeline(
    session_id: str,
    container: ServiceContainer = Depends(get_container),
) -> PipelineStatusResponse:
    validate_path_segment(session_id, "session_id")
    pipeline = container.pipelines.find(session_id)
    if pipeline is None:
        raise AppError(status_code=404, detail="Pipeline not found")
    return _status_response(session_id, pipeline)


@router.delete("/{session_id}", response_model=PipelineStatusResponse)
async def reset_pipeline(
    session_id: str,
    container: ServiceContainer = Depends(get_container),
) -> PipelineStatusResponse:
    validate_path_segment(session_id, "session_id")
    pipeline = container.pipelines.remove(session_id)
    if pipeline is None:
        raise AppError(status_code=404, detail="Pipeline not found")
    return _status_response(session_id, pipeline)
