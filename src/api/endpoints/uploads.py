import json

import structlog
from fastapi import APIRouter, Depends, File, Form, UploadFile

from src.api.deps import get_container
from src.api.validation import validate_outbound_url
from src.core.exceptions import AppError, ProviderError
from src.schemas.pipeline import UploadRelayResponse
from src.services.container import ServiceContainer
from src.services.upload_relay import forward_multipart

logger = structlog.get_logger()

router = APIRouter(prefix="/uploads")


def _parse_fields(raw: str) -> dict[str, str]:
    try:
        fields = json.loads(raw)
    except ValueError:
        raise AppError(status_code=400, detail="fields must be a JSON object") from None
    if not isinstance(fields, dict):
        raise AppError(status_code=400, detail="fields must be a JSON object")
    return {str(key): str(value) for key, value in fields.items()}


@router.post("/relay", response_model=UploadRelayResponse)
async def relay_upload(
    upload_url: str = Form(..., alias="uploadUrl"),
    fields: str = Form(...),
    file: UploadFile = File(...),
    container: ServiceContainer = Depends(get_container),
) -> UploadRelayResponse:
    validate_outbound_url(upload_url)
    form_fields = _parse_fields(fields)
    content = await file.read()
    if not content:
        raise AppError(status_code=400, detail="file is empty")

    try:
        await forward_multipart(
            container.http_client,
            upload_url,
            form_fields,
            content,
            filename=file.filename or "image.jpg",
            content_type=file.content_type or "image/jpeg",
        )
    except ProviderError as e:
        logger.error("upload_relay_failed", url=upload_url, status=e.upstream_status, error=e.message)
        raise AppError(status_code=e.upstream_status or 502, detail=e.message) from e
    return UploadRelayResponse(success=True)
