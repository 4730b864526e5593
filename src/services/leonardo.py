import asyncio
import json
from typing import Any

import httpx
import structlog

from src.config import Settings
from src.core.exceptions import MissingCredential, ProviderError
from src.schemas.domain import (
    Element,
    GeneratedImage,
    GenerationJob,
    GenerationRequest,
    GenerationStatus,
    UploadTarget,
)
from src.services.http_retry import BackoffPolicy, Sleep, send_with_retry

logger = structlog.get_logger()


def builtin_elements(settings: Settings) -> list[Element]:
    return [
        Element(
            ak_uuid=settings.element_cute_emotes,
            name="Cute Emotes",
            description="Adds cute emote elements to the image",
            weight=0.5,
            min_weight=0.1,
            max_weight=2.0,
            sd_versions=["v1_5", "SDXL"],
            compatible_models=[settings.leonardo_model_anime_xl],
        )
    ]


def _parse_element(raw: dict[str, Any]) -> Element:
    return Element(
        ak_uuid=raw.get("akUUID") or raw.get("id") or "",
        name=raw.get("name") or "Unnamed element",
        description=raw.get("description") or "",
        weight=raw.get("defaultWeight") or 0.5,
        min_weight=raw.get("minWeight") or 0.1,
        max_weight=raw.get("maxWeight") or 2.0,
        sd_versions=raw.get("baseModels") or ["v1_5", "SDXL"],
        compatible_models=raw.get("compatibleModels") or [],
    )


def _parse_fields(fields: Any) -> dict[str, str]:
    if isinstance(fields, str):
        fields = json.loads(fields)
    if not isinstance(fields, dict):
        raise ValueError("upload fields are not an object")
    return {str(key): str(value) for key, value in fields.items()}


class LeonardoClient:
    """Thin async client for the image-generation provider's REST API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        retry: BackoffPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._client = http_client
        self._retry = retry or BackoffPolicy.from_settings(settings)
        self._sleep = sleep

    @property
    def base_url(self) -> str:
        return self._settings.leonardo_base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        if not self._settings.leonardo_api_key:
            raise MissingCredential("Leonardo")
        return {
            "Authorization": f"Bearer {self._settings.leonardo_api_key}",
            "Accept": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = self._headers()
        response = await send_with_retry(
            self._client,
            method,
            f"{self.base_url}{path}",
            policy=self._retry,
            sleep=self._sleep,
            headers=headers,
            **kwargs,
        )
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"{method} {path} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ProviderError(f"{method} {path} returned an unexpected payload")
        return data

    async def request_upload_target(self, extension: str) -> UploadTarget:
        data = await self._request("POST", "/init-image", json={"extension": extension})
        upload = data.get("uploadInitImage") or {}
        upload_id, url, fields = upload.get("id"), upload.get("url"), upload.get("fields")
        if not upload_id or not url or fields is None:
            logger.error("upload_target_incomplete", response=data)
            raise ProviderError("Provider did not return a complete upload target")
        try:
            parsed_fields = _parse_fields(fields)
        except ValueError as e:
            raise ProviderError(f"Provider returned malformed upload fields: {e}") from e
        logger.info("upload_target_received", upload_id=upload_id, extension=extension)
        return UploadTarget(url=url, fields=parsed_fields, upload_id=upload_id)

    async def create_generation(self, request: GenerationRequest) -> str:
        payload = request.to_payload()
        logger.debug("generation_request", width=request.width, height=request.height, size=len(json.dumps(payload)))
        data = await self._request("POST", "/generations", json=payload)
        generation_id = (data.get("sdGenerationJob") or {}).get("generationId")
        if not generation_id:
            logger.error("generation_id_missing", response=data)
            raise ProviderError("Provider did not return a generation id")
        logger.info("generation_submitted", generation_id=generation_id, fast_mode=request.fast_mode)
        return generation_id

    async def get_generation(self, generation_id: str) -> GenerationJob:
        data = await self._request("GET", f"/generations/{generation_id}")
        generation = data.get("generations_by_pk") or {}
        raw_status = generation.get("status")
        try:
            status = GenerationStatus(raw_status)
        except ValueError:
            if raw_status is not None:
                logger.warning("unknown_generation_status", generation_id=generation_id, status=raw_status)
            status = GenerationStatus.PENDING
        images = [
            GeneratedImage(id=str(image["id"]), url=image.get("url"))
            for image in generation.get("generated_images") or []
            if image.get("id")
        ]
        return GenerationJob(id=generation_id, status=status, images=images)

    async def list_elements(self) -> list[Element]:
        try:
            data = await self._request("GET", "/elements")
        except (MissingCredential, ProviderError) as e:
            logger.error("elements_fetch_failed", error=e.message)
            return builtin_elements(self._settings)
        raw_elements = data.get("elements")
        if not isinstance(raw_elements, list):
            logger.error("elements_malformed", response=data)
            return builtin_elements(self._settings)
        elements = [_parse_element(raw) for raw in raw_elements if isinstance(raw, dict)]
        logger.info("elements_fetched", count=len(elements))
        return elements
