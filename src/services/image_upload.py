import json

import httpx
import structlog

from src.core.exceptions import ProviderError, UploadDegraded
from src.schemas.domain import SourceImage, UploadHandle, UploadTarget
from src.services.leonardo import LeonardoClient
from src.services.source_image import load_source_image
from src.services.upload_relay import forward_multipart

logger = structlog.get_logger()


class ImageUploadAdapter:
    """Uploads images to the provider through its pre-signed upload flow.

    The upload id is reserved by the provider before any bytes move, so a
    failed transfer is logged as degraded and the handle is still returned
    with ``transferred=False``. Generation may still succeed or fail on its
    own; callers that need a hard guarantee must check the flag.
    """

    def __init__(
        self,
        provider: LeonardoClient,
        http_client: httpx.AsyncClient,
        relay_url: str | None = None,
    ) -> None:
        self._provider = provider
        self._client = http_client
        self._relay_url = relay_url

    async def upload(self, image: SourceImage | str | bytes) -> UploadHandle:
        if not isinstance(image, SourceImage):
            image = load_source_image(image)

        logger.debug("upload_started", mime_type=image.mime_type, size_kb=round(len(image.content) / 1024))
        target = await self._provider.request_upload_target(image.extension)

        try:
            await self._transfer(target, image)
        except UploadDegraded as e:
            logger.warning("upload_degraded", upload_id=target.upload_id, error=e.message)
            return UploadHandle(id=target.upload_id, mime_type=image.mime_type, transferred=False)

        logger.info("upload_complete", upload_id=target.upload_id)
        return UploadHandle(id=target.upload_id, mime_type=image.mime_type)

    async def _transfer(self, target: UploadTarget, image: SourceImage) -> None:
        filename = f"image.{image.extension}"
        try:
            if self._relay_url:
                await self._transfer_via_relay(self._relay_url, target, image, filename)
            else:
                await forward_multipart(
                    self._client,
                    target.url,
                    target.fields,
                    image.content,
                    filename=filename,
                    content_type=image.mime_type,
                )
        except ProviderError as e:
            raise UploadDegraded(e.message) from e

    async def _transfer_via_relay(
        self, relay_url: str, target: UploadTarget, image: SourceImage, filename: str
    ) -> None:
        try:
            response = await self._client.post(
                relay_url,
                data={"uploadUrl": target.url, "fields": json.dumps(target.fields)},
                files={"file": (filename, image.content, image.mime_type)},
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Upload relay unreachable: {e}") from e
        if not response.is_success:
            raise ProviderError(f"Upload relay rejected the file ({response.status_code})", response.status_code)
