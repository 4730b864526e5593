import httpx
import structlog

from src.core.exceptions import ProviderError

logger = structlog.get_logger()


async def forward_multipart(
    client: httpx.AsyncClient,
    upload_url: str,
    fields: dict[str, str],
    file_bytes: bytes,
    filename: str = "image.jpg",
    content_type: str = "image/jpeg",
) -> None:
    """POST the pre-signed form fields plus the file to ``upload_url``.

    The storage backend expects the form fields before the file part.
    """
    try:
        response = await client.post(
            upload_url,
            data=fields,
            files={"file": (filename, file_bytes, content_type)},
        )
    except httpx.HTTPError as e:
        logger.error("multipart_forward_error", url=upload_url, error=str(e))
        raise ProviderError(f"Upload to storage failed: {e}") from e
    if not response.is_success:
        logger.error("multipart_forward_rejected", url=upload_url, status=response.status_code)
        raise ProviderError("Upload to storage failed", response.status_code)
    logger.info("multipart_forwarded", url=upload_url, status=response.status_code, size=len(file_bytes))
