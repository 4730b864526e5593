from pathlib import Path

import httpx
import structlog
from resilient_httpx import AllProxiesExhausted, AsyncProxyHttpClient, MaxRetriesExceeded, RetryPolicy

from src.config import Settings
from src.core.exceptions import InvalidImage
from src.schemas.domain import SourceImage
from src.services.source_image import load_source_image

logger = structlog.get_logger()


def _load_proxies_from_file(path: str) -> list[str]:
    file_path = Path(path)
    if not file_path.exists():
        logger.warning("proxy_file_not_found", path=path)
        return []
    proxies = []
    for line in file_path.read_text().splitlines():
        line = line.strip()
        if line:
            proxies.append(line)
    return proxies


def _build_proxy_pools(settings: Settings) -> dict[str, list[str]]:
    pools: dict[str, list[str]] = {}
    for name, proxy_list in settings.proxies.items():
        pools.setdefault(name, []).extend(proxy_list)
    for name, file_path in settings.proxy_files.items():
        pools.setdefault(name, []).extend(_load_proxies_from_file(file_path))
    return {name: urls for name, urls in pools.items() if urls}


def _is_remote(location: str) -> bool:
    return location.lower().startswith(("http://", "https://"))


class StyleReferenceLoader:
    """Loads the fixed style-reference image from disk or over HTTP.

    Loading is best effort: any failure is logged and reported as None so
    the pipeline can carry on without style guidance.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._client: AsyncProxyHttpClient | None = None

    def get_http_client(self) -> AsyncProxyHttpClient:
        if self._client is None:
            pools = _build_proxy_pools(self._settings)
            self._client = AsyncProxyHttpClient(
                proxies=pools or None,
                proxy_strategy=self._settings.proxy_strategy,
                retry=RetryPolicy(max_attempts=self._settings.fetch_max_retries),
                timeout=self._settings.fetch_timeout,
                headers={"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"},
                blacklist_threshold=self._settings.proxy_blacklist_threshold,
                blacklist_ttl=self._settings.proxy_blacklist_ttl,
                fallback_to_direct=True,
            )
        return self._client

    async def _fetch(self, url: str, pool: str | None = None) -> bytes | None:
        client = self.get_http_client()
        try:
            response = await client.get(url, pool=pool)
            response.raise_for_status()
            return response.content
        except (httpx.HTTPError, AllProxiesExhausted, MaxRetriesExceeded) as e:
            logger.error("style_reference_fetch_failed", url=url, error=str(e))
            return None

    def _read(self, location: str) -> bytes | None:
        path = Path(location)
        if not path.is_file():
            logger.warning("style_reference_missing", path=location)
            return None
        return path.read_bytes()

    async def load(self, location: str | None = None, pool: str | None = None) -> SourceImage | None:
        location = location or self._settings.style_reference_location
        data = await self._fetch(location, pool=pool) if _is_remote(location) else self._read(location)
        if not data:
            return None
        try:
            image = load_source_image(data)
        except InvalidImage as e:
            logger.warning("style_reference_invalid", location=location, error=e.message)
            return None
        logger.info("style_reference_loaded", location=location, size_kb=round(len(data) / 1024))
        return image

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
