import asyncio
import re

import httpx
import structlog

from src.config import Settings
from src.core.exceptions import MissingCredential, ProviderError
from src.schemas.domain import Description, SourceImage
from src.services.http_retry import BackoffPolicy, Sleep, send_with_retry
from src.services.source_image import to_data_url

logger = structlog.get_logger()

_CHINESE_RE = re.compile(r"\[Chinese\]([\s\S]*?)(?=\[English\]|\Z)", re.IGNORECASE)
_ENGLISH_RE = re.compile(r"\[English\]([\s\S]*?)\Z", re.IGNORECASE)
_ASCII_LINE_RE = re.compile(r"^[a-zA-Z\s\d.,;:()\-'\"!?]+$")
_BLANK_LINES_RE = re.compile(r"\n\s*\n")
_MANY_NEWLINES_RE = re.compile(r"\n{3,}")
MIN_ASCII_LINE_LENGTH = 10


def _collapse_blank_lines(text: str) -> str:
    return _MANY_NEWLINES_RE.sub("\n\n", _BLANK_LINES_RE.sub("\n", text))


def parse_bilingual(text: str) -> Description:
    """Split a model answer into its Chinese and English segments.

    Looks for ``[Chinese]`` / ``[English]`` markers first. Without them, the
    first line that is plain ASCII and longer than ten characters starts the
    English segment. When no such line exists both segments hold the whole
    text.
    """
    chinese = ""
    english = ""

    match = _CHINESE_RE.search(text)
    if match and match.group(1):
        chinese = _collapse_blank_lines(match.group(1).strip())
    match = _ENGLISH_RE.search(text)
    if match and match.group(1):
        english = _collapse_blank_lines(match.group(1).strip())

    if chinese or english:
        return Description(primary_text=chinese, secondary_text=english, raw_text=text)

    split_found = False
    lines = text.split("\n")
    for index, line in enumerate(lines):
        stripped = line.strip()
        if len(stripped) > MIN_ASCII_LINE_LENGTH and _ASCII_LINE_RE.match(stripped):
            chinese = "\n".join(lines[:index]).strip()
            english = "\n".join(lines[index:]).strip()
            split_found = True
            break
    if not split_found:
        # TODO: both segments repeat the full text here; needs a product decision on mixed-language answers.
        chinese = english = text

    logger.info("description_parse_fallback", split_found=split_found)
    return Description(
        primary_text=_collapse_blank_lines(chinese),
        secondary_text=_collapse_blank_lines(english),
        raw_text=text,
        used_fallback=True,
    )


class VisionDescriptionClient:
    """Describes a source image through an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        retry: BackoffPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._client = http_client
        self._retry = retry or BackoffPolicy.from_settings(settings, max_attempts=settings.vision_max_attempts)
        self._sleep = sleep

    def build_payload(self, image: SourceImage, hint: str = "") -> dict:
        user_text = self._settings.openai_user_text
        if hint:
            user_text = f"{user_text}\n{hint}"
        return {
            "model": self._settings.openai_model,
            "messages": [
                {"role": "system", "content": self._settings.openai_system_prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": user_text},
                        {"type": "image_url", "image_url": {"url": to_data_url(image)}},
                    ],
                },
            ],
            "max_tokens": self._settings.openai_max_tokens,
        }

    async def describe(self, image: SourceImage, hint: str = "") -> Description:
        if not self._settings.openai_api_key:
            logger.error("vision_api_key_missing")
            raise MissingCredential("OpenAI")

        logger.info("vision_request", model=self._settings.openai_model, has_hint=bool(hint))
        response = await send_with_retry(
            self._client,
            "POST",
            f"{self._settings.openai_base_url.rstrip('/')}/chat/completions",
            policy=self._retry,
            sleep=self._sleep,
            headers={"Authorization": f"Bearer {self._settings.openai_api_key}"},
            json=self.build_payload(image, hint),
        )
        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Vision response could not be read: {e}", response.status_code) from e

        description = parse_bilingual(content)
        logger.info(
            "vision_described",
            raw_length=len(description.raw_text),
            chinese_length=len(description.chinese_text),
            english_length=len(description.english_text),
            used_fallback=description.used_fallback,
        )
        return description
