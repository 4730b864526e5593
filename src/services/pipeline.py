import asyncio
import hashlib
from collections.abc import Sequence

import httpx
import structlog

from src.config import Settings
from src.core.exceptions import InvalidImage, PipelineBusy, PipelineError
from src.schemas.domain import (
    Description,
    Element,
    ElementSelection,
    PipelineResult,
    PipelineState,
    SourceImage,
    StyleMode,
)
from src.services import request_builder
from src.services.http_retry import Sleep
from src.services.image_upload import ImageUploadAdapter
from src.services.leonardo import LeonardoClient
from src.services.polling import PollPolicy, wait_for_completion
from src.services.style_reference import StyleReferenceLoader
from src.services.vision import VisionDescriptionClient

logger = structlog.get_logger()


def _fingerprint(image: SourceImage) -> str:
    return hashlib.sha256(image.content).hexdigest()


class PipelineOrchestrator:
    """Runs analyze → upload → build → submit → poll for one session.

    Only one run may be active at a time; a trigger while busy raises
    PipelineBusy instead of queueing. State, status message, progress log
    and the last result are readable at any time by other coroutines.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        vision: VisionDescriptionClient,
        provider: LeonardoClient,
        uploader: ImageUploadAdapter,
        style_loader: StyleReferenceLoader,
        poll_policy: PollPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._vision = vision
        self._provider = provider
        self._uploader = uploader
        self._style_loader = style_loader
        self._poll_policy = poll_policy or PollPolicy.from_settings(settings)
        self._sleep = sleep

        self.state = PipelineState.IDLE
        self.message: str | None = None
        self.logs: list[str] = []
        self.result: PipelineResult | None = None
        self._running = False
        self._description: Description | None = None
        self._description_key: str | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def description(self) -> Description | None:
        return self._description

    def _log(self, message: str, **kw: object) -> None:
        self.logs.append(message)
        logger.info("pipeline_progress", step=message, state=self.state.value, **kw)

    def _enter(self, state: PipelineState, message: str) -> None:
        self.state = state
        self.message = message
        self._log(message)

    def _acquire(self) -> None:
        # Must stay synchronous: the flag is set before the first await.
        if self._running:
            logger.warning("pipeline_busy", state=self.state.value)
            raise PipelineBusy()
        self._running = True
        self.logs = []

    def reset(self) -> None:
        if self._running:
            raise PipelineBusy()
        self.state = PipelineState.IDLE
        self.message = None
        self.logs = []
        self.result = None
        self._description = None
        self._description_key = None

    async def analyze(self, image: SourceImage | None, hint: str = "") -> Description:
        if image is None:
            raise InvalidImage("A source image is required")
        self._acquire()
        try:
            description = await self._analyze(image, hint)
            self.state = PipelineState.IDLE
            self.message = "Analysis complete"
            return description
        except (PipelineError, httpx.HTTPError) as e:
            self._fail(e.message if isinstance(e, PipelineError) else str(e))
            raise
        finally:
            self._running = False

    async def _analyze(self, image: SourceImage, hint: str) -> Description:
        self._enter(PipelineState.ANALYZING, "Analyzing image")
        description = await self._vision.describe(image, hint)
        self._description = description
        self._description_key = _fingerprint(image)
        self._log("Description ready", used_fallback=description.used_fallback)
        return description

    async def run(
        self,
        image: SourceImage | None,
        *,
        hint: str = "",
        dimensions: tuple[int, int] | None = None,
        selections: Sequence[ElementSelection] = (),
        available_elements: Sequence[Element] | None = None,
        fast_mode: bool = True,
        style_mode: StyleMode = StyleMode.UPLOADED,
    ) -> PipelineResult:
        if image is None:
            raise InvalidImage("A source image is required")
        self._acquire()
        self.result = None
        try:
            image_url = await self._run(
                image,
                hint=hint,
                dimensions=dimensions or image.dimensions,
                selections=selections,
                available_elements=available_elements,
                fast_mode=fast_mode,
                style_mode=style_mode,
            )
        except (PipelineError, httpx.HTTPError) as e:
            message = e.message if isinstance(e, PipelineError) else str(e)
            self._fail(message)
            self.result = PipelineResult.failed(message)
        except Exception as e:
            self._fail(str(e))
            raise
        else:
            self._enter(PipelineState.COMPLETE, "Image generated")
            self.result = PipelineResult.ok(image_url)
        finally:
            self._running = False
        return self.result

    def _fail(self, message: str) -> None:
        self.state = PipelineState.FAILED
        self.message = message
        self.logs.append(f"Error: {message}")
        logger.error("pipeline_failed", error=message)

    async def _run(
        self,
        image: SourceImage,
        *,
        hint: str,
        dimensions: tuple[int, int] | None,
        selections: Sequence[ElementSelection],
        available_elements: Sequence[Element] | None,
        fast_mode: bool,
        style_mode: StyleMode,
    ) -> str:
        description = self._description
        if description is None or self._description_key != _fingerprint(image):
            description = await self._analyze(image, hint)
        else:
            self._log("Reusing existing description")

        self._enter(PipelineState.GENERATING, "Generating image")
        upload = await self._uploader.upload(image)
        self._log("Source image uploaded", upload_id=upload.id, transferred=upload.transferred)

        if style_mode is StyleMode.GENERATED:
            style_image_id = await self._generate_style_reference()
            request = request_builder.build_character_request(
                self._settings,
                character_image_id=upload.id,
                description=description.english_text,
                dimensions=dimensions,
                style_image_id=style_image_id,
                fast_mode=fast_mode,
            )
        else:
            style_image_id = await self._upload_style_reference()
            if selections and available_elements is None:
                available_elements = await self._provider.list_elements()
            request = request_builder.build_styled_request(
                self._settings,
                init_image_id=upload.id,
                description=description.english_text,
                dimensions=dimensions,
                selections=selections,
                available_elements=available_elements or (),
                style_image_id=style_image_id,
                fast_mode=fast_mode,
            )

        generation_id = await self._provider.create_generation(request)
        self._enter(PipelineState.POLLING, "Waiting for generation")
        job = await wait_for_completion(generation_id, self._provider.get_generation, self._poll_policy, self._sleep)
        if not job.result_image_url:
            raise PipelineError("Generation completed but no image URL was returned")
        return job.result_image_url

    async def _upload_style_reference(self) -> str | None:
        try:
            style_image = await self._style_loader.load()
            if style_image is None:
                self._log("Style reference unavailable, continuing without it")
                return None
            handle = await self._uploader.upload(style_image)
        except (PipelineError, httpx.HTTPError) as e:
            logger.warning("style_reference_skipped", error=str(e))
            self._log("Style reference upload failed, continuing without it")
            return None
        self._log("Style reference uploaded", upload_id=handle.id)
        return handle.id

    async def _generate_style_reference(self) -> str | None:
        try:
            request = request_builder.build_reference_request(self._settings)
            generation_id = await self._provider.create_generation(request)
            job = await wait_for_completion(
                generation_id, self._provider.get_generation, self._poll_policy, self._sleep
            )
        except (PipelineError, httpx.HTTPError) as e:
            logger.warning("style_reference_skipped", error=str(e))
            self._log("Style reference generation failed, continuing without it")
            return None
        self._log("Style reference generated", image_id=job.result_image_id)
        return job.result_image_id
