from collections import OrderedDict

import httpx
import structlog

from src.config import Settings
from src.core.exceptions import PipelineBusy
from src.services.image_upload import ImageUploadAdapter
from src.services.leonardo import LeonardoClient
from src.services.pipeline import PipelineOrchestrator
from src.services.style_reference import StyleReferenceLoader
from src.services.vision import VisionDescriptionClient

logger = structlog.get_logger()


class PipelineRegistry:
    """One orchestrator per session id, created on first use.

    Holds at most ``max_sessions`` orchestrators. Creating one more evicts
    the least recently used idle session; if every session is running the
    new one is refused with PipelineBusy.
    """

    def __init__(self, container: "ServiceContainer", max_sessions: int) -> None:
        self._container = container
        self._max_sessions = max_sessions
        self._pipelines: OrderedDict[str, PipelineOrchestrator] = OrderedDict()

    def get(self, session_id: str) -> PipelineOrchestrator:
        pipeline = self._pipelines.get(session_id)
        if pipeline is not None:
            self._pipelines.move_to_end(session_id)
            return pipeline
        if len(self._pipelines) >= self._max_sessions:
            self._evict_idle()
        pipeline = self._container.create_pipeline()
        self._pipelines[session_id] = pipeline
        logger.info("pipeline_created", session_id=session_id, sessions=len(self._pipelines))
        return pipeline

    def _evict_idle(self) -> None:
        for session_id, pipeline in self._pipelines.items():
            if not pipeline.running:
                del self._pipelines[session_id]
                logger.info("pipeline_evicted", session_id=session_id)
                return
        logger.warning("pipeline_capacity_reached", sessions=len(self._pipelines))
        raise PipelineBusy("Too many pipelines are running; try again later")

    def find(self, session_id: str) -> PipelineOrchestrator | None:
        return self._pipelines.get(session_id)

    def remove(self, session_id: str) -> PipelineOrchestrator | None:
        pipeline = self._pipelines.get(session_id)
        if pipeline is None:
            return None
        pipeline.reset()
        del self._pipelines[session_id]
        logger.info("pipeline_removed", session_id=session_id)
        return pipeline

    def __len__(self) -> int:
        return len(self._pipelines)


class ServiceContainer:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.http_timeout)
        self.provider = LeonardoClient(settings, self.http_client)
        self.vision = VisionDescriptionClient(settings, self.http_client)
        self.uploader = ImageUploadAdapter(self.provider, self.http_client, relay_url=settings.upload_relay_url)
        self.style_loader = StyleReferenceLoader(settings)
        self.pipelines = PipelineRegistry(self, max_sessions=settings.max_sessions)

    def create_pipeline(self) -> PipelineOrchestrator:
        return PipelineOrchestrator(
            self.settings,
            vision=self.vision,
            provider=self.provider,
            uploader=self.uploader,
            style_loader=self.style_loader,
        )

    async def aclose(self) -> None:
        await self.style_loader.aclose()
        await self.http_client.aclose()
