import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from src.config import Settings
from src.core.exceptions import GenerationFailed, GenerationTimeout, ProviderError
from src.schemas.domain import GenerationJob, GenerationStatus
from src.services.http_retry import Sleep

logger = structlog.get_logger()

FetchStatus = Callable[[str], Awaitable[GenerationJob]]


@dataclass(frozen=True)
class PollPolicy:
    max_polls: int = 40
    initial_delay: float = 3.0
    max_delay: float = 10.0
    backoff_factor: float = 1.5
    error_backoff_factor: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PollPolicy":
        return cls(
            max_polls=settings.poll_max_polls,
            initial_delay=settings.poll_initial_delay,
            max_delay=settings.poll_max_delay,
            backoff_factor=settings.poll_backoff_factor,
            error_backoff_factor=settings.poll_error_backoff_factor,
        )


async def wait_for_completion(
    job_id: str,
    fetch_status: FetchStatus,
    policy: PollPolicy,
    sleep: Sleep = asyncio.sleep,
) -> GenerationJob:
    """Poll a generation job until it completes, fails or the poll budget runs out.

    Each fetch counts against ``policy.max_polls``, including fetches that
    fail with a transient ProviderError. The sleep between polls starts at
    ``initial_delay`` and grows after every pending or failed fetch, capped
    at ``max_delay``. Non-transient errors propagate.
    """
    delay = policy.initial_delay
    for poll in range(1, policy.max_polls + 1):
        next_delay = delay
        try:
            job = await fetch_status(job_id)
        except ProviderError as e:
            if not e.retryable:
                raise
            logger.warning("generation_poll_failed", job_id=job_id, poll=poll, error=e.message)
            next_delay = min(delay * policy.error_backoff_factor, policy.max_delay)
        else:
            logger.debug("generation_status", job_id=job_id, status=job.status.value, poll=poll)
            if job.status is GenerationStatus.COMPLETE:
                if not job.images:
                    raise GenerationFailed(job_id, "completed without any images")
                logger.info("generation_complete", job_id=job_id, polls=poll, image_id=job.result_image_id)
                return job
            if job.status is GenerationStatus.FAILED:
                logger.error("generation_failed", job_id=job_id, polls=poll)
                raise GenerationFailed(job_id)
            next_delay = min(delay * policy.backoff_factor, policy.max_delay)

        if poll < policy.max_polls:
            await sleep(delay)
        delay = next_delay

    logger.error("generation_timeout", job_id=job_id, polls=policy.max_polls)
    raise GenerationTimeout(job_id, policy.max_polls)
