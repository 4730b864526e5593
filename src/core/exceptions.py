class AppError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


class PipelineError(Exception):
    """Base class for failures raised while running the generation pipeline."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingCredential(PipelineError):
    status_code = 503

    def __init__(self, service: str) -> None:
        super().__init__(f"{service} API key is not configured")
        self.service = service


class ProviderError(PipelineError):
    """An upstream call failed; status_code is None for transport failures."""

    status_code = 502

    def __init__(self, message: str, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status

    @property
    def retryable(self) -> bool:
        return self.upstream_status is None or is_retryable_status(self.upstream_status)


class GenerationTimeout(PipelineError):
    status_code = 504

    def __init__(self, job_id: str, polls: int) -> None:
        super().__init__(f"Generation {job_id} did not complete after {polls} polls")
        self.job_id = job_id
        self.polls = polls


class GenerationFailed(PipelineError):
    status_code = 502

    def __init__(self, job_id: str, reason: str = "generation failed") -> None:
        super().__init__(f"Generation {job_id}: {reason}")
        self.job_id = job_id


class UploadDegraded(PipelineError):
    """Binary transfer to the pre-signed target failed; logged, never propagated."""


class InvalidImage(PipelineError):
    status_code = 400


class PipelineBusy(PipelineError):
    status_code = 409

    def __init__(self, message: str = "A pipeline run is already in progress") -> None:
        super().__init__(message)


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500
