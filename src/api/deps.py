from fastapi import Request

from src.config import settings
from src.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        container = ServiceContainer(settings)
        request.app.state.container = container
    return container
