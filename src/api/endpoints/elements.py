from fastapi import APIRouter, Depends

from src.api.deps import get_container
from src.schemas.pipeline import ElementResponse
from src.services.container import ServiceContainer

router = APIRouter(prefix="/elements")


@router.get("", response_model=list[ElementResponse])
async def list_elements(container: ServiceContainer = Depends(get_container)) -> list[ElementResponse]:
    elements = await container.provider.list_elements()
    return [
        ElementResponse(
            ak_uuid=element.ak_uuid,
            name=element.name,
            description=element.description,
            weight=element.weight,
            min_weight=element.min_weight,
            max_weight=element.max_weight,
            compatible_models=element.compatible_models,
        )
        for element in elements
    ]
