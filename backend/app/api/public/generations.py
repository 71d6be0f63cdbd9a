from fastapi import APIRouter, Depends

from app.api.deps import get_generation_store, get_project_id
from app.core.exceptions import GenerationNotFoundError
from app.models.generation import Generation
from app.storage.generation_store import GenerationStore

router = APIRouter()


@router.get("/generations/{generation_id}", response_model=Generation)
async def get_generation(
    generation_id: str,
    project_id: str = Depends(get_project_id),
    store: GenerationStore = Depends(get_generation_store),
):
    generation = await store.get(project_id, generation_id)
    if generation is None:
        raise GenerationNotFoundError(f"Generation '{generation_id}' not found")
    return generation
