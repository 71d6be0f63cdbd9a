from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.api.deps import get_project_id, get_queue, get_settings_state
from app.core.config import Settings
from app.core.exceptions import InvalidRequestError
from app.core.logging import get_logger
from app.models.ingestion import (
    IngestionBatch,
    IngestionErrorItem,
    IngestionEvent,
    IngestionResponse,
    IngestionSuccess,
)
from app.storage.ingestion_queue import IngestionQueue

logger = get_logger(__name__)
router = APIRouter()


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'event'}: {err['msg']}" for err in exc.errors()
    )


@router.post("/ingestion", status_code=207, response_model=IngestionResponse)
async def ingest(
    body: IngestionBatch,
    project_id: str = Depends(get_project_id),
    queue: IngestionQueue = Depends(get_queue),
    settings: Settings = Depends(get_settings_state),
):
    """
    Accept a batch of generation events. Each event is validated on its own
    and queued for asynchronous usage/cost resolution; the response reports
    per-event success or failure.
    """
    if len(body.batch) > settings.ingestion_max_batch_size:
        raise InvalidRequestError(
            f"Batch of {len(body.batch)} events exceeds the limit of {settings.ingestion_max_batch_size}"
        )

    response = IngestionResponse()
    for raw_event in body.batch:
        event_id = str(raw_event.get("id", "")) if isinstance(raw_event, dict) else ""
        try:
            event = IngestionEvent.model_validate(raw_event)
        except ValidationError as e:
            response.errors.append(
                IngestionErrorItem(
                    id=event_id,
                    status=400,
                    message="Invalid request data",
                    error=_validation_message(e),
                )
            )
            continue

        await queue.enqueue(project_id, raw_event)
        response.successes.append(IngestionSuccess(id=event.id))

    logger.info(
        "ingestion_batch_accepted",
        project_id=project_id,
        accepted=len(response.successes),
        rejected=len(response.errors),
    )
    return JSONResponse(status_code=207, content=response.model_dump())
