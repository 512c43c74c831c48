"""Business event ingestion endpoint.

The surrounding system reports events (a lead changed stage, an RSVP
arrived, ...) here. Matching and execution creation happen after the
response is sent.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, status
import logging

from api.schemas.execution import EventAcceptedResponse, EventRequest
from app.dependencies import get_company_id, get_engine
from triggers.base import TriggerEvent
from workflow.engine import AutomationEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


async def _ingest(engine: AutomationEngine, event: TriggerEvent) -> None:
    try:
        await engine.trigger(event)
    except Exception as e:
        logger.error(f"Event {event.trigger_type} for company {event.company_id} failed: {e}", exc_info=True)


@router.post("/", response_model=EventAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_event(
    request: EventRequest,
    background_tasks: BackgroundTasks,
    company_id: str = Depends(get_company_id),
    engine: AutomationEngine = Depends(get_engine),
) -> EventAcceptedResponse:
    """
    Accept a business event for trigger evaluation.
    """
    event = TriggerEvent(
        company_id=company_id,
        trigger_type=request.trigger_type,
        entity_type=request.entity_type,
        entity_id=request.entity_id,
        payload=request.payload,
    )
    background_tasks.add_task(_ingest, engine, event)
    return EventAcceptedResponse(trigger_type=request.trigger_type)
