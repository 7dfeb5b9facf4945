from fastapi import APIRouter, BackgroundTasks, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import ChangeWebhookRequest
from shared.clients.realtime.models.ChangeEvent import ChangeEvent

router = APIRouter(prefix="/webhook", tags=["webhook"])


@router.post("/changes")
async def webhook_changes(
    request: Request,
    body: ChangeWebhookRequest,
    background_tasks: BackgroundTasks,
    _: None = Depends(verify_api_key),
) -> dict:
    """Accept a database webhook for a row change and apply it to the live view of the row's organization.

    The same change may also arrive over the realtime feed; applying it twice is harmless.

    Args:
        request (Request): FastAPI request (provides app.state.registry).
        body (ChangeWebhookRequest): Change type, table and the new/old row.
        background_tasks (BackgroundTasks): FastAPI background task queue.
        _ (None): Auth dependency result (unused).

    Returns:
        dict: Acknowledgement payload with status, table and type.
    """
    event = ChangeEvent(
        table=body.table,
        event_type=body.type,
        record=body.record or {},
        old_record=body.old_record or {},
    )
    background_tasks.add_task(request.app.state.registry.do_dispatch_change, event)
    return {"status": "accepted", "table": body.table, "type": body.type}
