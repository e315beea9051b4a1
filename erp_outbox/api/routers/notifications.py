from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from erp_outbox.core.errors import InvalidStateError, NotFoundError
from erp_outbox.core.security import require_admin_token
from erp_outbox.models.tables import NotificationStatus
from erp_outbox.outbox.store import OutboxStore
from erp_outbox.schemas.notifications import NotificationDto
from erp_outbox.util.time import now_utc

router = APIRouter(dependencies=[Depends(require_admin_token)])


def get_store() -> OutboxStore:
    return OutboxStore()


@router.get("", response_model=list[NotificationDto])
def list_notifications(
    status: NotificationStatus | None = None,
    skip: int = Query(default=0),
    take: int = Query(default=100),
    store: OutboxStore = Depends(get_store),
):
    return store.list_items(status=status, skip=skip, take=take)


@router.get("/summary")
def notifications_summary(store: OutboxStore = Depends(get_store)) -> dict:
    return {"counts": store.count_by_status()}


@router.get("/{item_id}", response_model=NotificationDto)
def get_notification(item_id: str, store: OutboxStore = Depends(get_store)):
    item = store.get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return item


@router.post("/{item_id}/retry", status_code=204)
def retry_notification(item_id: str, store: OutboxStore = Depends(get_store)) -> Response:
    try:
        store.retry_now(item_id, now_utc())
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Notification not found")
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return Response(status_code=204)
