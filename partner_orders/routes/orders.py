from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from partner_orders.errors import (
    DeletionNotAllowedError,
    InvalidTransitionError,
    NotificationNotQueuedError,
    OrderLifecycleError,
    OrderLockedError,
    OrderNotFoundError,
    PackingSlipNotAllowedError,
    PersistenceFailure,
    ValidationError,
)
from partner_orders.lifecycle import OrderLifecycle
from partner_orders.models import Actor, HistoryAction, NotificationType, Order, TransitionRequest
from partner_orders.order_state import (
    ActorRole,
    can_delete,
    can_manage_packing_slip,
    get_allowed_transitions,
    is_edit_locked,
    is_netsuite_ready,
    packing_slip_action,
)
from partner_orders.redis_client import check_idempotency, release_idempotency

router = APIRouter(prefix="/orders", tags=["orders"])


class PackingSlipBody(BaseModel):
    invoice_number: str | None = Field(default=None, description="Overrides the order's invoice number on the slip")
    shipping_method: str | None = None
    netsuite_reference: str | None = None
    notes: str | None = None


class HistoryEventBody(BaseModel):
    action_type: HistoryAction = Field(..., description="Anything but status_change")
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationBody(BaseModel):
    notification_type: NotificationType = NotificationType.STATUS_CHANGE
    custom_message: str | None = Field(default=None, description="Required for custom notifications")


def get_lifecycle(request: Request) -> OrderLifecycle:
    return request.app.state.lifecycle


def get_actor(
    x_actor_id: str = Header(..., description="Id of the acting user"),
    x_actor_name: str = Header(default="Unknown"),
    x_actor_role: ActorRole = Header(default=ActorRole.CLIENT),
) -> Actor:
    return Actor(id=x_actor_id, name=x_actor_name, role=x_actor_role)


def order_view(order: Order, role: ActorRole) -> dict:
    return {
        "order": order.model_dump(mode="json"),
        "permissions": {
            "can_delete": can_delete(order, role),
            "is_edit_locked": is_edit_locked(order, role),
            "can_manage_packing_slip": can_manage_packing_slip(order),
            "packing_slip_action": packing_slip_action(order),
            "is_netsuite_ready": is_netsuite_ready(order),
            "allowed_statuses": [s.value for s in get_allowed_transitions(order.status)],
        },
    }


def lifecycle_error_response(request: Request, exc: OrderLifecycleError) -> JSONResponse:
    """Map lifecycle errors onto HTTP responses (registered as an exception handler)."""
    if isinstance(exc, ValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "status": "validation_error",
                "target_status": exc.target_status,
                "missing_fields": exc.missing_fields,
            },
        )
    if isinstance(exc, OrderNotFoundError):
        return JSONResponse(status_code=404, content={"status": "not_found", "order_id": exc.order_id})
    if isinstance(exc, DeletionNotAllowedError):
        return JSONResponse(status_code=403, content={"status": "deletion_not_allowed", "error": str(exc)})
    if isinstance(exc, (InvalidTransitionError, OrderLockedError, PackingSlipNotAllowedError)):
        return JSONResponse(status_code=409, content={"status": "conflict", "error": str(exc)})
    if isinstance(exc, NotificationNotQueuedError):
        return JSONResponse(status_code=503, content={"status": "unavailable", "error": str(exc)})
    if isinstance(exc, PersistenceFailure):
        return JSONResponse(status_code=503, content={"status": "unavailable", "error": "storage unavailable"})
    return JSONResponse(status_code=500, content={"status": "error", "error": str(exc)})


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    order = await lifecycle.get_order(order_id)
    return JSONResponse(status_code=200, content=order_view(order, actor.role))


@router.get("/{order_id}/history")
async def get_history(order_id: str, lifecycle: OrderLifecycle = Depends(get_lifecycle)) -> JSONResponse:
    entries = await lifecycle.history(order_id)
    return JSONResponse(status_code=200, content={"history": [e.model_dump(mode="json") for e in entries]})


@router.post("/{order_id}/transition")
async def transition(
    order_id: str,
    body: TransitionRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    idempotency_key: str | None = Header(default=None),
) -> JSONResponse:
    """
    Change status and/or save gated fields. Idempotent per Idempotency-Key:
    a repeated key returns 200 already_processed without touching the order.
    """
    key = f"idempotency:transition:{order_id}:{idempotency_key}" if idempotency_key else None
    if key and await check_idempotency(key):
        return JSONResponse(
            status_code=200,
            content={"status": "already_processed", "idempotency_key": idempotency_key},
        )
    try:
        order = await lifecycle.request_transition(order_id, body, actor)
    except OrderLifecycleError:
        if key:
            await release_idempotency(key)
        raise
    return JSONResponse(status_code=200, content=order_view(order, actor.role))


@router.post("/{order_id}/packing-slip")
async def create_packing_slip(
    order_id: str,
    body: PackingSlipBody,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    order = await lifecycle.create_packing_slip(
        order_id,
        actor,
        invoice_number=body.invoice_number,
        shipping_method=body.shipping_method,
        netsuite_reference=body.netsuite_reference,
        notes=body.notes,
    )
    return JSONResponse(status_code=201, content=order_view(order, actor.role))


@router.post("/{order_id}/events")
async def record_event(
    order_id: str,
    body: HistoryEventBody,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    """History entries reported by uploads, order edits and order creation."""
    if body.action_type == HistoryAction.STATUS_CHANGE:
        return JSONResponse(
            status_code=400,
            content={"status": "bad_request", "error": "use /transition to change status"},
        )
    entry = await lifecycle.record_event(order_id, body.action_type, actor, notes=body.notes, metadata=body.metadata)
    return JSONResponse(status_code=201, content=entry.model_dump(mode="json"))


@router.post("/{order_id}/notifications")
async def send_notification(
    order_id: str,
    body: NotificationBody,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    """Send a notification by hand (optionally with a custom message); logged as notification_sent."""
    try:
        entry = await lifecycle.send_notification(
            order_id,
            body.notification_type,
            actor,
            custom_message=body.custom_message,
        )
    except ValueError as e:
        return JSONResponse(status_code=400, content={"status": "bad_request", "error": str(e)})
    return JSONResponse(status_code=201, content=entry.model_dump(mode="json"))


@router.delete("/{order_id}")
async def delete_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    await lifecycle.delete_order(order_id, actor)
    return JSONResponse(status_code=200, content={"status": "deleted", "order_id": order_id})
