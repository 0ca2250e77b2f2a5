"""
OrderLifecycle: the only code path that changes an order's status.

request_transition runs under a per-order lock and a single database
transaction: load (row locked), check, save, append the status_change
entry. Side effects are scheduled only after that transaction commits and
are tracked so drain() can wait for them before shutdown.
"""
import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Coroutine

from partner_orders import validation
from partner_orders.audit import AuditLog
from partner_orders.errors import (
    DeletionNotAllowedError,
    InvalidTransitionError,
    NotificationNotQueuedError,
    OrderLockedError,
    PackingSlipNotAllowedError,
    ValidationError,
)
from partner_orders.metrics import transitions_rejected_total, transitions_total
from partner_orders.models import (
    GATED_FIELDS,
    NETSUITE_FULFILLED,
    Actor,
    HistoryAction,
    HistoryEntry,
    NotificationType,
    Order,
    TransitionRequest,
    utcnow,
)
from partner_orders.order_state import (
    ActorRole,
    OrderStatus,
    can_delete,
    can_manage_packing_slip,
    is_edit_locked,
    is_valid_transition,
)
from partner_orders.side_effects import SideEffectDispatcher

logger = logging.getLogger(__name__)

DEFAULT_DRAIN_TIMEOUT_SEC = 30


class OrderLocks:
    """One asyncio.Lock per order id, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[order_id] = lock
        async with lock:
            yield


def completion_notes(tracking_number: str | None, notes: str | None) -> str:
    """History note for a move to Done, e.g. "Order completed - Tracking: 1Z999 - left at dock"."""
    parts = ["Order completed"]
    if tracking_number:
        parts.append(f"Tracking: {tracking_number}")
    if notes:
        parts.append(notes)
    return " - ".join(parts)


def ensure_can_delete(order: Order, actor_role: ActorRole) -> None:
    if not can_delete(order, actor_role):
        raise DeletionNotAllowedError(status=order.status.value, actor_role=actor_role.value)


class OrderLifecycle:
    def __init__(self, store, notifier, packing_slips):
        self._store = store
        self._notifier = notifier
        self.locks = OrderLocks()
        self.audit = AuditLog(store)
        self.dispatcher = SideEffectDispatcher(store, self.audit, notifier, packing_slips, self.locks)
        self._tasks: set[asyncio.Task] = set()

    async def get_order(self, order_id: str) -> Order:
        return await self._store.load_order(order_id)

    async def history(self, order_id: str) -> list[HistoryEntry]:
        return await self.audit.history(order_id)

    def _check(self, order: Order, request: TransitionRequest, actor: Actor) -> None:
        """Every pre-commit check. Raises; never writes."""
        target = request.status
        if not is_valid_transition(order.status, target):
            transitions_rejected_total.labels(target_status=target.value, reason="terminal").inc()
            raise InvalidTransitionError(current_state=order.status.value, target_state=target.value)
        if is_edit_locked(order, actor.role):
            transitions_rejected_total.labels(target_status=target.value, reason="locked").inc()
            raise OrderLockedError(status=order.status.value)
        merged: dict[str, Any] = {name: getattr(order, name) for name in GATED_FIELDS}
        merged.update(request.field_updates())
        missing = validation.missing_fields(target, merged)
        if missing:
            transitions_rejected_total.labels(target_status=target.value, reason="missing_fields").inc()
            raise ValidationError(missing, target_status=target.value)

    async def request_transition(self, order_id: str, request: TransitionRequest, actor: Actor) -> Order:
        """
        Move order_id to request.status, saving request's gated fields with it.
        Raises ValidationError, InvalidTransitionError, OrderLockedError or
        OrderNotFoundError without writing anything; PersistenceFailure when the
        store fails (the transaction is rolled back).
        """
        async with self.locks.hold(order_id):
            async with self._store.transaction() as session:
                order = await session.load_order(order_id)
                self._check(order, request, actor)

                status_from, status_to = order.status, request.status
                changes = {
                    name: value
                    for name, value in validation.normalize_updates(request.field_updates()).items()
                    if getattr(order, name) != value
                }
                if "tracking_number" in request.model_fields_set:
                    tracking = (request.tracking_number or "").strip() or None
                    if tracking != order.tracking_number:
                        changes["tracking_number"] = tracking
                if status_from == status_to and not changes:
                    return order

                update = {**changes, "status": status_to, "updated_at": utcnow()}
                completing = status_to == OrderStatus.DONE and status_from != status_to
                if completing:
                    update["netsuite_status"] = NETSUITE_FULFILLED
                updated = order.model_copy(update=update)
                await session.save_order(updated)
                if status_from != status_to:
                    metadata: dict[str, Any] = {"fields": sorted(changes)} if changes else {}
                    if completing and updated.tracking_number:
                        metadata["tracking_number"] = updated.tracking_number
                    entry = self.audit.status_change_entry(
                        order_id,
                        status_from,
                        status_to,
                        actor,
                        notes=completion_notes(updated.tracking_number, request.notes) if completing else request.notes,
                        metadata=metadata,
                    )
                    await self.audit.append(entry, session=session)

        if status_from == status_to:
            logger.info("Order order_id=%s fields saved: %s", order_id, ", ".join(sorted(changes)))
            return updated

        transitions_total.labels(status_from=status_from.value, status_to=status_to.value).inc()
        logger.info(
            "Order order_id=%s %s -> %s by %s (%s)",
            order_id,
            status_from.value,
            status_to.value,
            actor.id,
            actor.role.value,
        )
        self._spawn(self.dispatcher.dispatch(updated, status_from, status_to, actor))
        return updated

    async def delete_order(self, order_id: str, actor: Actor) -> None:
        """Delete a Draft order, or a Cancelled one when actor is an admin. History is kept."""
        async with self.locks.hold(order_id):
            async with self._store.transaction() as session:
                order = await session.load_order(order_id)
                ensure_can_delete(order, actor.role)
                await session.delete_order(order_id)
        logger.info("Order order_id=%s (%s) deleted by %s", order_id, order.status.value, actor.id)

    async def create_packing_slip(
        self,
        order_id: str,
        actor: Actor,
        invoice_number: str | None = None,
        shipping_method: str | None = None,
        netsuite_reference: str | None = None,
        notes: str | None = None,
    ) -> Order:
        """
        Manual packing slip. Shares the order lock and the generated flag with
        the automatic one, so at most one slip is ever created per order.
        """
        async with self.locks.hold(order_id):
            async with self._store.transaction() as session:
                order = await session.load_order(order_id)
                if not can_manage_packing_slip(order):
                    raise PackingSlipNotAllowedError(
                        order.status.value,
                        "Packing slips can only be created once the order is Ready or Done",
                    )
                if order.packing_slip_generated:
                    raise PackingSlipNotAllowedError(order.status.value, "A packing slip already exists for this order")
                return await self.dispatcher.create_packing_slip(
                    session,
                    order,
                    actor,
                    source="manual",
                    shipping_method=shipping_method,
                    netsuite_reference=netsuite_reference,
                    notes=notes,
                    invoice_number=invoice_number,
                )

    async def record_event(
        self,
        order_id: str,
        action_type: HistoryAction,
        actor: Actor,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> HistoryEntry:
        """Append an entry reported by another part of the portal (uploads, edits, creation)."""
        if action_type == HistoryAction.STATUS_CHANGE:
            raise ValueError("status changes are recorded by request_transition")
        await self._store.load_order(order_id)
        return await self.audit.record(order_id, action_type, actor, notes=notes, metadata=metadata)

    async def send_notification(
        self,
        order_id: str,
        notification_type: NotificationType,
        actor: Actor,
        custom_message: str | None = None,
    ) -> HistoryEntry:
        """
        Notification sent by hand from the order page. Logged as notification_sent
        once the queue accepts it; NotificationNotQueuedError otherwise.
        """
        message = (custom_message or "").strip() or None
        if notification_type == NotificationType.CUSTOM and message is None:
            raise ValueError("custom notifications need a message")
        await self._store.load_order(order_id)
        if not await self._notifier.send(order_id, notification_type, message):
            raise NotificationNotQueuedError(order_id, notification_type.value)
        return await self.audit.record(
            order_id,
            HistoryAction.NOTIFICATION_SENT,
            actor,
            notes=message or f"{notification_type.value} notification sent",
            metadata={"notification_type": notification_type.value, "custom_message": message, "source": "manual"},
        )

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: float = DEFAULT_DRAIN_TIMEOUT_SEC) -> None:
        """Wait for in-flight side effects. Anything still running at timeout is cancelled and logged."""
        if not self._tasks:
            return
        logger.info("Waiting for %d in-flight side effect task(s) (max %ss) ...", len(self._tasks), timeout)
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout, return_when=asyncio.ALL_COMPLETED)
        for t in pending:
            t.cancel()
        if pending:
            logger.error("Cancelled %d side effect task(s) still running after %ss", len(pending), timeout)
            await asyncio.gather(*pending, return_exceptions=True)
