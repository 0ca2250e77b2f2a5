"""
Side effects of committed status changes: customer emails, the internal
team notice, and the automatic packing slip when an order becomes Ready.

Each effect is isolated. A failing effect is logged and counted and does
not stop the others; the status change it follows is already committed.
"""
import logging
from typing import Awaitable, Callable

from partner_orders.audit import AuditLog
from partner_orders.config import settings
from partner_orders.errors import SideEffectFailure
from partner_orders.metrics import packing_slips_created_total, side_effect_failures_total
from partner_orders.models import Actor, HistoryAction, NotificationType, Order, utcnow
from partner_orders.order_state import OrderStatus, can_manage_packing_slip

logger = logging.getLogger(__name__)

# Target status -> customer email type
CUSTOMER_NOTIFICATIONS: dict[OrderStatus, NotificationType] = {
    OrderStatus.IN_PROCESS: NotificationType.IN_PROCESS,
    OrderStatus.READY: NotificationType.READY,
    OrderStatus.CANCELLED: NotificationType.CANCELLED,
    OrderStatus.DONE: NotificationType.COMPLETION,
}

# Target statuses that also notify the internal team and log that they did
TEAM_NOTIFICATION_STATES: frozenset[OrderStatus] = frozenset({OrderStatus.IN_PROCESS, OrderStatus.DONE})

Effect = tuple[str, Callable[[], Awaitable[None]]]


class SideEffectDispatcher:
    def __init__(self, store, audit: AuditLog, notifier, packing_slips, locks):
        self._store = store
        self._audit = audit
        self._notifier = notifier
        self._packing_slips = packing_slips
        self._locks = locks

    def plan(self, order: Order, status_from: OrderStatus, status_to: OrderStatus, actor: Actor) -> list[Effect]:
        """Effects owed for a committed change, in execution order."""
        effects: list[Effect] = []
        if status_from == status_to:
            return effects
        if status_to in CUSTOMER_NOTIFICATIONS:
            ntype = CUSTOMER_NOTIFICATIONS[status_to]
            effects.append((f"notify_{ntype.value}", lambda: self._notify_customer(order, ntype)))
        if status_to in TEAM_NOTIFICATION_STATES and settings.notify_internal_team:
            effects.append(("notify_team", lambda: self._notify_team(order, status_from, status_to, actor)))
        if status_to == OrderStatus.READY and not order.packing_slip_generated:
            effects.append(("auto_packing_slip", lambda: self._auto_packing_slip(order.id, actor)))
        return effects

    async def dispatch(
        self,
        order: Order,
        status_from: OrderStatus,
        status_to: OrderStatus,
        actor: Actor,
    ) -> list[SideEffectFailure]:
        """Run every planned effect. Returns the failures; never raises."""
        failures: list[SideEffectFailure] = []
        for name, effect in self.plan(order, status_from, status_to, actor):
            try:
                await effect()
            except Exception as e:
                failure = e if isinstance(e, SideEffectFailure) else SideEffectFailure(name, str(e))
                failures.append(failure)
                side_effect_failures_total.labels(effect=name).inc()
                logger.exception(
                    "Side effect %s failed for order_id=%s (%s -> %s)",
                    name,
                    order.id,
                    status_from.value,
                    status_to.value,
                )
        return failures

    async def _notify_customer(self, order: Order, notification_type: NotificationType) -> None:
        message = None
        if notification_type == NotificationType.COMPLETION and order.tracking_number:
            message = f"Tracking Number: {order.tracking_number}"
        sent = await self._notifier.send(order.id, notification_type, message)
        if not sent:
            raise SideEffectFailure(f"notify_{notification_type.value}", "notification was not accepted")

    async def _notify_team(self, order: Order, status_from: OrderStatus, status_to: OrderStatus, actor: Actor) -> None:
        message = f"Order status changed from {status_from.value} to {status_to.value}"
        sent = await self._notifier.send(order.id, NotificationType.STATUS_CHANGE, message)
        if not sent:
            raise SideEffectFailure("notify_team", "notification was not accepted")
        await self._audit.record(
            order.id,
            HistoryAction.NOTIFICATION_SENT,
            actor,
            notes=message,
            metadata={"notification_type": NotificationType.STATUS_CHANGE.value, "status": status_to.value},
        )

    async def _auto_packing_slip(self, order_id: str, actor: Actor) -> None:
        async with self._locks.hold(order_id):
            async with self._store.transaction() as session:
                current = await session.load_order(order_id)
                if current.packing_slip_generated:
                    logger.info("Packing slip already exists for order_id=%s, skipping", order_id)
                    return
                if not can_manage_packing_slip(current):
                    logger.info(
                        "Order order_id=%s left %s before its packing slip was made (now %s), skipping",
                        order_id,
                        OrderStatus.READY.value,
                        current.status.value,
                    )
                    return
                await self.create_packing_slip(session, current, actor, source="auto")

    async def create_packing_slip(
        self,
        session,
        order: Order,
        actor: Actor,
        source: str,
        shipping_method: str | None = None,
        netsuite_reference: str | None = None,
        notes: str | None = None,
        invoice_number: str | None = None,
    ) -> Order:
        """
        Create the slip and flip packing_slip_generated inside session.
        Caller holds the order lock and has checked the flag is still false.
        """
        seed_invoice = invoice_number or order.invoice_number
        slip = await self._packing_slips.create(
            session,
            order.id,
            seed_invoice,
            order.so_number,
            actor.id,
            shipping_method=shipping_method,
            netsuite_reference=netsuite_reference,
            notes=notes,
        )
        updated = order.model_copy(update={
            "packing_slip_generated": True,
            "packing_slip_generated_at": utcnow(),
            "packing_slip_generated_by": actor.id,
            "updated_at": utcnow(),
        })
        await session.save_order(updated)
        await self._audit.record(
            order.id,
            HistoryAction.PACKING_SLIP_CREATED,
            actor,
            notes="Packing slip created automatically" if source == "auto" else "Packing slip created",
            metadata={
                "packing_slip_id": str(slip.id),
                "source": source,
                "invoice_number": seed_invoice,
                "so_number": order.so_number,
            },
            session=session,
        )
        packing_slips_created_total.labels(source=source).inc()
        return updated
