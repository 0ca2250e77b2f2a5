"""
Append-only audit trail of an order: status changes, notifications sent,
packing slips and events reported by other parts of the portal.
"""
import logging
from typing import Any

from partner_orders.models import Actor, HistoryAction, HistoryEntry
from partner_orders.order_state import OrderStatus

logger = logging.getLogger(__name__)


def _actor_fields(actor: Actor) -> dict[str, Any]:
    return {
        "changed_by_id": actor.id,
        "changed_by_name": actor.name,
        "changed_by_role": actor.role.value,
    }


class AuditLog:
    def __init__(self, store):
        self._store = store

    @staticmethod
    def entry(
        order_id: str,
        action_type: HistoryAction,
        actor: Actor,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> HistoryEntry:
        return HistoryEntry(
            order_id=order_id,
            action_type=action_type,
            notes=notes,
            metadata=metadata or {},
            **_actor_fields(actor),
        )

    @staticmethod
    def status_change_entry(
        order_id: str,
        status_from: OrderStatus,
        status_to: OrderStatus,
        actor: Actor,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> HistoryEntry:
        return HistoryEntry(
            order_id=order_id,
            action_type=HistoryAction.STATUS_CHANGE,
            status_from=status_from,
            status_to=status_to,
            notes=notes or f"Status set to {status_to.value}",
            metadata=metadata or {},
            **_actor_fields(actor),
        )

    async def append(self, entry: HistoryEntry, session=None) -> HistoryEntry:
        """Append through session when given, so the entry commits with the order update."""
        target = session if session is not None else self._store
        await target.append_history(entry)
        logger.info(
            "History order_id=%s action=%s by=%s",
            entry.order_id,
            entry.action_type.value,
            entry.changed_by_id,
        )
        return entry

    async def record(
        self,
        order_id: str,
        action_type: HistoryAction,
        actor: Actor,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
        session=None,
    ) -> HistoryEntry:
        return await self.append(self.entry(order_id, action_type, actor, notes, metadata), session=session)

    async def history(self, order_id: str) -> list[HistoryEntry]:
        """Entries for order_id, oldest first."""
        return await self._store.list_history(order_id)
