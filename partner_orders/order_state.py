"""
Order lifecycle state machine. Statuses, terminal states and the pure
permission queries derived from an order's status.
"""
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from partner_orders.models import Order


class OrderStatus(str, Enum):
    DRAFT = "Draft"
    OPEN = "Open"
    IN_PROCESS = "In Process"
    READY = "Ready"
    DONE = "Done"
    CANCELLED = "Cancelled"


class ActorRole(str, Enum):
    ADMIN = "admin"
    CLIENT = "client"


TERMINAL_STATES: frozenset[OrderStatus] = frozenset({OrderStatus.DONE, OrderStatus.CANCELLED})

# Deletion is the only operation left for these
DELETABLE_STATES: frozenset[OrderStatus] = frozenset({OrderStatus.DRAFT, OrderStatus.CANCELLED})

# Item list is frozen from here on, so a packing slip can be produced
PACKING_SLIP_STATES: frozenset[OrderStatus] = frozenset({OrderStatus.READY, OrderStatus.DONE})

CLIENT_EDITABLE_STATES: frozenset[OrderStatus] = frozenset({OrderStatus.OPEN})

NETSUITE_EXCLUDED_STATES: frozenset[OrderStatus] = frozenset({OrderStatus.DRAFT, OrderStatus.CANCELLED})


def is_terminal_state(status: OrderStatus) -> bool:
    return status in TERMINAL_STATES


def is_valid_transition(current_state: OrderStatus, new_state: OrderStatus) -> bool:
    """
    True if the status may change from current_state to new_state.
    There is no adjacency rule: field requirements are the only guard, so any
    non-terminal order may go anywhere. Staying put is always allowed.
    """
    if current_state == new_state:
        return True
    return not is_terminal_state(current_state)


def get_allowed_transitions(current_state: OrderStatus) -> list[OrderStatus]:
    if is_terminal_state(current_state):
        return []
    return [s for s in OrderStatus if s != current_state]


def can_delete(order: "Order", actor_role: ActorRole) -> bool:
    """Draft orders may be deleted by anyone; Cancelled ones by admins only."""
    if order.status == OrderStatus.DRAFT:
        return True
    if order.status == OrderStatus.CANCELLED:
        return actor_role == ActorRole.ADMIN
    return False


def is_edit_locked(order: "Order", actor_role: ActorRole = ActorRole.CLIENT) -> bool:
    """
    Clients may only edit while the order is Open. Admins can always edit,
    but field requirements of the status still apply when they save.
    """
    if actor_role != ActorRole.CLIENT:
        return False
    return order.status not in CLIENT_EDITABLE_STATES


def can_manage_packing_slip(order: "Order") -> bool:
    return order.status in PACKING_SLIP_STATES


def packing_slip_action(order: "Order") -> str:
    """What a packing slip view should offer: "view", "create" or "locked"."""
    if order.packing_slip_generated:
        return "view"
    if can_manage_packing_slip(order):
        return "create"
    return "locked"


def is_netsuite_ready(order: "Order") -> bool:
    """True when the order may be pushed to NetSuite as a sales order."""
    if order.status in NETSUITE_EXCLUDED_STATES:
        return False
    return not order.netsuite_sales_order_id
