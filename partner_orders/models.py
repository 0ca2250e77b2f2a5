"""
Domain models for the order lifecycle: order snapshot, audit entries,
transition requests and the acting user.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from partner_orders.order_state import ActorRole, OrderStatus

# Order fields that gate status transitions, in reporting order
GATED_FIELDS: tuple[str, ...] = ("so_number", "invoice_number", "number_of_pallets")

# netsuite_status once an order is Done
NETSUITE_FULFILLED = "fulfilled"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryAction(str, Enum):
    ORDER_CREATED = "order_created"
    STATUS_CHANGE = "status_change"
    DOCUMENT_UPLOADED = "document_uploaded"
    PACKING_SLIP_CREATED = "packing_slip_created"
    ORDER_UPDATED = "order_updated"
    NOTIFICATION_SENT = "notification_sent"


class NotificationType(str, Enum):
    IN_PROCESS = "in_process"
    READY = "ready"
    CANCELLED = "cancelled"
    COMPLETION = "completion"
    STATUS_CHANGE = "status_change"
    CUSTOM = "custom"


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = "Unknown"
    role: ActorRole = ActorRole.CLIENT


class Order(BaseModel):
    id: str
    status: OrderStatus = OrderStatus.OPEN
    po_number: str | None = None
    company_id: str | None = None
    user_id: str | None = None
    invoice_number: str | None = None
    so_number: str | None = None
    number_of_pallets: int | None = None
    packing_slip_generated: bool = False
    packing_slip_generated_at: datetime | None = None
    packing_slip_generated_by: str | None = None
    netsuite_sales_order_id: str | None = None
    netsuite_status: str | None = None
    tracking_number: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class HistoryEntry(BaseModel):
    """One immutable line of an order's audit trail."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    order_id: str
    action_type: HistoryAction
    status_from: OrderStatus | None = None
    status_to: OrderStatus | None = None
    notes: str | None = None
    changed_by_id: str | None = None
    changed_by_name: str | None = None
    changed_by_role: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class TransitionRequest(BaseModel):
    """
    Target status plus the gated field values to save with it.
    Fields that are not set keep the order's current value; an explicit
    null or empty string clears the field.
    """

    status: OrderStatus = Field(..., description="Target status")
    invoice_number: str | None = Field(default=None, description="Invoice number to save")
    so_number: str | None = Field(default=None, description="Sales order number to save")
    number_of_pallets: int | str | None = Field(default=None, description="Pallet count; must be a positive integer")
    tracking_number: str | None = Field(default=None, description="Shipment tracking number, saved when completing")
    notes: str | None = Field(default=None, description="Free text recorded with the status change")

    def field_updates(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in GATED_FIELDS if name in self.model_fields_set}


class PackingSlip(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    order_id: str
    invoice_number: str | None = None
    so_number: str | None = None
    shipping_method: str | None = None
    netsuite_reference: str | None = None
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
