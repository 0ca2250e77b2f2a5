"""
Field requirements for each target status.
Rules are cumulative: a status requires everything its predecessors in
REQUIREMENT_TIERS require, plus its own fields.
"""
from typing import Any, Mapping

from partner_orders.order_state import OrderStatus

# Ordered tiers: (status, fields it adds)
REQUIREMENT_TIERS: list[tuple[OrderStatus, tuple[str, ...]]] = [
    (OrderStatus.IN_PROCESS, ("so_number",)),
    (OrderStatus.READY, ("invoice_number", "number_of_pallets")),
    (OrderStatus.DONE, ()),
]


def _build_required_fields() -> dict[OrderStatus, tuple[str, ...]]:
    required: dict[OrderStatus, tuple[str, ...]] = {}
    accumulated: tuple[str, ...] = ()
    for status, fields in REQUIREMENT_TIERS:
        accumulated = accumulated + fields
        required[status] = accumulated
    return required


REQUIRED_FIELDS: dict[OrderStatus, tuple[str, ...]] = _build_required_fields()


def parse_pallets(value: Any) -> int | None:
    """Positive integer pallet count, or None for anything else."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    text = str(value).strip()
    try:
        count = int(text)
    except ValueError:
        return None
    return count if count > 0 else None


def _is_present(field: str, value: Any) -> bool:
    if field == "number_of_pallets":
        return parse_pallets(value) is not None
    if value is None:
        return False
    return bool(str(value).strip())


def required_fields(target_status: OrderStatus) -> tuple[str, ...]:
    return REQUIRED_FIELDS.get(target_status, ())


def missing_fields(target_status: OrderStatus, fields: Mapping[str, Any]) -> list[str]:
    """
    Return the required fields that are absent for target_status, in rule-table
    order. An empty list means the transition is allowed.
    """
    return [name for name in required_fields(target_status) if not _is_present(name, fields.get(name))]


def normalize_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce raw gated field input into the values stored on the order."""
    normalized: dict[str, Any] = {}
    for name, value in updates.items():
        if name == "number_of_pallets":
            normalized[name] = parse_pallets(value)
        elif value is None or not str(value).strip():
            normalized[name] = None
        else:
            normalized[name] = str(value).strip()
    return normalized
