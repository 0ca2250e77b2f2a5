import pytest

from _helper import make_order

from partner_orders.order_state import (
    ActorRole,
    OrderStatus,
    can_delete,
    can_manage_packing_slip,
    get_allowed_transitions,
    is_edit_locked,
    is_netsuite_ready,
    is_valid_transition,
    packing_slip_action,
)


@pytest.mark.parametrize("role", list(ActorRole))
def test_draft_orders_can_be_deleted_by_anyone(role):
    assert can_delete(make_order(status=OrderStatus.DRAFT), role) is True


def test_cancelled_orders_can_only_be_deleted_by_admins():
    order = make_order(status=OrderStatus.CANCELLED)
    assert can_delete(order, ActorRole.ADMIN) is True
    assert can_delete(order, ActorRole.CLIENT) is False


@pytest.mark.parametrize("status", [OrderStatus.OPEN, OrderStatus.IN_PROCESS, OrderStatus.READY, OrderStatus.DONE])
@pytest.mark.parametrize("role", [ActorRole.ADMIN, ActorRole.CLIENT])
def test_other_statuses_cannot_be_deleted(status, role):
    assert can_delete(make_order(status=status), role) is False


@pytest.mark.parametrize("status", list(OrderStatus))
def test_clients_can_only_edit_open_orders(status):
    order = make_order(status=status)
    assert is_edit_locked(order, ActorRole.CLIENT) is (status != OrderStatus.OPEN)
    assert is_edit_locked(order, ActorRole.ADMIN) is False


@pytest.mark.parametrize("status", list(OrderStatus))
def test_packing_slip_only_once_item_list_is_final(status):
    assert can_manage_packing_slip(make_order(status=status)) is (status in {OrderStatus.READY, OrderStatus.DONE})


def test_packing_slip_action():
    assert packing_slip_action(make_order(status=OrderStatus.IN_PROCESS)) == "locked"
    assert packing_slip_action(make_order(status=OrderStatus.OPEN)) == "locked"
    assert packing_slip_action(make_order(status=OrderStatus.READY)) == "create"
    assert packing_slip_action(make_order(status=OrderStatus.DONE, packing_slip_generated=True)) == "view"


def test_terminal_states_allow_no_status_change():
    for terminal in (OrderStatus.DONE, OrderStatus.CANCELLED):
        assert get_allowed_transitions(terminal) == []
        assert is_valid_transition(terminal, terminal) is True
        assert is_valid_transition(terminal, OrderStatus.OPEN) is False


def test_no_adjacency_rule_between_non_terminal_states():
    assert is_valid_transition(OrderStatus.OPEN, OrderStatus.READY) is True
    assert is_valid_transition(OrderStatus.READY, OrderStatus.OPEN) is True
    assert OrderStatus.CANCELLED in get_allowed_transitions(OrderStatus.DRAFT)
    assert OrderStatus.OPEN not in get_allowed_transitions(OrderStatus.OPEN)


def test_netsuite_readiness():
    assert is_netsuite_ready(make_order(status=OrderStatus.OPEN)) is True
    assert is_netsuite_ready(make_order(status=OrderStatus.DRAFT)) is False
    assert is_netsuite_ready(make_order(status=OrderStatus.CANCELLED)) is False
    assert is_netsuite_ready(make_order(status=OrderStatus.READY, netsuite_sales_order_id="ns-77")) is False
