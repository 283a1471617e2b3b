import pytest

from bazaarline.domain import OrderAction, OrderStatus
from bazaarline.lifecycle.transitions import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    is_action_allowed,
    is_forward_move,
    is_valid_transition,
    status_for_action,
)


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(OrderStatus)

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_allow_no_action(self, status):
        for action in OrderAction:
            assert is_action_allowed(status, action) is False

    @pytest.mark.parametrize(
        "current,action,allowed",
        [
            (OrderStatus.PENDING, OrderAction.CONFIRM, True),
            (OrderStatus.PENDING, OrderAction.CANCEL, True),
            (OrderStatus.PENDING, OrderAction.SHIP, False),
            (OrderStatus.CONFIRMED, OrderAction.SHIP, True),
            (OrderStatus.PROCESSING, OrderAction.CONFIRM, False),
            (OrderStatus.SHIPPED, OrderAction.CANCEL, False),
            (OrderStatus.SHIPPED, OrderAction.DELIVER, True),
            (OrderStatus.OUT_FOR_DELIVERY, OrderAction.RETURN, True),
            (OrderStatus.DELIVERED, OrderAction.RETURN, True),
            (OrderStatus.DELIVERED, OrderAction.CANCEL, False),
        ],
    )
    def test_action_matrix(self, current, action, allowed):
        assert is_action_allowed(current, action) is allowed

    def test_update_shipping_never_changes_status(self):
        assert status_for_action(OrderAction.UPDATE_SHIPPING) is None
        assert is_action_allowed(OrderStatus.PENDING, OrderAction.UPDATE_SHIPPING) is False

    def test_self_transition_is_rejected(self):
        for status in OrderStatus:
            assert is_valid_transition(status, status) is False


class TestForwardMoves:
    def test_forward_along_happy_path(self):
        assert is_forward_move(OrderStatus.PENDING, OrderStatus.PROCESSING)
        assert is_forward_move(OrderStatus.PROCESSING, OrderStatus.READY_FOR_SHIPPING)

    def test_backward_move_is_not_forward(self):
        assert not is_forward_move(OrderStatus.READY_FOR_SHIPPING, OrderStatus.PROCESSING)
        assert not is_forward_move(OrderStatus.PROCESSING, OrderStatus.PROCESSING)

    def test_terminal_orders_never_move(self):
        assert not is_forward_move(OrderStatus.CANCELLED, OrderStatus.PROCESSING)
        assert not is_forward_move(OrderStatus.CONFIRMED, OrderStatus.CANCELLED)
