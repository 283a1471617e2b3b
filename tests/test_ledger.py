import pytest

from bazaarline.domain import CustomerRole, LedgerEntryType, OrderAction, OrderStatus, SideEffectStatus
from bazaarline.errors import NotFoundError
from bazaarline.repositories import InMemoryOrderRepository, InMemoryWalletRepository

from conftest import ADMIN_ID, MARKETER_ID, build_harness


class AdminCreditFails(InMemoryWalletRepository):
    def post(self, entry):
        if entry.user_id == ADMIN_ID and entry.type == LedgerEntryType.CREDIT:
            raise RuntimeError("wallet locked")
        return super().post(entry)


class ReturnBeforeClaim(InMemoryOrderRepository):
    """Runs a hook just before the next settlement claim reaches storage."""

    def __init__(self) -> None:
        super().__init__()
        self.before_claim = None

    def claim_profits(self, order_id, expected, new, at, required_status=None):
        hook, self.before_claim = self.before_claim, None
        if hook:
            hook(order_id)
        return super().claim_profits(order_id, expected, new, at, required_status)


def balances(harness):
    return harness.wallets.get(MARKETER_ID).balance, harness.wallets.get(ADMIN_ID).balance


class TestDistribute:
    def test_credits_marketer_and_admin_once(self, harness):
        order = harness.place_order(status=OrderStatus.DELIVERED, commission=10, marketer_profit=4)

        first = harness.ledger.distribute(order.id)
        second = harness.ledger.distribute(order.id)

        assert first.status == SideEffectStatus.OK
        assert second.status == SideEffectStatus.SKIPPED
        assert balances(harness) == (4.0, 10.0)
        assert harness.orders.get(order.id).profits_distributed is True
        assert len(harness.wallets.entries_for_order(order.id)) == 2

    def test_return_landing_before_claim_blocks_credit(self):
        orders = ReturnBeforeClaim()
        harness = build_harness(orders=orders)
        order = harness.place_order(status=OrderStatus.DELIVERED, commission=10, marketer_profit=4)
        orders.before_claim = lambda order_id: harness.orchestrator.request_transition(
            order_id, OrderAction.RETURN, ADMIN_ID, reason="damaged"
        )

        result = harness.ledger.distribute(order.id)

        stored = harness.orders.get(order.id)
        assert result.status == SideEffectStatus.SKIPPED
        assert result.detail == "order is not delivered"
        assert stored.status == OrderStatus.RETURNED
        assert stored.profits_distributed is False
        assert balances(harness) == (0.0, 0.0)
        assert harness.wallets.entries_for_order(order.id) == []

    def test_wholesaler_orders_only_pay_commission(self, harness):
        order = harness.place_order(
            status=OrderStatus.DELIVERED, commission=10, marketer_profit=4, customer_role=CustomerRole.WHOLESALER
        )

        result = harness.ledger.distribute(order.id)

        assert [entry.user_id for entry in result.entries] == [ADMIN_ID]
        assert balances(harness) == (0.0, 10.0)

    def test_zero_amounts_are_not_posted(self, harness):
        order = harness.place_order(status=OrderStatus.DELIVERED, commission=0, marketer_profit=6)

        result = harness.ledger.distribute(order.id)

        assert [entry.user_id for entry in result.entries] == [MARKETER_ID]

    def test_undelivered_order_is_skipped(self, harness):
        order = harness.place_order(status=OrderStatus.SHIPPED)

        result = harness.ledger.distribute(order.id)

        assert result.status == SideEffectStatus.SKIPPED
        assert harness.orders.get(order.id).profits_distributed is False
        assert balances(harness) == (0.0, 0.0)

    def test_unknown_order(self, harness):
        with pytest.raises(NotFoundError):
            harness.ledger.distribute("missing")

    def test_failed_second_credit_rolls_back_and_releases_claim(self):
        harness = build_harness(wallets=AdminCreditFails())
        order = harness.place_order(status=OrderStatus.DELIVERED, commission=10, marketer_profit=4)

        result = harness.ledger.distribute(order.id)

        assert result.status == SideEffectStatus.FAILED
        assert harness.orders.get(order.id).profits_distributed is False
        assert harness.wallets.get(MARKETER_ID).balance == 0.0
        assert [entry.type for entry in harness.wallets.entries_for_order(order.id)] == [
            LedgerEntryType.CREDIT,
            LedgerEntryType.DEBIT,
        ]

    def test_each_credit_notifies_the_wallet_owner(self, harness):
        order = harness.place_order(status=OrderStatus.DELIVERED)

        harness.ledger.distribute(order.id)

        recipients = {item.user_id for item in harness.notifier.sent if item.title == "Profit added"}
        assert recipients == {MARKETER_ID, ADMIN_ID}


class TestReverse:
    def test_distribute_then_reverse_is_net_zero(self, harness):
        order = harness.place_order(status=OrderStatus.DELIVERED, commission=10, marketer_profit=4)
        harness.ledger.distribute(order.id)

        result = harness.ledger.reverse(order.id)

        assert result.status == SideEffectStatus.OK
        assert balances(harness) == (0.0, 0.0)
        assert harness.orders.get(order.id).profits_distributed is False
        assert harness.wallets.get(MARKETER_ID).total_earnings == 4.0

    def test_reverse_without_distribution_is_skipped(self, harness):
        order = harness.place_order(status=OrderStatus.DELIVERED)

        result = harness.ledger.reverse(order.id)

        assert result.status == SideEffectStatus.SKIPPED
        assert harness.wallets.entries_for_order(order.id) == []

    def test_reverse_allows_negative_balance(self, harness):
        order = harness.place_order(status=OrderStatus.DELIVERED, commission=10, marketer_profit=4)
        harness.ledger.distribute(order.id)
        spend = harness.wallets.entries_for_user(MARKETER_ID)[0].model_copy(
            update={"id": "withdrawal", "order_id": None, "type": LedgerEntryType.DEBIT, "amount": 3.0}
        )
        harness.wallets.post(spend)

        harness.ledger.reverse(order.id)

        assert harness.wallets.get(MARKETER_ID).balance == -3.0
