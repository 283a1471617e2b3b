import pytest

from bazaarline.domain import CustomerRole, OrderStatus, PaymentStatus, StoreIntegration
from bazaarline.errors import NotFoundError, ValidationError
from bazaarline.lifecycle.ingestion import map_external_status

from conftest import ADMIN_ID, MARKETER_ID, SUPPLIER_ID

INTEGRATION = StoreIntegration(
    id="int-1",
    store_id="store-1",
    webhook_secret="s3cret",
    user_id=MARKETER_ID,
    owner_role=CustomerRole.MARKETER,
)


def cart_item(product_id="ext-1", price=150.0, quantity=2, **extra):
    item = {"product_id": product_id, "price": price, "quantity": quantity}
    item.update(extra)
    return item


def created_payload(order_id="eo-100", items=None, **extra):
    payload = {
        "id": order_id,
        "store_id": "store-1",
        "shipping_cost": 30,
        "status": "pending",
        "full_name": "Mona Adel",
        "phone": "01000000000",
        "government": "Giza",
        "address": "12 Nile St",
        "cart_items": items if items is not None else [cart_item()],
    }
    payload.update(extra)
    return payload


def status_payload(new_status, order_id="eo-100", **extra):
    payload = {
        "event_type": "order-status-update",
        "order_id": order_id,
        "store_id": "store-1",
        "old_status": "pending",
        "new_status": new_status,
    }
    payload.update(extra)
    return payload


@pytest.fixture
def catalog(harness):
    harness.add_product("p-1", stock=10, supplier_price=100.0, sku="LAMP-1", external_ids=["ext-1"])
    return harness


class TestOrderCreation:
    def test_creates_order_with_profit_breakdown(self, catalog):
        receipt = catalog.ingestor.handle(created_payload(), INTEGRATION)

        order = catalog.orders.get(receipt.order_id)
        assert receipt.created is True
        assert order.status == OrderStatus.PENDING
        assert order.lines[0].product_id == "p-1"
        assert order.subtotal == 300.0
        assert order.total == 330.0
        assert order.commission == 20.0
        assert order.marketer_profit == 100.0
        assert order.supplier_id == SUPPLIER_ID
        assert order.customer_id == MARKETER_ID
        assert order.metadata.external_order_id == "eo-100"
        assert order.shipping.city == "Giza"

    def test_storefront_totals_win_when_present(self, catalog):
        receipt = catalog.ingestor.handle(created_payload(cost=280, total_cost=310), INTEGRATION)

        order = catalog.orders.get(receipt.order_id)
        assert (order.subtotal, order.total) == (280.0, 310.0)

    def test_matches_by_taager_code_then_sku(self, catalog):
        items = [
            cart_item(product_id="unknown-a", product={"taager_code": "LAMP-1"}),
            cart_item(product_id="unknown-b", product={"sku": "LAMP-1"}),
        ]

        receipt = catalog.ingestor.handle(created_payload(items=items), INTEGRATION)

        order = catalog.orders.get(receipt.order_id)
        assert [line.product_id for line in order.lines] == ["p-1", "p-1"]

    def test_unmatched_items_use_estimated_cost(self, catalog):
        items = [cart_item(product_id=987, price=100.0, quantity=1, product={"name": "Mystery box"})]

        receipt = catalog.ingestor.handle(created_payload(items=items), INTEGRATION)

        order = catalog.orders.get(receipt.order_id)
        assert order.lines[0].product_id == "external-987"
        assert order.lines[0].product_name == "Mystery box"
        assert order.commission == 7.0
        assert order.marketer_profit == 30.0
        assert order.supplier_id == MARKETER_ID

    def test_variant_selection_is_kept(self, catalog):
        items = [
            cart_item(
                variant_id="v-9",
                variant={"variation_props": [{"variation": "Color", "variation_prop": "Red"}]},
            )
        ]

        receipt = catalog.ingestor.handle(created_payload(items=items), INTEGRATION)

        variant = catalog.orders.get(receipt.order_id).lines[0].variant
        assert (variant.variant_id, variant.value, variant.name) == ("v-9", "Red", "Color: Red")

    def test_same_payload_twice_yields_one_order(self, catalog):
        first = catalog.ingestor.handle(created_payload(), INTEGRATION)
        second = catalog.ingestor.handle(created_payload(), INTEGRATION)

        assert second.created is False
        assert second.order_id == first.order_id
        assert len(catalog.orders.list(None, 50)) == 1

    def test_same_storefront_id_for_another_owner_is_a_new_order(self, catalog):
        other = INTEGRATION.model_copy(update={"id": "int-2", "user_id": "marketer-2"})

        first = catalog.ingestor.handle(created_payload(), INTEGRATION)
        second = catalog.ingestor.handle(created_payload(), other)

        assert second.created is True
        assert second.order_id != first.order_id

    def test_larger_cart_replaces_lines_of_existing_order(self, catalog):
        first = catalog.ingestor.handle(created_payload(), INTEGRATION)
        items = [cart_item(), cart_item(product_id="ext-2", price=50.0, quantity=1)]

        merged = catalog.ingestor.handle(created_payload(items=items), INTEGRATION)

        order = catalog.orders.get(first.order_id)
        assert merged.merged is True
        assert merged.order_id == first.order_id
        assert merged.order_number == first.order_number
        assert len(order.lines) == 2
        assert order.subtotal == 350.0
        assert order.total == 380.0
        assert len(catalog.orders.list(None, 50)) == 1

    def test_larger_cart_uses_storefront_totals(self, catalog):
        first = catalog.ingestor.handle(created_payload(), INTEGRATION)
        items = [cart_item(), cart_item(product_id="ext-2", price=50.0, quantity=1)]

        catalog.ingestor.handle(created_payload(items=items, cost=340, total_cost=365), INTEGRATION)

        order = catalog.orders.get(first.order_id)
        assert (order.subtotal, order.total) == (340.0, 365.0)

    def test_store_mismatch_is_rejected(self, catalog):
        with pytest.raises(ValidationError):
            catalog.ingestor.handle(created_payload(store_id="store-2"), INTEGRATION)

    def test_empty_cart_is_rejected(self, catalog):
        with pytest.raises(ValidationError):
            catalog.ingestor.handle(created_payload(items=[]), INTEGRATION)

    def test_malformed_payload_is_a_validation_error(self, catalog):
        payload = created_payload()
        del payload["id"]

        with pytest.raises(ValidationError) as exc:
            catalog.ingestor.handle(payload, INTEGRATION)
        assert "Invalid webhook payload" in exc.value.detail


class TestCustomerMerge:
    def test_second_order_from_same_phone_joins_first(self, catalog):
        first = catalog.ingestor.handle(created_payload(phone="01012345678"), INTEGRATION)
        extra = [cart_item(product_id="ext-2", price=50.0, quantity=1)]

        merged = catalog.ingestor.handle(
            created_payload(order_id="eo-101", items=extra, phone="+20 10 1234 5678"), INTEGRATION
        )

        order = catalog.orders.get(first.order_id)
        assert merged.merged is True
        assert merged.order_id == first.order_id
        assert [line.product_id for line in order.lines] == ["p-1", "external-ext-2"]
        assert (order.subtotal, order.total) == (350.0, 380.0)
        assert order.commission == 23.5
        assert order.marketer_profit == 115.0
        assert order.metadata.merged_external_ids == ["eo-101"]
        assert len(catalog.orders.list(None, 50)) == 1

    def test_replayed_merged_order_is_a_duplicate(self, catalog):
        first = catalog.ingestor.handle(created_payload(), INTEGRATION)
        second = created_payload(order_id="eo-101", items=[cart_item(product_id="ext-2", price=50.0, quantity=1)])
        catalog.ingestor.handle(second, INTEGRATION)

        replay = catalog.ingestor.handle(second, INTEGRATION)

        assert replay.merged is False
        assert replay.created is False
        assert replay.order_id == first.order_id
        assert len(catalog.orders.get(first.order_id).lines) == 2

    def test_same_item_is_folded_into_existing_line(self, catalog):
        first = catalog.ingestor.handle(created_payload(), INTEGRATION)

        catalog.ingestor.handle(created_payload(order_id="eo-101", items=[cart_item(quantity=1)]), INTEGRATION)

        order = catalog.orders.get(first.order_id)
        assert len(order.lines) == 1
        assert order.lines[0].quantity == 3
        assert order.subtotal == 450.0

    def test_name_matches_when_phone_differs(self, catalog):
        first = catalog.ingestor.handle(created_payload(), INTEGRATION)

        merged = catalog.ingestor.handle(
            created_payload(order_id="eo-101", phone="01099999999", full_name="MONA ADEL"), INTEGRATION
        )

        assert merged.order_id == first.order_id

    def test_other_customer_gets_own_order(self, catalog):
        first = catalog.ingestor.handle(created_payload(), INTEGRATION)

        second = catalog.ingestor.handle(
            created_payload(order_id="eo-101", phone="01222222222", full_name="Karim Sami"), INTEGRATION
        )

        assert second.created is True
        assert second.order_id != first.order_id

    def test_orders_outside_window_stay_separate(self, catalog):
        first = catalog.ingestor.handle(created_payload(), INTEGRATION)
        catalog.clock.advance(31 * 60)

        second = catalog.ingestor.handle(created_payload(order_id="eo-101"), INTEGRATION)

        assert second.created is True
        assert second.order_id != first.order_id

    def test_orders_past_confirmation_are_not_merged(self, catalog):
        first = catalog.ingestor.handle(created_payload(), INTEGRATION)
        catalog.orchestrator.force_set_status(first.order_id, OrderStatus.PROCESSING)

        second = catalog.ingestor.handle(created_payload(order_id="eo-101"), INTEGRATION)

        assert second.created is True

    def test_missing_customer_data_comes_from_previous_order(self, catalog):
        catalog.ingestor.handle(created_payload(), INTEGRATION)
        catalog.clock.advance(31 * 60)

        receipt = catalog.ingestor.handle(
            created_payload(order_id="eo-101", full_name=None, phone=None, address=None), INTEGRATION
        )

        shipping = catalog.orders.get(receipt.order_id).shipping
        assert receipt.created is True
        assert (shipping.full_name, shipping.phone, shipping.street) == ("Mona Adel", "01000000000", "12 Nile St")


class TestStatusUpdates:
    def test_cancellation_is_recorded(self, catalog):
        catalog.ingestor.handle(created_payload(), INTEGRATION)

        receipt = catalog.ingestor.handle(status_payload("canceled"), INTEGRATION)

        order = catalog.orders.get(receipt.order_id)
        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation_reason == "Updated by storefront: canceled"
        assert order.metadata.external_status == "canceled"

    def test_payment_is_recorded(self, catalog):
        catalog.ingestor.handle(created_payload(), INTEGRATION)

        receipt = catalog.ingestor.handle(status_payload("paid", payment_ref_id="pay-77"), INTEGRATION)

        order = catalog.orders.get(receipt.order_id)
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_status == PaymentStatus.PAID
        assert order.metadata.payment_ref_id == "pay-77"

    def test_delivery_does_not_settle(self, catalog):
        catalog.ingestor.handle(created_payload(), INTEGRATION)

        receipt = catalog.ingestor.handle(status_payload("delivered"), INTEGRATION)

        order = catalog.orders.get(receipt.order_id)
        assert order.status == OrderStatus.DELIVERED
        assert order.profits_distributed is False
        assert catalog.wallets.get(ADMIN_ID).balance == 0.0

    def test_refund_after_settlement_reverses(self, catalog):
        created = catalog.ingestor.handle(created_payload(), INTEGRATION)
        catalog.ingestor.handle(status_payload("delivered"), INTEGRATION)
        catalog.orchestrator.settle(created.order_id)

        receipt = catalog.ingestor.handle(status_payload("refunded"), INTEGRATION)

        assert receipt.status == OrderStatus.REFUNDED
        assert [item.name for item in receipt.side_effects] == ["profit_reversal"]
        assert catalog.wallets.get(ADMIN_ID).balance == 0.0
        assert catalog.wallets.get(MARKETER_ID).balance == 0.0

    def test_unknown_order(self, catalog):
        with pytest.raises(NotFoundError):
            catalog.ingestor.handle(status_payload("paid", order_id="nope"), INTEGRATION)


class TestStatusMapping:
    def test_known_values(self):
        assert map_external_status("waiting_for_pickup") == OrderStatus.READY_FOR_SHIPPING
        assert map_external_status("returning_from_delivery") == OrderStatus.RETURNED
        assert map_external_status("Canceled") == OrderStatus.CANCELLED

    def test_unknown_values_fall_back_to_pending(self):
        assert map_external_status("teleported") == OrderStatus.PENDING
        assert map_external_status(None) == OrderStatus.PENDING
