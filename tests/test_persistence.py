from datetime import datetime

import pytest

from bazaarline.clock import FixedClock
from bazaarline.container import build_container
from bazaarline.domain import (
    FulfillmentLine,
    FulfillmentRequest,
    FulfillmentStatus,
    IntegrationType,
    LedgerEntryType,
    Order,
    OrderAction,
    OrderLine,
    OrderMetadata,
    OrderStatus,
    Product,
    StoreIntegration,
    VariantOption,
    VariantSelection,
    WalletEntry,
)
from bazaarline.persistence.db import Database
from bazaarline.persistence.repositories import (
    SqlAlchemyFulfillmentRepository,
    SqlAlchemyIntegrationRepository,
    SqlAlchemyOrderNumberGenerator,
    SqlAlchemyOrderRepository,
    SqlAlchemyProductRepository,
    SqlAlchemyWalletRepository,
)
from bazaarline.settings import Settings

NOW = datetime(2024, 5, 1, 9, 0)


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'bazaarline.db'}")
    database.create_tables()
    return database


def make_order(order_id="o-1", status=OrderStatus.PENDING, **extra):
    return Order(
        id=order_id,
        order_number=f"ORD-{order_id}",
        status=status,
        lines=[
            OrderLine(product_id="p-1", product_name="Lamp", quantity=2, unit_price=50, total_price=100),
            OrderLine(
                product_id="p-2",
                quantity=1,
                unit_price=20,
                total_price=20,
                variant=VariantSelection(variant_id="size", value="L", name="Size: L"),
            ),
        ],
        subtotal=120,
        total=120,
        commission=12,
        marketer_profit=30,
        customer_id="marketer-1",
        metadata=OrderMetadata(external_order_id="eo-1", external_owner_id="marketer-1"),
        created_at=NOW,
        updated_at=NOW,
        **extra,
    )


class TestOrderRepository:
    def test_round_trip_keeps_lines_in_order(self, db):
        repo = SqlAlchemyOrderRepository(db)
        repo.add(make_order())

        order = repo.get("o-1")

        assert [line.product_id for line in order.lines] == ["p-1", "p-2"]
        assert order.lines[1].variant.value == "L"
        assert repo.find_by_external("eo-1", "marketer-1").id == "o-1"
        assert repo.find_by_external("eo-1", "someone-else") is None

    def test_save_if_status_is_compare_and_set(self, db):
        repo = SqlAlchemyOrderRepository(db)
        order = repo.add(make_order())
        confirmed = order.model_copy(update={"status": OrderStatus.CONFIRMED, "lines": order.lines[:1]})

        assert repo.save_if_status(confirmed, OrderStatus.PENDING) is True
        assert repo.save_if_status(confirmed, OrderStatus.PENDING) is False

        stored = repo.get("o-1")
        assert stored.status == OrderStatus.CONFIRMED
        assert len(stored.lines) == 1

    def test_save_if_status_leaves_settlement_flag(self, db):
        repo = SqlAlchemyOrderRepository(db)
        order = repo.add(make_order(status=OrderStatus.DELIVERED))
        assert repo.claim_profits("o-1", expected=False, new=True, at=NOW)

        repo.save_if_status(order.model_copy(update={"admin_notes": "x"}), OrderStatus.DELIVERED)

        assert repo.get("o-1").profits_distributed is True

    def test_save_if_status_rejects_stale_version(self, db):
        repo = SqlAlchemyOrderRepository(db)
        order = repo.add(make_order())

        assert repo.save_if_status(order.model_copy(update={"package_id": "pkg-1"}), OrderStatus.PENDING) is True
        assert repo.save_if_status(order.model_copy(update={"admin_notes": "late"}), OrderStatus.PENDING) is False

        stored = repo.get("o-1")
        assert stored.package_id == "pkg-1"
        assert stored.admin_notes is None
        assert stored.version == 1

    def test_claim_can_require_status(self, db):
        repo = SqlAlchemyOrderRepository(db)
        repo.add(make_order(status=OrderStatus.RETURNED))

        claimed = repo.claim_profits(
            "o-1", expected=False, new=True, at=NOW, required_status=OrderStatus.DELIVERED
        )

        assert claimed is False
        assert repo.get("o-1").profits_distributed is False

    def test_merged_ids_and_store_listing(self, db):
        repo = SqlAlchemyOrderRepository(db)
        merged = make_order("o-1").model_copy(deep=True)
        merged.metadata.external_store_id = "store-1"
        merged.metadata.merged_external_ids = ["eo-7", "eo-8"]
        later = make_order("o-2").model_copy(deep=True, update={"created_at": datetime(2024, 5, 1, 10, 0)})
        later.metadata.external_store_id = "store-1"
        later.metadata.external_order_id = "eo-2"
        repo.add(merged)
        repo.add(later)

        assert repo.get("o-1").metadata.merged_external_ids == ["eo-7", "eo-8"]
        assert repo.find_merged("eo-8", "marketer-1").id == "o-1"
        assert repo.find_merged("eo-8", "someone-else") is None
        assert repo.find_merged("eo-", "marketer-1") is None
        assert [order.id for order in repo.store_orders("store-1")] == ["o-1", "o-2"]
        assert [order.id for order in repo.store_orders("store-1", since=datetime(2024, 5, 1, 9, 30))] == ["o-2"]

    def test_claim_profits_only_once(self, db):
        repo = SqlAlchemyOrderRepository(db)
        repo.add(make_order(status=OrderStatus.DELIVERED))

        assert repo.claim_profits("o-1", expected=False, new=True, at=NOW) is True
        assert repo.claim_profits("o-1", expected=False, new=True, at=NOW) is False
        assert repo.pending_settlement() == []

    def test_pending_settlement_filters(self, db):
        repo = SqlAlchemyOrderRepository(db)
        repo.add(make_order("o-1", status=OrderStatus.DELIVERED))
        repo.add(make_order("o-2", status=OrderStatus.DELIVERED))
        repo.add(make_order("o-3", status=OrderStatus.SHIPPED))

        assert {order.id for order in repo.pending_settlement()} == {"o-1", "o-2"}
        assert [order.id for order in repo.pending_settlement(["o-2", "o-3"])] == ["o-2"]


class TestProductRepository:
    def test_restock_variant_and_aggregate(self, db):
        repo = SqlAlchemyProductRepository(db)
        repo.add(
            Product(
                id="p-1",
                name="Shirt",
                stock_quantity=5,
                has_variants=True,
                variant_options=[VariantOption(variant_id="size", value="L", stock_quantity=1)],
                external_ids=["ext-1", "ext-2"],
            )
        )

        change = repo.restock("p-1", 3, VariantSelection(variant_id="size", value="L"))
        fallback = repo.restock("p-1", 2, VariantSelection(variant_id="size", value="XL"))

        product = repo.get("p-1")
        assert (change.old_stock, change.new_stock, change.variant_matched) == (5, 8, True)
        assert fallback.variant_matched is False
        assert product.stock_quantity == 10
        assert product.variant_options[0].stock_quantity == 4
        assert repo.find_by_external_id("ext-2").id == "p-1"
        assert repo.find_by_external_id("ext") is None

    def test_withdraw_is_clamped(self, db):
        repo = SqlAlchemyProductRepository(db)
        repo.add(Product(id="p-1", name="Lamp", stock_quantity=2))

        change = repo.withdraw_clamped("p-1", 5)

        assert change.new_stock == 0
        assert repo.withdraw_clamped("missing", 1) is None


class TestOtherRepositories:
    def test_fulfillment_compare_and_set(self, db):
        repo = SqlAlchemyFulfillmentRepository(db)
        request = repo.add(
            FulfillmentRequest(
                id="fr-1",
                supplier_id="supplier-1",
                lines=[FulfillmentLine(product_id="p-1", quantity=3, current_stock=2)],
                status=FulfillmentStatus.PENDING,
                order_ids=["o-1", "o-2"],
                created_at=NOW,
                updated_at=NOW,
            )
        )
        approved = request.model_copy(update={"status": FulfillmentStatus.APPROVED})

        assert repo.save_if_status(approved, FulfillmentStatus.PENDING) is True
        assert repo.save_if_status(approved, FulfillmentStatus.PENDING) is False
        stored = repo.get("fr-1")
        assert stored.status == FulfillmentStatus.APPROVED
        assert stored.order_ids == ["o-1", "o-2"]
        assert stored.lines[0].current_stock == 2

    def test_wallet_balance_follows_entries(self, db):
        repo = SqlAlchemyWalletRepository(db)
        for entry_id, kind, amount in (("e-1", LedgerEntryType.CREDIT, 10.1), ("e-2", LedgerEntryType.DEBIT, 4.05)):
            repo.post(
                WalletEntry(
                    id=entry_id,
                    user_id="marketer-1",
                    order_id="o-1",
                    type=kind,
                    amount=amount,
                    reason="test",
                    reference=f"ref-{entry_id}",
                    created_at=NOW,
                )
            )

        wallet = repo.get("marketer-1")
        assert wallet.balance == 6.05
        assert wallet.total_earnings == 10.1
        assert len(repo.entries_for_order("o-1")) == 2
        assert repo.get("nobody").balance == 0.0

    def test_integration_secret_binding(self, db):
        repo = SqlAlchemyIntegrationRepository(db)
        repo.add(StoreIntegration(id="int-1", store_id="store-1", user_id="marketer-1"))

        repo.set_secret("int-1", "s3cret")

        assert repo.find_by_secret(IntegrationType.EASY_ORDERS, "s3cret").id == "int-1"
        assert [item.id for item in repo.find_by_store(IntegrationType.EASY_ORDERS, "store-1")] == [
            "int-1"
        ]

    def test_order_numbers_are_sequential(self, db):
        numbers = SqlAlchemyOrderNumberGenerator(db, prefix="BZ")
        assert [numbers.next_number() for _ in range(3)] == ["BZ-000001", "BZ-000002", "BZ-000003"]


class TestSqlContainer:
    def test_delivery_settles_through_database(self, tmp_path):
        settings = Settings(database_url=f"sqlite:///{tmp_path / 'app.db'}", admin_user_id="admin-1")
        container = build_container(settings, clock=FixedClock(NOW))
        orders = SqlAlchemyOrderRepository(container.db)
        orders.add(make_order(status=OrderStatus.SHIPPED))

        outcome = container.orchestrator.request_transition("o-1", OrderAction.DELIVER, "admin-1")

        assert outcome.order.status == OrderStatus.DELIVERED
        assert outcome.order.profits_distributed is True
        wallet = container.order_service.get_wallet("admin-1").wallet
        assert wallet.balance == 12.0
