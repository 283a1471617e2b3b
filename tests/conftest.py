from __future__ import annotations

import itertools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from bazaarline.clock import FixedClock
from bazaarline.domain import (
    CustomerRole,
    OrderDraft,
    OrderLine,
    OrderStatus,
    Product,
    ShippingDetails,
    VariantOption,
)
from bazaarline.id_provider import InMemoryOrderNumberGenerator
from bazaarline.lifecycle.fulfillment import FulfillmentApprovalWorkflow
from bazaarline.lifecycle.ingestion import ExternalOrderIngestor
from bazaarline.lifecycle.inventory import InventoryAdjuster
from bazaarline.lifecycle.ledger import ProfitSettlementLedger
from bazaarline.lifecycle.orchestrator import OrderStatusOrchestrator
from bazaarline.notifications import InMemoryNotifier
from bazaarline.pricing import PricingPolicy
from bazaarline.repositories import (
    InMemoryEventBus,
    InMemoryFulfillmentRepository,
    InMemoryOrderRepository,
    InMemoryPackageRepository,
    InMemoryProductRepository,
    InMemoryWalletRepository,
)
from bazaarline.settings import Settings
from bazaarline.shipping import CarrierPackageService

ADMIN_ID = "admin-1"
MARKETER_ID = "marketer-1"
SUPPLIER_ID = "supplier-1"
START = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class SequentialIds:
    def __init__(self, prefix: str = "id") -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)

    def new_id(self) -> str:
        return f"{self._prefix}-{next(self._counter)}"


@dataclass
class Harness:
    settings: Settings
    clock: FixedClock
    ids: SequentialIds
    orders: InMemoryOrderRepository
    products: InMemoryProductRepository
    requests: InMemoryFulfillmentRepository
    wallets: InMemoryWalletRepository
    packages: InMemoryPackageRepository
    notifier: InMemoryNotifier
    events: InMemoryEventBus
    pricing: PricingPolicy
    inventory: InventoryAdjuster
    ledger: ProfitSettlementLedger
    orchestrator: OrderStatusOrchestrator
    fulfillment: FulfillmentApprovalWorkflow
    ingestor: ExternalOrderIngestor

    def add_product(
        self,
        product_id: str,
        stock: int = 10,
        supplier_price: float = 100.0,
        variants: Optional[List[VariantOption]] = None,
        **extra,
    ) -> Product:
        product = Product(
            id=product_id,
            name=f"Product {product_id}",
            supplier_id=SUPPLIER_ID,
            supplier_price=supplier_price,
            marketer_price=round(supplier_price * 1.5, 2),
            stock_quantity=stock,
            has_variants=bool(variants),
            variant_options=variants or [],
            **extra,
        )
        self.products.add(product)
        return product

    def place_order(
        self,
        lines: Optional[List[OrderLine]] = None,
        status: OrderStatus = OrderStatus.PENDING,
        commission: float = 10.0,
        marketer_profit: float = 4.0,
        customer_role: CustomerRole = CustomerRole.MARKETER,
        village_id: Optional[str] = "village-7",
    ):
        lines = lines or [OrderLine(product_id="p-1", product_name="Lamp", quantity=1, unit_price=140.0)]
        subtotal = round(sum(line.unit_price * line.quantity for line in lines), 2)
        order = self.orchestrator.register_order(
            OrderDraft(
                customer_id=MARKETER_ID,
                customer_role=customer_role,
                supplier_id=SUPPLIER_ID,
                lines=lines,
                subtotal=subtotal,
                commission=commission,
                marketer_profit=marketer_profit,
                total=subtotal,
                shipping=ShippingDetails(
                    full_name="Mona Adel",
                    phone="01000000000",
                    street="12 Nile St",
                    city="Giza",
                    village="Dokki",
                    village_id=village_id,
                ),
            )
        )
        if status != OrderStatus.PENDING:
            order = order.model_copy(update={"status": status})
            self.orders.save(order)
        return order


def build_harness(
    orders: Optional[InMemoryOrderRepository] = None,
    products: Optional[InMemoryProductRepository] = None,
    requests: Optional[InMemoryFulfillmentRepository] = None,
    wallets: Optional[InMemoryWalletRepository] = None,
    notifier: Optional[InMemoryNotifier] = None,
    clock: Optional[FixedClock] = None,
    batch_timeout_seconds: float = 30.0,
) -> Harness:
    settings = Settings(admin_user_id=ADMIN_ID)
    clock = clock or FixedClock(START)
    ids = SequentialIds()
    orders = orders or InMemoryOrderRepository()
    products = products or InMemoryProductRepository()
    requests = requests or InMemoryFulfillmentRepository()
    wallets = wallets or InMemoryWalletRepository()
    packages = InMemoryPackageRepository()
    notifier = notifier or InMemoryNotifier()
    events = InMemoryEventBus()
    pricing = PricingPolicy(settings.admin_profit_tiers, settings.unmatched_cost_ratio)
    inventory = InventoryAdjuster(products)
    ledger = ProfitSettlementLedger(orders, wallets, notifier, clock, ids, ADMIN_ID)
    orchestrator = OrderStatusOrchestrator(
        orders,
        inventory,
        ledger,
        CarrierPackageService(packages, settings, clock, ids),
        notifier,
        events,
        clock,
        ids,
        InMemoryOrderNumberGenerator(prefix="ORD"),
        max_batch=5,
        batch_timeout_seconds=batch_timeout_seconds,
    )
    fulfillment = FulfillmentApprovalWorkflow(
        requests, products, orders, inventory, orchestrator, notifier, events, clock, ids
    )
    ingestor = ExternalOrderIngestor(orders, products, orchestrator, pricing, events, clock, ids)
    return Harness(
        settings=settings,
        clock=clock,
        ids=ids,
        orders=orders,
        products=products,
        requests=requests,
        wallets=wallets,
        packages=packages,
        notifier=notifier,
        events=events,
        pricing=pricing,
        inventory=inventory,
        ledger=ledger,
        orchestrator=orchestrator,
        fulfillment=fulfillment,
        ingestor=ingestor,
    )


@pytest.fixture
def harness() -> Harness:
    return build_harness()
