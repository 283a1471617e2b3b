from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .clock import Clock, SystemClock
from .id_provider import IdProvider, InMemoryOrderNumberGenerator, OrderNumberGenerator, UUIDProvider
from .lifecycle.fulfillment import FulfillmentApprovalWorkflow
from .lifecycle.ingestion import ExternalOrderIngestor
from .lifecycle.inventory import InventoryAdjuster
from .lifecycle.ledger import ProfitSettlementLedger
from .lifecycle.orchestrator import OrderStatusOrchestrator
from .notifications import InMemoryNotifier, Notifier
from .persistence.db import Database
from .persistence.repositories import (
    SqlAlchemyFulfillmentRepository,
    SqlAlchemyIntegrationRepository,
    SqlAlchemyOrderNumberGenerator,
    SqlAlchemyOrderRepository,
    SqlAlchemyPackageRepository,
    SqlAlchemyProductRepository,
    SqlAlchemyWalletRepository,
)
from .persistence.seed import seed_catalog_if_empty
from .pricing import PricingPolicy
from .repositories import (
    InMemoryEventBus,
    InMemoryFulfillmentRepository,
    InMemoryIntegrationRepository,
    InMemoryOrderRepository,
    InMemoryPackageRepository,
    InMemoryProductRepository,
    InMemoryWalletRepository,
)
from .seed import load_catalog_seed
from .services import AuthService, OrderService, SettlementService, WebhookService
from .settings import Settings
from .shipping import CarrierPackageService


@dataclass
class Container:
    settings: Settings
    auth_service: AuthService
    order_service: OrderService
    settlement_service: SettlementService
    webhook_service: WebhookService
    orchestrator: OrderStatusOrchestrator
    fulfillment: FulfillmentApprovalWorkflow
    ingestor: ExternalOrderIngestor
    notifier: Notifier
    event_bus: InMemoryEventBus
    clock: Clock
    id_provider: IdProvider
    db: Optional[Database] = None


def build_container(
    settings: Settings,
    clock: Optional[Clock] = None,
    ids: Optional[IdProvider] = None,
    notifier: Optional[Notifier] = None,
) -> Container:
    clock = clock or SystemClock()
    ids = ids or UUIDProvider()
    notifier = notifier or InMemoryNotifier()

    event_bus = InMemoryEventBus()
    db: Optional[Database] = None
    seed = load_catalog_seed(settings.catalog_seed_path)
    order_numbers: OrderNumberGenerator

    if settings.database_url:
        db = Database(settings.database_url, echo=settings.db_echo)
        db.create_tables()
        seed_catalog_if_empty(db, seed)
        orders = SqlAlchemyOrderRepository(db)
        products = SqlAlchemyProductRepository(db)
        requests = SqlAlchemyFulfillmentRepository(db)
        wallets = SqlAlchemyWalletRepository(db)
        integrations = SqlAlchemyIntegrationRepository(db)
        packages = SqlAlchemyPackageRepository(db)
        order_numbers = SqlAlchemyOrderNumberGenerator(db, prefix=settings.order_number_prefix)
    else:
        orders = InMemoryOrderRepository()
        products = InMemoryProductRepository(seed.products)
        requests = InMemoryFulfillmentRepository()
        wallets = InMemoryWalletRepository()
        integrations = InMemoryIntegrationRepository(seed.integrations)
        packages = InMemoryPackageRepository()
        order_numbers = InMemoryOrderNumberGenerator(prefix=settings.order_number_prefix)

    pricing = PricingPolicy(settings.admin_profit_tiers, settings.unmatched_cost_ratio)
    inventory = InventoryAdjuster(products)
    ledger = ProfitSettlementLedger(orders, wallets, notifier, clock, ids, settings.admin_user_id)
    package_service = CarrierPackageService(packages, settings, clock, ids)
    orchestrator = OrderStatusOrchestrator(
        orders,
        inventory,
        ledger,
        package_service,
        notifier,
        event_bus,
        clock,
        ids,
        order_numbers,
        max_batch=settings.max_bulk_orders,
        batch_timeout_seconds=settings.bulk_action_timeout_seconds,
    )
    fulfillment = FulfillmentApprovalWorkflow(
        requests, products, orders, inventory, orchestrator, notifier, event_bus, clock, ids
    )
    ingestor = ExternalOrderIngestor(
        orders,
        products,
        orchestrator,
        pricing,
        event_bus,
        clock,
        ids,
        merge_window_minutes=settings.order_merge_window_minutes,
    )

    return Container(
        settings=settings,
        auth_service=AuthService(settings, clock),
        order_service=OrderService(orders, products, wallets),
        settlement_service=SettlementService(orders, orchestrator),
        webhook_service=WebhookService(integrations, ingestor),
        orchestrator=orchestrator,
        fulfillment=fulfillment,
        ingestor=ingestor,
        notifier=notifier,
        event_bus=event_bus,
        clock=clock,
        id_provider=ids,
        db=db,
    )
