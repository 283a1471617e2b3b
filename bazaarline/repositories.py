from __future__ import annotations

import asyncio
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

from .clock import as_utc
from .domain import (
    EventMessage,
    FulfillmentRequest,
    FulfillmentStatus,
    IntegrationType,
    LedgerEntryType,
    Order,
    OrderStatus,
    Package,
    Product,
    StockChange,
    StoreIntegration,
    VariantSelection,
    Wallet,
    WalletEntry,
)


class OrderRepository(Protocol):
    def add(self, order: Order) -> Order: ...

    def get(self, order_id: str) -> Optional[Order]: ...

    def get_many(self, order_ids: Iterable[str]) -> List[Order]: ...

    def list(self, status: Optional[OrderStatus], limit: int) -> List[Order]: ...

    def save(self, order: Order) -> Order: ...

    def save_if_status(self, order: Order, expected_status: OrderStatus) -> bool: ...

    def claim_profits(
        self,
        order_id: str,
        expected: bool,
        new: bool,
        at: Optional[datetime],
        required_status: Optional[OrderStatus] = None,
    ) -> bool: ...

    def find_by_external(self, external_order_id: str, owner_id: str) -> Optional[Order]: ...

    def find_merged(self, external_order_id: str, owner_id: str) -> Optional[Order]: ...

    def store_orders(
        self, store_id: str, since: Optional[datetime] = None, owner_id: Optional[str] = None
    ) -> List[Order]: ...

    def pending_settlement(self, order_ids: Optional[List[str]] = None) -> List[Order]: ...


class ProductRepository(Protocol):
    def add(self, product: Product) -> Product: ...

    def get(self, product_id: str) -> Optional[Product]: ...

    def find_by_sku(self, sku: str) -> Optional[Product]: ...

    def find_by_external_id(self, external_id: str) -> Optional[Product]: ...

    def restock(
        self, product_id: str, quantity: int, variant: Optional[VariantSelection] = None
    ) -> Optional[StockChange]: ...

    def withdraw_clamped(self, product_id: str, quantity: int) -> Optional[StockChange]: ...


class FulfillmentRepository(Protocol):
    def add(self, request: FulfillmentRequest) -> FulfillmentRequest: ...

    def get(self, request_id: str) -> Optional[FulfillmentRequest]: ...

    def save(self, request: FulfillmentRequest) -> FulfillmentRequest: ...

    def save_if_status(self, request: FulfillmentRequest, expected_status: FulfillmentStatus) -> bool: ...


class WalletRepository(Protocol):
    def get(self, user_id: str) -> Wallet: ...

    def post(self, entry: WalletEntry) -> Wallet: ...

    def entries_for_order(self, order_id: str) -> List[WalletEntry]: ...

    def entries_for_user(self, user_id: str) -> List[WalletEntry]: ...


class IntegrationRepository(Protocol):
    def add(self, integration: StoreIntegration) -> StoreIntegration: ...

    def find_by_secret(self, type_: IntegrationType, secret: str) -> Optional[StoreIntegration]: ...

    def find_by_store(self, type_: IntegrationType, store_id: str) -> List[StoreIntegration]: ...

    def set_secret(self, integration_id: str, secret: str) -> Optional[StoreIntegration]: ...


class PackageRepository(Protocol):
    def add(self, package: Package) -> Package: ...

    def get_by_order(self, order_id: str) -> Optional[Package]: ...


class EventBus(Protocol):
    def publish(self, event: EventMessage) -> None: ...

    def subscribe(self) -> asyncio.Queue: ...

    def unsubscribe(self, queue: asyncio.Queue) -> None: ...


class InMemoryOrderRepository(OrderRepository):
    def __init__(self) -> None:
        self._orders: Dict[str, Order] = {}
        self._lock = threading.Lock()

    def add(self, order: Order) -> Order:
        with self._lock:
            self._orders[order.id] = order.model_copy(deep=True)
        return order

    def get(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    def get_many(self, order_ids: Iterable[str]) -> List[Order]:
        found = [self._orders.get(order_id) for order_id in order_ids]
        return [order.model_copy(deep=True) for order in found if order]

    def list(self, status: Optional[OrderStatus], limit: int) -> List[Order]:
        orders = sorted(self._orders.values(), key=lambda order: order.created_at, reverse=True)
        if status:
            orders = [order for order in orders if order.status == status]
        return [order.model_copy(deep=True) for order in orders[:limit]]

    def save(self, order: Order) -> Order:
        with self._lock:
            current = self._orders.get(order.id)
            version = current.version + 1 if current else order.version
            self._orders[order.id] = order.model_copy(deep=True, update={"version": version})
        return order

    def save_if_status(self, order: Order, expected_status: OrderStatus) -> bool:
        with self._lock:
            current = self._orders.get(order.id)
            if not current or current.status != expected_status or current.version != order.version:
                return False
            # the settlement flag is owned by claim_profits
            self._orders[order.id] = order.model_copy(
                deep=True,
                update={
                    "profits_distributed": current.profits_distributed,
                    "profits_distributed_at": current.profits_distributed_at,
                    "version": current.version + 1,
                },
            )
            return True

    def claim_profits(
        self,
        order_id: str,
        expected: bool,
        new: bool,
        at: Optional[datetime],
        required_status: Optional[OrderStatus] = None,
    ) -> bool:
        with self._lock:
            current = self._orders.get(order_id)
            if not current or current.profits_distributed != expected:
                return False
            if required_status is not None and current.status != required_status:
                return False
            self._orders[order_id] = current.model_copy(
                update={"profits_distributed": new, "profits_distributed_at": at}
            )
            return True

    def find_by_external(self, external_order_id: str, owner_id: str) -> Optional[Order]:
        for order in self._orders.values():
            meta = order.metadata
            if meta.external_order_id == external_order_id and meta.external_owner_id == owner_id:
                return order.model_copy(deep=True)
        return None

    def find_merged(self, external_order_id: str, owner_id: str) -> Optional[Order]:
        for order in self._orders.values():
            meta = order.metadata
            if meta.external_owner_id == owner_id and external_order_id in meta.merged_external_ids:
                return order.model_copy(deep=True)
        return None

    def store_orders(
        self, store_id: str, since: Optional[datetime] = None, owner_id: Optional[str] = None
    ) -> List[Order]:
        orders = [
            order
            for order in self._orders.values()
            if order.metadata.external_store_id == store_id
            and (owner_id is None or order.metadata.external_owner_id == owner_id)
            and (since is None or as_utc(order.created_at) >= as_utc(since))
        ]
        orders.sort(key=lambda order: as_utc(order.created_at))
        return [order.model_copy(deep=True) for order in orders]

    def pending_settlement(self, order_ids: Optional[List[str]] = None) -> List[Order]:
        orders = [
            order
            for order in self._orders.values()
            if order.status == OrderStatus.DELIVERED and not order.profits_distributed
        ]
        if order_ids is not None:
            wanted = set(order_ids)
            orders = [order for order in orders if order.id in wanted]
        orders.sort(key=lambda order: order.delivered_at or order.updated_at, reverse=True)
        return [order.model_copy(deep=True) for order in orders]


class InMemoryProductRepository(ProductRepository):
    def __init__(self, products: Iterable[Product] = ()) -> None:
        self._products: Dict[str, Product] = {product.id: product.model_copy(deep=True) for product in products}
        self._lock = threading.Lock()

    def add(self, product: Product) -> Product:
        with self._lock:
            self._products[product.id] = product.model_copy(deep=True)
        return product

    def get(self, product_id: str) -> Optional[Product]:
        product = self._products.get(product_id)
        return product.model_copy(deep=True) if product else None

    def find_by_sku(self, sku: str) -> Optional[Product]:
        for product in self._products.values():
            if product.sku == sku:
                return product.model_copy(deep=True)
        return None

    def find_by_external_id(self, external_id: str) -> Optional[Product]:
        for product in self._products.values():
            if external_id in product.external_ids:
                return product.model_copy(deep=True)
        return None

    def restock(
        self, product_id: str, quantity: int, variant: Optional[VariantSelection] = None
    ) -> Optional[StockChange]:
        with self._lock:
            product = self._products.get(product_id)
            if not product:
                return None
            matched: Optional[bool] = None
            if product.has_variants and variant and variant.variant_id:
                matched = False
                for option in product.variant_options:
                    if option.variant_id == variant.variant_id and option.value == variant.value:
                        option.stock_quantity += quantity
                        matched = True
                        break
            old_stock = product.stock_quantity
            product.stock_quantity = old_stock + quantity
            return StockChange(
                product_id=product.id,
                product_name=product.name,
                old_stock=old_stock,
                new_stock=product.stock_quantity,
                variant_matched=matched,
            )

    def withdraw_clamped(self, product_id: str, quantity: int) -> Optional[StockChange]:
        with self._lock:
            product = self._products.get(product_id)
            if not product:
                return None
            old_stock = product.stock_quantity
            product.stock_quantity = max(0, old_stock - quantity)
            return StockChange(
                product_id=product.id,
                product_name=product.name,
                old_stock=old_stock,
                new_stock=product.stock_quantity,
            )


class InMemoryFulfillmentRepository(FulfillmentRepository):
    def __init__(self) -> None:
        self._requests: Dict[str, FulfillmentRequest] = {}
        self._lock = threading.Lock()

    def add(self, request: FulfillmentRequest) -> FulfillmentRequest:
        self._requests[request.id] = request.model_copy(deep=True)
        return request

    def get(self, request_id: str) -> Optional[FulfillmentRequest]:
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    def save(self, request: FulfillmentRequest) -> FulfillmentRequest:
        self._requests[request.id] = request.model_copy(deep=True)
        return request

    def save_if_status(self, request: FulfillmentRequest, expected_status: FulfillmentStatus) -> bool:
        with self._lock:
            current = self._requests.get(request.id)
            if not current or current.status != expected_status:
                return False
            self._requests[request.id] = request.model_copy(deep=True)
            return True


class InMemoryWalletRepository(WalletRepository):
    def __init__(self) -> None:
        self._wallets: Dict[str, Wallet] = {}
        self._entries: List[WalletEntry] = []
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Wallet:
        wallet = self._wallets.get(user_id)
        return wallet.model_copy() if wallet else Wallet(user_id=user_id)

    def post(self, entry: WalletEntry) -> Wallet:
        with self._lock:
            wallet = self._wallets.setdefault(entry.user_id, Wallet(user_id=entry.user_id))
            if entry.type == LedgerEntryType.CREDIT:
                wallet.balance = round(wallet.balance + entry.amount, 2)
                wallet.total_earnings = round(wallet.total_earnings + entry.amount, 2)
            else:
                wallet.balance = round(wallet.balance - entry.amount, 2)
            self._entries.append(entry)
            return wallet.model_copy()

    def entries_for_order(self, order_id: str) -> List[WalletEntry]:
        return [entry for entry in self._entries if entry.order_id == order_id]

    def entries_for_user(self, user_id: str) -> List[WalletEntry]:
        return [entry for entry in self._entries if entry.user_id == user_id]


class InMemoryIntegrationRepository(IntegrationRepository):
    def __init__(self, integrations: Iterable[StoreIntegration] = ()) -> None:
        self._integrations: Dict[str, StoreIntegration] = {item.id: item for item in integrations}

    def add(self, integration: StoreIntegration) -> StoreIntegration:
        self._integrations[integration.id] = integration
        return integration

    def find_by_secret(self, type_: IntegrationType, secret: str) -> Optional[StoreIntegration]:
        for integration in self._integrations.values():
            if integration.type == type_ and integration.is_active and integration.webhook_secret == secret:
                return integration
        return None

    def find_by_store(self, type_: IntegrationType, store_id: str) -> List[StoreIntegration]:
        return [
            integration
            for integration in self._integrations.values()
            if integration.type == type_ and integration.is_active and integration.store_id == store_id
        ]

    def set_secret(self, integration_id: str, secret: str) -> Optional[StoreIntegration]:
        integration = self._integrations.get(integration_id)
        if not integration:
            return None
        updated = integration.model_copy(update={"webhook_secret": secret})
        self._integrations[integration_id] = updated
        return updated


class InMemoryPackageRepository(PackageRepository):
    def __init__(self) -> None:
        self._packages: Dict[str, Package] = {}

    def add(self, package: Package) -> Package:
        self._packages[package.order_id] = package
        return package

    def get_by_order(self, order_id: str) -> Optional[Package]:
        return self._packages.get(order_id)


class InMemoryEventBus(EventBus):
    def __init__(self) -> None:
        self._subscribers: List[asyncio.Queue] = []

    def publish(self, event: EventMessage) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                continue

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)
