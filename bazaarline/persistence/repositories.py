from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from ..domain import (
    CustomerRole,
    FulfillmentLine,
    FulfillmentRequest,
    FulfillmentStatus,
    IntegrationType,
    LedgerEntryType,
    Order,
    OrderLine,
    OrderMetadata,
    OrderStatus,
    Package,
    PaymentStatus,
    Product,
    ShippingDetails,
    StockChange,
    StoreIntegration,
    VariantOption,
    VariantSelection,
    Wallet,
    WalletEntry,
)
from ..id_provider import format_order_number
from .db import Database
from .models import (
    CounterRecord,
    FulfillmentLineRecord,
    FulfillmentOrderRecord,
    FulfillmentRequestRecord,
    OrderLineRecord,
    OrderRecord,
    PackageRecord,
    ProductRecord,
    ProductVariantRecord,
    StoreIntegrationRecord,
    WalletEntryRecord,
    WalletRecord,
)

_ORDER_MILESTONES = (
    "confirmed_at",
    "confirmed_by",
    "processing_at",
    "processing_by",
    "ready_for_shipping_at",
    "shipped_at",
    "shipped_by",
    "delivered_at",
    "delivered_by",
    "cancelled_at",
    "cancelled_by",
    "cancellation_reason",
    "returned_at",
    "returned_by",
    "return_reason",
)


def order_from_record(record: OrderRecord) -> Order:
    return Order(
        id=record.id,
        order_number=record.order_number,
        status=OrderStatus(record.status),
        lines=[line_from_record(line) for line in record.lines],
        subtotal=record.subtotal,
        shipping_cost=record.shipping_cost,
        commission=record.commission,
        marketer_profit=record.marketer_profit,
        total=record.total,
        profits_distributed=record.profits_distributed,
        profits_distributed_at=record.profits_distributed_at,
        supplier_id=record.supplier_id,
        customer_id=record.customer_id,
        customer_role=CustomerRole(record.customer_role),
        package_id=record.package_id,
        payment_status=PaymentStatus(record.payment_status),
        shipping=ShippingDetails(
            full_name=record.ship_full_name,
            phone=record.ship_phone,
            street=record.ship_street,
            governorate=record.ship_governorate,
            city=record.ship_city,
            village=record.ship_village,
            village_id=record.ship_village_id,
            company=record.ship_company,
            tracking_number=record.tracking_number,
        ),
        metadata=OrderMetadata(
            source=record.source,
            external_order_id=record.external_order_id,
            external_store_id=record.external_store_id,
            external_owner_id=record.external_owner_id,
            external_status=record.external_status,
            integration_id=record.integration_id,
            payment_ref_id=record.payment_ref_id,
            merged_external_ids=[value for value in (record.merged_external_ids or "").split("\n") if value],
        ),
        admin_notes=record.admin_notes,
        created_at=record.created_at,
        updated_at=record.updated_at,
        version=record.version,
        **{name: getattr(record, name) for name in _ORDER_MILESTONES},
    )


def line_from_record(record: OrderLineRecord) -> OrderLine:
    variant = None
    if record.variant_id is not None:
        variant = VariantSelection(
            variant_id=record.variant_id,
            value=record.variant_value or "",
            name=record.variant_name,
        )
    return OrderLine(
        product_id=record.product_id,
        product_name=record.product_name,
        quantity=record.quantity,
        unit_price=record.unit_price,
        total_price=record.total_price,
        variant=variant,
    )


def order_values(order: Order) -> Dict[str, Any]:
    """Column values of an order, excluding the id and the settlement flag."""
    shipping = order.shipping
    meta = order.metadata
    values: Dict[str, Any] = {
        "order_number": order.order_number,
        "status": order.status.value,
        "subtotal": order.subtotal,
        "shipping_cost": order.shipping_cost,
        "commission": order.commission,
        "marketer_profit": order.marketer_profit,
        "total": order.total,
        "supplier_id": order.supplier_id,
        "customer_id": order.customer_id,
        "customer_role": order.customer_role.value,
        "package_id": order.package_id,
        "payment_status": order.payment_status.value,
        "admin_notes": order.admin_notes,
        "ship_full_name": shipping.full_name,
        "ship_phone": shipping.phone,
        "ship_street": shipping.street,
        "ship_governorate": shipping.governorate,
        "ship_city": shipping.city,
        "ship_village": shipping.village,
        "ship_village_id": shipping.village_id,
        "ship_company": shipping.company,
        "tracking_number": shipping.tracking_number,
        "source": meta.source,
        "external_order_id": meta.external_order_id,
        "external_store_id": meta.external_store_id,
        "external_owner_id": meta.external_owner_id,
        "external_status": meta.external_status,
        "integration_id": meta.integration_id,
        "payment_ref_id": meta.payment_ref_id,
        "merged_external_ids": "\n".join(meta.merged_external_ids),
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }
    values.update({name: getattr(order, name) for name in _ORDER_MILESTONES})
    return values


def line_records(lines: Iterable[OrderLine]) -> List[OrderLineRecord]:
    return [
        OrderLineRecord(
            position=position,
            product_id=line.product_id,
            product_name=line.product_name,
            quantity=line.quantity,
            unit_price=float(line.unit_price),
            total_price=float(line.total_price),
            variant_id=line.variant.variant_id if line.variant else None,
            variant_value=line.variant.value if line.variant else None,
            variant_name=line.variant.name if line.variant else None,
        )
        for position, line in enumerate(lines)
    ]


def product_from_record(record: ProductRecord) -> Product:
    return Product(
        id=record.id,
        name=record.name,
        sku=record.sku,
        supplier_id=record.supplier_id,
        supplier_price=record.supplier_price,
        marketer_price=record.marketer_price,
        stock_quantity=record.stock_quantity,
        has_variants=record.has_variants,
        variant_options=[
            VariantOption(
                variant_id=variant.variant_id,
                value=variant.value,
                stock_quantity=variant.stock_quantity,
                sku=variant.sku,
            )
            for variant in record.variants
        ],
        external_ids=[value for value in record.external_ids.split("\n") if value],
    )


def fulfillment_from_record(record: FulfillmentRequestRecord) -> FulfillmentRequest:
    return FulfillmentRequest(
        id=record.id,
        supplier_id=record.supplier_id,
        lines=[
            FulfillmentLine(product_id=line.product_id, quantity=line.quantity, current_stock=line.current_stock)
            for line in record.lines
        ],
        status=FulfillmentStatus(record.status),
        notes=record.notes,
        admin_notes=record.admin_notes,
        rejection_reason=record.rejection_reason,
        warehouse_location=record.warehouse_location,
        expected_delivery_date=record.expected_delivery_date,
        actual_delivery_date=record.actual_delivery_date,
        approved_at=record.approved_at,
        approved_by=record.approved_by,
        rejected_at=record.rejected_at,
        rejected_by=record.rejected_by,
        order_ids=[link.order_id for link in record.orders],
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def fulfillment_values(request: FulfillmentRequest) -> Dict[str, Any]:
    return {
        "supplier_id": request.supplier_id,
        "status": request.status.value,
        "notes": request.notes,
        "admin_notes": request.admin_notes,
        "rejection_reason": request.rejection_reason,
        "warehouse_location": request.warehouse_location,
        "expected_delivery_date": request.expected_delivery_date,
        "actual_delivery_date": request.actual_delivery_date,
        "approved_at": request.approved_at,
        "approved_by": request.approved_by,
        "rejected_at": request.rejected_at,
        "rejected_by": request.rejected_by,
        "created_at": request.created_at,
        "updated_at": request.updated_at,
    }


def integration_from_record(record: StoreIntegrationRecord) -> StoreIntegration:
    return StoreIntegration(
        id=record.id,
        type=IntegrationType(record.type),
        store_id=record.store_id,
        webhook_secret=record.webhook_secret,
        is_active=record.is_active,
        user_id=record.user_id,
        owner_role=CustomerRole(record.owner_role),
    )


def entry_from_record(record: WalletEntryRecord) -> WalletEntry:
    return WalletEntry(
        id=record.id,
        user_id=record.user_id,
        order_id=record.order_id,
        type=LedgerEntryType(record.type),
        amount=record.amount,
        reason=record.reason,
        reference=record.reference,
        created_at=record.created_at,
    )


class SqlAlchemyOrderRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(self, order: Order) -> Order:
        with self._db.session() as session:
            record = OrderRecord(
                id=order.id,
                profits_distributed=order.profits_distributed,
                profits_distributed_at=order.profits_distributed_at,
                version=order.version,
                lines=line_records(order.lines),
                **order_values(order),
            )
            session.add(record)
        return order

    def get(self, order_id: str) -> Optional[Order]:
        with self._db.session() as session:
            stmt = select(OrderRecord).options(joinedload(OrderRecord.lines)).where(OrderRecord.id == order_id)
            record = session.execute(stmt).unique().scalars().first()
            if not record:
                return None
            return order_from_record(record)

    def get_many(self, order_ids: Iterable[str]) -> List[Order]:
        wanted = list(order_ids)
        if not wanted:
            return []
        with self._db.session() as session:
            stmt = select(OrderRecord).options(joinedload(OrderRecord.lines)).where(OrderRecord.id.in_(wanted))
            records = session.execute(stmt).unique().scalars().all()
            by_id = {record.id: order_from_record(record) for record in records}
        return [by_id[order_id] for order_id in wanted if order_id in by_id]

    def list(self, status: Optional[OrderStatus], limit: int) -> List[Order]:
        with self._db.session() as session:
            stmt = select(OrderRecord).options(joinedload(OrderRecord.lines)).order_by(OrderRecord.created_at.desc())
            if status:
                stmt = stmt.where(OrderRecord.status == status.value)
            stmt = stmt.limit(limit)
            records = session.execute(stmt).unique().scalars().all()
            return [order_from_record(record) for record in records]

    def save(self, order: Order) -> Order:
        with self._db.session() as session:
            values = order_values(order)
            values["profits_distributed"] = order.profits_distributed
            values["profits_distributed_at"] = order.profits_distributed_at
            values["version"] = OrderRecord.version + 1
            result = session.execute(update(OrderRecord).where(OrderRecord.id == order.id).values(**values))
            if result.rowcount:
                self._replace_lines(session, order)
        return order

    def save_if_status(self, order: Order, expected_status: OrderStatus) -> bool:
        with self._db.session() as session:
            stmt = (
                update(OrderRecord)
                .where(
                    OrderRecord.id == order.id,
                    OrderRecord.status == expected_status.value,
                    OrderRecord.version == order.version,
                )
                .values(version=order.version + 1, **order_values(order))
            )
            if session.execute(stmt).rowcount != 1:
                return False
            self._replace_lines(session, order)
        return True

    def claim_profits(
        self,
        order_id: str,
        expected: bool,
        new: bool,
        at: Optional[datetime],
        required_status: Optional[OrderStatus] = None,
    ) -> bool:
        with self._db.session() as session:
            stmt = (
                update(OrderRecord)
                .where(OrderRecord.id == order_id, OrderRecord.profits_distributed == expected)
                .values(profits_distributed=new, profits_distributed_at=at)
            )
            if required_status is not None:
                stmt = stmt.where(OrderRecord.status == required_status.value)
            return session.execute(stmt).rowcount == 1

    def find_by_external(self, external_order_id: str, owner_id: str) -> Optional[Order]:
        with self._db.session() as session:
            stmt = (
                select(OrderRecord)
                .options(joinedload(OrderRecord.lines))
                .where(OrderRecord.external_order_id == external_order_id, OrderRecord.external_owner_id == owner_id)
            )
            record = session.execute(stmt).unique().scalars().first()
            return order_from_record(record) if record else None

    def find_merged(self, external_order_id: str, owner_id: str) -> Optional[Order]:
        with self._db.session() as session:
            stmt = (
                select(OrderRecord)
                .options(joinedload(OrderRecord.lines))
                .where(
                    OrderRecord.external_owner_id == owner_id,
                    OrderRecord.merged_external_ids.contains(external_order_id),
                )
            )
            for record in session.execute(stmt).unique().scalars().all():
                if external_order_id in record.merged_external_ids.split("\n"):
                    return order_from_record(record)
        return None

    def store_orders(
        self, store_id: str, since: Optional[datetime] = None, owner_id: Optional[str] = None
    ) -> List[Order]:
        with self._db.session() as session:
            stmt = (
                select(OrderRecord)
                .options(joinedload(OrderRecord.lines))
                .where(OrderRecord.external_store_id == store_id)
                .order_by(OrderRecord.created_at)
            )
            if owner_id is not None:
                stmt = stmt.where(OrderRecord.external_owner_id == owner_id)
            if since is not None:
                stmt = stmt.where(OrderRecord.created_at >= since)
            records = session.execute(stmt).unique().scalars().all()
            return [order_from_record(record) for record in records]

    def pending_settlement(self, order_ids: Optional[List[str]] = None) -> List[Order]:
        with self._db.session() as session:
            stmt = (
                select(OrderRecord)
                .options(joinedload(OrderRecord.lines))
                .where(OrderRecord.status == OrderStatus.DELIVERED.value, OrderRecord.profits_distributed.is_(False))
                .order_by(func.coalesce(OrderRecord.delivered_at, OrderRecord.updated_at).desc())
            )
            if order_ids is not None:
                stmt = stmt.where(OrderRecord.id.in_(order_ids))
            records = session.execute(stmt).unique().scalars().all()
            return [order_from_record(record) for record in records]

    @staticmethod
    def _replace_lines(session: Session, order: Order) -> None:
        session.execute(delete(OrderLineRecord).where(OrderLineRecord.order_id == order.id))
        for record in line_records(order.lines):
            record.order_id = order.id
            session.add(record)


class SqlAlchemyProductRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(self, product: Product) -> Product:
        with self._db.session() as session:
            session.add(
                ProductRecord(
                    id=product.id,
                    name=product.name,
                    sku=product.sku,
                    supplier_id=product.supplier_id,
                    supplier_price=product.supplier_price,
                    marketer_price=product.marketer_price,
                    stock_quantity=product.stock_quantity,
                    has_variants=product.has_variants,
                    external_ids="\n".join(product.external_ids),
                    variants=[
                        ProductVariantRecord(
                            variant_id=option.variant_id,
                            value=option.value,
                            stock_quantity=option.stock_quantity,
                            sku=option.sku,
                        )
                        for option in product.variant_options
                    ],
                )
            )
        return product

    def get(self, product_id: str) -> Optional[Product]:
        with self._db.session() as session:
            record = self._load(session, ProductRecord.id == product_id)
            return product_from_record(record) if record else None

    def find_by_sku(self, sku: str) -> Optional[Product]:
        with self._db.session() as session:
            record = self._load(session, ProductRecord.sku == sku)
            return product_from_record(record) if record else None

    def find_by_external_id(self, external_id: str) -> Optional[Product]:
        with self._db.session() as session:
            stmt = (
                select(ProductRecord)
                .options(joinedload(ProductRecord.variants))
                .where(ProductRecord.external_ids.contains(external_id))
            )
            for record in session.execute(stmt).unique().scalars().all():
                if external_id in record.external_ids.split("\n"):
                    return product_from_record(record)
        return None

    def restock(
        self, product_id: str, quantity: int, variant: Optional[VariantSelection] = None
    ) -> Optional[StockChange]:
        with self._db.session() as session:
            row = session.execute(
                select(ProductRecord.name, ProductRecord.has_variants, ProductRecord.stock_quantity)
                .where(ProductRecord.id == product_id)
                .with_for_update()
            ).first()
            if not row:
                return None
            name, has_variants, old_stock = row.name, row.has_variants, row.stock_quantity

            matched: Optional[bool] = None
            if has_variants and variant and variant.variant_id:
                result = session.execute(
                    update(ProductVariantRecord)
                    .where(
                        ProductVariantRecord.product_id == product_id,
                        ProductVariantRecord.variant_id == variant.variant_id,
                        ProductVariantRecord.value == variant.value,
                    )
                    .values(stock_quantity=ProductVariantRecord.stock_quantity + quantity)
                )
                matched = result.rowcount > 0

            session.execute(
                update(ProductRecord)
                .where(ProductRecord.id == product_id)
                .values(stock_quantity=ProductRecord.stock_quantity + quantity)
                .execution_options(synchronize_session=False)
            )
            new_stock = session.execute(
                select(ProductRecord.stock_quantity).where(ProductRecord.id == product_id)
            ).scalar_one()
        return StockChange(
            product_id=product_id,
            product_name=name,
            old_stock=old_stock,
            new_stock=new_stock,
            variant_matched=matched,
        )

    def withdraw_clamped(self, product_id: str, quantity: int) -> Optional[StockChange]:
        with self._db.session() as session:
            row = session.execute(
                select(ProductRecord.name, ProductRecord.stock_quantity)
                .where(ProductRecord.id == product_id)
                .with_for_update()
            ).first()
            if not row:
                return None
            name, old_stock = row.name, row.stock_quantity
            session.execute(
                update(ProductRecord)
                .where(ProductRecord.id == product_id)
                .values(
                    stock_quantity=case(
                        (ProductRecord.stock_quantity > quantity, ProductRecord.stock_quantity - quantity),
                        else_=0,
                    )
                )
                .execution_options(synchronize_session=False)
            )
            new_stock = session.execute(
                select(ProductRecord.stock_quantity).where(ProductRecord.id == product_id)
            ).scalar_one()
        return StockChange(product_id=product_id, product_name=name, old_stock=old_stock, new_stock=new_stock)

    @staticmethod
    def _load(session: Session, condition) -> Optional[ProductRecord]:
        stmt = select(ProductRecord).options(joinedload(ProductRecord.variants)).where(condition)
        return session.execute(stmt).unique().scalars().first()


class SqlAlchemyFulfillmentRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(self, request: FulfillmentRequest) -> FulfillmentRequest:
        with self._db.session() as session:
            record = FulfillmentRequestRecord(id=request.id, **fulfillment_values(request))
            session.add(record)
            session.flush()
            self._replace_children(session, request)
        return request

    def get(self, request_id: str) -> Optional[FulfillmentRequest]:
        with self._db.session() as session:
            record = session.execute(
                select(FulfillmentRequestRecord).where(FulfillmentRequestRecord.id == request_id)
            ).scalars().first()
            return fulfillment_from_record(record) if record else None

    def save(self, request: FulfillmentRequest) -> FulfillmentRequest:
        with self._db.session() as session:
            result = session.execute(
                update(FulfillmentRequestRecord)
                .where(FulfillmentRequestRecord.id == request.id)
                .values(**fulfillment_values(request))
            )
            if result.rowcount:
                self._replace_children(session, request)
        return request

    def save_if_status(self, request: FulfillmentRequest, expected_status: FulfillmentStatus) -> bool:
        with self._db.session() as session:
            result = session.execute(
                update(FulfillmentRequestRecord)
                .where(
                    FulfillmentRequestRecord.id == request.id,
                    FulfillmentRequestRecord.status == expected_status.value,
                )
                .values(**fulfillment_values(request))
            )
            if result.rowcount != 1:
                return False
            self._replace_children(session, request)
        return True

    @staticmethod
    def _replace_children(session: Session, request: FulfillmentRequest) -> None:
        session.execute(delete(FulfillmentLineRecord).where(FulfillmentLineRecord.request_id == request.id))
        session.execute(delete(FulfillmentOrderRecord).where(FulfillmentOrderRecord.request_id == request.id))
        session.add_all(
            [
                FulfillmentLineRecord(
                    request_id=request.id,
                    position=position,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    current_stock=line.current_stock,
                )
                for position, line in enumerate(request.lines)
            ]
        )
        session.add_all(
            [
                FulfillmentOrderRecord(request_id=request.id, position=position, order_id=order_id)
                for position, order_id in enumerate(request.order_ids)
            ]
        )


class SqlAlchemyWalletRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, user_id: str) -> Wallet:
        with self._db.session() as session:
            record = session.get(WalletRecord, user_id)
            if not record:
                return Wallet(user_id=user_id)
            return Wallet(
                user_id=record.user_id,
                balance=round(record.balance, 2),
                total_earnings=round(record.total_earnings, 2),
            )

    def post(self, entry: WalletEntry) -> Wallet:
        with self._db.session() as session:
            if not session.get(WalletRecord, entry.user_id):
                session.add(WalletRecord(user_id=entry.user_id, balance=0.0, total_earnings=0.0))
                session.flush()
            if entry.type == LedgerEntryType.CREDIT:
                values = {
                    "balance": WalletRecord.balance + entry.amount,
                    "total_earnings": WalletRecord.total_earnings + entry.amount,
                }
            else:
                values = {"balance": WalletRecord.balance - entry.amount}
            session.execute(
                update(WalletRecord)
                .where(WalletRecord.user_id == entry.user_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            session.add(
                WalletEntryRecord(
                    id=entry.id,
                    user_id=entry.user_id,
                    order_id=entry.order_id,
                    type=entry.type.value,
                    amount=entry.amount,
                    reason=entry.reason,
                    reference=entry.reference,
                    created_at=entry.created_at,
                )
            )
            session.flush()
            row = session.execute(
                select(WalletRecord.balance, WalletRecord.total_earnings).where(WalletRecord.user_id == entry.user_id)
            ).one()
        return Wallet(user_id=entry.user_id, balance=round(row.balance, 2), total_earnings=round(row.total_earnings, 2))

    def entries_for_order(self, order_id: str) -> List[WalletEntry]:
        with self._db.session() as session:
            stmt = (
                select(WalletEntryRecord)
                .where(WalletEntryRecord.order_id == order_id)
                .order_by(WalletEntryRecord.created_at.asc())
            )
            return [entry_from_record(record) for record in session.execute(stmt).scalars().all()]

    def entries_for_user(self, user_id: str) -> List[WalletEntry]:
        with self._db.session() as session:
            stmt = (
                select(WalletEntryRecord)
                .where(WalletEntryRecord.user_id == user_id)
                .order_by(WalletEntryRecord.created_at.asc())
            )
            return [entry_from_record(record) for record in session.execute(stmt).scalars().all()]


class SqlAlchemyIntegrationRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(self, integration: StoreIntegration) -> StoreIntegration:
        with self._db.session() as session:
            session.add(
                StoreIntegrationRecord(
                    id=integration.id,
                    type=integration.type.value,
                    store_id=integration.store_id,
                    webhook_secret=integration.webhook_secret,
                    is_active=integration.is_active,
                    user_id=integration.user_id,
                    owner_role=integration.owner_role.value,
                )
            )
        return integration

    def find_by_secret(self, type_: IntegrationType, secret: str) -> Optional[StoreIntegration]:
        with self._db.session() as session:
            stmt = select(StoreIntegrationRecord).where(
                StoreIntegrationRecord.type == type_.value,
                StoreIntegrationRecord.webhook_secret == secret,
                StoreIntegrationRecord.is_active.is_(True),
            )
            record = session.execute(stmt).scalars().first()
            return integration_from_record(record) if record else None

    def find_by_store(self, type_: IntegrationType, store_id: str) -> List[StoreIntegration]:
        with self._db.session() as session:
            stmt = select(StoreIntegrationRecord).where(
                StoreIntegrationRecord.type == type_.value,
                StoreIntegrationRecord.store_id == store_id,
                StoreIntegrationRecord.is_active.is_(True),
            )
            return [integration_from_record(record) for record in session.execute(stmt).scalars().all()]

    def set_secret(self, integration_id: str, secret: str) -> Optional[StoreIntegration]:
        with self._db.session() as session:
            record = session.get(StoreIntegrationRecord, integration_id)
            if not record:
                return None
            record.webhook_secret = secret
            session.flush()
            return integration_from_record(record)


class SqlAlchemyPackageRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(self, package: Package) -> Package:
        with self._db.session() as session:
            session.add(PackageRecord(**package.model_dump()))
        return package

    def get_by_order(self, order_id: str) -> Optional[Package]:
        with self._db.session() as session:
            record = session.execute(select(PackageRecord).where(PackageRecord.order_id == order_id)).scalars().first()
            if not record:
                return None
            return Package(
                id=record.id,
                order_id=record.order_id,
                barcode=record.barcode,
                description=record.description,
                village_id=record.village_id,
                total_cost=record.total_cost,
                carrier_package_id=record.carrier_package_id,
                api_success=record.api_success,
                created_at=record.created_at,
            )


class SqlAlchemyOrderNumberGenerator:
    """Order numbers backed by a counter row, incremented inside the database."""

    def __init__(self, db: Database, prefix: str = "ORD", counter: str = "order_number") -> None:
        self._db = db
        self._prefix = prefix
        self._counter = counter

    def next_number(self) -> str:
        with self._db.session() as session:
            result = session.execute(
                update(CounterRecord)
                .where(CounterRecord.name == self._counter)
                .values(value=CounterRecord.value + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.add(CounterRecord(name=self._counter, value=1))
                session.flush()
            value = session.execute(
                select(CounterRecord.value).where(CounterRecord.name == self._counter)
            ).scalar_one()
        return format_order_number(self._prefix, value)
