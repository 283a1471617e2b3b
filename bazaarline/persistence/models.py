from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class OrderRecord(Base):
    __tablename__ = "orders"
    __table_args__ = (Index("ix_orders_external", "external_order_id", "external_owner_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    subtotal: Mapped[float] = mapped_column(Float, nullable=False)
    shipping_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    commission: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    marketer_profit: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total: Mapped[float] = mapped_column(Float, nullable=False)
    profits_distributed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    profits_distributed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    supplier_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    customer_role: Mapped[str] = mapped_column(String(16), nullable=False)
    package_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(16), nullable=False)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    ship_full_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    ship_phone: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    ship_street: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    ship_governorate: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    ship_city: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    ship_village: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    ship_village_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ship_company: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(128), nullable=True)

    source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    external_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    external_store_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    external_owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    external_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    integration_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_ref_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    merged_external_ids: Mapped[str] = mapped_column(Text, nullable=False, default="")

    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    confirmed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    processing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    processing_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ready_for_shipping_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    shipped_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    delivered_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    returned_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    return_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    lines: Mapped[list["OrderLineRecord"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="joined",
        order_by="OrderLineRecord.position",
    )


class OrderLineRecord(Base):
    __tablename__ = "order_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False)
    total_price: Mapped[float] = mapped_column(Float, nullable=False)
    variant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    variant_value: Mapped[str | None] = mapped_column(String(128), nullable=True)
    variant_name: Mapped[str | None] = mapped_column(String(256), nullable=True)

    order: Mapped[OrderRecord] = relationship(back_populates="lines")


class ProductRecord(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    supplier_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    supplier_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    marketer_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_variants: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    external_ids: Mapped[str] = mapped_column(Text, nullable=False, default="")

    variants: Mapped[list["ProductVariantRecord"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        lazy="joined",
    )


class ProductVariantRecord(Base):
    __tablename__ = "product_variants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    variant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sku: Mapped[str | None] = mapped_column(String(64), nullable=True)

    product: Mapped[ProductRecord] = relationship(back_populates="variants")


class FulfillmentRequestRecord(Base):
    __tablename__ = "fulfillment_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    warehouse_location: Mapped[str | None] = mapped_column(String(128), nullable=True)
    expected_delivery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    actual_delivery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    lines: Mapped[list["FulfillmentLineRecord"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FulfillmentLineRecord.position",
    )
    orders: Mapped[list["FulfillmentOrderRecord"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FulfillmentOrderRecord.position",
    )


class FulfillmentLineRecord(Base):
    __tablename__ = "fulfillment_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[str] = mapped_column(ForeignKey("fulfillment_requests.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    request: Mapped[FulfillmentRequestRecord] = relationship(back_populates="lines")


class FulfillmentOrderRecord(Base):
    __tablename__ = "fulfillment_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[str] = mapped_column(ForeignKey("fulfillment_requests.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)

    request: Mapped[FulfillmentRequestRecord] = relationship(back_populates="orders")


class WalletRecord(Base):
    __tablename__ = "wallets"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_earnings: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class WalletEntryRecord(Base):
    __tablename__ = "wallet_entries"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("wallets.user_id"), index=True)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    reference: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, index=True)


class StoreIntegrationRecord(Base):
    __tablename__ = "store_integrations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    store_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    webhook_secret: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_role: Mapped[str] = mapped_column(String(16), nullable=False)


class PackageRecord(Base):
    __tablename__ = "packages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    barcode: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    village_id: Mapped[str] = mapped_column(String(64), nullable=False)
    total_cost: Mapped[float] = mapped_column(Float, nullable=False)
    carrier_package_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    api_success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class CounterRecord(Base):
    __tablename__ = "counters"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
