from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, conint, confloat, field_validator


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    READY_FOR_SHIPPING = "ready_for_shipping"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    REFUNDED = "refunded"


class OrderAction(str, Enum):
    CONFIRM = "confirm"
    PROCESS = "process"
    SHIP = "ship"
    DELIVER = "deliver"
    CANCEL = "cancel"
    RETURN = "return"
    UPDATE_SHIPPING = "update-shipping"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class CustomerRole(str, Enum):
    MARKETER = "marketer"
    WHOLESALER = "wholesaler"
    SUPPLIER = "supplier"
    ADMIN = "admin"


class FulfillmentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LedgerEntryType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class SideEffectStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


class IntegrationType(str, Enum):
    EASY_ORDERS = "easy_orders"


class EventType(str, Enum):
    ORDER_CREATED = "order.created"
    ORDER_MERGED = "order.merged"
    ORDER_STATUS_CHANGED = "order.status_changed"
    PROFITS_DISTRIBUTED = "order.profits_distributed"
    PROFITS_REVERSED = "order.profits_reversed"
    FULFILLMENT_DECIDED = "fulfillment.decided"


class Populated(BaseModel):
    """A referenced entity that arrived expanded instead of as a bare id."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(validation_alias=AliasChoices("id", "_id"))

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


Ref = Union[str, Populated]


def ref_id(ref: Any) -> Optional[str]:
    """Normalize a reference that may be a bare id or a populated object."""
    if ref is None:
        return None
    if isinstance(ref, Populated):
        return ref.id
    if isinstance(ref, dict):
        value = ref.get("id", ref.get("_id"))
        return str(value) if value is not None else None
    if isinstance(ref, (str, int)):
        return str(ref)
    value = getattr(ref, "id", None)
    return str(value) if value is not None else None


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int


class TokenInput(BaseModel):
    token: str


class AuthContext(BaseModel):
    sub: str
    iss: str
    exp: int


class VariantSelection(BaseModel):
    variant_id: str
    value: str = ""
    name: Optional[str] = None


class OrderLine(BaseModel):
    product_id: str
    product_name: str = ""
    quantity: conint(gt=0)
    unit_price: confloat(ge=0)
    total_price: float = 0.0
    variant: Optional[VariantSelection] = None


class ShippingDetails(BaseModel):
    full_name: str = ""
    phone: str = ""
    street: str = ""
    governorate: str = ""
    city: str = ""
    village: str = ""
    village_id: Optional[str] = None
    company: Optional[str] = None
    tracking_number: Optional[str] = None


class OrderMetadata(BaseModel):
    source: Optional[str] = None
    external_order_id: Optional[str] = None
    external_store_id: Optional[str] = None
    external_owner_id: Optional[str] = None
    external_status: Optional[str] = None
    integration_id: Optional[str] = None
    payment_ref_id: Optional[str] = None
    merged_external_ids: List[str] = Field(default_factory=list)


class Order(BaseModel):
    id: str
    order_number: str
    status: OrderStatus
    lines: List[OrderLine]
    subtotal: float
    shipping_cost: float = 0.0
    commission: float = 0.0
    marketer_profit: float = 0.0
    total: float
    profits_distributed: bool = False
    profits_distributed_at: Optional[datetime] = None
    supplier_id: Optional[str] = None
    customer_id: str
    customer_role: CustomerRole = CustomerRole.MARKETER
    package_id: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    shipping: ShippingDetails = Field(default_factory=ShippingDetails)
    metadata: OrderMetadata = Field(default_factory=OrderMetadata)
    admin_notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[str] = None
    processing_at: Optional[datetime] = None
    processing_by: Optional[str] = None
    ready_for_shipping_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    shipped_by: Optional[str] = None
    delivered_at: Optional[datetime] = None
    delivered_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    returned_at: Optional[datetime] = None
    returned_by: Optional[str] = None
    return_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    version: int = 0


class OrderDraft(BaseModel):
    customer_id: str
    customer_role: CustomerRole = CustomerRole.MARKETER
    supplier_id: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    lines: List[OrderLine]
    subtotal: float
    shipping_cost: float = 0.0
    commission: float = 0.0
    marketer_profit: float = 0.0
    total: float
    payment_status: PaymentStatus = PaymentStatus.PENDING
    shipping: ShippingDetails = Field(default_factory=ShippingDetails)
    metadata: OrderMetadata = Field(default_factory=OrderMetadata)
    created_at: Optional[datetime] = None


class OrderList(BaseModel):
    items: List[Order]


class OrderQuery(BaseModel):
    status: Optional[OrderStatus] = None
    limit: int = 50


class OrderLookup(BaseModel):
    order_id: str


class OrderSummary(BaseModel):
    id: str
    order_number: str
    status: OrderStatus
    total: float
    profits_distributed: bool
    package_id: Optional[str] = None
    admin_notes: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_company: Optional[str] = None
    cancellation_reason: Optional[str] = None
    return_reason: Optional[str] = None
    updated_at: datetime


class VariantOption(BaseModel):
    variant_id: str
    value: str = ""
    stock_quantity: int = 0
    sku: Optional[str] = None


class Product(BaseModel):
    id: str
    name: str
    sku: Optional[str] = None
    supplier_id: Optional[str] = None
    supplier_price: float = 0.0
    marketer_price: float = 0.0
    stock_quantity: int = 0
    has_variants: bool = False
    variant_options: List[VariantOption] = Field(default_factory=list)
    external_ids: List[str] = Field(default_factory=list)


class StockChange(BaseModel):
    product_id: str
    product_name: str
    old_stock: int
    new_stock: int
    variant_matched: Optional[bool] = None


class StockAdjustment(BaseModel):
    product_id: str
    product_name: Optional[str] = None
    variant_id: Optional[str] = None
    delta: int
    old_stock: Optional[int] = None
    new_stock: Optional[int] = None
    status: SideEffectStatus
    degraded: bool = False
    detail: Optional[str] = None


class SideEffectResult(BaseModel):
    name: str
    status: SideEffectStatus
    detail: Optional[str] = None


class Outcome(BaseModel):
    """Primary mutation plus the best-effort steps that accompanied it."""

    order: Order
    side_effects: List[SideEffectResult] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return any(effect.status == SideEffectStatus.FAILED for effect in self.side_effects)


class BulkOrderAction(BaseModel):
    order_ids: List[str] = Field(min_length=1)
    action: OrderAction
    admin_notes: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_company: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_village: Optional[str] = None
    cancellation_reason: Optional[str] = None
    return_reason: Optional[str] = None


class OrderActionResult(BaseModel):
    order_id: str
    order_number: Optional[str] = None
    success: bool
    status: Optional[OrderStatus] = None
    error: Optional[str] = None
    order: Optional[OrderSummary] = None
    side_effects: List[SideEffectResult] = Field(default_factory=list)


class BulkActionResult(BaseModel):
    action: OrderAction
    total: int
    succeeded: int
    failed: int
    results: List[OrderActionResult]


class OrderStatusChange(BaseModel):
    order_id: str
    order_number: Optional[str] = None
    from_status: Optional[OrderStatus] = None
    to_status: OrderStatus
    applied: bool
    detail: Optional[str] = None


class WalletEntry(BaseModel):
    id: str
    user_id: str
    order_id: Optional[str] = None
    type: LedgerEntryType
    amount: float
    reason: str
    reference: str
    created_at: datetime


class Wallet(BaseModel):
    user_id: str
    balance: float = 0.0
    total_earnings: float = 0.0


class WalletView(BaseModel):
    wallet: Wallet
    entries: List[WalletEntry]


class SettlementResult(BaseModel):
    order_id: str
    status: SideEffectStatus
    entries: List[WalletEntry] = Field(default_factory=list)
    detail: Optional[str] = None


class ProfitDistributionRequest(BaseModel):
    order_ids: List[str] = Field(default_factory=list)
    distribute_all: bool = False


class FailedSettlement(BaseModel):
    order_id: str
    order_number: str
    error: str


class ProfitDistributionResult(BaseModel):
    total: int
    success: int
    failed: int
    success_orders: List[str]
    failed_orders: List[FailedSettlement]


class PendingSettlementOrder(BaseModel):
    id: str
    order_number: str
    customer_id: str
    customer_role: CustomerRole
    total: float
    marketer_profit: float
    commission: float
    delivered_at: Optional[datetime] = None


class PendingSettlementSummary(BaseModel):
    orders: List[PendingSettlementOrder]
    total_pending_orders: int
    total_pending_marketer_profit: float
    total_pending_admin_commission: float
    total_pending_amount: float


class FulfillmentLine(BaseModel):
    product_id: str
    quantity: conint(gt=0)
    current_stock: int = 0


class FulfillmentRequest(BaseModel):
    id: str
    supplier_id: str
    lines: List[FulfillmentLine]
    status: FulfillmentStatus
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    warehouse_location: Optional[str] = None
    expected_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    order_ids: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class FulfillmentLineInput(BaseModel):
    product_id: Ref
    quantity: conint(gt=0)


class FulfillmentCreate(BaseModel):
    supplier_id: Ref
    lines: List[FulfillmentLineInput] = Field(min_length=1)
    notes: Optional[str] = None
    order_ids: List[Ref] = Field(default_factory=list)
    expected_delivery_date: Optional[datetime] = None


class FulfillmentDecision(BaseModel):
    status: FulfillmentStatus
    admin_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    warehouse_location: Optional[str] = None
    expected_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None


class FulfillmentDelivery(BaseModel):
    actual_delivery_date: datetime


class FulfillmentOutcome(BaseModel):
    request: FulfillmentRequest
    inventory: List[StockAdjustment] = Field(default_factory=list)
    cascaded_orders: List[OrderStatusChange] = Field(default_factory=list)
    side_effects: List[SideEffectResult] = Field(default_factory=list)


class StoreIntegration(BaseModel):
    id: str
    type: IntegrationType = IntegrationType.EASY_ORDERS
    store_id: Optional[str] = None
    webhook_secret: Optional[str] = None
    is_active: bool = True
    user_id: str
    owner_role: CustomerRole = CustomerRole.MARKETER


class Package(BaseModel):
    id: str
    order_id: str
    barcode: str
    description: str
    village_id: str
    total_cost: float
    carrier_package_id: Optional[str] = None
    api_success: bool = False
    created_at: datetime


class PackageResult(BaseModel):
    package_id: Optional[str] = None
    api_success: bool = False
    created: bool = False
    detail: Optional[str] = None


def _coerce_str(value: Any) -> Any:
    return str(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else value


class ExternalVariationProp(BaseModel):
    variation: str = ""
    variation_prop: str = ""


class ExternalVariant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    price: Optional[float] = None
    quantity: Optional[int] = None
    taager_code: Optional[str] = None
    variation_props: List[ExternalVariationProp] = Field(default_factory=list)


class ExternalProduct(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    sku: Optional[str] = None
    taager_code: Optional[str] = None


class ExternalCartItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_id: Optional[Ref] = None
    variant_id: Optional[str] = None
    price: confloat(ge=0)
    quantity: conint(gt=0)
    product: Optional[ExternalProduct] = None
    variant: Optional[ExternalVariant] = None

    @field_validator("product_id", "variant_id", mode="before")
    @classmethod
    def _ids_as_text(cls, value: Any) -> Any:
        return _coerce_str(value)


class ExternalOrderCreated(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_type: Optional[str] = None
    id: str
    store_id: Optional[str] = None
    cost: Optional[float] = None
    shipping_cost: Optional[float] = None
    total_cost: Optional[float] = None
    status: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    government: Optional[str] = None
    address: Optional[str] = None
    payment_method: Optional[str] = None
    cart_items: List[ExternalCartItem] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @field_validator("id", "store_id", mode="before")
    @classmethod
    def _ids_as_text(cls, value: Any) -> Any:
        return _coerce_str(value)


class ExternalStatusUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_type: str
    order_id: str
    store_id: Optional[str] = None
    old_status: Optional[str] = None
    new_status: str
    payment_ref_id: Optional[str] = None

    @field_validator("order_id", "store_id", mode="before")
    @classmethod
    def _ids_as_text(cls, value: Any) -> Any:
        return _coerce_str(value)


class WebhookRequest(BaseModel):
    secret: Optional[str] = None
    payload: bytes


class WebhookReceipt(BaseModel):
    success: bool = True
    message: str
    order_id: str
    order_number: str
    created: bool = False
    merged: bool = False
    status: Optional[OrderStatus] = None
    side_effects: List[SideEffectResult] = Field(default_factory=list)


class HealthStatus(BaseModel):
    status: str
    time: datetime
    database: Optional[str] = None


class EventMessage(BaseModel):
    id: str
    type: str
    timestamp: datetime
    payload: Dict[str, Any]
