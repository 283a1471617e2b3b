from __future__ import annotations

import re
import threading
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PayloadError

from ..clock import Clock
from ..domain import (
    EventMessage,
    EventType,
    ExternalCartItem,
    ExternalOrderCreated,
    ExternalStatusUpdate,
    Order,
    OrderDraft,
    OrderLine,
    OrderMetadata,
    OrderStatus,
    PaymentStatus,
    ShippingDetails,
    StoreIntegration,
    VariantSelection,
    WebhookReceipt,
    ref_id,
)
from ..errors import ConflictError, NotFoundError, ValidationError
from ..id_provider import IdProvider
from ..logging import ServiceLogger
from ..pricing import PricingPolicy
from ..repositories import EventBus, OrderRepository, ProductRepository
from .orchestrator import OrderStatusOrchestrator

STATUS_UPDATE_EVENT = "order-status-update"
ORDER_SOURCE = "easy_orders"
PLACEHOLDER_CUSTOMER = "Storefront customer"
MERGEABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

EXTERNAL_STATUS_MAP: Dict[str, OrderStatus] = {
    "pending": OrderStatus.PENDING,
    "confirmed": OrderStatus.CONFIRMED,
    "pending_payment": OrderStatus.PENDING,
    "paid": OrderStatus.CONFIRMED,
    "paid_failed": OrderStatus.PENDING,
    "processing": OrderStatus.PROCESSING,
    "waiting_for_pickup": OrderStatus.READY_FOR_SHIPPING,
    "in_delivery": OrderStatus.OUT_FOR_DELIVERY,
    "delivered": OrderStatus.DELIVERED,
    "canceled": OrderStatus.CANCELLED,
    "returning_from_delivery": OrderStatus.RETURNED,
    "request_refund": OrderStatus.PENDING,
    "refund_in_progress": OrderStatus.PENDING,
    "refunded": OrderStatus.REFUNDED,
}

EXTERNAL_PAYMENT_MAP: Dict[str, PaymentStatus] = {
    "paid": PaymentStatus.PAID,
    "paid_failed": PaymentStatus.FAILED,
}


def map_external_status(value: Optional[str]) -> OrderStatus:
    return EXTERNAL_STATUS_MAP.get((value or "").strip().lower(), OrderStatus.PENDING)


class ExternalOrderIngestor:
    """Turns storefront webhook payloads into orders and status writes.

    Orders are keyed by the storefront order id together with the owner of the
    integration that delivered them.
    """

    def __init__(
        self,
        orders: OrderRepository,
        products: ProductRepository,
        orchestrator: OrderStatusOrchestrator,
        pricing: PricingPolicy,
        events: EventBus,
        clock: Clock,
        ids: IdProvider,
        merge_window_minutes: float = 30.0,
    ) -> None:
        self._orders = orders
        self._products = products
        self._orchestrator = orchestrator
        self._pricing = pricing
        self._events = events
        self._clock = clock
        self._ids = ids
        self._merge_window = timedelta(minutes=merge_window_minutes)
        self._ingest_lock = threading.Lock()
        self._log = ServiceLogger("ingestion")

    def handle(self, payload: Dict[str, Any], integration: StoreIntegration) -> WebhookReceipt:
        try:
            if payload.get("event_type") == STATUS_UPDATE_EVENT:
                return self.apply_status_update(ExternalStatusUpdate.model_validate(payload), integration)
            event = ExternalOrderCreated.model_validate(payload)
        except PayloadError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(f"Invalid webhook payload: {location} {first.get('msg')}".strip()) from exc
        return self.ingest_order(event, integration)

    def ingest_order(self, event: ExternalOrderCreated, integration: StoreIntegration) -> WebhookReceipt:
        if integration.store_id and event.store_id and integration.store_id != event.store_id:
            self._log.warning(
                "Store ID mismatch",
                integration_id=integration.id,
                integration_store_id=integration.store_id,
                payload_store_id=event.store_id,
            )
            raise ValidationError("Store ID mismatch")
        if not event.cart_items:
            raise ValidationError("Order has no cart items")

        with self._ingest_lock:
            existing = self._orders.find_by_external(event.id, integration.user_id)
            merged_into = None if existing else self._orders.find_merged(event.id, integration.user_id)
            duplicate = merged_into or existing
            if duplicate and (merged_into or len(event.cart_items) <= len(duplicate.lines)):
                self._log.info(
                    "Order already exists or was merged, skipping duplicate",
                    order_id=duplicate.id,
                    order_number=duplicate.order_number,
                    external_order_id=event.id,
                    was_merged=merged_into is not None,
                )
                return WebhookReceipt(
                    message="Order already exists",
                    order_id=duplicate.id,
                    order_number=duplicate.order_number,
                    status=duplicate.status,
                )

            lines, costs, supplier_id = self._resolve_lines(event.cart_items)
            subtotal, commission, marketer_profit = self._financials(lines, costs)
            if existing:
                return self._replace_cart(existing, event, lines, subtotal, commission, marketer_profit)

            shipping = self._shipping(event, integration)
            target = self._merge_target(event, integration, shipping)
            if target:
                return self._merge_into(target, event, lines, integration)

            shipping_cost = event.shipping_cost or 0.0
            order_subtotal, total = self._totals(event, subtotal, shipping_cost)
            status = map_external_status(event.status)
            draft = OrderDraft(
                customer_id=integration.user_id,
                customer_role=integration.owner_role,
                supplier_id=supplier_id or integration.user_id,
                status=status,
                lines=lines,
                subtotal=order_subtotal,
                shipping_cost=shipping_cost,
                commission=commission,
                marketer_profit=marketer_profit,
                total=total,
                payment_status=EXTERNAL_PAYMENT_MAP.get(event.status or "", PaymentStatus.PENDING),
                shipping=shipping,
                metadata=OrderMetadata(
                    source=ORDER_SOURCE,
                    external_order_id=event.id,
                    external_store_id=event.store_id or integration.store_id,
                    external_owner_id=integration.user_id,
                    external_status=event.status,
                    integration_id=integration.id,
                ),
                created_at=event.created_at,
            )
            order = self._orchestrator.register_order(draft)

        self._log.info(
            "Order created from webhook",
            order_id=order.id,
            order_number=order.order_number,
            external_order_id=event.id,
            owner_id=integration.user_id,
            total=order.total,
            lines=len(order.lines),
        )
        return WebhookReceipt(
            message="Order created successfully",
            order_id=order.id,
            order_number=order.order_number,
            created=True,
            status=order.status,
        )

    def apply_status_update(self, event: ExternalStatusUpdate, integration: StoreIntegration) -> WebhookReceipt:
        order = self._orders.find_by_external(event.order_id, integration.user_id)
        if not order:
            self._log.warning(
                "Status update for unknown order",
                external_order_id=event.order_id,
                integration_id=integration.id,
            )
            raise NotFoundError("Order not found")

        status = map_external_status(event.new_status)
        metadata = order.metadata.model_copy(
            update={
                "external_status": event.new_status,
                "payment_ref_id": event.payment_ref_id or order.metadata.payment_ref_id,
            }
        )
        changes: Dict[str, Any] = {"metadata": metadata}
        if event.new_status in EXTERNAL_PAYMENT_MAP:
            changes["payment_status"] = EXTERNAL_PAYMENT_MAP[event.new_status]

        reason = f"Updated by storefront: {event.new_status}" if status in (OrderStatus.CANCELLED, OrderStatus.RETURNED) else None
        outcome = self._orchestrator.force_set_status(order.id, status, reason=reason, changes=changes)
        self._log.info(
            "Order status updated from webhook",
            order_id=order.id,
            external_order_id=event.order_id,
            old_status=event.old_status,
            new_status=event.new_status,
            mapped_status=status.value,
        )
        return WebhookReceipt(
            message="Order status updated successfully",
            order_id=order.id,
            order_number=order.order_number,
            status=outcome.order.status,
            side_effects=outcome.side_effects,
        )

    def _replace_cart(
        self,
        existing: Order,
        event: ExternalOrderCreated,
        lines: List[OrderLine],
        subtotal: float,
        commission: float,
        marketer_profit: float,
    ) -> WebhookReceipt:
        shipping_cost = event.shipping_cost if event.shipping_cost is not None else existing.shipping_cost
        order_subtotal, total = self._totals(event, subtotal, shipping_cost)
        updated = existing.model_copy(
            update={
                "lines": lines,
                "subtotal": order_subtotal,
                "shipping_cost": shipping_cost,
                "commission": commission,
                "marketer_profit": marketer_profit,
                "total": total,
                "updated_at": self._clock.now(),
            }
        )
        if not self._orders.save_if_status(updated, existing.status):
            raise ConflictError(f"Order {existing.order_number} changed while it was being merged")
        self._log.info(
            "Cross-sell update merged into existing order",
            order_id=existing.id,
            order_number=existing.order_number,
            previous_lines=len(existing.lines),
            lines=len(lines),
        )
        self._events.publish(
            EventMessage(
                id=self._ids.new_id(),
                type=EventType.ORDER_MERGED.value,
                timestamp=self._clock.now(),
                payload={"order_id": existing.id, "order_number": existing.order_number, "lines": len(lines)},
            )
        )
        return WebhookReceipt(
            message="Cross-sell order merged successfully",
            order_id=existing.id,
            order_number=existing.order_number,
            merged=True,
            status=existing.status,
        )

    def _merge_target(
        self, event: ExternalOrderCreated, integration: StoreIntegration, shipping: ShippingDetails
    ) -> Optional[Order]:
        """Find a recent open order from the same customer, matched by phone and then by name."""
        store_id = event.store_id or integration.store_id
        if not store_id:
            return None
        since = self._clock.now() - self._merge_window
        candidates = [
            order
            for order in self._orders.store_orders(store_id, since=since, owner_id=integration.user_id)
            if order.status in MERGEABLE_STATUSES and event.id not in order.metadata.merged_external_ids
        ]
        phone_tail = _digits(shipping.phone)[-9:]
        if len(phone_tail) >= 5:
            for order in candidates:
                if phone_tail in _digits(order.shipping.phone):
                    return order
        name = shipping.full_name.strip()
        if len(name) >= 2 and name != PLACEHOLDER_CUSTOMER:
            needle = name[:15].lower()
            for order in candidates:
                if needle in order.shipping.full_name.lower():
                    return order
        return None

    def _merge_into(
        self,
        target: Order,
        event: ExternalOrderCreated,
        lines: List[OrderLine],
        integration: StoreIntegration,
    ) -> WebhookReceipt:
        if len(lines) > len(target.lines):
            merged_lines = lines
        elif len(target.lines) > len(lines):
            merged_lines = target.lines
        else:
            merged_lines = _combine_lines(target.lines, lines)

        subtotal, commission, marketer_profit = self._financials(
            merged_lines, [self._line_cost(line) for line in merged_lines]
        )
        metadata = target.metadata.model_copy(
            update={
                "merged_external_ids": [*target.metadata.merged_external_ids, event.id],
                "integration_id": integration.id,
            }
        )
        updated = target.model_copy(
            update={
                "lines": merged_lines,
                "subtotal": subtotal,
                "commission": commission,
                "marketer_profit": marketer_profit,
                "total": round(subtotal + target.shipping_cost, 2),
                "customer_id": integration.user_id,
                "metadata": metadata,
                "updated_at": self._clock.now(),
            }
        )
        if not self._orders.save_if_status(updated, target.status):
            raise ConflictError(f"Order {target.order_number} changed while it was being merged")
        self._log.info(
            "Storefront order merged into earlier order from the same customer",
            order_id=target.id,
            order_number=target.order_number,
            external_order_id=event.id,
            merged_lines=len(lines),
            total=updated.total,
        )
        self._events.publish(
            EventMessage(
                id=self._ids.new_id(),
                type=EventType.ORDER_MERGED.value,
                timestamp=self._clock.now(),
                payload={
                    "order_id": target.id,
                    "order_number": target.order_number,
                    "lines": len(merged_lines),
                    "external_order_id": event.id,
                },
            )
        )
        return WebhookReceipt(
            message="Cross-sell order merged successfully",
            order_id=target.id,
            order_number=target.order_number,
            merged=True,
            status=target.status,
        )

    def _line_cost(self, line: OrderLine) -> float:
        product = self._products.get(line.product_id)
        if product and product.supplier_price:
            return product.supplier_price
        return self._pricing.estimate_cost_basis(line.unit_price)

    @staticmethod
    def _totals(event: ExternalOrderCreated, subtotal: float, shipping_cost: float) -> Tuple[float, float]:
        """Storefront figures win over computed ones when the payload carries them."""
        order_subtotal = event.cost if event.cost is not None else subtotal
        total = event.total_cost if event.total_cost is not None else round(subtotal + shipping_cost, 2)
        return order_subtotal, total

    def _resolve_lines(self, items: List[ExternalCartItem]) -> Tuple[List[OrderLine], List[float], Optional[str]]:
        lines: List[OrderLine] = []
        costs: List[float] = []
        supplier_id: Optional[str] = None
        for item in items:
            external_id = ref_id(item.product_id)
            product = self._match_product(item, external_id)
            if product:
                cost = product.supplier_price or self._pricing.estimate_cost_basis(item.price)
                product_id, name = product.id, product.name
                supplier_id = supplier_id or product.supplier_id
            else:
                cost = self._pricing.estimate_cost_basis(item.price)
                product_id = f"external-{external_id}" if external_id else f"external-{self._ids.new_id()}"
                name = (item.product.name if item.product else None) or "Unknown product"
                self._log.info(
                    "Product not found, estimating profit",
                    external_product_id=external_id,
                    sku=item.product.sku if item.product else None,
                    estimated_cost=cost,
                )
            lines.append(
                OrderLine(
                    product_id=product_id,
                    product_name=name,
                    quantity=item.quantity,
                    unit_price=item.price,
                    total_price=round(item.price * item.quantity, 2),
                    variant=self._variant(item),
                )
            )
            costs.append(cost)
        return lines, costs, supplier_id

    def _match_product(self, item: ExternalCartItem, external_id: Optional[str]):
        details = item.product
        if details and details.taager_code:
            product = self._products.find_by_sku(details.taager_code)
            if product:
                return product
        if external_id:
            product = self._products.find_by_external_id(external_id)
            if product:
                return product
        if details and details.sku:
            return self._products.find_by_sku(details.sku)
        return None

    def _financials(self, lines: List[OrderLine], costs: List[float]) -> Tuple[float, float, float]:
        subtotal = commission = marketer_profit = 0.0
        for line, cost in zip(lines, costs):
            line_commission, line_profit = self._pricing.line_profits(cost, line.unit_price, line.quantity)
            subtotal += line.total_price
            commission += line_commission
            marketer_profit += line_profit
        return round(subtotal, 2), round(commission, 2), round(marketer_profit, 2)

    @staticmethod
    def _variant(item: ExternalCartItem) -> Optional[VariantSelection]:
        if not item.variant or not item.variant.variation_props:
            return None
        props = item.variant.variation_props
        return VariantSelection(
            variant_id=item.variant_id or "",
            value=", ".join(prop.variation_prop for prop in props),
            name=", ".join(f"{prop.variation}: {prop.variation_prop}" for prop in props),
        )

    def _shipping(self, event: ExternalOrderCreated, integration: StoreIntegration) -> ShippingDetails:
        full_name = (event.full_name or "").strip()
        phone = (event.phone or "").strip()
        street = (event.address or "").strip()
        region = (event.government or "").strip()
        store_id = event.store_id or integration.store_id
        if (not full_name or not phone) and store_id:
            previous = self._orders.store_orders(store_id)
            if previous:
                last = previous[-1]
                full_name = full_name or last.shipping.full_name
                phone = phone or last.shipping.phone
                street = street or last.shipping.street
                region = region or last.shipping.governorate
                self._log.info(
                    "Using customer data from previous storefront order",
                    external_order_id=event.id,
                    previous_order_id=last.id,
                    previous_order_number=last.order_number,
                )
        return ShippingDetails(
            full_name=full_name or PLACEHOLDER_CUSTOMER,
            phone=phone,
            street=street,
            governorate=region,
            city=region,
            village=region,
        )


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def _combine_lines(existing: List[OrderLine], incoming: List[OrderLine]) -> List[OrderLine]:
    """Append incoming lines, folding repeats of the same product and variant into one line."""

    def key(line: OrderLine) -> Tuple[str, str]:
        variant = f"{line.variant.variant_id}:{line.variant.value}" if line.variant else ""
        return line.product_id, variant

    combined = [line.model_copy(deep=True) for line in existing]
    by_key = {key(line): line for line in combined}
    for line in incoming:
        current = by_key.get(key(line))
        if current is None:
            copy = line.model_copy(deep=True)
            combined.append(copy)
            by_key[key(copy)] = copy
            continue
        current.quantity += line.quantity
        current.total_price = round(current.total_price + line.total_price, 2)
        current.unit_price = round(current.total_price / current.quantity, 2)
    return combined
