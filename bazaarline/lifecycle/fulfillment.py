from __future__ import annotations

from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ..clock import Clock
from ..domain import (
    EventMessage,
    EventType,
    FulfillmentCreate,
    FulfillmentDecision,
    FulfillmentDelivery,
    FulfillmentLine,
    FulfillmentOutcome,
    FulfillmentRequest,
    FulfillmentStatus,
    OrderStatus,
    OrderStatusChange,
    SideEffectResult,
    SideEffectStatus,
    StockAdjustment,
    ref_id,
)
from ..errors import ConflictError, NotFoundError, ValidationError
from ..id_provider import IdProvider
from ..logging import ServiceLogger
from ..notifications import Notifier, notify_safely
from ..repositories import EventBus, FulfillmentRepository, OrderRepository, ProductRepository
from .inventory import InventoryAdjuster
from .orchestrator import OrderStatusOrchestrator

APPROVAL_ELIGIBLE: FrozenSet[OrderStatus] = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})
DELIVERY_ELIGIBLE: FrozenSet[OrderStatus] = frozenset({OrderStatus.CONFIRMED, OrderStatus.PROCESSING})


def _stock_note(title: str, adjustments: List[StockAdjustment]) -> str:
    parts = []
    for adj in adjustments:
        label = adj.product_name or adj.product_id
        if adj.status == SideEffectStatus.OK:
            parts.append(f"{label}: {adj.old_stock} -> {adj.new_stock}")
        else:
            parts.append(f"{label}: {adj.status.value} ({adj.detail})")
    return f"{title}: " + "; ".join(parts)


def _append_note(existing: Optional[str], note: str) -> str:
    return f"{existing}\n{note}" if existing else note


class FulfillmentApprovalWorkflow:
    """Restock requests from suppliers and the admin decisions on them.

    A decision is claimed with a compare-and-set on the request status before
    any stock moves, so two admins deciding at once cannot both add stock.
    """

    def __init__(
        self,
        requests: FulfillmentRepository,
        products: ProductRepository,
        orders: OrderRepository,
        inventory: InventoryAdjuster,
        orchestrator: OrderStatusOrchestrator,
        notifier: Notifier,
        events: EventBus,
        clock: Clock,
        ids: IdProvider,
    ) -> None:
        self._requests = requests
        self._products = products
        self._orders = orders
        self._inventory = inventory
        self._orchestrator = orchestrator
        self._notifier = notifier
        self._events = events
        self._clock = clock
        self._ids = ids
        self._log = ServiceLogger("fulfillment")

    def create(self, payload: FulfillmentCreate) -> FulfillmentRequest:
        supplier_id = ref_id(payload.supplier_id)
        if not supplier_id:
            raise ValidationError("Supplier is required")

        lines = []
        for item in payload.lines:
            product_id = ref_id(item.product_id)
            product = self._products.get(product_id) if product_id else None
            if not product:
                raise NotFoundError(f"Product {product_id} not found")
            if product.supplier_id and product.supplier_id != supplier_id:
                raise ValidationError(f"Product {product.id} does not belong to supplier {supplier_id}")
            lines.append(
                FulfillmentLine(product_id=product.id, quantity=item.quantity, current_stock=product.stock_quantity)
            )

        order_ids = list(dict.fromkeys(filter(None, (ref_id(ref) for ref in payload.order_ids))))
        now = self._clock.now()
        request = FulfillmentRequest(
            id=self._ids.new_id(),
            supplier_id=supplier_id,
            lines=lines,
            status=FulfillmentStatus.PENDING,
            notes=payload.notes,
            expected_delivery_date=payload.expected_delivery_date,
            order_ids=order_ids,
            created_at=now,
            updated_at=now,
        )
        self._requests.add(request)
        self._log.info(
            "Fulfillment request created",
            request_id=request.id,
            supplier_id=supplier_id,
            lines=len(lines),
            linked_orders=len(order_ids),
        )
        return request

    def get(self, request_id: str) -> FulfillmentRequest:
        request = self._requests.get(request_id)
        if not request:
            raise NotFoundError(f"Fulfillment request {request_id} not found")
        return request

    def decide(self, request_id: str, decision: FulfillmentDecision, actor_id: str) -> FulfillmentOutcome:
        if decision.status == FulfillmentStatus.PENDING:
            raise ValidationError("A decision must approve or reject the request")
        if decision.status == FulfillmentStatus.REJECTED and not decision.rejection_reason:
            raise ValidationError("A rejection reason is required")

        request = self.get(request_id)
        previous = request.status
        now = self._clock.now()
        updated = request.model_copy(deep=True)
        updated.status = decision.status
        updated.updated_at = now
        if decision.admin_notes is not None:
            updated.admin_notes = decision.admin_notes
        if decision.warehouse_location is not None:
            updated.warehouse_location = decision.warehouse_location
        if decision.expected_delivery_date is not None:
            updated.expected_delivery_date = decision.expected_delivery_date
        if decision.status == FulfillmentStatus.APPROVED:
            updated.approved_at, updated.approved_by = now, actor_id
            updated.rejected_at = updated.rejected_by = updated.rejection_reason = None
        else:
            updated.rejected_at, updated.rejected_by = now, actor_id
            updated.rejection_reason = decision.rejection_reason
            updated.approved_at = updated.approved_by = None

        if not self._requests.save_if_status(updated, previous):
            raise ConflictError(f"Fulfillment request {request_id} changed while it was being decided")

        inventory: List[StockAdjustment] = []
        cascaded: List[OrderStatusChange] = []
        side_effects: List[SideEffectResult] = []

        if decision.status == FulfillmentStatus.APPROVED and previous != FulfillmentStatus.APPROVED:
            inventory = self._inventory.add(updated.lines)
            updated.admin_notes = _append_note(updated.admin_notes, _stock_note("Stock updated", inventory))
        elif decision.status == FulfillmentStatus.REJECTED and previous == FulfillmentStatus.APPROVED:
            inventory = self._inventory.reverse_addition(updated.lines)
            updated.admin_notes = _append_note(updated.admin_notes, _stock_note("Stock reversed", inventory))
        if inventory:
            updated = self._requests.save(updated)

        self._log.info(
            "Fulfillment request decided",
            request_id=request_id,
            from_status=previous.value,
            to_status=decision.status.value,
            actor_id=actor_id,
            stock_changes=len(inventory),
        )

        if decision.status == FulfillmentStatus.APPROVED:
            for order_id in updated.order_ids:
                change, effects = self._advance(order_id, OrderStatus.PROCESSING, APPROVAL_ELIGIBLE, actor_id)
                cascaded.append(change)
                side_effects.extend(effects)

        if decision.actual_delivery_date is not None:
            updated.actual_delivery_date = decision.actual_delivery_date
            updated = self._requests.save(updated)
            changes, effects = self._advance_delivered(updated, actor_id)
            cascaded.extend(changes)
            side_effects.extend(effects)

        side_effects.append(self._notify_supplier(updated))
        self._publish_event(
            EventType.FULFILLMENT_DECIDED,
            {"request_id": updated.id, "status": updated.status.value, "from_status": previous.value},
        )
        return FulfillmentOutcome(
            request=updated,
            inventory=inventory,
            cascaded_orders=cascaded,
            side_effects=side_effects,
        )

    def record_delivery(self, request_id: str, payload: FulfillmentDelivery, actor_id: Optional[str] = None) -> FulfillmentOutcome:
        request = self.get(request_id)
        updated = request.model_copy(
            update={"actual_delivery_date": payload.actual_delivery_date, "updated_at": self._clock.now()}
        )
        self._requests.save(updated)
        self._log.info("Fulfillment delivery recorded", request_id=request_id, linked_orders=len(updated.order_ids))
        changes, effects = self._advance_delivered(updated, actor_id)
        return FulfillmentOutcome(request=updated, cascaded_orders=changes, side_effects=effects)

    def _advance_delivered(
        self, request: FulfillmentRequest, actor_id: Optional[str]
    ) -> Tuple[List[OrderStatusChange], List[SideEffectResult]]:
        changes: List[OrderStatusChange] = []
        side_effects: List[SideEffectResult] = []
        for order_id in request.order_ids:
            change, effects = self._advance(order_id, OrderStatus.READY_FOR_SHIPPING, DELIVERY_ELIGIBLE, actor_id)
            changes.append(change)
            side_effects.extend(effects)
            if change.applied:
                side_effects.append(self._attach_package(order_id))
        return changes, side_effects

    def _advance(
        self,
        order_id: str,
        target: OrderStatus,
        eligible: FrozenSet[OrderStatus],
        actor_id: Optional[str],
    ) -> Tuple[OrderStatusChange, List[SideEffectResult]]:
        order = self._orders.get(order_id)
        if not order:
            self._log.warning("Linked order not found", order_id=order_id, target=target.value)
            return OrderStatusChange(order_id=order_id, to_status=target, applied=False, detail="order not found"), []
        if order.status not in eligible:
            return (
                OrderStatusChange(
                    order_id=order.id,
                    order_number=order.order_number,
                    from_status=order.status,
                    to_status=target,
                    applied=False,
                    detail=f"order is {order.status.value}",
                ),
                [],
            )
        try:
            outcome = self._orchestrator.force_set_status(order.id, target, actor_id=actor_id, require_forward=True)
        except (ValidationError, ConflictError) as exc:
            self._log.warning(
                "Linked order not advanced",
                order_id=order.id,
                order_number=order.order_number,
                target=target.value,
                error=exc.detail,
            )
            return (
                OrderStatusChange(
                    order_id=order.id,
                    order_number=order.order_number,
                    from_status=order.status,
                    to_status=target,
                    applied=False,
                    detail=str(exc.detail),
                ),
                [],
            )
        return (
            OrderStatusChange(
                order_id=order.id,
                order_number=order.order_number,
                from_status=order.status,
                to_status=outcome.order.status,
                applied=True,
            ),
            outcome.side_effects,
        )

    def _attach_package(self, order_id: str) -> SideEffectResult:
        try:
            result = self._orchestrator.attach_package(order_id)
        except Exception as exc:
            self._log.error("Package creation failed for linked order", order_id=order_id, error=getattr(exc, "detail", exc))
            return SideEffectResult(
                name="package_creation", status=SideEffectStatus.FAILED, detail=str(getattr(exc, "detail", exc))
            )
        if not result.package_id:
            return SideEffectResult(name="package_creation", status=SideEffectStatus.FAILED, detail=result.detail)
        status = SideEffectStatus.OK if result.created else SideEffectStatus.SKIPPED
        return SideEffectResult(name="package_creation", status=status, detail=f"package {result.package_id}")

    def _notify_supplier(self, request: FulfillmentRequest) -> SideEffectResult:
        approved = request.status == FulfillmentStatus.APPROVED
        message = (
            f"Your restock request {request.id} was approved"
            if approved
            else f"Your restock request {request.id} was rejected: {request.rejection_reason}"
        )
        delivered = notify_safely(
            self._notifier,
            self._log,
            request.supplier_id,
            {
                "title": "Restock request approved" if approved else "Restock request rejected",
                "message": message,
                "type": "success" if approved else "error",
                "action_url": f"/dashboard/fulfillment/{request.id}",
                "metadata": {
                    "request_id": request.id,
                    "status": request.status.value,
                    "rejection_reason": request.rejection_reason,
                    "admin_notes": request.admin_notes,
                },
            },
        )
        return SideEffectResult(name="notification", status=SideEffectStatus.OK if delivered else SideEffectStatus.FAILED)

    def _publish_event(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self._events.publish(
            EventMessage(
                id=self._ids.new_id(),
                type=event_type.value,
                timestamp=self._clock.now(),
                payload=payload,
            )
        )
