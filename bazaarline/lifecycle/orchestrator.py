from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional

from ..clock import Clock
from ..domain import (
    BulkActionResult,
    BulkOrderAction,
    EventMessage,
    EventType,
    Order,
    OrderAction,
    OrderActionResult,
    OrderDraft,
    OrderStatus,
    OrderSummary,
    Outcome,
    PackageResult,
    SettlementResult,
    SideEffectResult,
    SideEffectStatus,
    StockAdjustment,
)
from ..errors import ConflictError, DomainError, InvalidTransitionError, NotFoundError, ValidationError
from ..id_provider import IdProvider, OrderNumberGenerator
from ..logging import ServiceLogger
from ..notifications import Notifier, notify_safely
from ..repositories import EventBus, OrderRepository
from ..shipping import PackageService
from .inventory import InventoryAdjuster
from .ledger import ProfitSettlementLedger
from .transitions import TERMINAL_STATUSES, is_forward_move, is_valid_transition, status_for_action

STOCK_HOLDING_FOR_CANCEL = frozenset({OrderStatus.CONFIRMED, OrderStatus.PROCESSING})
REVERSING_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.RETURNED, OrderStatus.REFUNDED})


def summarize(order: Order) -> OrderSummary:
    return OrderSummary(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        total=order.total,
        profits_distributed=order.profits_distributed,
        package_id=order.package_id,
        admin_notes=order.admin_notes,
        tracking_number=order.shipping.tracking_number,
        shipping_company=order.shipping.company,
        cancellation_reason=order.cancellation_reason,
        return_reason=order.return_reason,
        updated_at=order.updated_at,
    )


def _settlement_effect(name: str, result: SettlementResult) -> SideEffectResult:
    amounts = ", ".join(f"{entry.user_id}:{entry.amount:.2f}" for entry in result.entries)
    return SideEffectResult(name=name, status=result.status, detail=result.detail or amounts or None)


def _inventory_effect(adjustments: List[StockAdjustment]) -> SideEffectResult:
    failed = [adj for adj in adjustments if adj.status == SideEffectStatus.FAILED]
    skipped = [adj for adj in adjustments if adj.status == SideEffectStatus.SKIPPED]
    degraded = [adj for adj in adjustments if adj.degraded]
    notes = []
    if failed:
        notes.append("failed: " + ", ".join(adj.product_id for adj in failed))
    if skipped:
        notes.append("missing: " + ", ".join(adj.product_id for adj in skipped))
    if degraded:
        notes.append("variant fallback: " + ", ".join(adj.product_id for adj in degraded))
    status = SideEffectStatus.FAILED if failed else SideEffectStatus.OK
    return SideEffectResult(name="inventory_restore", status=status, detail="; ".join(notes) or None)


class OrderStatusOrchestrator:
    """Sequences validation, the status write and its side effects for one order at a time.

    The status write is the transaction of record. Package creation, settlement,
    stock restoration and notifications run after (or, for shipping, just before)
    it and only ever report their failures through ``Outcome.side_effects``.
    """

    def __init__(
        self,
        orders: OrderRepository,
        inventory: InventoryAdjuster,
        ledger: ProfitSettlementLedger,
        packages: PackageService,
        notifier: Notifier,
        events: EventBus,
        clock: Clock,
        ids: IdProvider,
        order_numbers: OrderNumberGenerator,
        max_batch: int = 100,
        batch_timeout_seconds: float = 30.0,
    ) -> None:
        self._orders = orders
        self._inventory = inventory
        self._ledger = ledger
        self._packages = packages
        self._notifier = notifier
        self._events = events
        self._clock = clock
        self._ids = ids
        self._order_numbers = order_numbers
        self._max_batch = max_batch
        self._batch_timeout = timedelta(seconds=batch_timeout_seconds)
        self._log = ServiceLogger("orchestrator")

    def register_order(self, draft: OrderDraft) -> Order:
        now = self._clock.now()
        lines = [
            line if line.total_price else line.model_copy(update={"total_price": round(line.unit_price * line.quantity, 2)})
            for line in draft.lines
        ]
        order = Order(
            id=self._ids.new_id(),
            order_number=self._order_numbers.next_number(),
            lines=lines,
            created_at=draft.created_at or now,
            updated_at=now,
            **draft.model_dump(exclude={"lines", "created_at"}),
        )
        self._orders.add(order)
        self._publish_event(
            EventType.ORDER_CREATED,
            {"order_id": order.id, "order_number": order.order_number, "status": order.status.value},
        )
        return order

    def apply_bulk(self, payload: BulkOrderAction, actor_id: str) -> BulkActionResult:
        self._validate_bulk(payload)
        order_ids = list(dict.fromkeys(payload.order_ids))
        found = {order.id for order in self._orders.get_many(order_ids)}
        missing = [order_id for order_id in order_ids if order_id not in found]
        if missing:
            raise NotFoundError(f"Some orders do not exist: {', '.join(missing)}")

        deadline = self._clock.now() + self._batch_timeout
        results: List[OrderActionResult] = []
        for order_id in order_ids:
            if self._clock.now() > deadline:
                results.append(OrderActionResult(order_id=order_id, success=False, error="deadline exceeded"))
                continue
            results.append(self._apply_one(order_id, payload, actor_id))

        succeeded = len([result for result in results if result.success])
        self._log.info(
            "Bulk order action completed",
            action=payload.action.value,
            actor_id=actor_id,
            total=len(results),
            succeeded=succeeded,
        )
        return BulkActionResult(
            action=payload.action,
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
        )

    def request_transition(
        self,
        order_id: str,
        action: OrderAction,
        actor_id: str,
        *,
        reason: Optional[str] = None,
        admin_notes: Optional[str] = None,
        tracking_number: Optional[str] = None,
        shipping_company: Optional[str] = None,
    ) -> Outcome:
        target = status_for_action(action)
        if target is None:
            raise ValidationError(f"Action {action.value} does not change order status")
        if action in (OrderAction.CANCEL, OrderAction.RETURN) and not reason:
            raise ValidationError(f"A reason is required to {action.value} an order")

        order = self._require(order_id)
        previous = order.status
        if not is_valid_transition(previous, target):
            raise InvalidTransitionError(order.order_number, previous.value, target.value)

        now = self._clock.now()
        updated = self._stamp(order, target, actor_id, reason)
        if admin_notes is not None:
            updated.admin_notes = admin_notes
        side_effects: List[SideEffectResult] = []

        if action == OrderAction.SHIP:
            if tracking_number:
                updated.shipping.tracking_number = tracking_number
            if shipping_company:
                updated.shipping.company = shipping_company
            if not order.package_id:
                package_effect, package_id = self._create_package(order)
                side_effects.append(package_effect)
                updated.package_id = package_id

        updated.updated_at = now
        if not self._orders.save_if_status(updated, previous):
            raise ConflictError(f"Order {order.order_number} changed while it was being updated")
        self._log.info(
            "Order status changed",
            order_id=order.id,
            order_number=order.order_number,
            from_status=previous.value,
            to_status=target.value,
            actor_id=actor_id,
        )
        self._announce(updated, previous)

        if action in (OrderAction.CANCEL, OrderAction.RETURN):
            side_effects.append(self._reverse_profits(order.id))
            if action == OrderAction.RETURN or previous in STOCK_HOLDING_FOR_CANCEL:
                side_effects.append(self._restore_stock(order, f"restore_stock_{action.value}"))
            else:
                side_effects.append(
                    SideEffectResult(
                        name="inventory_restore",
                        status=SideEffectStatus.SKIPPED,
                        detail=f"order held no stock in status {previous.value}",
                    )
                )
        elif action == OrderAction.DELIVER:
            side_effects.append(self._distribute_profits(order.id))

        side_effects.append(self._notify_customer(updated))
        self._report(order, side_effects, action=action.value)
        return Outcome(order=self._require(order.id), side_effects=side_effects)

    def update_shipping(
        self,
        order_id: str,
        *,
        company: Optional[str] = None,
        city: Optional[str] = None,
        village: Optional[str] = None,
        tracking_number: Optional[str] = None,
        admin_notes: Optional[str] = None,
    ) -> Outcome:
        order = self._require(order_id)
        updated = order.model_copy(deep=True)
        if company is not None:
            updated.shipping.company = company
        if city is not None:
            updated.shipping.city = city
        if village is not None:
            updated.shipping.village = village
        if tracking_number is not None:
            updated.shipping.tracking_number = tracking_number
        if admin_notes is not None:
            updated.admin_notes = admin_notes
        updated.updated_at = self._clock.now()
        if not self._orders.save_if_status(updated, order.status):
            raise ConflictError(f"Order {order.order_number} changed while it was being updated")
        self._log.info("Order shipping details updated", order_id=order.id, order_number=order.order_number)
        return Outcome(order=updated)

    def force_set_status(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        require_forward: bool = False,
        changes: Optional[Dict[str, Any]] = None,
    ) -> Outcome:
        """Write a status without consulting the transition table.

        Used by fulfillment cascades (``require_forward=True``) and by the
        storefront webhook, whose statuses are authoritative.
        """
        order = self._require(order_id)
        previous = order.status
        if require_forward and not is_forward_move(previous, status):
            raise InvalidTransitionError(order.order_number, previous.value, status.value)

        updated = self._stamp(order, status, actor_id, reason) if status != previous else order.model_copy(deep=True)
        if changes:
            updated = updated.model_copy(update=changes)
        updated.updated_at = self._clock.now()
        if not self._orders.save_if_status(updated, previous):
            raise ConflictError(f"Order {order.order_number} changed while it was being updated")

        side_effects: List[SideEffectResult] = []
        if status != previous:
            self._log.info(
                "Order status forced",
                order_id=order.id,
                order_number=order.order_number,
                from_status=previous.value,
                to_status=status.value,
                actor_id=actor_id,
            )
            self._announce(updated, previous)
            if status in REVERSING_STATUSES and order.profits_distributed:
                side_effects.append(self._reverse_profits(order.id))
            self._report(order, side_effects, forced_status=status.value)
        return Outcome(order=self._require(order.id), side_effects=side_effects)

    def attach_package(self, order_id: str) -> PackageResult:
        order = self._require(order_id)
        if order.package_id:
            return PackageResult(package_id=order.package_id, api_success=True, created=False)
        result = self._packages.create_package_from_order(order)
        if result.package_id:
            for _ in range(2):
                current = self._require(order_id)
                updated = current.model_copy(update={"package_id": result.package_id, "updated_at": self._clock.now()})
                if self._orders.save_if_status(updated, current.status):
                    break
            else:
                self._log.error(
                    "Could not link package to order",
                    order_id=order_id,
                    package_id=result.package_id,
                )
        return result

    def _apply_one(self, order_id: str, payload: BulkOrderAction, actor_id: str) -> OrderActionResult:
        try:
            if payload.action == OrderAction.UPDATE_SHIPPING:
                outcome = self.update_shipping(
                    order_id,
                    company=payload.shipping_company,
                    city=payload.shipping_city,
                    village=payload.shipping_village,
                    tracking_number=payload.tracking_number,
                    admin_notes=payload.admin_notes,
                )
            else:
                reason = payload.cancellation_reason if payload.action == OrderAction.CANCEL else payload.return_reason
                outcome = self.request_transition(
                    order_id,
                    payload.action,
                    actor_id,
                    reason=reason,
                    admin_notes=payload.admin_notes,
                    tracking_number=payload.tracking_number,
                    shipping_company=payload.shipping_company,
                )
        except (ValidationError, ConflictError, NotFoundError) as exc:
            self._log.warning("Order action rejected", order_id=order_id, action=payload.action.value, error=exc.detail)
            return OrderActionResult(order_id=order_id, success=False, error=str(exc.detail))
        except DomainError as exc:
            self._log.warning("Order action rejected", order_id=order_id, action=payload.action.value, error=exc)
            return OrderActionResult(order_id=order_id, success=False, error=str(exc))
        except Exception as exc:
            self._log.error("Order action failed", order_id=order_id, action=payload.action.value, error=exc)
            return OrderActionResult(order_id=order_id, success=False, error="unexpected error while updating order")

        order = outcome.order
        return OrderActionResult(
            order_id=order.id,
            order_number=order.order_number,
            success=True,
            status=order.status,
            order=summarize(order),
            side_effects=outcome.side_effects,
        )

    def _validate_bulk(self, payload: BulkOrderAction) -> None:
        if len(payload.order_ids) > self._max_batch:
            raise ValidationError(f"At most {self._max_batch} orders can be updated at once")
        if payload.action == OrderAction.CANCEL and not payload.cancellation_reason:
            raise ValidationError("A cancellation reason is required")
        if payload.action == OrderAction.RETURN and not payload.return_reason:
            raise ValidationError("A return reason is required")

    def _report(self, order: Order, side_effects: List[SideEffectResult], **context: Any) -> None:
        log = self._log.bind(order_id=order.id, order_number=order.order_number, **context)
        for item in side_effects:
            log.side_effect(item.name, item.status.value, detail=item.detail)

    def _require(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def _stamp(self, order: Order, status: OrderStatus, actor_id: Optional[str], reason: Optional[str]) -> Order:
        now = self._clock.now()
        updated = order.model_copy(deep=True)
        updated.status = status
        if status == OrderStatus.CONFIRMED:
            updated.confirmed_at, updated.confirmed_by = now, actor_id
        elif status == OrderStatus.PROCESSING:
            updated.processing_at, updated.processing_by = now, actor_id
        elif status == OrderStatus.READY_FOR_SHIPPING:
            updated.ready_for_shipping_at = now
        elif status == OrderStatus.SHIPPED:
            updated.shipped_at, updated.shipped_by = now, actor_id
        elif status == OrderStatus.DELIVERED:
            updated.delivered_at, updated.delivered_by = now, actor_id
        elif status == OrderStatus.CANCELLED:
            updated.cancelled_at, updated.cancelled_by = now, actor_id
            updated.cancellation_reason = reason
        elif status == OrderStatus.RETURNED:
            updated.returned_at, updated.returned_by = now, actor_id
            updated.return_reason = reason
        return updated

    def _create_package(self, order: Order):
        try:
            result = self._packages.create_package_from_order(order)
        except Exception as exc:
            self._log.error(
                "Package creation failed; shipping without a linked package",
                order_id=order.id,
                order_number=order.order_number,
                error=getattr(exc, "detail", exc),
            )
            return SideEffectResult(name="package_creation", status=SideEffectStatus.FAILED, detail=str(getattr(exc, "detail", exc))), None
        status = SideEffectStatus.OK if result.package_id else SideEffectStatus.FAILED
        detail = f"package {result.package_id} api_success={result.api_success}" if result.package_id else result.detail
        return SideEffectResult(name="package_creation", status=status, detail=detail), result.package_id

    def _reverse_profits(self, order_id: str) -> SideEffectResult:
        try:
            result = self._ledger.reverse(order_id)
        except Exception as exc:
            self._log.error("Profit reversal raised", order_id=order_id, error=exc)
            return SideEffectResult(name="profit_reversal", status=SideEffectStatus.FAILED, detail=str(exc))
        if result.status == SideEffectStatus.OK:
            self._publish_event(
                EventType.PROFITS_REVERSED,
                {"order_id": order_id, "amount": round(sum(entry.amount for entry in result.entries), 2)},
            )
        return _settlement_effect("profit_reversal", result)

    def settle(self, order_id: str) -> SettlementResult:
        """Post the profits of a delivered order; a no-op once they are posted."""
        result = self._ledger.distribute(order_id)
        if result.status == SideEffectStatus.OK:
            self._publish_event(
                EventType.PROFITS_DISTRIBUTED,
                {"order_id": order_id, "amount": round(sum(entry.amount for entry in result.entries), 2)},
            )
        return result

    def _distribute_profits(self, order_id: str) -> SideEffectResult:
        try:
            result = self.settle(order_id)
        except Exception as exc:
            self._log.error("Profit distribution raised", order_id=order_id, error=exc)
            return SideEffectResult(name="profit_distribution", status=SideEffectStatus.FAILED, detail=str(exc))
        return _settlement_effect("profit_distribution", result)

    def _restore_stock(self, order: Order, reason: str) -> SideEffectResult:
        try:
            adjustments = self._inventory.restore(order.lines, reason)
        except Exception as exc:
            self._log.error(
                "Stock restoration failed",
                order_id=order.id,
                order_number=order.order_number,
                product_ids=[line.product_id for line in order.lines],
                error=exc,
            )
            return SideEffectResult(name="inventory_restore", status=SideEffectStatus.FAILED, detail=str(exc))
        return _inventory_effect(adjustments)

    def _notify_customer(self, order: Order) -> SideEffectResult:
        delivered = notify_safely(
            self._notifier,
            self._log,
            order.customer_id,
            {
                "title": "Order status updated",
                "message": f"Order {order.order_number} is now {order.status.value}",
                "type": "warning" if order.status in TERMINAL_STATUSES else "info",
                "action_url": f"/dashboard/orders/{order.id}",
                "metadata": {"order_id": order.id, "status": order.status.value},
            },
        )
        status = SideEffectStatus.OK if delivered else SideEffectStatus.FAILED
        return SideEffectResult(name="notification", status=status)

    def _announce(self, order: Order, previous: OrderStatus) -> None:
        self._publish_event(
            EventType.ORDER_STATUS_CHANGED,
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "from_status": previous.value,
                "status": order.status.value,
            },
        )

    def _publish_event(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self._events.publish(
            EventMessage(
                id=self._ids.new_id(),
                type=event_type.value,
                timestamp=self._clock.now(),
                payload=payload,
            )
        )
