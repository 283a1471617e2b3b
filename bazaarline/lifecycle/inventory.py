from __future__ import annotations

from typing import Iterable, List, Optional

from ..domain import FulfillmentLine, OrderLine, SideEffectStatus, StockAdjustment, StockChange
from ..logging import ServiceLogger
from ..repositories import ProductRepository


class InventoryAdjuster:
    """Applies stock deltas line by line.

    Lines are independent: a failure on one line is reported in its
    ``StockAdjustment`` and never undoes the lines already applied.
    """

    def __init__(self, products: ProductRepository) -> None:
        self._products = products
        self._log = ServiceLogger("inventory")

    def restore(self, lines: Iterable[OrderLine], reason: str = "restore") -> List[StockAdjustment]:
        return [self._restore_line(line, reason) for line in lines]

    def add(self, lines: Iterable[FulfillmentLine]) -> List[StockAdjustment]:
        adjustments = []
        for line in lines:
            try:
                change = self._products.restock(line.product_id, line.quantity)
            except Exception as exc:
                adjustments.append(self._failed(line.product_id, line.quantity, exc, "fulfillment_add"))
                continue
            adjustments.append(self._applied(line.product_id, line.quantity, change, "fulfillment_add"))
        return adjustments

    def reverse_addition(self, lines: Iterable[FulfillmentLine]) -> List[StockAdjustment]:
        adjustments = []
        for line in lines:
            try:
                change = self._products.withdraw_clamped(line.product_id, line.quantity)
            except Exception as exc:
                adjustments.append(self._failed(line.product_id, -line.quantity, exc, "fulfillment_reverse"))
                continue
            adjustments.append(self._applied(line.product_id, -line.quantity, change, "fulfillment_reverse"))
        return adjustments

    def _restore_line(self, line: OrderLine, reason: str) -> StockAdjustment:
        variant_id = line.variant.variant_id if line.variant else None
        try:
            product = self._products.get(line.product_id)
            if not product:
                return self._missing(line.product_id, line.quantity, reason)

            variant = line.variant if product.has_variants and variant_id else None
            change = self._products.restock(line.product_id, line.quantity, variant)
        except Exception as exc:
            return self._failed(line.product_id, line.quantity, exc, reason, variant_id)

        if change is None:
            return self._missing(line.product_id, line.quantity, reason)

        if change.variant_matched is False:
            self._log.warning(
                "Variant option not found for stock restoration, restored main stock only",
                product_id=line.product_id,
                variant_id=variant_id,
                value=line.variant.value if line.variant else None,
                quantity=line.quantity,
                action=reason,
            )
            return StockAdjustment(
                product_id=change.product_id,
                product_name=change.product_name,
                variant_id=variant_id,
                delta=line.quantity,
                old_stock=change.old_stock,
                new_stock=change.new_stock,
                status=SideEffectStatus.OK,
                degraded=True,
                detail="variant option not found; aggregate stock only",
            )

        self._log.info(
            "Stock restored",
            product_id=change.product_id,
            variant_id=variant_id if change.variant_matched else None,
            quantity=line.quantity,
            action=reason,
        )
        return StockAdjustment(
            product_id=change.product_id,
            product_name=change.product_name,
            variant_id=variant_id if change.variant_matched else None,
            delta=line.quantity,
            old_stock=change.old_stock,
            new_stock=change.new_stock,
            status=SideEffectStatus.OK,
        )

    def _applied(self, product_id: str, delta: int, change: Optional[StockChange], reason: str) -> StockAdjustment:
        if change is None:
            return self._missing(product_id, delta, reason)
        self._log.info(
            "Stock adjusted",
            product_id=product_id,
            old_stock=change.old_stock,
            new_stock=change.new_stock,
            delta=delta,
            action=reason,
        )
        return StockAdjustment(
            product_id=product_id,
            product_name=change.product_name,
            delta=delta,
            old_stock=change.old_stock,
            new_stock=change.new_stock,
            status=SideEffectStatus.OK,
        )

    def _missing(self, product_id: str, delta: int, reason: str) -> StockAdjustment:
        self._log.warning("Product not found for stock adjustment", product_id=product_id, delta=delta, action=reason)
        return StockAdjustment(
            product_id=product_id,
            delta=delta,
            status=SideEffectStatus.SKIPPED,
            detail="product not found",
        )

    def _failed(
        self,
        product_id: str,
        delta: int,
        exc: Exception,
        reason: str,
        variant_id: Optional[str] = None,
    ) -> StockAdjustment:
        self._log.error(
            "Stock adjustment failed",
            product_id=product_id,
            variant_id=variant_id,
            delta=delta,
            action=reason,
            error=exc,
        )
        return StockAdjustment(
            product_id=product_id,
            variant_id=variant_id,
            delta=delta,
            status=SideEffectStatus.FAILED,
            detail=str(exc),
        )
