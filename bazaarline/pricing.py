from __future__ import annotations

from typing import List, Tuple

from .settings import ProfitTier


class PricingPolicy:
    """Tiered admin-profit rates applied to the supplier cost of a product."""

    def __init__(self, tiers: List[ProfitTier], unmatched_cost_ratio: float = 0.7) -> None:
        if not tiers:
            raise ValueError("At least one profit tier is required")
        self._tiers = sorted(tiers, key=lambda tier: tier.min_price)
        self._unmatched_cost_ratio = unmatched_cost_ratio

    def rate_for(self, cost: float) -> float:
        for tier in self._tiers:
            if cost >= tier.min_price and (tier.max_price is None or cost <= tier.max_price):
                return tier.rate
        return self._tiers[-1].rate if cost > self._tiers[-1].min_price else self._tiers[0].rate

    def calculate_admin_profit_for_product(self, cost_basis: float, quantity: int) -> float:
        per_unit = cost_basis * self.rate_for(cost_basis) / 100
        return round(per_unit * quantity, 2)

    def calculate_marketer_price_from_supplier_price(self, cost: float) -> float:
        return round(cost * (1 + self.rate_for(cost) / 100), 2)

    def calculate_supplier_price_from_marketer_price(self, price: float) -> float:
        for tier in self._tiers:
            candidate = price / (1 + tier.rate / 100)
            if candidate >= tier.min_price and (tier.max_price is None or candidate <= tier.max_price):
                return round(candidate, 2)
        return round(price / (1 + self._tiers[-1].rate / 100), 2)

    def estimate_cost_basis(self, price: float) -> float:
        return round(price * self._unmatched_cost_ratio, 2)

    def line_profits(self, cost_basis: float, unit_price: float, quantity: int) -> Tuple[float, float]:
        """Return (admin commission, marketer profit) for one order line."""
        commission = self.calculate_admin_profit_for_product(cost_basis, quantity)
        marketer_profit = max(0.0, round((unit_price - cost_basis) * quantity, 2))
        return commission, marketer_profit
