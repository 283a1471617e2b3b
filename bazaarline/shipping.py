from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import httpx

from .clock import Clock
from .domain import Order, Package, PackageResult
from .errors import ValidationError
from .id_provider import IdProvider
from .logging import ServiceLogger
from .repositories import PackageRepository
from .settings import Settings


class PackageService(Protocol):
    def create_package_from_order(self, order: Order) -> PackageResult: ...


class CarrierPackageService(PackageService):
    """Creates one shipping package per order and hands it to the carrier if one is configured."""

    def __init__(
        self,
        packages: PackageRepository,
        settings: Settings,
        clock: Clock,
        ids: IdProvider,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._packages = packages
        self._settings = settings
        self._clock = clock
        self._ids = ids
        self._transport = transport
        self._log = ServiceLogger("shipping")

    def create_package_from_order(self, order: Order) -> PackageResult:
        existing = self._packages.get_by_order(order.id)
        if existing:
            self._log.info("Package already exists for order", order_id=order.id, package_id=existing.id)
            return PackageResult(package_id=existing.id, api_success=existing.api_success, created=False)

        shipping = order.shipping
        if not shipping.village_id:
            raise ValidationError(f"Order {order.order_number} is missing a shipping village")
        if not shipping.street and not shipping.city:
            raise ValidationError(f"Order {order.order_number} is missing a shipping address")

        descriptions = ", ".join(f"{line.product_name or 'item'} x{line.quantity}" for line in order.lines)
        package = Package(
            id=self._ids.new_id(),
            order_id=order.id,
            barcode=order.order_number,
            description=f"Order {order.order_number}: {descriptions}",
            village_id=shipping.village_id,
            total_cost=order.total,
            created_at=self._clock.now(),
        )

        carrier_id = self._submit_to_carrier(order, package)
        package = package.model_copy(update={"carrier_package_id": carrier_id, "api_success": carrier_id is not None})
        self._packages.add(package)
        self._log.info(
            "Package created for order",
            order_id=order.id,
            order_number=order.order_number,
            package_id=package.id,
            api_success=package.api_success,
        )
        return PackageResult(package_id=package.id, api_success=package.api_success, created=True)

    def _submit_to_carrier(self, order: Order, package: Package) -> Optional[str]:
        if not self._settings.carrier_api_url:
            return None

        token = self._settings.carrier_api_token
        if token and not token.startswith("Bearer "):
            token = f"Bearer {token}"
        body: Dict[str, Any] = {
            "to_name": order.shipping.full_name,
            "to_phone": order.shipping.phone,
            "alter_phone": "",
            "description": package.description,
            "package_type": "normal",
            "village_id": package.village_id,
            "street": order.shipping.street,
            "total_cost": f"{package.total_cost:.2f}",
            "barcode": package.barcode,
        }
        try:
            with httpx.Client(timeout=self._settings.carrier_timeout_seconds, transport=self._transport) as client:
                response = client.post(
                    self._settings.carrier_api_url,
                    json=body,
                    headers={"Authorization": token} if token else {},
                )
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._log.error("Carrier API call failed", order_id=order.id, error=exc)
            return None

        if response.is_success and data.get("state") == "success":
            carrier_id = (data.get("data") or {}).get("package_id")
            return str(carrier_id) if carrier_id is not None else None
        self._log.warning(
            "Carrier API returned error",
            order_id=order.id,
            status=response.status_code,
            carrier_message=data.get("message"),
        )
        return None
