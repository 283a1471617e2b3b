from __future__ import annotations

import json

import httpx
import pytest

from bazaarline.errors import ValidationError
from bazaarline.repositories import InMemoryPackageRepository
from bazaarline.settings import Settings
from bazaarline.shipping import CarrierPackageService


def carrier_service(harness, handler=None, packages=None, **overrides) -> CarrierPackageService:
    settings = Settings(**overrides)
    transport = httpx.MockTransport(handler) if handler else None
    packages = packages if packages is not None else InMemoryPackageRepository()
    return CarrierPackageService(packages, settings, harness.clock, harness.ids, transport)


class TestPackageCreation:
    def test_without_carrier_package_is_local_only(self, harness):
        order = harness.place_order()
        service = carrier_service(harness)

        result = service.create_package_from_order(order)

        assert result.created
        assert not result.api_success

    def test_second_call_returns_existing_package(self, harness):
        order = harness.place_order()
        service = carrier_service(harness)

        first = service.create_package_from_order(order)
        second = service.create_package_from_order(order)

        assert not second.created
        assert second.package_id == first.package_id

    def test_missing_address_is_rejected(self, harness):
        order = harness.place_order()
        order = order.model_copy(update={"shipping": order.shipping.model_copy(update={"street": "", "city": ""})})

        with pytest.raises(ValidationError):
            carrier_service(harness).create_package_from_order(order)


class TestCarrierCall:
    def test_successful_submission_records_carrier_id(self, harness):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"state": "success", "data": {"package_id": 991}})

        order = harness.place_order()
        service = carrier_service(
            harness, handler, carrier_api_url="https://carrier.test/packages", carrier_api_token="tok"
        )

        result = service.create_package_from_order(order)

        assert result.api_success
        assert seen["auth"] == "Bearer tok"
        assert seen["body"]["barcode"] == order.order_number
        assert seen["body"]["village_id"] == "village-7"

    def test_carrier_error_keeps_local_package(self, harness):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"state": "error", "message": "bad village"})

        order = harness.place_order()
        packages = InMemoryPackageRepository()
        service = carrier_service(harness, handler, packages, carrier_api_url="https://carrier.test/packages")

        result = service.create_package_from_order(order)

        stored = packages.get_by_order(order.id)
        assert result.created
        assert result.package_id == stored.id
        assert not result.api_success
        assert stored.carrier_package_id is None

    def test_transport_failure_is_not_raised(self, harness):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("carrier down", request=request)

        order = harness.place_order()
        service = carrier_service(harness, handler, carrier_api_url="https://carrier.test/packages")

        result = service.create_package_from_order(order)

        assert result.created
        assert not result.api_success
