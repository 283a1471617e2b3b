from __future__ import annotations

from fastapi import Depends, Request

from .container import Container
from .lifecycle.fulfillment import FulfillmentApprovalWorkflow
from .lifecycle.orchestrator import OrderStatusOrchestrator
from .services import AuthService, OrderService, SettlementService, WebhookService


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_settings(container: Container = Depends(get_container)):
    return container.settings


def get_auth_service(container: Container = Depends(get_container)) -> AuthService:
    return container.auth_service


def get_order_service(container: Container = Depends(get_container)) -> OrderService:
    return container.order_service


def get_settlement_service(container: Container = Depends(get_container)) -> SettlementService:
    return container.settlement_service


def get_webhook_service(container: Container = Depends(get_container)) -> WebhookService:
    return container.webhook_service


def get_orchestrator(container: Container = Depends(get_container)) -> OrderStatusOrchestrator:
    return container.orchestrator


def get_fulfillment(container: Container = Depends(get_container)) -> FulfillmentApprovalWorkflow:
    return container.fulfillment
