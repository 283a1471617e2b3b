from __future__ import annotations

import json
from typing import List, Optional

import jwt

from .clock import Clock
from .domain import (
    AuthContext,
    CustomerRole,
    FailedSettlement,
    IntegrationType,
    LoginRequest,
    Order,
    OrderList,
    OrderLookup,
    OrderQuery,
    PendingSettlementOrder,
    PendingSettlementSummary,
    Product,
    ProfitDistributionRequest,
    ProfitDistributionResult,
    SideEffectStatus,
    StoreIntegration,
    TokenInput,
    TokenResponse,
    WalletView,
    WebhookReceipt,
    WebhookRequest,
)
from .errors import NotFoundError, UnauthorizedError, ValidationError
from .lifecycle.ingestion import ExternalOrderIngestor
from .lifecycle.orchestrator import OrderStatusOrchestrator
from .logging import ServiceLogger
from .repositories import IntegrationRepository, OrderRepository, ProductRepository, WalletRepository
from .settings import Settings


class AuthService:
    def __init__(self, settings: Settings, clock: Clock) -> None:
        self._settings = settings
        self._clock = clock

    def login(self, payload: LoginRequest) -> TokenResponse:
        if payload.username != self._settings.admin_user or payload.password != self._settings.admin_password:
            raise UnauthorizedError()
        token = self._encode_token(self._settings.admin_user_id)
        return TokenResponse(access_token=token, expires_in=self._settings.token_ttl_seconds)

    def verify_token(self, payload: TokenInput) -> AuthContext:
        try:
            decoded = jwt.decode(
                payload.token,
                self._settings.jwt_secret,
                algorithms=["HS256"],
                issuer=self._settings.jwt_issuer,
            )
        except jwt.PyJWTError as exc:
            raise UnauthorizedError() from exc
        return AuthContext(**decoded)

    def _encode_token(self, subject: str) -> str:
        expires = int(self._clock.now().timestamp()) + self._settings.token_ttl_seconds
        payload = {"sub": subject, "iss": self._settings.jwt_issuer, "exp": expires}
        return jwt.encode(payload, self._settings.jwt_secret, algorithm="HS256")


class OrderService:
    """Read side of orders, products and wallets."""

    def __init__(self, orders: OrderRepository, products: ProductRepository, wallets: WalletRepository) -> None:
        self._orders = orders
        self._products = products
        self._wallets = wallets

    def list_orders(self, query: OrderQuery) -> OrderList:
        return OrderList(items=self._orders.list(query.status, query.limit))

    def get_order(self, lookup: OrderLookup) -> Order:
        order = self._orders.get(lookup.order_id)
        if not order:
            raise NotFoundError()
        return order

    def get_product(self, product_id: str) -> Product:
        product = self._products.get(product_id)
        if not product:
            raise NotFoundError()
        return product

    def get_wallet(self, user_id: str) -> WalletView:
        return WalletView(wallet=self._wallets.get(user_id), entries=self._wallets.entries_for_user(user_id))


class SettlementService:
    """Manual settlement of delivered orders whose profits were never posted."""

    def __init__(self, orders: OrderRepository, orchestrator: OrderStatusOrchestrator) -> None:
        self._orders = orders
        self._orchestrator = orchestrator
        self._log = ServiceLogger("settlement")

    def pending(self) -> PendingSettlementSummary:
        orders = self._orders.pending_settlement()
        items = [
            PendingSettlementOrder(
                id=order.id,
                order_number=order.order_number,
                customer_id=order.customer_id,
                customer_role=order.customer_role,
                total=order.total,
                marketer_profit=order.marketer_profit,
                commission=order.commission,
                delivered_at=order.delivered_at,
            )
            for order in orders
        ]
        marketer_total = round(
            sum(item.marketer_profit for item in items if item.customer_role == CustomerRole.MARKETER), 2
        )
        commission_total = round(sum(item.commission for item in items), 2)
        return PendingSettlementSummary(
            orders=items,
            total_pending_orders=len(items),
            total_pending_marketer_profit=marketer_total,
            total_pending_admin_commission=commission_total,
            total_pending_amount=round(marketer_total + commission_total, 2),
        )

    def distribute(self, payload: ProfitDistributionRequest) -> ProfitDistributionResult:
        if payload.distribute_all:
            orders = self._orders.pending_settlement()
        elif payload.order_ids:
            orders = self._orders.pending_settlement(list(dict.fromkeys(payload.order_ids)))
        else:
            raise ValidationError("Select orders to settle or set distribute_all")

        succeeded: List[str] = []
        failed: List[FailedSettlement] = []
        for order in orders:
            result = self._orchestrator.settle(order.id)
            if result.status == SideEffectStatus.OK:
                succeeded.append(order.order_number)
            else:
                failed.append(
                    FailedSettlement(order_id=order.id, order_number=order.order_number, error=result.detail or "failed")
                )

        self._log.info("Profit distribution run finished", total=len(orders), success=len(succeeded), failed=len(failed))
        return ProfitDistributionResult(
            total=len(orders),
            success=len(succeeded),
            failed=len(failed),
            success_orders=succeeded,
            failed_orders=failed,
        )


class WebhookService:
    def __init__(self, integrations: IntegrationRepository, ingestor: ExternalOrderIngestor) -> None:
        self._integrations = integrations
        self._ingestor = ingestor
        self._log = ServiceLogger("webhook")

    def handle(self, request: WebhookRequest) -> WebhookReceipt:
        if not request.secret:
            self._log.warning("Webhook rejected: missing secret")
            raise UnauthorizedError()
        try:
            body = json.loads(request.payload.decode())
        except (UnicodeDecodeError, ValueError) as exc:
            raise ValidationError("Invalid JSON body") from exc
        if not isinstance(body, dict):
            raise ValidationError("Invalid JSON body")

        integration = self._authenticate(request.secret, body.get("store_id"))
        return self._ingestor.handle(body, integration)

    def _authenticate(self, secret: str, store_id: Optional[object]) -> StoreIntegration:
        integration = self._integrations.find_by_secret(IntegrationType.EASY_ORDERS, secret)
        if integration and integration.is_active:
            return integration

        if store_id is None or store_id == "":
            self._log.warning("Webhook rejected: unknown secret and no store id")
            raise UnauthorizedError()

        candidates = [
            candidate
            for candidate in self._integrations.find_by_store(IntegrationType.EASY_ORDERS, str(store_id))
            if candidate.is_active and not candidate.webhook_secret
        ]
        if not candidates:
            self._log.warning("Webhook rejected: no integration for store", store_id=store_id)
            raise UnauthorizedError()

        chosen = candidates[0]
        for candidate in candidates:
            if candidate.owner_role in (CustomerRole.MARKETER, CustomerRole.WHOLESALER):
                chosen = candidate
                break
        saved = self._integrations.set_secret(chosen.id, secret) or chosen
        self._log.info("Webhook secret stored for integration", integration_id=chosen.id, store_id=store_id)
        return saved
