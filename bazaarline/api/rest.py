from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..container import Container
from ..deps import (
    get_auth_service,
    get_container,
    get_fulfillment,
    get_orchestrator,
    get_order_service,
    get_settlement_service,
    get_webhook_service,
)
from ..domain import (
    AuthContext,
    BulkActionResult,
    BulkOrderAction,
    FulfillmentCreate,
    FulfillmentDecision,
    FulfillmentDelivery,
    FulfillmentOutcome,
    FulfillmentRequest,
    HealthStatus,
    LoginRequest,
    Order,
    OrderLookup,
    OrderQuery,
    OrderStatus,
    PackageResult,
    PendingSettlementSummary,
    Product,
    ProfitDistributionRequest,
    ProfitDistributionResult,
    TokenInput,
    TokenResponse,
    WalletView,
    WebhookReceipt,
    WebhookRequest,
)
from ..lifecycle.fulfillment import FulfillmentApprovalWorkflow
from ..lifecycle.orchestrator import OrderStatusOrchestrator
from ..services import AuthService, OrderService, SettlementService, WebhookService

security = HTTPBearer()

router = APIRouter()


def auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    auth: AuthService = Depends(get_auth_service),
) -> AuthContext:
    return auth.verify_token(TokenInput(token=credentials.credentials))


@router.get("/health", response_model=HealthStatus)
async def health(container: Container = Depends(get_container)):
    if container.db is None:
        return HealthStatus(status="ok", time=container.clock.now())
    reachable = container.db.ping()
    return HealthStatus(
        status="ok" if reachable else "degraded",
        time=container.clock.now(),
        database="ok" if reachable else "unavailable",
    )


@router.post("/auth/login", response_model=TokenResponse)
async def login(payload: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.login(payload)


@router.get("/orders", response_model=list[Order])
async def list_orders(
    status: Optional[str] = None,
    limit: int = 50,
    _: AuthContext = Depends(auth_context),
    service: OrderService = Depends(get_order_service),
):
    try:
        status_value = OrderStatus(status) if status else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid status") from exc
    result = service.list_orders(OrderQuery(status=status_value, limit=limit))
    return result.items


@router.get("/orders/{order_id}", response_model=Order)
async def get_order(
    order_id: str,
    _: AuthContext = Depends(auth_context),
    service: OrderService = Depends(get_order_service),
):
    return service.get_order(OrderLookup(order_id=order_id))


@router.post("/orders/{order_id}/package", response_model=PackageResult)
def create_package(
    order_id: str,
    _: AuthContext = Depends(auth_context),
    orchestrator: OrderStatusOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.attach_package(order_id)


@router.post("/admin/orders/manage", response_model=BulkActionResult)
def manage_orders(
    payload: BulkOrderAction,
    auth: AuthContext = Depends(auth_context),
    orchestrator: OrderStatusOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.apply_bulk(payload, actor_id=auth.sub)


@router.get("/admin/orders/distribute-profits", response_model=PendingSettlementSummary)
async def pending_profits(
    _: AuthContext = Depends(auth_context),
    service: SettlementService = Depends(get_settlement_service),
):
    return service.pending()


@router.post("/admin/orders/distribute-profits", response_model=ProfitDistributionResult)
def distribute_profits(
    payload: ProfitDistributionRequest,
    _: AuthContext = Depends(auth_context),
    service: SettlementService = Depends(get_settlement_service),
):
    return service.distribute(payload)


@router.get("/products/{product_id}", response_model=Product)
async def get_product(
    product_id: str,
    _: AuthContext = Depends(auth_context),
    service: OrderService = Depends(get_order_service),
):
    return service.get_product(product_id)


@router.get("/wallets/{user_id}", response_model=WalletView)
async def get_wallet(
    user_id: str,
    _: AuthContext = Depends(auth_context),
    service: OrderService = Depends(get_order_service),
):
    return service.get_wallet(user_id)


@router.post("/fulfillment", response_model=FulfillmentRequest, status_code=201)
def create_fulfillment(
    payload: FulfillmentCreate,
    _: AuthContext = Depends(auth_context),
    workflow: FulfillmentApprovalWorkflow = Depends(get_fulfillment),
):
    return workflow.create(payload)


@router.get("/fulfillment/{request_id}", response_model=FulfillmentRequest)
async def read_fulfillment(
    request_id: str,
    _: AuthContext = Depends(auth_context),
    workflow: FulfillmentApprovalWorkflow = Depends(get_fulfillment),
):
    return workflow.get(request_id)


@router.put("/fulfillment/{request_id}", response_model=FulfillmentOutcome)
def decide_fulfillment(
    request_id: str,
    payload: FulfillmentDecision,
    auth: AuthContext = Depends(auth_context),
    workflow: FulfillmentApprovalWorkflow = Depends(get_fulfillment),
):
    return workflow.decide(request_id, payload, actor_id=auth.sub)


@router.post("/fulfillment/{request_id}/delivery", response_model=FulfillmentOutcome)
def record_fulfillment_delivery(
    request_id: str,
    payload: FulfillmentDelivery,
    auth: AuthContext = Depends(auth_context),
    workflow: FulfillmentApprovalWorkflow = Depends(get_fulfillment),
):
    return workflow.record_delivery(request_id, payload, actor_id=auth.sub)


@router.post("/integrations/easy-orders/webhook", response_model=WebhookReceipt)
async def easy_orders_webhook(
    request: Request,
    secret: Optional[str] = Header(None, alias="secret"),
    webhook: WebhookService = Depends(get_webhook_service),
):
    payload = await request.body()
    return webhook.handle(WebhookRequest(secret=secret, payload=payload))
