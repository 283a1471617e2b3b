from __future__ import annotations

import asyncio
import json
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .api.rest import router as rest_router
from .container import Container, build_container
from .errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from .logging import ServiceLogger, setup_logging
from .middleware.rate_limit import configure_rate_limiting
from .settings import Settings, load_settings


def create_app(settings: Settings, container: Optional[Container] = None) -> FastAPI:
    setup_logging(settings.log_level)
    log = ServiceLogger("api")

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        description="Order lifecycle, stock and profit settlement for a multi-role marketplace.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    configure_rate_limiting(app, settings)

    container = container or build_container(settings)
    app.state.container = container

    @app.exception_handler(NotFoundError)
    async def handle_not_found(_, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.detail})

    @app.exception_handler(UnauthorizedError)
    async def handle_unauthorized(_, __):
        return JSONResponse(status_code=401, content={"detail": "Unauthorized"})

    @app.exception_handler(ConflictError)
    async def handle_conflict(_, exc: ConflictError):
        return JSONResponse(status_code=409, content={"detail": exc.detail})

    @app.exception_handler(ValidationError)
    async def handle_validation(_, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": exc.detail})

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get(settings.request_id_header, "") or container.id_provider.new_id()
        response = await call_next(request)
        response.headers[settings.request_id_header] = request_id
        if response.status_code >= 500:
            log.error("Request failed", path=request.url.path, status=response.status_code, request_id=request_id)
        return response

    app.include_router(rest_router)
    app.include_router(rest_router, prefix="/v1")

    async def event_stream(order_id: Optional[str]):
        queue = container.event_bus.subscribe()
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=15)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if order_id and event.payload.get("order_id") != order_id:
                    continue
                yield f"event: {event.type}\ndata: {json.dumps(event.model_dump(mode='json'))}\n\n"
        finally:
            container.event_bus.unsubscribe(queue)

    @app.get("/stream/orders")
    async def stream_orders(order_id: Optional[str] = None):
        return StreamingResponse(event_stream(order_id), media_type="text/event-stream")

    return app


app = create_app(load_settings())
