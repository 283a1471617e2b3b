from __future__ import annotations

from fastapi import FastAPI, Request

from ..settings import Settings


def client_key(request: Request) -> str:
    """Storefront webhooks are limited per integration secret, everything else per address."""
    secret = request.headers.get("secret")
    if secret:
        return f"webhook:{secret[:16]}"
    return request.client.host if request.client else "anonymous"


def configure_rate_limiting(app: FastAPI, settings: Settings) -> None:
    if not settings.rate_limit_enabled:
        return

    from slowapi import Limiter, _rate_limit_exceeded_handler
    from slowapi.errors import RateLimitExceeded
    from slowapi.middleware import SlowAPIMiddleware

    limiter = Limiter(key_func=client_key, default_limits=[settings.rate_limit_default])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
