"""FastAPI application factory."""

from fastapi import FastAPI, Request, Response

from chatcanvas.config import Settings
from chatcanvas.observability.correlation import (
    CORRELATION_ID_HEADER,
    correlation_scope,
    resolve_correlation_id,
)

from . import dependencies
from .routers import public
from .routes import payments, webhooks_stripe, webhooks_whatsapp


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the FastAPI app.

    Args:
        settings: Explicit settings. If None, loaded from the environment
            on first use.

    Returns:
        Configured FastAPI application.
    """
    if settings is not None:
        dependencies.configure(settings)

    app = FastAPI(
        title="ChatCanvas",
        docs_url=None,
        redoc_url=None,
    )

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with correlation_scope(resolve_correlation_id(request.headers)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    app.include_router(public.router)
    app.include_router(webhooks_whatsapp.router)
    app.include_router(webhooks_stripe.router)
    app.include_router(payments.router)

    return app
