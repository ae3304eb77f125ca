"""FastAPI application factory for the worker surface."""

from fastapi import FastAPI, Request, Response

from hotelcore.api.errors import error_response
from hotelcore.domain.errors import CoreError
from hotelcore.observability.correlation import (
    CORRELATION_ID_HEADER,
    from_header,
    reset_correlation_id,
    set_correlation_id,
)
from hotelcore.observability.logging import configure_logging

from .routes import internal_ari, tasks


def create_app() -> FastAPI:
    """Create the worker app: task routes, operator routes and /health."""
    configure_logging()
    app = FastAPI(title="hotelcore worker", docs_url=None, redoc_url=None)

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = from_header(request.headers.get(CORRELATION_ID_HEADER))
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    @app.exception_handler(CoreError)
    async def core_error_handler(request: Request, exc: CoreError) -> Response:
        return error_response(exc)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    app.include_router(tasks.router)
    app.include_router(internal_ari.router)
    return app
