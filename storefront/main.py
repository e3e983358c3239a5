# storefront/main.py
import logging
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import admin, auth, cart, catalog, orders, wishlist
from .backend import AdminClient, BackendClient
from .config import Settings, get_settings
from .database import create_tables, make_engine, make_session_maker
from .errors import AuthError, StorefrontError
from .session import SessionStore

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    status_code = exc.status_code
    if status_code >= 500 and status_code != 503:
        # upstream failures surface as a bad gateway, never as our own 500
        status_code = 502
    body = {"error": exc.message}
    if isinstance(exc, AuthError) and exc.redirect_to:
        body["redirect"] = exc.redirect_to
    return JSONResponse(status_code=status_code, content=body)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
    return JSONResponse(status_code=422, content={"error": message})


def create_app(settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Storefront",
        description="Session state (auth, cart, wishlist, orders) in front of the shop backend",
        version="1.0.0",
    )

    # ✅ CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    engine = make_engine(settings.database_url)
    backend = BackendClient(settings.backend_url, timeout=settings.backend_timeout, transport=transport)
    auth_manager = auth.AuthManager(backend)

    app.state.settings = settings
    app.state.engine = engine
    app.state.backend = backend
    app.state.auth_manager = auth_manager
    app.state.admin_client = AdminClient(backend, settings.admin_password)
    app.state.order_service = orders.OrderService(backend, auth_manager, settings)
    app.state.store = SessionStore(
        make_session_maker(engine), validate=auth_manager.refresh, max_age=settings.session_max_age
    )

    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # ✅ Routers
    app.include_router(auth.router)
    app.include_router(cart.router)
    app.include_router(wishlist.router)
    app.include_router(orders.router)
    app.include_router(catalog.categories_router)
    app.include_router(catalog.products_router)
    app.include_router(admin.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.on_event("startup")
    async def on_startup():
        await create_tables(engine)
        logger.info("storefront started, backend at %s", settings.backend_url)

    @app.on_event("shutdown")
    async def on_shutdown():
        await engine.dispose()

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=8000, reload=True)
