from fastapi import Depends, Request, Response

from .backend import AdminClient, BackendClient
from .config import Settings
from .session import SessionStore, StorefrontSession


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_backend(request: Request) -> BackendClient:
    return request.app.state.backend


def get_admin_client(request: Request) -> AdminClient:
    return request.app.state.admin_client


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


async def get_storefront_session(
    request: Request,
    response: Response,
    store: SessionStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> StorefrontSession:
    """Resolve the caller's session from the cookie, issuing a new one if needed."""
    session_id = request.cookies.get(settings.session_cookie)
    session = await store.get_or_create(session_id)
    if session.id != session_id:
        response.set_cookie(
            settings.session_cookie,
            session.id,
            max_age=settings.session_max_age,
            path="/",
            httponly=True,
            samesite="lax",
        )
    return session
