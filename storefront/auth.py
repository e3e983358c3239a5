import logging
import time
from typing import Any, Awaitable, Dict, Optional, TypeVar

from fastapi import APIRouter, Depends, Request
from jose import JWTError, jwt
from pydantic import ValidationError as SchemaError

from .backend import BackendClient
from .deps import get_storefront_session, get_store
from .errors import AuthError, HttpError, StorefrontError, ValidationError
from .schemas import AuthSession, LoginIn, ProfileUpdateIn, RegisterIn, SessionOut, UserProfile
from .session import SessionStore, StorefrontSession, short_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

T = TypeVar("T")


# 🔐 Utilities
def token_expired(token: str) -> bool:
    """True when the token is a JWT whose ``exp`` has passed.

    The signature is not checked here (the secret lives on the backend); this
    only spares a round-trip for tokens that are certainly dead. Opaque tokens
    are left for the backend to judge.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return False
    exp = claims.get("exp")
    return isinstance(exp, (int, float)) and exp <= time.time()


def build_auth_session(token: Optional[str], user: Dict[str, Any]) -> AuthSession:
    if not token:
        raise HttpError(502, "Backend did not issue a session token")
    try:
        profile = UserProfile.model_validate(user)
    except SchemaError as exc:
        raise HttpError(502, "Backend returned an invalid user") from exc
    return AuthSession(user_id=profile.id, token=token, profile=profile)


class AuthManager:
    """Login lifecycle for a StorefrontSession.

    A new AuthSession is fully built before it replaces the old one, so a
    failed call never leaves a half-updated session behind. Verification is
    fail-closed: if the backend cannot confirm the token, the session is
    logged out and the error goes back to the caller.
    """

    def __init__(self, backend: BackendClient):
        self.backend = backend

    async def login(self, session: StorefrontSession, email: str, password: str) -> UserProfile:
        if not email or not password:
            raise ValidationError("Email and password are required")
        token, user = await self.backend.login(email, password)
        return await self._swap_in(session, build_auth_session(token, user))

    async def register(
        self,
        session: StorefrontSession,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> UserProfile:
        if not email or not password:
            raise ValidationError("Email and password are required")
        fields = {"email": email, "password": password, "firstName": first_name, "lastName": last_name}
        token, user = await self.backend.register(fields)
        if not token:
            # registration answers with the user only; log in to get a token
            token, user = await self.backend.login(email, password)
        return await self._swap_in(session, build_auth_session(token, user))

    async def _swap_in(self, session: StorefrontSession, new_auth: AuthSession) -> UserProfile:
        async with session.lock:
            previous = session.auth
            session.auth = new_auth
            if session.orders.user_id != new_auth.user_id:
                session.orders.invalidate()
        if previous is not None and previous.user_id != new_auth.user_id:
            logger.info("session %s switched user %s -> %s", short_id(session.id), previous.user_id, new_auth.user_id)
        else:
            logger.info("session %s logged in as user %s", short_id(session.id), new_auth.user_id)
        return new_auth.profile

    async def logout(self, session: StorefrontSession) -> None:
        async with session.lock:
            current, session.auth = session.auth, None
            session.orders.invalidate()
        if current is None:
            return
        logger.info("session %s logged out user %s", short_id(session.id), current.user_id)
        try:
            await self.backend.logout(current.token)
        except StorefrontError as exc:
            # the local session is already gone; the backend cookie expires on its own
            logger.warning("session %s: backend logout failed: %s", short_id(session.id), exc.message)

    async def refresh(self, session: StorefrontSession) -> UserProfile:
        current = session.auth
        if current is None:
            raise AuthError(401)
        try:
            if token_expired(current.token):
                raise AuthError(401, "Session expired")
            user = await self.backend.me(current.token)
            try:
                profile = UserProfile.model_validate(user)
            except SchemaError as exc:
                raise HttpError(502, "Backend returned an invalid user") from exc
            if profile.id != current.user_id:
                raise AuthError(401, "Session no longer matches the logged-in user")
        except StorefrontError:
            await self._drop(session, current)
            raise

        async with session.lock:
            if session.auth is current:
                session.auth = current.model_copy(update={"profile": profile})
        return profile

    async def _drop(self, session: StorefrontSession, expected: AuthSession) -> None:
        async with session.lock:
            # a concurrent login may already have replaced the session we checked
            if session.auth is expected:
                session.auth = None
                session.orders.invalidate()
                logger.info("session %s: login no longer valid, logged out", short_id(session.id))

    def current_user(self, session: StorefrontSession) -> Optional[UserProfile]:
        return session.auth.profile if session.auth else None

    async def guarded(self, session: StorefrontSession, call: Awaitable[T]) -> T:
        """Await an authenticated backend call; an AuthError forces a logout."""
        current = session.auth
        try:
            return await call
        except AuthError:
            if current is not None:
                await self._drop(session, current)
            raise

    async def update_profile(self, session: StorefrontSession, fields: Dict[str, Any]) -> UserProfile:
        current = session.auth
        if current is None:
            raise AuthError(401)
        user = await self.guarded(session, self.backend.update_profile(current.token, fields))
        try:
            profile = current.profile.model_copy(update=UserProfile.model_validate(user).model_dump(exclude_unset=True))
        except SchemaError as exc:
            raise HttpError(502, "Backend returned an invalid user") from exc
        async with session.lock:
            if session.auth is current:
                session.auth = current.model_copy(update={"profile": profile})
        return profile

    async def ensure_admin(self, session: StorefrontSession) -> AuthSession:
        profile = await self.refresh(session)
        if (profile.role or "").upper() != "ADMIN":
            raise AuthError(403, "Admin access required")
        async with session.lock:
            current = session.auth
        # a logout may have landed while the token was being checked
        if current is None or current.user_id != profile.id:
            raise AuthError(401)
        return current


def get_auth_manager(request: Request) -> AuthManager:
    return request.app.state.auth_manager


# ✅ Dependencies
async def require_user(session: StorefrontSession = Depends(get_storefront_session)) -> AuthSession:
    if session.auth is None:
        raise AuthError(401)
    return session.auth


async def require_admin(
    session: StorefrontSession = Depends(get_storefront_session),
    manager: AuthManager = Depends(get_auth_manager),
    store: SessionStore = Depends(get_store),
) -> AuthSession:
    """Admin guard: re-validates the token on every call and never lets a
    non-admin or unverified principal through."""
    if session.auth is None:
        raise AuthError(401)
    try:
        return await manager.ensure_admin(session)
    except StorefrontError:
        await store.save(session)
        raise


def _session_out(profile: Optional[UserProfile]) -> SessionOut:
    return SessionOut(authenticated=profile is not None, user=profile)


# ✅ Routes
@router.post("/login", response_model=SessionOut)
async def login(
    payload: LoginIn,
    session: StorefrontSession = Depends(get_storefront_session),
    manager: AuthManager = Depends(get_auth_manager),
    store: SessionStore = Depends(get_store),
):
    profile = await manager.login(session, payload.email, payload.password)
    await store.save(session)
    return _session_out(profile)


@router.post("/register", response_model=SessionOut, status_code=201)
async def register(
    payload: RegisterIn,
    session: StorefrontSession = Depends(get_storefront_session),
    manager: AuthManager = Depends(get_auth_manager),
    store: SessionStore = Depends(get_store),
):
    profile = await manager.register(
        session, payload.email, payload.password, payload.first_name, payload.last_name
    )
    await store.save(session)
    return _session_out(profile)


@router.post("/logout", response_model=SessionOut)
async def logout(
    session: StorefrontSession = Depends(get_storefront_session),
    manager: AuthManager = Depends(get_auth_manager),
    store: SessionStore = Depends(get_store),
):
    await manager.logout(session)
    await store.save(session)
    return _session_out(None)


@router.get("/me", response_model=SessionOut)
async def me(
    session: StorefrontSession = Depends(get_storefront_session),
    manager: AuthManager = Depends(get_auth_manager),
    store: SessionStore = Depends(get_store),
):
    if session.auth is None:
        return _session_out(None)
    try:
        profile = await manager.refresh(session)
    except StorefrontError:
        await store.save(session)
        raise
    return _session_out(profile)


@router.put("/profile", response_model=UserProfile)
async def update_profile(
    payload: ProfileUpdateIn,
    session: StorefrontSession = Depends(get_storefront_session),
    manager: AuthManager = Depends(get_auth_manager),
    store: SessionStore = Depends(get_store),
):
    fields = payload.model_dump(by_alias=True, exclude_none=True)
    if not fields:
        raise ValidationError("Nothing to update")
    try:
        return await manager.update_profile(session, fields)
    finally:
        await store.save(session)
