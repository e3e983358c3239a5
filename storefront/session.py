# storefront/session.py
"""Per-browser session state and its durable store.

A ``StorefrontSession`` is the handle every request handler works on. It
bundles the four state slices (auth, cart, wishlist, orders) behind one
``asyncio.Lock``: all mutations of a session happen under that lock, network
I/O happens outside it.
"""
import asyncio
import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import TypeAdapter
from sqlalchemy.orm import sessionmaker

from .errors import StorefrontError
from .models import StoredSession
from .schemas import AuthSession, CartItem, Order, WishlistItem

logger = logging.getLogger(__name__)

_cart_adapter = TypeAdapter(List[CartItem])
_wishlist_adapter = TypeAdapter(List[WishlistItem])

# how often idle live sessions are looked for, in seconds
SWEEP_INTERVAL = 60


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def short_id(session_id: str) -> str:
    # enough to correlate log lines without leaking the cookie value
    return session_id[:8]


class RequestSequencer:
    """Hands out increasing tickets per resource so late responses can be dropped."""

    def __init__(self) -> None:
        self._latest: Dict[str, int] = {}

    def issue(self, key: str) -> int:
        ticket = self._latest.get(key, 0) + 1
        self._latest[key] = ticket
        return ticket

    def is_current(self, key: str, ticket: int) -> bool:
        return self._latest.get(key) == ticket


@dataclass
class OrderCache:
    """Read-through snapshot of the logged-in user's orders.

    The backend is the only writer; a fetch replaces the whole collection.
    """

    user_id: Optional[str] = None
    orders: List[Order] = field(default_factory=list)
    current_order: Optional[Order] = None
    loaded: bool = False

    def replace(self, user_id: str, orders: List[Order]) -> None:
        self.user_id = user_id
        self.orders = list(orders)
        self.loaded = True

    def record_created(self, user_id: str, order: Order) -> None:
        if self.user_id != user_id:
            self.invalidate()
            self.user_id = user_id
        self.orders = [order] + [o for o in self.orders if o.id != order.id]
        self.current_order = order

    def get_order(self, order_id: str) -> Optional[Order]:
        for order in self.orders:
            if order.id == order_id:
                return order
        return None

    def clear_current_order(self) -> None:
        self.current_order = None

    def invalidate(self) -> None:
        self.user_id = None
        self.orders = []
        self.current_order = None
        self.loaded = False


@dataclass
class StorefrontSession:
    id: str
    auth: Optional[AuthSession] = None
    cart: List[CartItem] = field(default_factory=list)
    wishlist: List[WishlistItem] = field(default_factory=list)
    orders: OrderCache = field(default_factory=OrderCache)
    sequencer: RequestSequencer = field(default_factory=RequestSequencer)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # orders this session's database writes
    save_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_seen: float = field(default_factory=time.monotonic)

    @property
    def user_id(self) -> Optional[str]:
        return self.auth.user_id if self.auth else None


Validator = Callable[[StorefrontSession], Awaitable[object]]


class SessionStore:
    """Live sessions in memory, backed by the ``storefront_sessions`` table.

    Sessions are loaded on first use and written after every mutation. A
    session only stays in memory once it has been saved, so requests that never
    change anything leave no trace. Sessions idle for longer than ``max_age``
    seconds are forgotten, and stored rows that old are not restored. A token
    found in storage is only trusted after ``validate`` (the auth refresh)
    succeeds; until then the session is not handed out.
    """

    def __init__(self, session_maker: sessionmaker, validate: Optional[Validator] = None,
                 max_age: Optional[int] = None):
        self._session_maker = session_maker
        self.validate = validate
        self.max_age = max_age
        self._live: Dict[str, StorefrontSession] = {}
        self._publish_lock = asyncio.Lock()
        self._next_sweep = 0.0

    @property
    def live_count(self) -> int:
        return len(self._live)

    def _is_idle(self, session: StorefrontSession, now: float) -> bool:
        return self.max_age is not None and now - session.last_seen > self.max_age

    def _expired(self, updated_at: Optional[datetime]) -> bool:
        if self.max_age is None or updated_at is None:
            return False
        if updated_at.tzinfo is None:
            # sqlite hands timestamps back without a zone; they are UTC
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - updated_at > timedelta(seconds=self.max_age)

    def evict_idle(self, now: Optional[float] = None) -> int:
        """Drop live sessions unused for longer than ``max_age``; returns how many."""
        now = time.monotonic() if now is None else now
        idle = [sid for sid, s in self._live.items() if self._is_idle(s, now)]
        for sid in idle:
            del self._live[sid]
        if idle:
            logger.info("evicted %d idle sessions", len(idle))
        return len(idle)

    async def get_or_create(self, session_id: Optional[str]) -> StorefrontSession:
        now = time.monotonic()
        if self.max_age is not None and now >= self._next_sweep:
            self.evict_idle(now)
            self._next_sweep = now + SWEEP_INTERVAL

        live = self._live.get(session_id) if session_id else None
        if live is not None:
            if not self._is_idle(live, now):
                live.last_seen = now
                return live
            self._live.pop(session_id, None)

        session = await self._load(session_id) if session_id else None
        if session is None:
            session = StorefrontSession(id=new_session_id())
            logger.debug("session %s created", short_id(session.id))
            # published by the first save
            return session

        if session.auth is not None and self.validate is not None:
            try:
                await self.validate(session)
            except StorefrontError as exc:
                logger.info("session %s: stored login rejected (%s), continuing logged out",
                            short_id(session.id), exc.message)
                await self.save(session)

        async with self._publish_lock:
            # another request may have restored the same session meanwhile
            existing = self._live.get(session.id)
            if existing is not None and existing is not session:
                return existing
            self._live[session.id] = session
        return session

    async def _load(self, session_id: str) -> Optional[StorefrontSession]:
        async with self._session_maker() as db:
            row = await db.get(StoredSession, session_id)
            if row is not None and self._expired(row.updated_at):
                await db.delete(row)
                await db.commit()
                logger.info("session %s expired, starting a new one", short_id(session_id))
                return None
        if row is None:
            return None
        session = StorefrontSession(
            id=row.id,
            auth=AuthSession.model_validate_json(row.auth) if row.auth else None,
            cart=_cart_adapter.validate_json(row.cart or "[]"),
            wishlist=_wishlist_adapter.validate_json(row.wishlist or "[]"),
        )
        logger.debug("session %s restored (%d cart lines)", short_id(session.id), len(session.cart))
        return session

    async def save(self, session: StorefrontSession) -> None:
        async with session.save_lock:
            # snapshot after taking the lock so the newest state always lands last
            auth = session.auth.model_dump_json() if session.auth else None
            cart = json.dumps(_cart_adapter.dump_python(session.cart, mode="json"))
            wishlist = json.dumps(_wishlist_adapter.dump_python(session.wishlist, mode="json"))
            async with self._session_maker() as db:
                row = await db.get(StoredSession, session.id)
                if row is None:
                    row = StoredSession(id=session.id)
                    db.add(row)
                row.auth = auth
                row.cart = cart
                row.wishlist = wishlist
                row.updated_at = datetime.now(timezone.utc)
                await db.commit()
        self._live.setdefault(session.id, session)
