# storefront/cart.py
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple, Union

from fastapi import APIRouter, Depends, Query, status
from pydantic import ValidationError as SchemaError

from .auth import AuthManager, get_auth_manager, require_user
from .backend import BackendClient
from .config import Settings
from .deps import get_app_settings, get_backend, get_storefront_session, get_store
from .errors import AuthError
from .schemas import AuthSession, CartAddIn, CartItem, CartOut, CartQuantityIn, CartTotals
from .session import SessionStore, StorefrontSession, short_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])


# 🧾 Actions
@dataclass(frozen=True)
class AddItem:
    item: CartItem
    quantity: int = 1


@dataclass(frozen=True)
class RemoveItem:
    product_id: str
    size: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class UpdateQuantity:
    product_id: str
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class ClearCart:
    pass


@dataclass(frozen=True)
class SetCart:
    items: Tuple[CartItem, ...]


CartAction = Union[AddItem, RemoveItem, UpdateQuantity, ClearCart, SetCart]


def cart_reducer(items: List[CartItem], action: CartAction) -> List[CartItem]:
    """Return the cart after ``action``. The input list is never modified.

    Lines are keyed by (product id, size, color): adding an existing key sums
    the quantities, a quantity update to zero or below removes the line.
    """
    if isinstance(action, AddItem):
        key = action.item.key
        if any(i.key == key for i in items):
            return [
                i.model_copy(update={"quantity": max(1, i.quantity + action.quantity)}) if i.key == key else i
                for i in items
            ]
        return list(items) + [action.item.model_copy(update={"quantity": max(1, action.quantity)})]

    if isinstance(action, RemoveItem):
        key = (action.product_id, action.size, action.color)
        return [i for i in items if i.key != key]

    if isinstance(action, UpdateQuantity):
        key = (action.product_id, action.size, action.color)
        if action.quantity <= 0:
            return [i for i in items if i.key != key]
        return [i.model_copy(update={"quantity": action.quantity}) if i.key == key else i for i in items]

    if isinstance(action, ClearCart):
        return []

    if isinstance(action, SetCart):
        return list(action.items)

    raise TypeError(f"unknown cart action: {action!r}")


def compute_totals(items: Iterable[CartItem], tax_rate: Decimal, shipping: Decimal = Decimal("0")) -> CartTotals:
    """Exact totals; call on every read instead of storing them."""
    items = list(items)
    subtotal = sum((i.price * i.quantity for i in items), Decimal("0"))
    tax = subtotal * tax_rate
    return CartTotals(
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        total=subtotal + tax + shipping,
        item_count=sum(i.quantity for i in items),
    )


def item_from_backend(raw: dict) -> CartItem:
    product = raw.get("product") or {}
    images = product.get("images") or []
    return CartItem(
        id=raw.get("productId"),
        name=product.get("name") or "Product",
        price=product.get("price"),
        quantity=raw.get("quantity") or 1,
        image=images[0].get("url") if images else None,
        size=raw.get("size"),
        color=raw.get("color"),
        cart_item_id=raw.get("id"),
    )


async def sync_cart(session: StorefrontSession, backend: BackendClient, manager: AuthManager) -> List[CartItem]:
    """Replace the local cart with the logged-in user's backend cart.

    An empty backend cart leaves the local one alone. A response that lost the
    race to a newer sync is not applied.
    """
    current = session.auth
    if current is None:
        raise AuthError(401)
    ticket = session.sequencer.issue("cart")
    raw = await manager.guarded(session, backend.get_cart(current.token))

    items: List[CartItem] = []
    for line in raw.get("items") or []:
        try:
            items.append(item_from_backend(line))
        except SchemaError:
            logger.warning("session %s: skipping unusable cart line %s", short_id(session.id), line.get("id"))

    async with session.lock:
        if not session.sequencer.is_current("cart", ticket):
            logger.debug("session %s: stale cart sync dropped", short_id(session.id))
        elif items:
            session.cart = cart_reducer(session.cart, SetCart(tuple(items)))
        return list(session.cart)


def _cart_out(session: StorefrontSession, settings: Settings) -> CartOut:
    items = list(session.cart)
    # same cent rounding the checkout payload uses
    totals = compute_totals(items, settings.tax_rate, settings.shipping_flat).rounded()
    return CartOut(items=items, totals=totals)


async def _dispatch(session: StorefrontSession, store: SessionStore, action: CartAction) -> None:
    async with session.lock:
        session.cart = cart_reducer(session.cart, action)
        await store.save(session)


# 🛒 Routes
@router.get("", response_model=CartOut)
async def get_cart(
    session: StorefrontSession = Depends(get_storefront_session),
    settings: Settings = Depends(get_app_settings),
):
    return _cart_out(session, settings)


@router.post("/items", response_model=CartOut, status_code=status.HTTP_201_CREATED)
async def add_item(
    payload: CartAddIn,
    session: StorefrontSession = Depends(get_storefront_session),
    store: SessionStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    item = CartItem(**payload.model_dump(exclude={"quantity"}), quantity=max(1, payload.quantity))
    await _dispatch(session, store, AddItem(item, payload.quantity))
    return _cart_out(session, settings)


@router.patch("/items/{product_id}", response_model=CartOut)
async def update_quantity(
    product_id: str,
    payload: CartQuantityIn,
    session: StorefrontSession = Depends(get_storefront_session),
    store: SessionStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    # quantity <= 0 removes the line
    await _dispatch(session, store, UpdateQuantity(product_id, payload.quantity, payload.size, payload.color))
    return _cart_out(session, settings)


@router.delete("/items/{product_id}", response_model=CartOut)
async def remove_item(
    product_id: str,
    size: Optional[str] = Query(None),
    color: Optional[str] = Query(None),
    session: StorefrontSession = Depends(get_storefront_session),
    store: SessionStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    await _dispatch(session, store, RemoveItem(product_id, size, color))
    return _cart_out(session, settings)


@router.delete("", status_code=204)
async def clear_cart(
    session: StorefrontSession = Depends(get_storefront_session),
    store: SessionStore = Depends(get_store),
):
    await _dispatch(session, store, ClearCart())


@router.post("/sync", response_model=CartOut)
async def sync_from_backend(
    _user: AuthSession = Depends(require_user),
    session: StorefrontSession = Depends(get_storefront_session),
    backend: BackendClient = Depends(get_backend),
    manager: AuthManager = Depends(get_auth_manager),
    store: SessionStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    try:
        await sync_cart(session, backend, manager)
    finally:
        await store.save(session)
    return _cart_out(session, settings)
