# storefront/orders.py
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import ValidationError as SchemaError

from .auth import AuthManager, get_auth_manager, require_user
from .backend import BackendClient
from .cart import compute_totals
from .config import Settings
from .deps import get_storefront_session, get_store
from .errors import AuthError, HttpError, ValidationError
from .schemas import AuthSession, CheckoutIn, Order, OrderItem
from .session import SessionStore, StorefrontSession, short_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

DELIVERY_ESTIMATE = timedelta(days=7)

_SHIPPING_FIELDS = {
    "first_name": "shippingFirstName",
    "last_name": "shippingLastName",
    "email": "shippingEmail",
    "phone": "shippingPhone",
    "address": "shippingAddress",
    "city": "shippingCity",
    "state": "shippingState",
    "zip_code": "shippingZipCode",
    "country": "shippingCountry",
}


def _money(value: Decimal) -> float:
    # the backend stores money as JSON numbers
    return float(value)


def order_from_backend(raw: Dict[str, Any], sent: Optional[Dict[str, Any]] = None) -> Order:
    """Map a backend order onto the storefront shape.

    ``sent`` is the checkout payload when the order was just created; the
    backend only echoes the total, so subtotal/tax/shipping come from it.
    """
    sent = sent or {}
    items = []
    for it in raw.get("items") or []:
        product = it.get("product") or {}
        images = product.get("images") or []
        items.append(OrderItem(
            id=it.get("productId"),
            name=product.get("name") or "Product",
            price=it.get("price"),
            quantity=it.get("quantity"),
            image=images[0].get("url") if images else None,
            size=it.get("size"),
            color=it.get("color"),
        ))

    shipping_address = sent.get("shippingAddress")
    if shipping_address is None and raw.get("shippingFirstName"):
        shipping_address = {field: raw.get(key) or "" for field, key in _SHIPPING_FIELDS.items()}

    total = raw.get("total")
    created_at = raw.get("createdAt")
    order = Order(
        id=raw.get("id"),
        items=items,
        shipping_address=shipping_address,
        subtotal=sent.get("subtotal", raw.get("subtotal", total)),
        shipping=sent.get("shipping", raw.get("shipping") or 0),
        tax=sent.get("tax", raw.get("tax") or 0),
        total=total,
        payment_method=raw.get("paymentMethod") or sent.get("paymentMethod") or "card",
        status=(raw.get("status") or "pending").lower(),
        created_at=created_at,
    )
    return order.model_copy(update={"estimated_delivery": order.created_at + DELIVERY_ESTIMATE})


class OrderService:
    """Order history (read-through cache) and checkout for one session at a time."""

    def __init__(self, backend: BackendClient, manager: AuthManager, settings: Settings):
        self.backend = backend
        self.manager = manager
        self.settings = settings

    @staticmethod
    def _auth_for(session: StorefrontSession, user_id: Optional[str] = None) -> AuthSession:
        current = session.auth
        if current is None:
            raise AuthError(401)
        if user_id is not None and current.user_id != user_id:
            raise AuthError(403, "Orders of another user are not accessible")
        return current

    async def fetch_orders(self, session: StorefrontSession, user_id: str) -> List[Order]:
        """Refetch the user's orders, most recent first, replacing the cached set.

        If a newer fetch was issued while this one was in flight, the result is
        returned to the caller but not written to the cache.
        """
        current = self._auth_for(session, user_id)
        ticket = session.sequencer.issue("orders")
        raw = await self.manager.guarded(session, self.backend.list_my_orders(current.token))
        try:
            orders = [order_from_backend(o) for o in raw]
        except SchemaError as exc:
            raise HttpError(502, "Backend returned an invalid order") from exc
        orders.sort(key=lambda o: o.created_at, reverse=True)

        async with session.lock:
            if session.sequencer.is_current("orders", ticket) and session.user_id == user_id:
                session.orders.replace(user_id, orders)
            else:
                logger.debug("session %s: stale orders response dropped", short_id(session.id))
        return orders

    async def get_order(self, session: StorefrontSession, order_id: str) -> Order:
        current = self._auth_for(session)
        cached = session.orders.get_order(order_id) if session.orders.user_id == current.user_id else None
        if cached is not None:
            return cached
        raw = await self.manager.guarded(session, self.backend.get_order(current.token, order_id))
        try:
            return order_from_backend(raw)
        except SchemaError as exc:
            raise HttpError(502, "Backend returned an invalid order") from exc

    def build_payload(self, items, checkout: CheckoutIn) -> Dict[str, Any]:
        totals = compute_totals(items, self.settings.tax_rate, self.settings.shipping_flat).rounded()
        return {
            "items": [
                {
                    "id": i.id,
                    "name": i.name,
                    "price": _money(i.price),
                    "quantity": i.quantity,
                    "size": i.size,
                    "color": i.color,
                }
                for i in items
            ],
            "shippingAddress": checkout.shipping_address.model_dump(by_alias=True),
            "subtotal": _money(totals.subtotal),
            "shipping": _money(totals.shipping),
            "tax": _money(totals.tax),
            "total": _money(totals.total),
            "paymentMethod": checkout.payment_method,
            "paymentReference": checkout.payment_reference,
        }

    async def place_order(self, session: StorefrontSession, checkout: CheckoutIn) -> Order:
        """Submit the current cart as an order.

        Local state changes only after the backend confirms: the order goes to
        the front of the cache, becomes the current order, and the lines that
        were ordered leave the cart.
        """
        current = self._auth_for(session)
        ordered = list(session.cart)
        if not ordered:
            raise ValidationError("Cart is empty")
        if checkout.payment_method == "paypal" and not checkout.payment_reference:
            raise ValidationError("PayPal payment has not been approved")

        payload = self.build_payload(ordered, checkout)
        raw = await self.manager.guarded(session, self.backend.create_order(current.token, payload))
        try:
            order = order_from_backend(raw, sent=payload)
        except SchemaError as exc:
            raise HttpError(502, "Backend returned an invalid order") from exc

        ordered_lines = {(i.key, i.quantity) for i in ordered}
        async with session.lock:
            session.orders.record_created(current.user_id, order)
            # lines changed while the order was in flight stay in the cart
            session.cart = [i for i in session.cart if (i.key, i.quantity) not in ordered_lines]
        logger.info("session %s: order %s placed (%s items, total %s)",
                    short_id(session.id), order.id, len(order.items), order.total)
        return order


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


# 🧾 Order history of the current user
@router.get("", response_model=List[Order])
async def list_orders(
    user: AuthSession = Depends(require_user),
    session: StorefrontSession = Depends(get_storefront_session),
    service: OrderService = Depends(get_order_service),
    store: SessionStore = Depends(get_store),
):
    try:
        return await service.fetch_orders(session, user.user_id)
    except AuthError:
        await store.save(session)
        raise


@router.get("/current", response_model=Order)
async def current_order(
    _user: AuthSession = Depends(require_user),
    session: StorefrontSession = Depends(get_storefront_session),
):
    if session.orders.current_order is None:
        raise HttpError(404, "No current order")
    return session.orders.current_order


@router.delete("/current", status_code=204)
async def clear_current_order(session: StorefrontSession = Depends(get_storefront_session)):
    async with session.lock:
        session.orders.clear_current_order()


@router.delete("/cache", status_code=204)
async def invalidate_orders(session: StorefrontSession = Depends(get_storefront_session)):
    async with session.lock:
        session.orders.invalidate()


# 📦 One order
@router.get("/{order_id}", response_model=Order)
async def order_detail(
    order_id: str,
    _user: AuthSession = Depends(require_user),
    session: StorefrontSession = Depends(get_storefront_session),
    service: OrderService = Depends(get_order_service),
    store: SessionStore = Depends(get_store),
):
    try:
        return await service.get_order(session, order_id)
    except AuthError:
        await store.save(session)
        raise


# ✅ Checkout: the cart becomes an order once the backend accepts it
@router.post("/checkout", response_model=Order, status_code=status.HTTP_201_CREATED)
async def checkout(
    payload: CheckoutIn,
    _user: AuthSession = Depends(require_user),
    session: StorefrontSession = Depends(get_storefront_session),
    service: OrderService = Depends(get_order_service),
    store: SessionStore = Depends(get_store),
):
    try:
        return await service.place_order(session, payload)
    finally:
        await store.save(session)
