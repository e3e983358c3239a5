import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from storefront.auth import AuthManager
from storefront.backend import BackendClient
from storefront.config import Settings
from storefront.errors import AuthError, NetworkError, ValidationError
from storefront.orders import OrderService, order_from_backend
from storefront.schemas import CartItem, CheckoutIn
from storefront.session import StorefrontSession

BACKEND_URL = "http://backend.test"


def days_ago(n):
    return datetime.now(timezone.utc) - timedelta(days=n)


SHIPPING = {
    "firstName": "Jane",
    "lastName": "Doe",
    "email": "jane@example.com",
    "phone": "555-0100",
    "address": "1 Main St",
    "city": "Springfield",
    "state": "IL",
    "zipCode": "62701",
    "country": "US",
}


def service_for(backend) -> OrderService:
    client = BackendClient(BACKEND_URL, transport=httpx.MockTransport(backend))
    return OrderService(client, AuthManager(client), Settings(backend_url=BACKEND_URL))


def logged_in(service, coro_fn):
    async def main():
        session = StorefrontSession(id="orders-session")
        await service.manager.login(session, "jane@example.com", "password1")
        return await coro_fn(session), session

    return asyncio.run(main())


def add_cart(session):
    session.cart = [
        CartItem(id="p2", name="Classic White T-Shirt", price=Decimal("19.99"), quantity=2),
        CartItem(id="p3", name="Canvas Backpack", price=Decimal("5.00"), size="OS"),
    ]


def test_orders_most_recent_first(backend):
    backend.add_order("jane@example.com", "old", 10, days_ago(30))
    backend.add_order("jane@example.com", "new", 20, days_ago(1))
    backend.add_order("jane@example.com", "mid", 30, days_ago(5))
    service = service_for(backend)

    orders, session = logged_in(service, lambda s: service.fetch_orders(s, s.user_id))
    assert [o.id for o in orders] == ["new", "mid", "old"]
    assert [o.id for o in session.orders.orders] == ["new", "mid", "old"]
    assert orders[0].status == "delivered"


def test_refetch_replaces_whole_snapshot(backend):
    backend.add_order("jane@example.com", "a", 10, days_ago(3))
    service = service_for(backend)

    async def flow(session):
        await service.fetch_orders(session, session.user_id)
        backend.orders[session.user_id] = []
        backend.add_order("jane@example.com", "b", 15, days_ago(1))
        return await service.fetch_orders(session, session.user_id)

    orders, session = logged_in(service, flow)
    assert [o.id for o in orders] == ["b"]
    assert [o.id for o in session.orders.orders] == ["b"]


def test_stale_response_is_returned_but_not_applied(backend):
    backend.add_order("jane@example.com", "a", 10, days_ago(3))
    service = service_for(backend)

    async def flow(session):
        session.orders.replace(session.user_id, [])

        def newer_fetch_started(request):
            if request.url.path == "/api/orders/user/me":
                session.sequencer.issue("orders")

        backend.on_request = newer_fetch_started
        return await service.fetch_orders(session, session.user_id)

    orders, session = logged_in(service, flow)
    assert [o.id for o in orders] == ["a"]
    assert session.orders.orders == []


def test_orders_of_another_user_are_refused(backend):
    service = service_for(backend)

    async def flow(session):
        with pytest.raises(AuthError) as exc:
            await service.fetch_orders(session, "someone-else")
        return exc.value

    err, _ = logged_in(service, flow)
    assert err.status == 403


def test_estimated_delivery_is_a_week_out():
    order = order_from_backend({"id": "o1", "total": 12.5, "status": "SHIPPED", "createdAt": "2024-05-01T10:00:00Z"})
    assert order.status == "shipped"
    assert order.estimated_delivery - order.created_at == timedelta(days=7)


def test_checkout_clears_cart_after_confirmation(backend):
    service = service_for(backend)

    async def flow(session):
        add_cart(session)
        return await service.place_order(session, CheckoutIn(shipping_address=SHIPPING))

    order, session = logged_in(service, flow)
    assert session.cart == []
    assert session.orders.current_order == order
    assert session.orders.orders[0].id == order.id
    assert order.status == "pending"
    assert order.subtotal == Decimal("44.98")
    assert order.tax == Decimal("3.6")
    assert order.total == Decimal("48.58")
    assert order.shipping_address.city == "Springfield"
    assert [(i.id, i.quantity) for i in order.items] == [("p2", 2), ("p3", 1)]


def test_failed_checkout_keeps_cart(backend):
    service = service_for(backend)

    async def flow(session):
        add_cart(session)
        backend.down = True
        with pytest.raises(NetworkError):
            await service.place_order(session, CheckoutIn(shipping_address=SHIPPING))

    _, session = logged_in(service, flow)
    assert len(session.cart) == 2
    assert session.orders.current_order is None


def test_empty_cart_cannot_be_ordered(backend):
    service = service_for(backend)

    async def flow(session):
        with pytest.raises(ValidationError):
            await service.place_order(session, CheckoutIn(shipping_address=SHIPPING))

    logged_in(service, flow)
    assert ("POST", "/api/orders") not in backend.calls


def test_paypal_requires_approved_payment(backend):
    service = service_for(backend)

    async def flow(session):
        add_cart(session)
        with pytest.raises(ValidationError):
            await service.place_order(session, CheckoutIn(shipping_address=SHIPPING, payment_method="paypal"))

    _, session = logged_in(service, flow)
    assert len(session.cart) == 2
