import itertools
import json
from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from storefront.config import Settings
from storefront.main import create_app

BACKEND_URL = "http://backend.test"
ADMIN_PASSWORD = "s3cret"


def _json(data, status=200, headers=None):
    return httpx.Response(status, json=data, headers=headers)


def _error(status, message):
    return httpx.Response(status, json={"error": message})


class FakeBackend:
    """In-memory stand-in for the shop REST API, mounted via httpx.MockTransport."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.users = {}
        self.tokens = {}
        self.orders = {}
        self.carts = {}
        self.categories = [
            {"id": "cat-men", "name": "men", "description": "Menswear", "productCount": 2},
            {"id": "cat-acc", "name": "accessories", "description": None, "productCount": 1},
        ]
        self.products = [
            {"id": "p1", "name": "Wool Sweater", "price": 79.99, "categoryId": "cat-men", "gender": "men",
             "images": [{"url": "/img/p1.png"}], "sizes": [{"size": "M"}], "colors": []},
            {"id": "p2", "name": "Classic White T-Shirt", "price": 29.99, "categoryId": "cat-men", "gender": "men",
             "images": [], "sizes": [], "colors": []},
            {"id": "p3", "name": "Canvas Backpack", "price": 49.99, "categoryId": "cat-acc", "gender": "unisex",
             "images": [], "sizes": [], "colors": []},
        ]
        self.down = False
        self.calls = []
        self.on_request = None
        self.add_user("jane@example.com", "password1", first_name="Jane")
        self.add_user("admin@example.com", "adminpass", role="ADMIN")

    def add_user(self, email, password, role="CLIENT", first_name=None):
        uid = f"u{next(self._ids)}"
        self.users[email] = {
            "id": uid, "email": email, "password": password, "role": role,
            "firstName": first_name, "lastName": None, "phone": None,
        }
        return uid

    def user_id(self, email):
        return self.users[email]["id"]

    def revoke_all(self):
        self.tokens.clear()

    def add_order(self, email, order_id, total, created_at, status="DELIVERED"):
        self.orders.setdefault(self.user_id(email), []).append({
            "id": order_id, "total": total, "status": status,
            "createdAt": created_at.isoformat(), "paymentMethod": "card",
            "items": [{"productId": "p2", "quantity": 1, "price": total}],
        })

    @staticmethod
    def _public(user):
        return {k: v for k, v in user.items() if k != "password"}

    def _current(self, request):
        header = request.headers.get("Authorization", "")
        token = header[7:] if header.startswith("Bearer ") else None
        uid = self.tokens.get(token)
        for user in self.users.values():
            if user["id"] == uid:
                return user
        return None

    def _admin_write(self, user, method, path, body):
        if user is None:
            return _error(401, "Invalid token")
        if user["role"] != "ADMIN":
            return _error(403, "Forbidden")
        parts = path.split("/")
        records = self.categories if parts[2] == "categories" else self.products
        prefix = "cat" if parts[2] == "categories" else "prod"
        if records is self.products and body:
            # relations come back as objects, like the real API
            body = dict(body)
            for key, field in (("images", "url"), ("sizes", "size"), ("colors", "color")):
                body[key] = [{field: v} for v in body.get(key) or []]
        if method == "POST":
            record = {"id": f"{prefix}-{next(self._ids)}", **body}
            records.append(record)
            return _json(record, 201)
        found = [r for r in records if r["id"] == parts[3]]
        if not found:
            return _error(404, "Not found")
        if method == "PUT":
            found[0].update(body)
            return _json(found[0])
        records.remove(found[0])
        return httpx.Response(204)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if self.on_request is not None:
            self.on_request(request)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)

        method, path = request.method, request.url.path
        body = json.loads(request.content) if request.content else {}

        if path == "/api/auth/login" and method == "POST":
            user = self.users.get(body.get("email"))
            if not user or user["password"] != body.get("password"):
                return _error(401, "Invalid credentials")
            token = f"tok-{user['id']}-{next(self._ids)}"
            self.tokens[token] = user["id"]
            return _json({"user": self._public(user), "message": "Login successful"},
                         headers={"Authorization": f"Bearer {token}"})

        if path == "/api/auth/register" and method == "POST":
            if body.get("email") in self.users:
                return _error(409, "User already exists")
            self.add_user(body["email"], body["password"], first_name=body.get("firstName"))
            return _json({"user": self._public(self.users[body["email"]]), "message": "User created successfully"}, 201)

        if path == "/api/auth/logout" and method == "POST":
            return _json({"message": "Logged out successfully"})

        if path.startswith("/api/admin/"):
            if request.headers.get("x-admin-password") != ADMIN_PASSWORD:
                return _error(403, "Admin access required")
            if path == "/api/admin/stats":
                return _json({"totalUsers": len(self.users), "adminUsers": 1})
            if path == "/api/admin/users":
                return _json([self._public(u) for u in self.users.values()])
            if path == "/api/admin/products":
                return _json(self.products)
            if path == "/api/admin/orders":
                return _json([o for orders in self.orders.values() for o in orders])

        if path == "/api/categories" and method == "GET":
            return _json(self.categories)
        if path.startswith("/api/categories/slug/"):
            name = path.rsplit("/", 1)[1]
            found = [c for c in self.categories if c["name"] == name]
            return _json(found[0]) if found else _error(404, "Category not found")
        if path == "/api/products" and method == "GET":
            params = request.url.params
            items = self.products
            if params.get("category"):
                items = [p for p in items if p["categoryId"] == params["category"]]
            if params.get("minPrice"):
                items = [p for p in items if p["price"] >= float(params["minPrice"])]
            if params.get("maxPrice"):
                items = [p for p in items if p["price"] <= float(params["maxPrice"])]
            if params.get("search"):
                items = [p for p in items if params["search"].lower() in p["name"].lower()]
            return _json(items)
        if path.startswith("/api/products/") and method == "GET":
            found = [p for p in self.products if p["id"] == path.rsplit("/", 1)[1]]
            return _json(found[0]) if found else _error(404, "Not found")

        user = self._current(request)

        if method in ("POST", "PUT", "DELETE") and path.split("/")[2] in ("categories", "products"):
            return self._admin_write(user, method, path, body)

        if user is None:
            return _error(401, "Invalid token")

        if path == "/api/auth/me":
            return _json({"user": self._public(user)})
        if path == "/api/users/profile" and method == "PUT":
            user.update({k: v for k, v in body.items() if k in ("firstName", "lastName", "phone")})
            return _json(self._public(user))
        if path == "/api/cart":
            return _json({"id": "cart-1", "items": self.carts.get(user["id"], [])})
        if path == "/api/orders/user/me":
            return _json(list(self.orders.get(user["id"], [])))
        if path == "/api/orders" and method == "POST":
            order = {
                "id": f"ord-{next(self._ids)}",
                "userId": user["id"],
                "total": body["total"],
                "status": "PENDING",
                "createdAt": datetime.now(timezone.utc).isoformat(),
                "paymentMethod": body.get("paymentMethod"),
                "items": [
                    {"productId": i["id"], "quantity": i["quantity"], "price": i["price"],
                     "size": i.get("size"), "color": i.get("color")}
                    for i in body["items"]
                ],
            }
            self.orders.setdefault(user["id"], []).append(order)
            return _json(order, 201)

        return _error(404, "Not found")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        backend_url=BACKEND_URL,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}",
        admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def make_client(settings, backend):
    """Build a TestClient; several can share the same database file."""
    opened = []

    def _make(**overrides):
        app = create_app(settings, transport=httpx.MockTransport(backend))
        client = TestClient(app, **overrides)
        client.__enter__()
        opened.append(client)
        return client

    yield _make
    for client in opened:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()
