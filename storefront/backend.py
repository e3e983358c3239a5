# storefront/backend.py
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .errors import AuthError, HttpError, NetworkError

logger = logging.getLogger(__name__)

# Bare path constants for the upstream REST surface
CATEGORIES = "/api/categories"
PRODUCTS = "/api/products"
AUTH = "/api/auth"
USERS = "/api/users"
CART = "/api/cart"
ORDERS = "/api/orders"
ADMIN = "/api/admin"


def error_from_response(resp: httpx.Response) -> HttpError:
    """Turn a non-2xx response into HttpError / AuthError.

    The backend answers failures with ``{"error": "..."}``; that message is kept
    verbatim. Anything unparsable falls back to a generic message.
    """
    message = None
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        candidate = body.get("error") or body.get("detail")
        if isinstance(candidate, str) and candidate.strip():
            message = candidate
    if resp.status_code in (401, 403):
        return AuthError(resp.status_code, message)
    return HttpError(resp.status_code, message)


def extract_token(resp: httpx.Response) -> Optional[str]:
    header = resp.headers.get("Authorization")
    if header and header.lower().startswith("bearer "):
        return header.split(None, 1)[1].strip()
    cookie = resp.cookies.get("auth-token")
    if cookie:
        return cookie
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("token"), str):
        return body["token"]
    return None


def _json_object(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json() if resp.content else {}
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _clean(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if params is None:
        return None
    return {k: v for k, v in params.items() if v is not None and v != ""}


class BackendClient:
    """Thin async wrapper over the upstream e-commerce REST API.

    Nothing here caches: every call goes to the backend. Mutating calls are
    never retried.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        send_headers = {"Cache-Control": "no-store", "Accept": "application/json"}
        if headers:
            send_headers.update(headers)
        if token:
            send_headers["Authorization"] = f"Bearer {token}"

        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                resp = await client.request(method, path, json=json, params=_clean(params), headers=send_headers)
        except httpx.RequestError as exc:
            logger.warning("%s %s: backend unreachable (%s)", method, path, exc.__class__.__name__)
            raise NetworkError() from exc

        if resp.is_success:
            return resp
        err = error_from_response(resp)
        logger.info("%s %s -> %s %s", method, path, resp.status_code, err.message)
        raise err

    async def request_json(self, method: str, path: str, **kwargs) -> Any:
        resp = await self.request(method, path, **kwargs)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise HttpError(502, "Backend returned an invalid response") from exc

    # 👤 auth
    async def login(self, email: str, password: str) -> Tuple[Optional[str], Dict[str, Any]]:
        resp = await self.request("POST", f"{AUTH}/login", json={"email": email, "password": password})
        body = _json_object(resp)
        return extract_token(resp), body.get("user") or {}

    async def register(self, fields: Dict[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
        resp = await self.request("POST", f"{AUTH}/register", json=fields)
        body = _json_object(resp)
        return extract_token(resp), body.get("user") or {}

    async def logout(self, token: str) -> None:
        await self.request("POST", f"{AUTH}/logout", token=token)

    async def me(self, token: str) -> Dict[str, Any]:
        body = await self.request_json("GET", f"{AUTH}/me", token=token)
        return (body or {}).get("user") or {}

    async def update_profile(self, token: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        body = await self.request_json("PUT", f"{USERS}/profile", token=token, json=fields) or {}
        # the backend has answered both {"user": {...}} and a bare user object
        return body.get("user", body)

    # 🗂️ catalog
    async def list_categories(self) -> List[Dict[str, Any]]:
        return await self.request_json("GET", CATEGORIES) or []

    async def get_category(self, category_id: str) -> Dict[str, Any]:
        return await self.request_json("GET", f"{CATEGORIES}/{category_id}")

    async def get_category_by_slug(self, slug: str) -> Dict[str, Any]:
        return await self.request_json("GET", f"{CATEGORIES}/slug/{slug}")

    async def list_products(
        self,
        category: Optional[str] = None,
        min_price: Optional[Any] = None,
        max_price: Optional[Any] = None,
        gender: Optional[str] = None,
        size: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params = {
            "category": category,
            "minPrice": None if min_price is None else str(min_price),
            "maxPrice": None if max_price is None else str(max_price),
            "gender": gender,
            "size": size,
            "search": search,
        }
        return await self.request_json("GET", PRODUCTS, params=params) or []

    async def get_product(self, product_id: str) -> Dict[str, Any]:
        return await self.request_json("GET", f"{PRODUCTS}/{product_id}")

    async def get_recommendations(self, product_id: str) -> List[Dict[str, Any]]:
        return await self.request_json("GET", f"{PRODUCTS}/{product_id}/recommendations") or []

    # 🛒 cart / 📦 orders
    async def get_cart(self, token: str) -> Dict[str, Any]:
        return await self.request_json("GET", CART, token=token) or {}

    async def list_my_orders(self, token: str) -> List[Dict[str, Any]]:
        return await self.request_json("GET", f"{ORDERS}/user/me", token=token) or []

    async def get_order(self, token: str, order_id: str) -> Dict[str, Any]:
        return await self.request_json("GET", f"{ORDERS}/{order_id}", token=token)

    async def create_order(self, token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request_json("POST", ORDERS, token=token, json=payload)

    # 🛠️ admin (bearer token, role checked upstream)
    async def create_category(self, token: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request_json("POST", CATEGORIES, token=token, json=fields)

    async def update_category(self, token: str, category_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request_json("PUT", f"{CATEGORIES}/{category_id}", token=token, json=fields)

    async def delete_category(self, token: str, category_id: str) -> None:
        await self.request("DELETE", f"{CATEGORIES}/{category_id}", token=token)

    async def create_product(self, token: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request_json("POST", PRODUCTS, token=token, json=fields)

    async def update_product(self, token: str, product_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request_json("PUT", f"{PRODUCTS}/{product_id}", token=token, json=fields)

    async def delete_product(self, token: str, product_id: str) -> None:
        await self.request("DELETE", f"{PRODUCTS}/{product_id}", token=token)


class AdminClient:
    """Dashboard endpoints guarded by the shared ``x-admin-password`` header.

    The password only ever comes from configuration. Calls also carry the
    admin's bearer token so the backend can apply its per-user check too.
    """

    def __init__(self, backend: BackendClient, password: Optional[str]):
        self.backend = backend
        self.password = password

    def _headers(self) -> Dict[str, str]:
        if not self.password:
            raise HttpError(503, "Admin dashboard is not configured")
        return {"x-admin-password": self.password}

    async def _get(self, path: str, token: Optional[str]):
        return await self.backend.request_json("GET", f"{ADMIN}/{path}", token=token, headers=self._headers())

    async def stats(self, token: Optional[str] = None) -> Dict[str, Any]:
        return await self._get("stats", token) or {}

    async def users(self, token: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._get("users", token) or []

    async def products(self, token: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._get("products", token) or []

    async def orders(self, token: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._get("orders", token) or []
