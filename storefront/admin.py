# storefront/admin.py
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import Field, field_validator

from .auth import AuthManager, get_auth_manager, require_admin
from .backend import AdminClient, BackendClient
from .catalog import no_store
from .deps import get_admin_client, get_backend, get_storefront_session
from .schemas import APIModel, AuthSession, Category, Product
from .session import StorefrontSession

logger = logging.getLogger(__name__)

# every route re-validates the caller as an admin before touching the backend
router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(no_store)])


class CategoryIn(APIModel):
    name: str
    description: Optional[str] = None
    image: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Category name is required")
        return v.strip()


class ProductIn(APIModel):
    name: str
    description: Optional[str] = None
    price: Decimal = Field(gt=0)
    stock: int = Field(0, ge=0)
    gender: Optional[str] = None
    category_id: str
    images: List[str] = []
    sizes: List[str] = []
    colors: List[str] = []
    features: List[str] = []

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Product name is required")
        return v.strip()


def _product_fields(payload: ProductIn) -> Dict[str, Any]:
    fields = payload.model_dump(by_alias=True)
    fields["price"] = float(payload.price)
    return fields


# 🗂️ Categories
@router.post("/categories", response_model=Category, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryIn,
    admin: AuthSession = Depends(require_admin),
    session: StorefrontSession = Depends(get_storefront_session),
    backend: BackendClient = Depends(get_backend),
    manager: AuthManager = Depends(get_auth_manager),
):
    raw = await manager.guarded(session, backend.create_category(admin.token, payload.model_dump(by_alias=True)))
    logger.info("admin %s created category %s", admin.user_id, raw.get("id"))
    return raw


@router.put("/categories/{category_id}", response_model=Category)
async def update_category(
    category_id: str,
    payload: CategoryIn,
    admin: AuthSession = Depends(require_admin),
    session: StorefrontSession = Depends(get_storefront_session),
    backend: BackendClient = Depends(get_backend),
    manager: AuthManager = Depends(get_auth_manager),
):
    return await manager.guarded(
        session, backend.update_category(admin.token, category_id, payload.model_dump(by_alias=True))
    )


@router.delete("/categories/{category_id}", status_code=204)
async def delete_category(
    category_id: str,
    admin: AuthSession = Depends(require_admin),
    session: StorefrontSession = Depends(get_storefront_session),
    backend: BackendClient = Depends(get_backend),
    manager: AuthManager = Depends(get_auth_manager),
):
    await manager.guarded(session, backend.delete_category(admin.token, category_id))
    logger.info("admin %s deleted category %s", admin.user_id, category_id)


# 🛍️ Products
@router.post("/products", response_model=Product, status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductIn,
    admin: AuthSession = Depends(require_admin),
    session: StorefrontSession = Depends(get_storefront_session),
    backend: BackendClient = Depends(get_backend),
    manager: AuthManager = Depends(get_auth_manager),
):
    raw = await manager.guarded(session, backend.create_product(admin.token, _product_fields(payload)))
    logger.info("admin %s created product %s", admin.user_id, raw.get("id"))
    return raw


@router.put("/products/{product_id}", response_model=Product)
async def update_product(
    product_id: str,
    payload: ProductIn,
    admin: AuthSession = Depends(require_admin),
    session: StorefrontSession = Depends(get_storefront_session),
    backend: BackendClient = Depends(get_backend),
    manager: AuthManager = Depends(get_auth_manager),
):
    return await manager.guarded(session, backend.update_product(admin.token, product_id, _product_fields(payload)))


@router.delete("/products/{product_id}", status_code=204)
async def delete_product(
    product_id: str,
    admin: AuthSession = Depends(require_admin),
    session: StorefrontSession = Depends(get_storefront_session),
    backend: BackendClient = Depends(get_backend),
    manager: AuthManager = Depends(get_auth_manager),
):
    await manager.guarded(session, backend.delete_product(admin.token, product_id))
    logger.info("admin %s deleted product %s", admin.user_id, product_id)


# 📊 Dashboard
@router.get("/orders")
async def list_all_orders(
    admin: AuthSession = Depends(require_admin),
    client: AdminClient = Depends(get_admin_client),
):
    return await client.orders(admin.token)


@router.get("/products")
async def list_all_products(
    admin: AuthSession = Depends(require_admin),
    client: AdminClient = Depends(get_admin_client),
):
    return await client.products(admin.token)


@router.get("/stats")
async def stats(
    admin: AuthSession = Depends(require_admin),
    client: AdminClient = Depends(get_admin_client),
):
    return await client.stats(admin.token)


@router.get("/users")
async def users(
    admin: AuthSession = Depends(require_admin),
    client: AdminClient = Depends(get_admin_client),
):
    return await client.users(admin.token)
