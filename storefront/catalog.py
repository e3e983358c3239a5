# storefront/catalog.py
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Query, Response
from pydantic import ValidationError as SchemaError

from .backend import BackendClient
from .deps import get_backend
from .errors import HttpError, ValidationError
from .schemas import Category, Product


def no_store(response: Response) -> None:
    # catalog data is re-fetched on every navigation
    response.headers["Cache-Control"] = "no-store"


categories_router = APIRouter(prefix="/api/categories", tags=["catalog"], dependencies=[Depends(no_store)])
products_router = APIRouter(prefix="/api/products", tags=["catalog"], dependencies=[Depends(no_store)])


def parse_price_range(value: Optional[str]) -> Tuple[Optional[Decimal], Optional[Decimal]]:
    """``"10-50"`` -> (10, 50); either side may be left empty (``"100-"``)."""
    if not value:
        return None, None
    low, sep, high = value.partition("-")
    if not sep:
        raise ValidationError(f"Invalid price range: {value}")
    try:
        min_price = Decimal(low) if low.strip() else None
        max_price = Decimal(high) if high.strip() else None
    except InvalidOperation:
        raise ValidationError(f"Invalid price range: {value}")
    if min_price is not None and max_price is not None and min_price > max_price:
        raise ValidationError(f"Invalid price range: {value}")
    return min_price, max_price


def sort_products(products: List[Product], sort: Optional[str]) -> List[Product]:
    # unknown values (e.g. "relevance") keep the backend order
    if sort == "price-asc":
        return sorted(products, key=lambda p: p.price)
    if sort == "price-desc":
        return sorted(products, key=lambda p: p.price, reverse=True)
    if sort == "name":
        return sorted(products, key=lambda p: p.name.lower())
    return list(products)


def _parse(model, raw):
    try:
        if isinstance(raw, list):
            return [model.model_validate(r) for r in raw]
        return model.model_validate(raw)
    except SchemaError as exc:
        raise HttpError(502, "Backend returned invalid catalog data") from exc


# 🗂️ Categories
@categories_router.get("", response_model=List[Category])
async def list_categories(backend: BackendClient = Depends(get_backend)):
    return _parse(Category, await backend.list_categories())


@categories_router.get("/slug/{name}", response_model=Category)
async def get_category_by_slug(name: str, backend: BackendClient = Depends(get_backend)):
    return _parse(Category, await backend.get_category_by_slug(name))


@categories_router.get("/{category_id}", response_model=Category)
async def get_category(category_id: str, backend: BackendClient = Depends(get_backend)):
    return _parse(Category, await backend.get_category(category_id))


# 🛍️ Products
@products_router.get("", response_model=List[Product])
async def list_products(
    category: Optional[str] = None,
    price: Optional[str] = Query(None, description="min-max, e.g. 10-50"),
    sort: Optional[str] = Query(None, description="price-asc | price-desc | name"),
    gender: Optional[str] = None,
    size: Optional[str] = None,
    q: Optional[str] = None,
    backend: BackendClient = Depends(get_backend),
):
    min_price, max_price = parse_price_range(price)
    raw = await backend.list_products(
        category=category,
        min_price=min_price,
        max_price=max_price,
        gender=gender,
        size=size,
        search=q.strip() if q else None,
    )
    return sort_products(_parse(Product, raw), sort)


@products_router.get("/{product_id}", response_model=Product)
async def get_product(product_id: str, backend: BackendClient = Depends(get_backend)):
    return _parse(Product, await backend.get_product(product_id))


@products_router.get("/{product_id}/recommendations", response_model=List[Product])
async def get_recommendations(product_id: str, backend: BackendClient = Depends(get_backend)):
    return _parse(Product, await backend.get_recommendations(product_id))
