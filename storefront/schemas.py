# storefront/schemas.py
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

CENT = Decimal("0.01")


class APIModel(BaseModel):
    # the backend and the browser both speak camelCase
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# 🗂️ Catalog
class CategoryRef(APIModel):
    id: str
    name: str
    description: Optional[str] = None
    image: Optional[str] = None


class Category(CategoryRef):
    product_count: Optional[int] = None


class ProductImage(APIModel):
    url: str


class ProductSize(APIModel):
    size: str


class ProductColor(APIModel):
    color: str


class Product(APIModel):
    id: str
    name: str
    description: Optional[str] = None
    price: Decimal
    stock: Optional[int] = None
    gender: Optional[str] = None
    category_id: Optional[str] = None
    category: Optional[CategoryRef] = None
    images: List[ProductImage] = []
    sizes: List[ProductSize] = []
    colors: List[ProductColor] = []
    created_at: Optional[datetime] = None


# 🛒 Cart
class CartItem(APIModel):
    id: str
    name: str
    price: Decimal = Field(gt=0)
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    cart_item_id: Optional[str] = None

    @property
    def key(self) -> Tuple[str, Optional[str], Optional[str]]:
        return (self.id, self.size, self.color)


class CartTotals(APIModel):
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    item_count: int

    def rounded(self) -> "CartTotals":
        """Display copy with every amount quantized to cents."""
        q = lambda v: v.quantize(CENT, rounding=ROUND_HALF_UP)  # noqa: E731
        return CartTotals(
            subtotal=q(self.subtotal),
            tax=q(self.tax),
            shipping=q(self.shipping),
            total=q(self.total),
            item_count=self.item_count,
        )


class CartAddIn(APIModel):
    id: str
    name: str
    price: Decimal = Field(gt=0)
    quantity: int = 1
    image: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None


class CartQuantityIn(APIModel):
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None


class CartOut(APIModel):
    items: List[CartItem]
    totals: CartTotals


# ❤️ Wishlist
class WishlistItem(APIModel):
    id: str
    name: str
    price: Decimal = Field(ge=0)
    image: Optional[str] = None
    category: Union[CategoryRef, str, None] = None


class WishlistOut(APIModel):
    items: List[WishlistItem]
    count: int


# 👤 Auth
class UserProfile(APIModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    role: Optional[str] = "CLIENT"


class AuthSession(APIModel):
    user_id: str
    token: str
    profile: UserProfile


class LoginIn(APIModel):
    email: EmailStr
    password: str


class RegisterIn(APIModel):
    email: EmailStr
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ProfileUpdateIn(APIModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class SessionOut(APIModel):
    authenticated: bool
    user: Optional[UserProfile] = None


# 📦 Orders
class ShippingAddress(APIModel):
    first_name: str
    last_name: str
    email: str
    phone: str
    address: str
    apartment: Optional[str] = None
    city: str
    state: str
    zip_code: str
    country: str


class OrderItem(APIModel):
    id: str
    name: str
    price: Decimal
    quantity: int
    image: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None



class Order(APIModel):
    id: str
    items: List[OrderItem] = []
    shipping_address: Optional[ShippingAddress] = None
    subtotal: Decimal
    shipping: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal
    payment_method: str = "card"
    status: str = "pending"
    created_at: datetime
    estimated_delivery: Optional[datetime] = None


class CheckoutIn(APIModel):
    shipping_address: ShippingAddress
    payment_method: Literal["card", "paypal"] = "card"
    # id of the approved payment returned by the third-party button
    payment_reference: Optional[str] = None
