from dataclasses import dataclass
from typing import Iterable, List, Union

from fastapi import APIRouter, Depends, status

from .deps import get_storefront_session, get_store
from .schemas import WishlistItem, WishlistOut
from .session import SessionStore, StorefrontSession

router = APIRouter(prefix="/api/wishlist", tags=["wishlist"])


@dataclass(frozen=True)
class AddToWishlist:
    item: WishlistItem


@dataclass(frozen=True)
class RemoveFromWishlist:
    product_id: str


@dataclass(frozen=True)
class ClearWishlist:
    pass


WishlistAction = Union[AddToWishlist, RemoveFromWishlist, ClearWishlist]


def wishlist_reducer(items: List[WishlistItem], action: WishlistAction) -> List[WishlistItem]:
    # set semantics by id, first-insertion order kept for display
    if isinstance(action, AddToWishlist):
        if in_wishlist(items, action.item.id):
            return list(items)
        return list(items) + [action.item]
    if isinstance(action, RemoveFromWishlist):
        return [i for i in items if i.id != action.product_id]
    if isinstance(action, ClearWishlist):
        return []
    raise TypeError(f"unknown wishlist action: {action!r}")


def in_wishlist(items: Iterable[WishlistItem], product_id: str) -> bool:
    return any(i.id == product_id for i in items)


async def _dispatch(session: StorefrontSession, store: SessionStore, action: WishlistAction) -> None:
    async with session.lock:
        session.wishlist = wishlist_reducer(session.wishlist, action)
        await store.save(session)


def _out(session: StorefrontSession) -> WishlistOut:
    items = list(session.wishlist)
    return WishlistOut(items=items, count=len(items))


@router.get("", response_model=WishlistOut)
async def get_wishlist(session: StorefrontSession = Depends(get_storefront_session)):
    return _out(session)


@router.post("", response_model=WishlistOut, status_code=status.HTTP_201_CREATED)
async def add_to_wishlist(
    payload: WishlistItem,
    session: StorefrontSession = Depends(get_storefront_session),
    store: SessionStore = Depends(get_store),
):
    await _dispatch(session, store, AddToWishlist(payload))
    return _out(session)


@router.get("/{product_id}")
async def is_in_wishlist(product_id: str, session: StorefrontSession = Depends(get_storefront_session)):
    return {"inWishlist": in_wishlist(session.wishlist, product_id)}


@router.delete("/{product_id}", response_model=WishlistOut)
async def remove_from_wishlist(
    product_id: str,
    session: StorefrontSession = Depends(get_storefront_session),
    store: SessionStore = Depends(get_store),
):
    await _dispatch(session, store, RemoveFromWishlist(product_id))
    return _out(session)


@router.delete("", status_code=204)
async def clear_wishlist(
    session: StorefrontSession = Depends(get_storefront_session),
    store: SessionStore = Depends(get_store),
):
    await _dispatch(session, store, ClearWishlist())
