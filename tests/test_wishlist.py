from decimal import Decimal

from storefront.wishlist import AddToWishlist, ClearWishlist, RemoveFromWishlist, in_wishlist, wishlist_reducer
from storefront.schemas import WishlistItem


def make_item(pid: str) -> WishlistItem:
    return WishlistItem(id=pid, name=f"Product {pid}", price=Decimal("10"), category="men")


def test_add_is_idempotent():
    items = wishlist_reducer([], AddToWishlist(make_item("p1")))
    again = wishlist_reducer(items, AddToWishlist(make_item("p1")))
    assert [i.id for i in again] == ["p1"]


def test_first_insertion_order_kept():
    items = []
    for pid in ("p3", "p1", "p2", "p1"):
        items = wishlist_reducer(items, AddToWishlist(make_item(pid)))
    assert [i.id for i in items] == ["p3", "p1", "p2"]


def test_remove_and_membership():
    items = [make_item("p1"), make_item("p2")]
    items = wishlist_reducer(items, RemoveFromWishlist("p1"))
    assert not in_wishlist(items, "p1")
    assert in_wishlist(items, "p2")
    # removing something absent changes nothing
    assert wishlist_reducer(items, RemoveFromWishlist("nope")) == items


def test_clear():
    assert wishlist_reducer([make_item("p1")], ClearWishlist()) == []
