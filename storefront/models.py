from sqlalchemy import Column, DateTime, String, Text, func

from .database import Base


class StoredSession(Base):
    """Durable copy of one browser session's state, keyed by the session cookie."""

    __tablename__ = "storefront_sessions"

    id = Column(String(64), primary_key=True)
    auth = Column(Text, nullable=True)                       # AuthSession JSON, null when logged out
    cart = Column(Text, nullable=False, default="[]")        # list of CartItem
    wishlist = Column(Text, nullable=False, default="[]")    # list of WishlistItem
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
