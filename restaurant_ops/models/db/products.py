from __future__ import annotations
"""SQLAlchemy model for restaurant products and their available inventory."""
from typing import TYPE_CHECKING
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .orders import OrderItem
from sqlalchemy.sql import func
from restaurant_ops.database import Base

class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    # Units still available for new checkouts; reserved units are already subtracted.
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    order_items: Mapped[list["OrderItem"]] = relationship("OrderItem", back_populates="product")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="product_quantity_non_negative"),
    )
