import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from syncly.database import Base
from syncly.models.types import JSONDocument, utcnow


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False)
    customer_id = Column(Uuid, ForeignKey("customers.id"), nullable=False, index=True)
    status = Column(Text, nullable=False, default="active")  # active, checked_out
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan", order_by="CartItem.created_at")


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_cart_items_quantity_positive"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    cart_id = Column(Uuid, ForeignKey("carts.id"), nullable=False)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)
    variant_specs = Column(JSONDocument, nullable=False, default=dict)  # {"color", "size"}
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")
