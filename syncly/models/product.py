import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from syncly.database import Base
from syncly.models.types import JSONDocument, utcnow


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("reserved_stock >= 0", name="ck_products_reserved_non_negative"),
        CheckConstraint("stock - reserved_stock >= 0", name="ck_products_available_non_negative"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    price = Column(Integer, nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0)
    reserved_stock = Column(Integer, nullable=False, default=0)
    discount_percent = Column(Integer, nullable=False, default=0)
    variants = Column(JSONDocument, nullable=False, default=list)  # [{"color", "size", "stock"}]
    images = Column(JSONDocument, nullable=False, default=list)
    image_url = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    shop = relationship("Shop", back_populates="products")

    @property
    def available_stock(self) -> int:
        return max((self.stock or 0) - (self.reserved_stock or 0), 0)
