import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from syncly.database import Base
from syncly.models.types import JSONDocument, utcnow


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (UniqueConstraint("shop_id", "platform", "platform_user_id", name="uq_customers_shop_platform_user"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False, index=True)
    platform = Column(Text, nullable=False)  # messenger, instagram
    platform_user_id = Column(Text, nullable=False)
    name = Column(Text)
    phone = Column(Text)
    address = Column(Text)
    ai_paused_until = Column(DateTime(timezone=True))
    message_count = Column(Integer, nullable=False, default=0)
    total_orders = Column(Integer, nullable=False, default=0)
    tags = Column(JSONDocument, nullable=False, default=list)
    is_vip = Column(Boolean, nullable=False, default=False)
    ai_memory = Column(JSONDocument, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    shop = relationship("Shop", back_populates="customers")
    orders = relationship("Order", back_populates="customer")
