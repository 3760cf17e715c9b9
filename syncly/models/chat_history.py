import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, Uuid

from syncly.database import Base
from syncly.models.types import utcnow


class ChatHistoryEntry(Base):
    __tablename__ = "chat_history"
    __table_args__ = (Index("ix_chat_history_customer_created", "shop_id", "customer_id", "created_at"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False)
    customer_id = Column(Uuid, ForeignKey("customers.id"))  # NULL for comment replies
    message = Column(Text, nullable=False)
    response = Column(Text, nullable=False)
    intent = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
