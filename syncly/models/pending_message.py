import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Text, Uuid

from syncly.database import Base
from syncly.models.types import utcnow


class PendingMessage(Base):
    __tablename__ = "pending_messages"
    __table_args__ = (Index("ix_pending_messages_ready", "processed", "process_after"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False)
    customer_id = Column(Uuid, ForeignKey("customers.id"), nullable=False)
    sender_id = Column(Text, nullable=False)
    platform = Column(Text, nullable=False)  # messenger, instagram
    message_type = Column(Text, nullable=False, default="text")  # text, image
    content = Column(Text)
    image_url = Column(Text)
    access_token = Column(Text)
    processed = Column(Boolean, nullable=False, default=False)
    process_after = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
