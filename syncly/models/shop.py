import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Text, Uuid, text
from sqlalchemy.orm import relationship

from syncly.database import Base
from syncly.models.types import JSONDocument, utcnow


class Shop(Base):
    __tablename__ = "shops"
    __table_args__ = (
        # One active shop per connected page / business account.
        Index(
            "uq_shops_active_facebook_page",
            "facebook_page_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index(
            "uq_shops_active_instagram_account",
            "instagram_business_account_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)

    facebook_page_id = Column(Text)
    facebook_page_username = Column(Text)
    facebook_page_access_token = Column(Text)
    instagram_business_account_id = Column(Text)
    instagram_access_token = Column(Text)

    is_ai_active = Column(Boolean, nullable=False, default=True)
    ai_emotion = Column(Text, default="friendly")  # friendly, professional, enthusiastic, calm, playful
    ai_instructions = Column(Text)
    custom_knowledge = Column(JSONDocument, nullable=False, default=dict)
    policies = Column(JSONDocument, nullable=False, default=dict)  # shipping, returns, payment

    # NULL means enabled
    notify_on_order = Column(Boolean)
    notify_on_contact = Column(Boolean)
    notify_on_support = Column(Boolean)
    notify_on_cancel = Column(Boolean)
    notification_chat_id = Column(Text)

    subscription_plan = Column(Text)  # trial, starter, pro, ultimate
    subscription_status = Column(Text)  # trial, active, past_due, inactive
    trial_ends_at = Column(DateTime(timezone=True))
    ai_messages_this_month = Column(Integer, nullable=False, default=0)
    ai_usage_reset_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    customers = relationship("Customer", back_populates="shop")
    products = relationship("Product", back_populates="shop")
    faqs = relationship("ShopFaq", back_populates="shop")
    quick_replies = relationship("ShopQuickReply", back_populates="shop")
    slogans = relationship("ShopSlogan", back_populates="shop")


class ShopFaq(Base):
    __tablename__ = "shop_faqs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False, index=True)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    category = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)

    shop = relationship("Shop", back_populates="faqs")


class ShopQuickReply(Base):
    __tablename__ = "shop_quick_replies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    trigger_words = Column(JSONDocument, nullable=False, default=list)
    response = Column(Text, nullable=False)
    is_exact_match = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    shop = relationship("Shop", back_populates="quick_replies")


class ShopSlogan(Base):
    __tablename__ = "shop_slogans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False, index=True)
    slogan = Column(Text, nullable=False)
    usage_context = Column(Text, default="any")  # greeting, closing, promotion, any
    is_active = Column(Boolean, nullable=False, default=True)

    shop = relationship("Shop", back_populates="slogans")
